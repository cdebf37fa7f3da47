from __future__ import annotations

from dataclasses import dataclass

from openai import AsyncOpenAI

from ..config import Settings, get_settings


@dataclass
class BasicLLMConfig:
    base_url: str | None
    api_key: str | None
    model: str
    timeout_seconds: int

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> BasicLLMConfig:
        settings = settings or get_settings()
        return cls(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=settings.translation_model,
            timeout_seconds=settings.translation_timeout_seconds,
        )


class BasicLLMClient:
    """Minimal async OpenAI client helper for single-shot chat completions."""

    def __init__(self, cfg: BasicLLMConfig):
        self.cfg = cfg
        self._client: AsyncOpenAI | None = None

    @property
    def configured(self) -> bool:
        return bool(self.cfg.api_key)

    def client(self) -> AsyncOpenAI:
        if not self.configured:
            raise RuntimeError('LLM client is not configured')
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.cfg.api_key,
                base_url=self.cfg.base_url,
                timeout=max(30, int(self.cfg.timeout_seconds)),
            )
        return self._client

    async def complete(
        self,
        *,
        system: str,
        user: str,
        temperature: float = 0.0,
        max_completion_tokens: int | None = None,
    ) -> str:
        kwargs = {}
        if max_completion_tokens is not None:
            kwargs['max_completion_tokens'] = int(max_completion_tokens)
        response = await self.client().chat.completions.create(
            model=self.cfg.model,
            messages=[
                {'role': 'system', 'content': system},
                {'role': 'user', 'content': user},
            ],
            temperature=temperature,
            **kwargs,
        )
        if not response.choices:
            return ''
        return (response.choices[0].message.content or '').strip()
