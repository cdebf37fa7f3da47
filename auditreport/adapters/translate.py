from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from ..config import get_settings
from ..types import IssueRecord
from .llm import BasicLLMClient, BasicLLMConfig


logger = logging.getLogger(__name__)

# Text fields translated when a whole issue page is translated.
TRANSLATABLE_FIELDS: tuple[str, ...] = (
    'title',
    'component',
    'impact_details',
    'description',
    'example_scenario',
    'recommendation',
)

SYSTEM_PROMPT_TEMPLATE = """You are a professional translator.
Translate the provided text into {language}.

Strict Constraints:
1. Output ONLY the translated text, with no explanations, apologies, or commentary.
2. Preserve all URLs exactly as they are.
3. Preserve markdown formatting (bullet points, bold, italic, links, headings).
4. Preserve placeholders (e.g., {{{{count}}}}) and do not translate code identifiers, variable names, function names, class names, or file paths.
5. Preserve line breaks and list structure.
6. If the text is already in {language}, return it unchanged."""


class TranslationError(RuntimeError):
    pass


class CompletionClient(Protocol):
    @property
    def configured(self) -> bool: ...

    async def complete(
        self,
        *,
        system: str,
        user: str,
        temperature: float = 0.0,
        max_completion_tokens: int | None = None,
    ) -> str: ...


class Translator:
    def __init__(self, client: CompletionClient | None = None, *, min_completion_tokens: int | None = None):
        settings = get_settings()
        self.client = client or BasicLLMClient(BasicLLMConfig.from_settings(settings))
        self.min_completion_tokens = (
            settings.translation_min_completion_tokens if min_completion_tokens is None else min_completion_tokens
        )

    @property
    def available(self) -> bool:
        return self.client.configured

    async def translate(self, text: str, target_language: str) -> str:
        """Translate one field.

        Without a configured service the text comes back unchanged. Blank text
        is returned as-is without a call.
        """
        if not self.available:
            return text
        if not text or not text.strip():
            return text
        if not target_language or not target_language.strip():
            raise ValueError('Target language is required')

        translated = await self.client.complete(
            system=SYSTEM_PROMPT_TEMPLATE.format(language=target_language.strip()),
            user=text,
            temperature=0,
            max_completion_tokens=max(self.min_completion_tokens, len(text) * 2),
        )
        if not translated:
            raise TranslationError('No translation received from the service')
        return translated


async def translate_issue(issue: IssueRecord, target_language: str, translator: Translator) -> IssueRecord:
    """Translate every text field of an issue concurrently.

    A field whose translation fails keeps its current value; the rest are
    still applied. Returns a new record.
    """
    if not target_language or not target_language.strip():
        raise ValueError('Target language is required')

    field_results = await asyncio.gather(
        *(translator.translate(getattr(issue, name), target_language) for name in TRANSLATABLE_FIELDS),
        return_exceptions=True,
    )
    row_results = await asyncio.gather(
        *(translator.translate(row.title, target_language) for row in issue.extra_rows),
        return_exceptions=True,
    )

    updates: dict[str, object] = {}
    for name, result in zip(TRANSLATABLE_FIELDS, field_results):
        if isinstance(result, BaseException):
            logger.warning('Translation of %s for issue %s failed: %s', name, issue.id, result)
            continue
        updates[name] = result

    rows = []
    for row, result in zip(issue.extra_rows, row_results):
        if isinstance(result, BaseException):
            logger.warning('Translation of an extra row for issue %s failed: %s', issue.id, result)
            rows.append(row)
        else:
            rows.append(row.model_copy(update={'title': result}))
    updates['extra_rows'] = rows

    return issue.model_copy(update=updates)
