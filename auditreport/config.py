from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    app_name: str = 'Audit Report Generator'

    data_dir: Path = Field(default=Path('./data'))
    output_dir: Path = Field(default=Path('./out'))
    log_level: str = 'INFO'

    # Translation (optional; pass-through when no key is configured)
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices('OPENAI_API_KEY', 'API_KEY', 'LLM_API_KEY'),
    )
    openai_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices('BASE_URL', 'OPENAI_BASE_URL', 'LLM_BASE_URL'),
    )
    translation_model: str = 'gpt-4o-mini'
    translation_timeout_seconds: int = 60
    translation_min_completion_tokens: int = 1024
    target_language: str = ''

    # Raster export
    render_width_px: int = 794
    render_scale: float = 2.0
    render_settle_seconds: float = 0.1
    render_initial_height_px: int = 4000
    render_max_height_px: int = 64000
    jpeg_quality: int = 95

    # Physical page layout shared by both outputs (A4 portrait)
    page_margin_top_mm: float = 12.0
    page_margin_bottom_mm: float = 14.0
    page_margin_left_mm: float = 12.0
    page_margin_right_mm: float = 12.0

    # Output names
    pdf_filename: str = 'audit-report.pdf'
    docx_filename: str = 'audit-report.docx'
    markdown_bundle_filename: str = 'audit-issues.zip'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings
