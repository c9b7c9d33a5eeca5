"""Runtime settings for CancerCompanion services."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_models(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if not value:
        return default
    models = tuple(token.strip() for token in value.split(",") if token.strip())
    return models or default


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


@dataclass(frozen=True)
class Settings:
    app_name: str = field(default_factory=lambda: os.getenv("CANCERCOMPANION_APP_NAME", "cancercompanion-api"))

    # Primary tier: self-hosted MedGemma/TxGemma behind a tunnel. Optional.
    primary_base_url: str | None = field(
        default_factory=lambda: _first_env("KAGGLE_MODEL_URL", "VITE_KAGGLE_MODEL_URL")
    )
    primary_timeout_ms: int = field(
        default_factory=lambda: int(os.getenv("CANCERCOMPANION_PRIMARY_TIMEOUT_MS", "5000"))
    )

    # Backup tier: hosted chat completions, key held server-side only.
    backup_api_key: str | None = field(
        default_factory=lambda: _first_env("AIMLAPI_API_KEY", "AIMLAPI_KEY")
    )
    backup_base_url: str = field(
        default_factory=lambda: os.getenv("AIMLAPI_BASE_URL", "https://api.aimlapi.com")
    )
    backup_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("CANCERCOMPANION_BACKUP_TIMEOUT_SEC", "60"))
    )
    extraction_model: str = field(
        default_factory=lambda: os.getenv("CANCERCOMPANION_EXTRACTION_MODEL", "gpt-4o")
    )
    scan_model: str = field(default_factory=lambda: os.getenv("CANCERCOMPANION_SCAN_MODEL", "gpt-4o"))
    timeline_models: tuple[str, ...] = field(
        default_factory=lambda: _as_models(
            os.getenv("CANCERCOMPANION_TIMELINE_MODELS"),
            ("claude-3-7-sonnet-20250219", "gpt-4o"),
        )
    )
    router_model: str = field(
        default_factory=lambda: os.getenv("CANCERCOMPANION_ROUTER_MODEL", "claude-sonnet-4-5")
    )

    # Enrichment providers. Both optional.
    firecrawl_api_key: str | None = field(default_factory=lambda: os.getenv("FIRECRAWL_API_KEY"))
    firecrawl_base_url: str = field(
        default_factory=lambda: os.getenv("FIRECRAWL_BASE_URL", "https://api.firecrawl.dev")
    )
    perplexity_api_key: str | None = field(default_factory=lambda: os.getenv("PERPLEXITY_API_KEY"))
    perplexity_base_url: str = field(
        default_factory=lambda: os.getenv("PERPLEXITY_BASE_URL", "https://api.perplexity.ai")
    )
    perplexity_model: str = field(default_factory=lambda: os.getenv("PERPLEXITY_MODEL", "sonar"))
    enrichment_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("CANCERCOMPANION_ENRICHMENT_TIMEOUT_SEC", "30"))
    )

    fallback_notice_window_sec: float = field(
        default_factory=lambda: float(os.getenv("CANCERCOMPANION_FALLBACK_NOTICE_WINDOW_SEC", "10"))
    )

    log_level: str = field(default_factory=lambda: os.getenv("CANCERCOMPANION_LOG_LEVEL", "INFO"))
    log_json: bool = field(
        default_factory=lambda: _as_bool(os.getenv("CANCERCOMPANION_LOG_JSON"), default=True)
    )

    @property
    def primary_configured(self) -> bool:
        return bool(self.primary_base_url)


def get_settings() -> Settings:
    return Settings()
