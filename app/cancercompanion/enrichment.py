"""Best-effort context from search, research Q&A and drug-interaction services.

Every call here degrades to an empty result; none of them raise.
"""

from __future__ import annotations

from typing import Any

import httpx

from cancercompanion.config import Settings
from cancercompanion.gateway import PrimaryModelGateway, extract_chat_content, post_json
from cancercompanion.logs import get_logger
from cancercompanion.normalizer import as_text
from cancercompanion.schemas import ProviderSuccess, SearchHit
from cancercompanion.utils import join_base

logger = get_logger(__name__)


class FirecrawlSearch:
    provider = "firecrawl"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._settings.firecrawl_api_key)

    async def search(self, query: str, *, limit: int) -> list[SearchHit]:
        if not self.configured:
            logger.info("enrichment_skipped", provider=self.provider, reason="not_configured")
            return []
        try:
            data = await post_json(
                join_base(self._settings.firecrawl_base_url, "/v1/search"),
                {"query": query, "limit": limit},
                timeout_sec=self._settings.enrichment_timeout_sec,
                headers={"Authorization": f"Bearer {self._settings.firecrawl_api_key}"},
                transport=self._transport,
            )
        except Exception as exc:
            logger.warning("enrichment_failed", provider=self.provider, error=f"{type(exc).__name__}: {exc}")
            return []

        rows: Any = data.get("data") if isinstance(data, dict) else None
        hits = [
            SearchHit(
                title=as_text(row.get("title")),
                url=as_text(row.get("url")),
                description=as_text(row.get("description")),
                markdown=as_text(row.get("markdown")),
            )
            for row in (rows or [])
            if isinstance(row, dict)
        ]
        logger.info("enrichment_success", provider=self.provider, hits=len(hits))
        return hits


class PerplexityResearch:
    provider = "perplexity"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._settings.perplexity_api_key)

    async def ask(self, question: str, *, system_prompt: str) -> str:
        if not self.configured:
            logger.info("enrichment_skipped", provider=self.provider, reason="not_configured")
            return ""
        try:
            data = await post_json(
                join_base(self._settings.perplexity_base_url, "/chat/completions"),
                {
                    "model": self._settings.perplexity_model,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": question},
                    ],
                },
                timeout_sec=self._settings.enrichment_timeout_sec,
                headers={"Authorization": f"Bearer {self._settings.perplexity_api_key}"},
                transport=self._transport,
            )
            answer = extract_chat_content(data)
        except Exception as exc:
            logger.warning("enrichment_failed", provider=self.provider, error=f"{type(exc).__name__}: {exc}")
            return ""
        logger.info("enrichment_success", provider=self.provider, chars=len(answer))
        return answer


class InteractionAnalyzer:
    """TxGemma drug-interaction analysis on the primary model server."""

    def __init__(self, gateway: PrimaryModelGateway):
        self._gateway = gateway

    async def analyze(self, drugs: list[str], context: str) -> str | None:
        if not self._gateway.configured or not drugs:
            return None
        result = await self._gateway.interact(drugs, context)
        if isinstance(result, ProviderSuccess) and result.text.strip():
            return result.text.strip()
        logger.info("interaction_analysis_skipped", reason=getattr(result, "reason", "empty"))
        return None


def format_search_context(hits: list[SearchHit]) -> str:
    return "\n\n".join(f"- {hit.title}\n  URL: {hit.url}\n  {hit.description}" for hit in hits)
