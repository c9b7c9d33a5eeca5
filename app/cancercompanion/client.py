"""Caller-side helper that tries the primary model before the server proxy.

Used by scripts and frontends that hold the primary tunnel URL but never the
backup key; the backup tier is only reachable through `/v1/ai-router`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

from cancercompanion.config import Settings
from cancercompanion.enrichment import InteractionAnalyzer
from cancercompanion.errors import FunctionInvokeError
from cancercompanion.gateway import PrimaryModelGateway
from cancercompanion.logs import get_logger
from cancercompanion.schemas import ProviderRequest, ProviderSuccess
from cancercompanion.status import SourceTag, StatusReporter
from cancercompanion.utils import join_base

logger = get_logger(__name__)

FALLBACK_ERROR_MESSAGE = "Something went wrong. Please try again."


@dataclass(frozen=True)
class AIResponse:
    content: str
    source: str


class AIServiceClient:
    def __init__(
        self,
        settings: Settings,
        server_url: str,
        *,
        status: StatusReporter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        self._server_url = server_url
        self._transport = transport
        self._primary = PrimaryModelGateway(settings, transport=transport)
        self._interactions = InteractionAnalyzer(self._primary)
        self.status = status or StatusReporter(notice_window_sec=settings.fallback_notice_window_sec)

    async def _invoke_router(self, prompt: str, system_prompt: str) -> dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=self._settings.backup_timeout_sec,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.post(
                join_base(self._server_url, "/v1/ai-router"),
                json={"prompt": prompt, "systemPrompt": system_prompt},
            )
        try:
            data = response.json()
        except ValueError:
            data = response.text
        if not response.is_success:
            raise FunctionInvokeError(response.status_code, data)
        if isinstance(data, dict) and data.get("error"):
            raise FunctionInvokeError(response.status_code, data, message=str(data["error"]))
        return data if isinstance(data, dict) else {}

    async def get_ai_response(self, prompt: str, system_prompt: str) -> AIResponse:
        tried_primary = False
        if self._primary.configured:
            tried_primary = True
            self.status.publish(SourceTag.CONNECTING)
            result = await self._primary.predict(
                ProviderRequest(
                    task_prompt=prompt,
                    system_prompt=system_prompt,
                    timeout_ms=self._settings.primary_timeout_ms,
                )
            )
            if isinstance(result, ProviderSuccess):
                self.status.publish(SourceTag.PRIMARY_ACTIVE)
                return AIResponse(content=result.text, source=SourceTag.PRIMARY_ACTIVE.label)
            logger.warning("client_primary_failed", reason=result.reason)

        if tried_primary:
            self.status.notify_fallback()

        data = await self._invoke_router(prompt, system_prompt)
        self.status.publish(SourceTag.BACKUP_ACTIVE)
        return AIResponse(content=str(data.get("content") or ""), source=SourceTag.BACKUP_ACTIVE.label)

    async def get_interaction_analysis(self, drugs: list[str], context: str) -> str | None:
        return await self._interactions.analyze(drugs, context)


def format_function_error(err: BaseException) -> str:
    """User-facing message for a failed server call."""
    body = getattr(err, "body", None)
    if body:
        if isinstance(body, str):
            try:
                parsed = json.loads(body)
            except ValueError:
                return body
            if isinstance(parsed, dict) and isinstance(parsed.get("error"), str):
                return parsed["error"]
            return body
        if isinstance(body, dict):
            if isinstance(body.get("error"), str):
                return body["error"]
            return json.dumps(body, ensure_ascii=True, default=str)

    message = str(err)
    return message or FALLBACK_ERROR_MESSAGE
