"""Provider adapters for the primary model endpoint and the hosted backup."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from cancercompanion.config import Settings
from cancercompanion.errors import ConfigurationError, MalformedPayloadError
from cancercompanion.logs import get_logger
from cancercompanion.schemas import ProviderFailure, ProviderRequest, ProviderResult, ProviderSuccess
from cancercompanion.utils import elapsed_ms, join_base, now_ms, preview

logger = get_logger(__name__)

Extractor = Callable[[Any], str]


# Per-provider mappings from a decoded reply body to plain text.


def extract_primary_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        for key in ("response", "text", "content"):
            value = payload.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value, ensure_ascii=True)
    return json.dumps(payload, ensure_ascii=True)


def extract_interaction_text(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("analysis", "response", "text"):
            value = payload.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value, ensure_ascii=True)
    return extract_primary_text(payload)


def _first_message(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedPayloadError("chat completion body is not an object")
    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else error
        raise MalformedPayloadError(f"provider returned error: {message}")
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return {}
    return choices[0].get("message") or {}


def extract_chat_content(payload: Any) -> str:
    content = _first_message(payload).get("content")
    if isinstance(content, list):
        return "".join(str(part.get("text", "")) for part in content if isinstance(part, dict))
    return str(content or "")


def extract_tool_arguments(payload: Any) -> str:
    tool_calls = _first_message(payload).get("tool_calls") or []
    if not tool_calls:
        return ""
    function = (tool_calls[0] or {}).get("function") or {}
    arguments = function.get("arguments") or ""
    if isinstance(arguments, dict):
        return json.dumps(arguments, ensure_ascii=True)
    return str(arguments)


async def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    timeout_sec: float,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Any:
    async with httpx.AsyncClient(timeout=timeout_sec, follow_redirects=True, transport=transport) as client:
        response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        return response.json()


async def call_endpoint(
    endpoint_base: str | None,
    path: str,
    body: dict[str, Any],
    timeout_ms: int,
    *,
    provider: str,
    extract: Extractor,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderResult:
    """Issue one POST to a provider and map the outcome to a ProviderResult.

    Never raises for upstream problems: a missing base URL, a timeout, a
    transport error, a non-2xx status and an undecodable body all come back as
    ProviderFailure. The timeout bounds the whole exchange, not each phase.
    """
    if not endpoint_base:
        logger.info("provider_skipped", provider=provider, path=path, reason="not_configured")
        return ProviderFailure(provider=provider, reason="not_configured")

    url = join_base(endpoint_base, path)
    timeout_sec = timeout_ms / 1000.0
    started = now_ms()
    logger.info("provider_attempt", provider=provider, path=path, timeout_ms=timeout_ms)

    def _failed(reason: str, status_code: int | None = None) -> ProviderFailure:
        logger.warning(
            "provider_failure",
            provider=provider,
            path=path,
            reason=reason,
            status_code=status_code,
            latency_ms=elapsed_ms(started),
        )
        return ProviderFailure(provider=provider, reason=reason, status_code=status_code)

    try:
        async with httpx.AsyncClient(timeout=timeout_sec, follow_redirects=True, transport=transport) as client:
            response = await asyncio.wait_for(
                client.post(url, json=body, headers=headers),
                timeout=timeout_sec,
            )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return _failed("timeout")
    except httpx.HTTPError as exc:
        return _failed(str(exc) or type(exc).__name__)

    if not response.is_success:
        logger.debug("provider_error_body", provider=provider, body=preview(response.text, 180))
        return _failed(f"HTTP {response.status_code}", response.status_code)

    try:
        payload = response.json()
    except ValueError:
        return _failed("invalid_json")

    try:
        text = extract(payload)
    except MalformedPayloadError as exc:
        return _failed(str(exc))

    logger.info("provider_success", provider=provider, path=path, latency_ms=elapsed_ms(started))
    return ProviderSuccess(provider=provider, text=text)


class PrimaryModelGateway:
    """Self-hosted MedGemma/TxGemma server reached over a tunnel."""

    provider = "medgemma"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self._settings.primary_configured

    async def predict(self, request: ProviderRequest) -> ProviderResult:
        return await call_endpoint(
            self._settings.primary_base_url,
            "/predict",
            {"prompt": request.task_prompt, "system_prompt": request.system_prompt},
            request.timeout_ms,
            provider=self.provider,
            extract=extract_primary_text,
            transport=self._transport,
        )

    async def interact(self, drugs: list[str], context: str) -> ProviderResult:
        return await call_endpoint(
            self._settings.primary_base_url,
            "/txgemma/interact",
            {"drugs": drugs, "context": context},
            self._settings.primary_timeout_ms,
            provider="txgemma",
            extract=extract_interaction_text,
            transport=self._transport,
        )


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]

    def as_payload(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def choice(self) -> dict[str, Any]:
        return {"type": "function", "function": {"name": self.name}}


class BackupChatGateway:
    """OpenAI-compatible chat completions on aimlapi.com.

    The API key lives only in server settings; callers never see it.
    """

    provider = "aimlapi"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self._settings.backup_api_key:
            logger.error("backup_key_missing", missing_key="AIMLAPI_API_KEY")
            raise ConfigurationError("AIMLAPI_API_KEY")
        return {"Authorization": f"Bearer {self._settings.backup_api_key}"}

    @staticmethod
    def _messages(system_prompt: str, user_content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]

    async def _post(self, body: dict[str, Any], extract: Extractor) -> ProviderResult:
        headers = self._headers()
        return await call_endpoint(
            self._settings.backup_base_url,
            "/v1/chat/completions",
            body,
            int(self._settings.backup_timeout_sec * 1000),
            provider=f"{self.provider}:{body['model']}",
            extract=extract,
            headers=headers,
            transport=self._transport,
        )

    async def complete(
        self,
        *,
        model: str,
        system_prompt: str,
        user_content: str | list[dict[str, Any]],
        max_tokens: int | None = None,
    ) -> ProviderResult:
        body: dict[str, Any] = {"model": model, "messages": self._messages(system_prompt, user_content)}
        if max_tokens:
            body["max_tokens"] = max_tokens
        return await self._post(body, extract_chat_content)

    async def extract(
        self,
        *,
        model: str,
        system_prompt: str,
        user_content: str | list[dict[str, Any]],
        tool: ToolSpec,
    ) -> ProviderResult:
        body = {
            "model": model,
            "messages": self._messages(system_prompt, user_content),
            "tools": [tool.as_payload()],
            "tool_choice": tool.choice(),
        }
        return await self._post(body, extract_tool_arguments)
