import asyncio

import httpx
import pytest

from cancercompanion.client import FALLBACK_ERROR_MESSAGE, AIServiceClient, format_function_error
from cancercompanion.errors import FunctionInvokeError
from cancercompanion.status import SourceTag
from conftest import PRIMARY, make_settings

SERVER = "http://companion.test"


def _client(upstream, **overrides) -> AIServiceClient:
    return AIServiceClient(make_settings(**overrides), SERVER, transport=upstream.transport)


def test_primary_answer_is_returned_directly(upstream):
    upstream.on(PRIMARY, "/predict", lambda request: httpx.Response(200, json={"text": "From MedGemma"}))
    client = _client(upstream, primary_base_url=PRIMARY)

    response = asyncio.run(client.get_ai_response("q", "s"))

    assert response.content == "From MedGemma"
    assert response.source == "MedGemma (Primary)"
    assert client.status.status is SourceTag.PRIMARY_ACTIVE
    assert upstream.calls_to(SERVER) == []


def test_unset_primary_goes_to_router_without_notice(upstream):
    upstream.on(SERVER, "/v1/ai-router", lambda request: httpx.Response(200, json={"content": "From backup"}))
    client = _client(upstream)
    notices: list[str] = []
    client.status.subscribe_notices(notices.append)

    response = asyncio.run(client.get_ai_response("q", "s"))

    assert response.source == "Claude Sonnet (Backup)"
    assert notices == []
    assert upstream.body(upstream.calls[0]) == {"prompt": "q", "systemPrompt": "s"}


def test_failed_primary_fires_notice_once(upstream):
    upstream.on(PRIMARY, "/predict", lambda request: httpx.Response(500))
    upstream.on(SERVER, "/v1/ai-router", lambda request: httpx.Response(200, json={"content": "From backup"}))
    client = _client(upstream, primary_base_url=PRIMARY)
    notices: list[str] = []
    client.status.subscribe_notices(notices.append)

    async def _twice():
        await client.get_ai_response("q", "s")
        await client.get_ai_response("q", "s")

    asyncio.run(_twice())

    assert len(notices) == 1
    assert client.status.status is SourceTag.BACKUP_ACTIVE


def test_router_error_body_becomes_message(upstream):
    upstream.on(
        SERVER,
        "/v1/ai-router",
        lambda request: httpx.Response(429, json={"error": "Rate limit exceeded. Please try again in a moment."}),
    )
    client = _client(upstream)

    with pytest.raises(FunctionInvokeError) as excinfo:
        asyncio.run(client.get_ai_response("q", "s"))

    assert excinfo.value.status_code == 429
    assert format_function_error(excinfo.value) == "Rate limit exceeded. Please try again in a moment."


def test_interaction_analysis_never_raises(upstream):
    upstream.on(PRIMARY, "/txgemma/interact", lambda request: httpx.Response(500))
    client = _client(upstream, primary_base_url=PRIMARY)

    assert asyncio.run(client.get_interaction_analysis(["Paclitaxel"], "ctx")) is None


def test_format_function_error_variants():
    assert format_function_error(FunctionInvokeError(500, '{"error": "Regimen is required"}')) == "Regimen is required"
    assert format_function_error(FunctionInvokeError(502, "Bad gateway")) == "Bad gateway"
    assert format_function_error(FunctionInvokeError(500, {"detail": "x"})) == '{"detail": "x"}'
    assert format_function_error(RuntimeError("network down")) == "network down"
    assert format_function_error(RuntimeError()) == FALLBACK_ERROR_MESSAGE
