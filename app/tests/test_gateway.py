import asyncio

import httpx
import pytest

from cancercompanion.errors import ConfigurationError
from cancercompanion.gateway import (
    BackupChatGateway,
    PrimaryModelGateway,
    ToolSpec,
    call_endpoint,
    extract_chat_content,
    extract_primary_text,
    extract_tool_arguments,
)
from cancercompanion.schemas import ProviderFailure, ProviderRequest, ProviderSuccess
from conftest import BACKUP, PRIMARY, chat_reply, make_settings, tool_reply


def test_primary_text_field_priority():
    assert extract_primary_text({"response": "r", "text": "t", "content": "c"}) == "r"
    assert extract_primary_text({"text": "t", "content": "c"}) == "t"
    assert extract_primary_text({"content": "c"}) == "c"
    assert extract_primary_text({"other": 1}) == '{"other": 1}'
    assert extract_primary_text("plain") == "plain"


def test_chat_extractors_read_first_choice():
    payload = {"choices": [{"message": {"content": "hello"}}]}
    assert extract_chat_content(payload) == "hello"
    assert extract_chat_content({"choices": []}) == ""
    assert extract_tool_arguments({"choices": [{"message": {"content": "no tools"}}]}) == ""


def test_unconfigured_endpoint_fails_without_io(upstream):
    result = asyncio.run(
        call_endpoint(
            None,
            "/predict",
            {"prompt": "x"},
            5000,
            provider="medgemma",
            extract=extract_primary_text,
            transport=upstream.transport,
        )
    )
    assert isinstance(result, ProviderFailure)
    assert result.reason == "not_configured"
    assert upstream.calls == []


def test_primary_predict_posts_prompt_and_system_prompt(upstream):
    upstream.on(PRIMARY, "/predict", lambda request: httpx.Response(200, json={"response": "ok"}))
    gateway = PrimaryModelGateway(make_settings(primary_base_url=PRIMARY + "/"), transport=upstream.transport)

    result = asyncio.run(gateway.predict(ProviderRequest(task_prompt="hi", system_prompt="sys")))

    assert isinstance(result, ProviderSuccess)
    assert result.text == "ok"
    assert upstream.body(upstream.calls[0]) == {"prompt": "hi", "system_prompt": "sys"}


def test_primary_timeout_maps_to_failure(upstream):
    async def _slow(request):
        await asyncio.sleep(1.0)
        return httpx.Response(200, json={"response": "late"})

    upstream.on(PRIMARY, "/predict", _slow)
    gateway = PrimaryModelGateway(make_settings(primary_base_url=PRIMARY), transport=upstream.transport)

    result = asyncio.run(
        gateway.predict(ProviderRequest(task_prompt="hi", system_prompt="sys", timeout_ms=50))
    )

    assert isinstance(result, ProviderFailure)
    assert result.reason == "timeout"


def test_non_2xx_and_invalid_json_are_failures(upstream):
    upstream.on(PRIMARY, "/predict", lambda request: httpx.Response(503, text="down"))
    upstream.on(PRIMARY, "/txgemma/interact", lambda request: httpx.Response(200, text="<html>"))
    gateway = PrimaryModelGateway(make_settings(primary_base_url=PRIMARY), transport=upstream.transport)

    predicted = asyncio.run(gateway.predict(ProviderRequest(task_prompt="a", system_prompt="b")))
    interacted = asyncio.run(gateway.interact(["Paclitaxel"], "ctx"))

    assert isinstance(predicted, ProviderFailure)
    assert predicted.reason == "HTTP 503"
    assert predicted.status_code == 503
    assert isinstance(interacted, ProviderFailure)
    assert interacted.reason == "invalid_json"


def test_connection_error_is_a_failure():
    def _refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway = PrimaryModelGateway(
        make_settings(primary_base_url=PRIMARY),
        transport=httpx.MockTransport(_refuse),
    )
    result = asyncio.run(gateway.predict(ProviderRequest(task_prompt="a", system_prompt="b")))

    assert isinstance(result, ProviderFailure)
    assert "connection refused" in result.reason


def test_backup_sends_bearer_key_and_forced_tool_choice(upstream):
    upstream.on(BACKUP, "/v1/chat/completions", lambda request: tool_reply("extract_regimen", {"drugs": []}))
    gateway = BackupChatGateway(make_settings(backup_api_key="secret"), transport=upstream.transport)
    tool = ToolSpec(name="extract_regimen", description="d", parameters={"type": "object"})

    result = asyncio.run(gateway.extract(model="gpt-4o", system_prompt="s", user_content="u", tool=tool))

    assert isinstance(result, ProviderSuccess)
    assert result.text == '{"drugs": []}'
    request = upstream.calls[0]
    assert request.headers["authorization"] == "Bearer secret"
    body = upstream.body(request)
    assert body["tool_choice"] == {"type": "function", "function": {"name": "extract_regimen"}}
    assert body["messages"][0] == {"role": "system", "content": "s"}


def test_backup_rate_limit_carries_status(upstream):
    upstream.on(BACKUP, "/v1/chat/completions", lambda request: httpx.Response(429, json={"error": "slow down"}))
    gateway = BackupChatGateway(make_settings(), transport=upstream.transport)

    result = asyncio.run(gateway.complete(model="gpt-4o", system_prompt="s", user_content="u"))

    assert isinstance(result, ProviderFailure)
    assert result.status_code == 429


def test_backup_without_key_is_a_configuration_error(upstream):
    upstream.on(BACKUP, "/v1/chat/completions", lambda request: chat_reply("never"))
    gateway = BackupChatGateway(make_settings(backup_api_key=None), transport=upstream.transport)

    with pytest.raises(ConfigurationError) as excinfo:
        asyncio.run(gateway.complete(model="gpt-4o", system_prompt="s", user_content="u"))

    assert excinfo.value.missing_key == "AIMLAPI_API_KEY"
    assert upstream.calls == []
