import inspect
import json
from typing import Any, Callable

import httpx
import pytest

from cancercompanion.config import Settings

PRIMARY = "http://primary.test"
BACKUP = "https://backup.test"
FIRECRAWL = "https://firecrawl.test"
PERPLEXITY = "https://perplexity.test"


class FakeUpstream:
    """Routes outbound httpx requests by host and path, recording each one."""

    def __init__(self):
        self.handlers: dict[tuple[str, str], Callable[[httpx.Request], Any]] = {}
        self.calls: list[httpx.Request] = []

    def on(self, base_url: str, path: str, handler: Callable[[httpx.Request], Any]) -> None:
        self.handlers[(httpx.URL(base_url).host, path)] = handler

    def calls_to(self, base_url: str, path: str | None = None) -> list[httpx.Request]:
        host = httpx.URL(base_url).host
        return [c for c in self.calls if c.url.host == host and (path is None or c.url.path == path)]

    @staticmethod
    def body(request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._dispatch)

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.handlers.get((request.url.host, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "no route"})
        response = handler(request)
        if inspect.isawaitable(response):
            response = await response
        return response


def chat_reply(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def tool_reply(name: str, arguments: dict[str, Any]) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "choices": [
                {
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {"type": "function", "function": {"name": name, "arguments": json.dumps(arguments)}}
                        ],
                    }
                }
            ]
        },
    )


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "primary_base_url": None,
        "primary_timeout_ms": 5000,
        "backup_api_key": "test-backup-key",
        "backup_base_url": BACKUP,
        "backup_timeout_sec": 5,
        "firecrawl_api_key": None,
        "firecrawl_base_url": FIRECRAWL,
        "perplexity_api_key": None,
        "perplexity_base_url": PERPLEXITY,
        "perplexity_model": "sonar",
        "extraction_model": "gpt-4o",
        "scan_model": "gpt-4o",
        "timeline_models": ("claude-3-7-sonnet-20250219", "gpt-4o"),
        "router_model": "claude-sonnet-4-5",
        "fallback_notice_window_sec": 10,
        "log_json": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()

