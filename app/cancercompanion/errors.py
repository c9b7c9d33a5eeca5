"""Exception taxonomy shared by the orchestration layer and the HTTP boundary."""

from __future__ import annotations

GENERIC_ERROR_MESSAGE = "Unexpected server error. Please try again later."
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a moment."


class CompanionError(Exception):
    """Base class for errors raised deliberately by CancerCompanion."""


class ConfigurationError(CompanionError):
    """A required secret or endpoint is not provisioned."""

    def __init__(self, missing_key: str):
        super().__init__(f"{missing_key} not configured")
        self.missing_key = missing_key


class UpstreamTransportError(CompanionError):
    """Every provider tier failed on timeout, connection error or non-2xx status."""

    def __init__(self, provider: str, reason: str, status_code: int | None = None):
        super().__init__(f"{provider} failed: {reason}")
        self.provider = provider
        self.reason = reason
        self.status_code = status_code


class UpstreamRateLimitError(UpstreamTransportError):
    def __init__(self, provider: str, reason: str = "HTTP 429"):
        super().__init__(provider, reason, status_code=429)


class MalformedPayloadError(CompanionError):
    """A provider answered but the body does not parse per the task schema."""

    def __init__(self, message: str, *, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class InvalidRequestError(CompanionError):
    """The caller omitted a required field; answered with HTTP 400."""


class FunctionInvokeError(CompanionError):
    """The companion server answered a client call with an error body."""

    def __init__(self, status_code: int, body: object = None, message: str | None = None):
        super().__init__(message or f"server function failed with HTTP {status_code}")
        self.status_code = status_code
        self.body = body
