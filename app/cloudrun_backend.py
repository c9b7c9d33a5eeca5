"""Cloud Run entrypoint for the CancerCompanion API."""

from __future__ import annotations

from typing import Any, TypeVar

import httpx
from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from cancercompanion.config import Settings, get_settings
from cancercompanion.errors import (
    GENERIC_ERROR_MESSAGE,
    RATE_LIMIT_MESSAGE,
    ConfigurationError,
    InvalidRequestError,
    UpstreamRateLimitError,
)
from cancercompanion.logs import get_logger, set_request_id, setup_logging
from cancercompanion.pipelines import build_services
from cancercompanion.schemas import RegimenRequest, RouterRequest, ScanRequest, StatusResponse, TrialRequest
from cancercompanion.utils import utc_now

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _parse(model: type[ModelT], payload: dict[str, Any], message: str) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequestError(message) from exc


def _failure_response(route: str, exc: Exception, *, rate_limit_status: int = 429) -> JSONResponse:
    if isinstance(exc, InvalidRequestError):
        return _error(400, str(exc))
    if isinstance(exc, UpstreamRateLimitError):
        logger.warning("rate_limited", route=route, provider=exc.provider)
        if rate_limit_status == 429:
            return _error(429, RATE_LIMIT_MESSAGE)
        return _error(rate_limit_status, GENERIC_ERROR_MESSAGE)
    if isinstance(exc, ConfigurationError):
        logger.error("configuration_missing", route=route, missing_key=exc.missing_key)
        return _error(500, GENERIC_ERROR_MESSAGE)
    logger.exception("route_failed", route=route, error=f"{type(exc).__name__}: {exc}")
    return _error(500, GENERIC_ERROR_MESSAGE)


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level, use_json=settings.log_json, service_name=settings.app_name)
    services = build_services(settings, transport=transport)

    app = FastAPI(title="CancerCompanion API (Cloud Run)", version="1.0.0")
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("invalid_request_body", path=request.url.path, errors=len(exc.errors()))
        return _error(400, "Invalid JSON body")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "service": settings.app_name,
            "timestamp": utc_now().isoformat(),
            "primary_configured": settings.primary_configured,
            "backup_key_configured": bool(settings.backup_api_key),
            "firecrawl_configured": bool(settings.firecrawl_api_key),
            "perplexity_configured": bool(settings.perplexity_api_key),
            "primary_timeout_ms": settings.primary_timeout_ms,
            "model_status": services.status.status.value,
        }

    @app.get("/v1/status")
    async def model_status() -> dict[str, Any]:
        snapshot = services.status.snapshot()
        return StatusResponse(
            status=snapshot.status.value,
            label=snapshot.label,
            last_updated=snapshot.last_updated.isoformat(),
        ).to_wire()

    @app.post("/v1/scan-reader")
    async def scan_reader(payload: dict[str, Any] = Body(...)):
        try:
            request = _parse(ScanRequest, payload, "File content is required")
            result = await services.scan_reader.analyze(request)
        except Exception as exc:
            return _failure_response("scan-reader", exc)
        return result.to_wire()

    @app.post("/v1/treatment-navigator")
    async def treatment_navigator(payload: dict[str, Any] = Body(...)):
        try:
            request = _parse(RegimenRequest, payload, "Regimen is required")
            result = await services.treatment_navigator.navigate(request)
        except Exception as exc:
            # This route never surfaced rate limits separately.
            return _failure_response("treatment-navigator", exc, rate_limit_status=500)
        return result.to_wire()

    @app.post("/v1/trial-finder")
    async def trial_finder(payload: dict[str, Any] = Body(...)):
        try:
            request = _parse(TrialRequest, payload, "Summary is required")
            result = await services.trial_finder.match(request)
        except Exception as exc:
            return _failure_response("trial-finder", exc)
        return result.to_wire()

    @app.post("/v1/ai-router")
    async def ai_router(payload: dict[str, Any] = Body(...)):
        try:
            request = _parse(RouterRequest, payload, "Prompt is required")
            result = await services.router.ask(request)
        except Exception as exc:
            return _failure_response("ai-router", exc)
        return result.to_wire()

    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
