"""Route definitions for the health and scrape listeners."""

from __future__ import annotations

from fastapi import FastAPI, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .context import get_application_context
from .health import (
    format_metrics_payload,
    generate_health_report,
    generate_readiness_report,
)
from .metrics import get_metrics


def _health_response(*, include_details: bool) -> JSONResponse:
    overall_status, status_code, endpoints = generate_health_report(
        get_application_context(),
        include_details=include_details,
    )

    return JSONResponse(
        status_code=status_code,
        content={"status": overall_status, "endpoints": endpoints},
    )


def register_health_routes(app: FastAPI) -> None:
    """Add ``/health``, ``/health/details``, ``/health/livez`` and ``/health/readyz``.

    ``/health`` answers 503 while no endpoint is healthy; ``/health/details``
    adds the endpoint URLs to the same report. ``/health/readyz`` turns 200
    once the connection manager has published a client.
    """

    @app.get("/health", response_class=JSONResponse)
    async def health() -> JSONResponse:
        return _health_response(include_details=False)

    @app.get("/health/details", response_class=JSONResponse)
    async def health_details() -> JSONResponse:
        return _health_response(include_details=True)

    @app.get("/health/livez", response_class=JSONResponse)
    async def livez() -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "alive"})

    @app.get("/health/readyz", response_class=JSONResponse)
    async def readyz() -> JSONResponse:
        ready, rpc = generate_readiness_report(get_application_context())

        if ready:
            return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ready", "rpc": rpc})

        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "rpc": rpc},
        )


def register_metrics_routes(app: FastAPI) -> None:
    """Add the Prometheus ``/metrics`` route."""

    @app.get("/metrics", response_class=Response)
    async def metrics() -> Response:
        payload = format_metrics_payload(generate_latest(get_metrics().registry))

        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


def register_routes(app: FastAPI) -> None:
    register_health_routes(app)
    register_metrics_routes(app)


__all__ = [
    "register_health_routes",
    "register_metrics_routes",
    "register_routes",
]
