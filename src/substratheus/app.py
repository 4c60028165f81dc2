import logging
import logging.config
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI

from .api import register_health_routes, register_metrics_routes, register_routes
from .context import (
    ApplicationContext,
    get_application_context,
    reset_application_context,
    set_application_context,
)
from .exceptions import ConfigError
from .logging import (
    JsonFormatter,
    StructuredTextFormatter,
    build_log_extra,
    get_logger,
)
from .metrics import MetricsStoreProtocol, initialize_metrics, set_metrics
from .poller.manager import get_poller_manager
from .settings import AppSettings, get_settings

SETTINGS = get_settings()

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _build_formatter(settings: AppSettings) -> dict[str, Any]:
    if settings.logging.format == "json":
        return {"()": JsonFormatter, "datefmt": _DATE_FORMAT}

    return {
        "()": StructuredTextFormatter,
        "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        "datefmt": _DATE_FORMAT,
        "color_enabled": settings.logging.color_enabled,
    }


def _configure_logging(settings: AppSettings) -> None:
    """Route the root, uvicorn and substrate-interface loggers through one handler."""
    level = settings.logging.level if settings.logging.level in logging._nameToLevel else "INFO"

    loggers: dict[str, dict[str, Any]] = {
        name: {"handlers": ["default"], "level": level, "propagate": False} for name in _UVICORN_LOGGERS
    }
    # substrate-interface logs every websocket frame at DEBUG.
    loggers["substrateinterface"] = {"level": "WARNING" if level == "DEBUG" else level}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"standard": _build_formatter(settings)},
            "handlers": {"default": {"class": "logging.StreamHandler", "formatter": "standard"}},
            "root": {"level": level, "handlers": ["default"]},
            "loggers": loggers,
        }
    )


_configure_logging(SETTINGS)
LOGGER = get_logger(__name__)


APP_TITLE = "Substratheus"
APP_DESCRIPTION = "Exposes Prometheus metrics for Substrate staking validators."


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the connection manager and workers, and stop them on exit.

    The health and metrics apps both run this lifespan. The first one to
    start zeroes the series and owns the tasks; only that app tears them
    down and drops the cached application context afterwards.
    """

    try:
        context = get_application_context()
    except FileNotFoundError as exc:
        LOGGER.error(
            "Configuration file not found: %s",
            exc,
            extra=build_log_extra(additional={"config_path": str(SETTINGS.config.resolve_config_path())}),
        )
        raise
    except ConfigError as exc:
        LOGGER.error(
            "Configuration validation error: %s",
            exc.message,
            extra=build_log_extra(additional=exc.context),
        )
        raise

    manager = get_poller_manager()

    if not manager.tasks_created:
        initialize_metrics(context.config, metrics=context.metrics)
        context.metrics.exporter.up.set(1)

    app.state.context = context

    app.state.polling_tasks = manager.create_tasks(context, app)

    try:
        yield
    finally:
        if manager.should_cleanup(app):
            context.metrics.exporter.up.set(0)

            await manager.shutdown_tasks(
                timeout_seconds=context.settings.poller.shutdown_timeout_seconds,
            )

            app.state.polling_tasks.clear()

            manager.reset()

            reset_application_context()
            app.state.context = None


def _prepare_dependencies(
    metrics: MetricsStoreProtocol | None,
    context: ApplicationContext | None,
) -> None:
    if metrics is not None:
        set_metrics(metrics)
        reset_application_context()

    if context is not None:
        set_metrics(context.metrics)
        set_application_context(context)


def _build_app(title: str, description: str) -> FastAPI:
    return FastAPI(title=title, description=description, lifespan=_lifespan)


def create_app(
    *,
    metrics: MetricsStoreProtocol | None = None,
    context: ApplicationContext | None = None,
) -> FastAPI:
    """Single app serving the health and metrics routes together.

    ``metrics`` and ``context`` replace the process-wide instances, which
    lets tests run the app against fakes.
    """

    _prepare_dependencies(metrics, context)

    app = _build_app(APP_TITLE, APP_DESCRIPTION)
    register_routes(app)

    return app


def create_health_app(
    *,
    metrics: MetricsStoreProtocol | None = None,
    context: ApplicationContext | None = None,
) -> FastAPI:
    """App for the health listener."""

    _prepare_dependencies(metrics, context)

    app = _build_app(f"{APP_TITLE} - Health", "Liveness and readiness probes for the staking exporter.")
    register_health_routes(app)

    return app


def create_metrics_app(
    *,
    metrics: MetricsStoreProtocol | None = None,
    context: ApplicationContext | None = None,
) -> FastAPI:
    """App for the Prometheus scrape listener.

    It shares the workers started by whichever app came up first.
    """

    _prepare_dependencies(metrics, context)

    app = _build_app(f"{APP_TITLE} - Metrics", "Prometheus exposition of staking metrics.")
    register_metrics_routes(app)

    return app


app = create_app()
