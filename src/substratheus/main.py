import asyncio
import signal
import sys

import uvicorn

from .app import LOGGER, create_health_app, create_metrics_app
from .context import get_application_context, peek_application_context
from .exceptions import ConfigError
from .logging import build_log_extra
from .settings import get_settings

SETTINGS = get_settings()

_SERVERS: list[uvicorn.Server] = []


def request_shutdown() -> None:
    """Stop the workers and ask both listeners to exit."""
    context = peek_application_context()

    if context is not None:
        context.shutdown.trigger()

    for server in _SERVERS:
        server.should_exit = True


def _build_server(app: object, port: int) -> uvicorn.Server:
    # log_config=None keeps the dictConfig installed by the app module.
    return uvicorn.Server(uvicorn.Config(app, host=SETTINGS.server.host, port=port, log_config=None))


async def run_servers() -> None:
    """Serve the health and metrics apps side by side until both exit.

    The health app comes up first and therefore owns the workers; the
    metrics app only registers ``/metrics`` on its own port.
    """
    _SERVERS[:] = [
        _build_server(create_health_app(), SETTINGS.server.health_port),
        _build_server(create_metrics_app(), SETTINGS.server.metrics_port),
    ]

    tasks = [asyncio.create_task(server.serve()) for server in _SERVERS]

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    finally:
        _SERVERS.clear()


def run() -> None:
    """Console entry point.

    Configuration is loaded before any listener binds, so a missing or
    invalid file exits with status 1 right away.
    """
    try:
        context = get_application_context()
    except FileNotFoundError as exc:
        LOGGER.error("Configuration file not found: %s", exc)
        sys.exit(1)
    except ConfigError as exc:
        LOGGER.error(
            "Configuration validation error: %s",
            exc.message,
            extra=build_log_extra(additional=exc.context),
        )
        sys.exit(1)

    LOGGER.info(
        "Starting exporter for %d validator(s).",
        len(context.config.validators),
        extra=build_log_extra(config=context.config),
    )

    def _signal_handler(signum: int, frame: object) -> None:
        LOGGER.info("Received signal %s; shutting down.", signum)
        request_shutdown()

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    try:
        asyncio.run(run_servers())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
