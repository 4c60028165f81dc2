"""Exception hierarchy for the staking exporter.

Every error carries a ``context`` dict that is merged into the structured
``extra`` of the log record that reports it.
"""

from __future__ import annotations


def _compact(**fields: object) -> dict[str, object]:
    return {key: value for key, value in fields.items() if value is not None and value != ""}


class ExporterError(Exception):
    """Root of all exporter errors."""

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def __str__(self) -> str:
        if not self.context:
            return self.message

        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} (context: {details})"


class RpcError(ExporterError):
    """A request against an RPC endpoint failed.

    Attributes:
        endpoint: URL of the endpoint the request was sent to.
        operation: Name of the client operation, e.g. ``fetch_era_points``.
    """

    def __init__(
        self,
        message: str,
        *,
        endpoint: str | None = None,
        operation: str | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            context={**_compact(endpoint=endpoint, operation=operation), **(context or {})},
        )
        self.endpoint = endpoint
        self.operation = operation


class RpcConnectionError(RpcError):
    """The endpoint could not be reached or the session was closed."""


class RpcTimeoutError(RpcError):
    """The endpoint did not answer within the request timeout."""


class RpcProtocolError(RpcError):
    """The node answered with a JSON-RPC error object."""

    def __init__(
        self,
        message: str,
        *,
        rpc_error_code: int | None = None,
        rpc_error_message: str | None = None,
        endpoint: str | None = None,
        operation: str | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            endpoint=endpoint,
            operation=operation,
            context={
                **(context or {}),
                **_compact(rpc_error_code=rpc_error_code, rpc_error_message=rpc_error_message),
            },
        )
        self.rpc_error_code = rpc_error_code
        self.rpc_error_message = rpc_error_message


class DecodeError(ExporterError):
    """A storage value is present but does not have the expected shape.

    Unlike an absent value this points at runtime or metadata drift on the
    node side, so it is logged separately even though workers treat both
    the same way.
    """

    def __init__(
        self,
        message: str,
        *,
        storage: str | None = None,
        value: object | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            context={
                **_compact(storage=storage, value=repr(value)[:200] if value is not None else None),
                **(context or {}),
            },
        )
        self.storage = storage
        self.value = value


class AddressError(ExporterError):
    """An SS58 address cannot be encoded or decoded."""


class ConfigError(ExporterError):
    """The configuration file cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        config_file: str | None = None,
        config_section: str | None = None,
        config_key: str | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            context={
                **_compact(
                    config_file=config_file,
                    config_section=config_section,
                    config_key=config_key,
                ),
                **(context or {}),
            },
        )
        self.config_file = config_file
        self.config_section = config_section
        self.config_key = config_key


class ValidationError(ConfigError):
    """A configuration value is missing or invalid.

    Attributes:
        value: The rejected value (or its type name for non-string values).
        expected_type: Short description of what was expected.
    """

    def __init__(
        self,
        message: str,
        *,
        value: object | None = None,
        expected_type: str | None = None,
        config_file: str | None = None,
        config_section: str | None = None,
        config_key: str | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            config_file=config_file,
            config_section=config_section,
            config_key=config_key,
            context={**(context or {}), **_compact(value=value, expected_type=expected_type)},
        )
        self.value = value
        self.expected_type = expected_type


__all__ = [
    "AddressError",
    "ConfigError",
    "DecodeError",
    "ExporterError",
    "RpcConnectionError",
    "RpcError",
    "RpcProtocolError",
    "RpcTimeoutError",
    "ValidationError",
]
