"""Shared error taxonomy for test-agent."""

from __future__ import annotations

from typing import Any, Mapping, TypeVar


def _normalize_context_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return normalize_context(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize_context_value(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def normalize_context(context: Mapping[str, Any]) -> dict[str, Any]:
    """Return a JSON-friendly copy of an error context mapping."""
    return {key: _normalize_context_value(val) for key, val in context.items()}


class TAError(Exception):
    """Base error type for typed failure handling."""

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.context = normalize_context(context or {})
        if cause is not None:
            self.__cause__ = cause

    @property
    def error_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.error_type, "message": str(self), "context": self.context}


class ConfigurationError(TAError):
    """Failure due to invalid configuration or misuse of a component."""


class ProvisioningError(TAError):
    """Failure while creating or driving a virtual machine."""


class NodeOperationError(TAError):
    """Failure of a single operation against a node already in the pool."""


class DisplayPoolError(TAError):
    """Failure while allocating or releasing remote-display sessions."""


T = TypeVar("T", bound=TAError)


def wrap_error(
    error_cls: type[T],
    message: str,
    *,
    context: Mapping[str, Any] | None = None,
    cause: Exception | None = None,
) -> T:
    """Create a typed TAError with optional context and cause."""
    return error_cls(message, context=context, cause=cause)


def error_to_payload(error: TAError) -> dict[str, Any]:
    """Convert a TAError to a flat payload suitable for logs or reports."""
    return {
        "error_type": error.error_type,
        "error": str(error),
        "error_context": error.context,
    }


def describe_error(error: BaseException) -> str:
    """One-line summary of an error for terminal output.

    Scalar context values of a TAError are appended as ``key=value`` pairs.
    """
    message = str(error) or error.__class__.__name__
    if not isinstance(error, TAError):
        return message
    details = [
        f"{key}={value}"
        for key, value in sorted(error.context.items())
        if isinstance(value, (str, int, float, bool))
    ]
    if not details:
        return message
    return f"{message} ({', '.join(details)})"
