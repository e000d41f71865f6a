"""Error taxonomy shared by the API, the tools, and the integrations."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    TOOL_EXECUTION = "TOOL_EXECUTION_ERROR"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    INTEGRATION = "API_INTEGRATION_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.TOOL_EXECUTION: 400,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.INTEGRATION: 502,
    ErrorKind.UNKNOWN: 500,
}


class InvoiceBotError(Exception):
    """Base class for errors that carry a kind and a structured payload."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def details(self) -> dict[str, Any]:
        return {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_envelope(self) -> dict[str, Any]:
        return {
            "error": True,
            "message": self.message,
            "code": self.kind.value,
            "details": self.details,
        }


class ToolExecutionError(InvoiceBotError):
    """A specific tool failed while executing."""

    kind = ErrorKind.TOOL_EXECUTION

    def __init__(self, message: str, tool_name: str, arguments: dict[str, Any] | None = None):
        super().__init__(message)
        self.tool_name = tool_name
        self.arguments = arguments or {}

    @property
    def details(self) -> dict[str, Any]:
        return {"tool": self.tool_name, "args": self.arguments}


class InvalidArgumentError(InvoiceBotError):
    """A request body or tool input did not have the expected shape."""

    kind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str, invalid_args: list[str]):
        super().__init__(message)
        self.invalid_args = invalid_args

    @property
    def details(self) -> dict[str, Any]:
        return {"invalidArgs": self.invalid_args}


class IntegrationError(InvoiceBotError):
    """An upstream service (model provider or QuickBooks) failed."""

    kind = ErrorKind.INTEGRATION

    def __init__(self, message: str, api_name: str, cause: str | None = None):
        super().__init__(message)
        self.api_name = api_name
        self.cause = cause

    @property
    def details(self) -> dict[str, Any]:
        return {"api": self.api_name, "originalError": self.cause}


def error_envelope(exc: Exception) -> tuple[int, dict[str, Any]]:
    """Map any exception to an HTTP status and the JSON error envelope."""
    if isinstance(exc, InvoiceBotError):
        return exc.status_code, exc.to_envelope()
    return HTTP_STATUS[ErrorKind.UNKNOWN], {
        "error": True,
        "message": str(exc) or exc.__class__.__name__,
        "code": ErrorKind.UNKNOWN.value,
        "details": {},
    }
