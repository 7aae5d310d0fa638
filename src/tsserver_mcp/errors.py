"""Exception hierarchy shared by the protocol client and the bridge."""

from __future__ import annotations

from typing import Any, Dict

from tsserver_mcp.schema_types import (
    ERROR_CANCELED,
    ERROR_NOT_FOUND,
    ERROR_PROTOCOL,
    ERROR_RENAME_FAILED,
    ERROR_SERVER_UNAVAILABLE,
)


class BridgeError(Exception):
    """Base class for failures surfaced to the editor as a message."""

    code = ERROR_PROTOCOL
    highlight = "ErrorMsg"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details


class ServerUnavailableError(BridgeError):
    """The tsserver process is not running or its stream closed."""

    code = ERROR_SERVER_UNAVAILABLE


class ServerTimeoutError(ServerUnavailableError):
    """A request did not receive its response within the configured timeout."""


class ProtocolError(BridgeError):
    """tsserver answered ``success: false`` for a request."""

    code = ERROR_PROTOCOL

    def __init__(self, command: str, message: str) -> None:
        super().__init__(message or f"{command} failed", command=command)
        self.command = command


class NotFoundError(BridgeError):
    code = ERROR_NOT_FOUND


class RenameError(BridgeError):
    code = ERROR_RENAME_FAILED


class CommandCanceled(BridgeError):
    code = ERROR_CANCELED


__all__ = [
    "BridgeError",
    "CommandCanceled",
    "NotFoundError",
    "ProtocolError",
    "RenameError",
    "ServerTimeoutError",
    "ServerUnavailableError",
]
