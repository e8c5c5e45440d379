"""Error taxonomy raised across the adapter boundary."""

from __future__ import annotations

import asyncio
from enum import Enum

from pymysql import err as mysql_errors


class AdapterError(RuntimeError):
    """Base error for every failure surfaced by the adapter."""


class AuthConfigError(AdapterError):
    """Raised when IAM authentication is requested without region, user or host."""


class AuthProviderError(AdapterError):
    """Raised when the token signer rejects a request."""


class ConnectError(AdapterError):
    """Raised when the pool cannot be built or fails its first liveness probe."""


class QueryError(AdapterError):
    """Raised when a statement fails, or keeps failing after one repair."""


class QueueLimitError(QueryError):
    """Raised when the pool is exhausted and the wait queue is full."""


class ClosedAdapterError(AdapterError):
    """Raised for any operation attempted after ``close()``."""


class DisconnectKind(str, Enum):
    """Closed set of driver failures that mean the transport went away."""

    SERVER_GONE = "server_gone"
    SERVER_LOST = "server_lost"
    CONNECTION_CLOSED = "connection_closed"
    SOCKET_RESET = "socket_reset"


class TransientDisconnectError(AdapterError):
    """A driver error classified as a lost connection; eligible for one retry."""

    def __init__(self, message: str, kind: DisconnectKind) -> None:
        super().__init__(message)
        self.kind = kind


# CR_SERVER_GONE_ERROR, CR_SERVER_LOST, CR_SERVER_LOST_EXTENDED
_DISCONNECT_CODES: dict[int, DisconnectKind] = {
    2006: DisconnectKind.SERVER_GONE,
    2013: DisconnectKind.SERVER_LOST,
    2055: DisconnectKind.SERVER_LOST,
}


def classify_disconnect(exc: BaseException) -> DisconnectKind | None:
    """Return the disconnect kind for *exc*, or ``None`` if it is not transient."""

    if isinstance(exc, TransientDisconnectError):
        return exc.kind
    if isinstance(exc, mysql_errors.InterfaceError):
        return DisconnectKind.CONNECTION_CLOSED
    if isinstance(exc, mysql_errors.OperationalError):
        code = exc.args[0] if exc.args else None
        if isinstance(code, int):
            return _DISCONNECT_CODES.get(code)
        return None
    if isinstance(exc, (ConnectionError, asyncio.IncompleteReadError)):
        return DisconnectKind.SOCKET_RESET
    return None


def error_message(exc: BaseException) -> str:
    """Render a driver exception the way MySQL clients print it."""

    if isinstance(exc, mysql_errors.MySQLError) and len(exc.args) >= 2:
        return f"({exc.args[0]}) {exc.args[1]}"
    return str(exc) or exc.__class__.__name__


__all__ = [
    "AdapterError",
    "AuthConfigError",
    "AuthProviderError",
    "ClosedAdapterError",
    "ConnectError",
    "DisconnectKind",
    "QueryError",
    "QueueLimitError",
    "TransientDisconnectError",
    "classify_disconnect",
    "error_message",
]
