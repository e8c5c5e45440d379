"""Resilient pooled MySQL adapter with RDS IAM authentication."""

from __future__ import annotations

__version__ = "0.1.0"

from .adapter import DbAdapter, MysqlAdapter
from .config import AppConfig, ConnectionConfig, PoolSettings, load_config
from .errors import (
    AdapterError,
    AuthConfigError,
    AuthProviderError,
    ClosedAdapterError,
    ConnectError,
    DisconnectKind,
    QueryError,
    QueueLimitError,
    TransientDisconnectError,
)
from .models import AdapterMetadata, AdapterState, Credential, CredentialKind, WriteResult

__all__ = [
    "AdapterError",
    "AdapterMetadata",
    "AdapterState",
    "AppConfig",
    "AuthConfigError",
    "AuthProviderError",
    "ClosedAdapterError",
    "ConnectError",
    "ConnectionConfig",
    "Credential",
    "CredentialKind",
    "DbAdapter",
    "DisconnectKind",
    "MysqlAdapter",
    "PoolSettings",
    "QueryError",
    "QueueLimitError",
    "TransientDisconnectError",
    "WriteResult",
    "__version__",
    "load_config",
]
