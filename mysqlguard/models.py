"""Shared dataclasses used across the pool, credential and executor modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class AdapterState(str, Enum):
    """Lifecycle of a single adapter instance."""

    UNINITIALIZED = "uninitialized"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CLOSED = "closed"


class CredentialKind(str, Enum):
    STATIC = "static"
    IAM_TOKEN = "iam_token"


@dataclass(frozen=True, slots=True)
class Credential:
    """Secret used to authenticate one pool construction."""

    kind: CredentialKind
    secret: str | None = field(default=None, repr=False)
    issued_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Outcome of a mutating statement."""

    rows_affected: int = 0
    inserted_id: int = 0


@dataclass(frozen=True, slots=True)
class AdapterMetadata:
    """Identity reported to the host process."""

    engine_name: str
    engine_kind: str
    host: str
    database: str


__all__ = [
    "AdapterMetadata",
    "AdapterState",
    "Credential",
    "CredentialKind",
    "WriteResult",
]
