"""Credential providers: static passwords and RDS IAM auth tokens."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

import boto3

from .config import ConnectionConfig
from .errors import AuthConfigError, AuthProviderError
from .models import Credential, CredentialKind

LOG = logging.getLogger(__name__)


class TokenSigner(Protocol):
    """Callable that mints an RDS auth token. Runs in a worker thread."""

    def __call__(self, *, host: str, port: int, user: str, region: str) -> str: ...


@runtime_checkable
class CredentialProvider(Protocol):
    """Produces the secret for one pool construction."""

    async def obtain(self, config: ConnectionConfig) -> Credential: ...


def boto3_token_signer(*, host: str, port: int, user: str, region: str) -> str:
    """Sign an RDS IAM token with the default boto3 credential chain."""

    client = boto3.client("rds", region_name=region)
    return client.generate_db_auth_token(
        DBHostname=host,
        Port=port,
        DBUsername=user,
        Region=region,
    )


class StaticCredentialProvider:
    """Hands back the configured password unchanged."""

    async def obtain(self, config: ConnectionConfig) -> Credential:
        return Credential(kind=CredentialKind.STATIC, secret=config.password)


class RdsIamCredentialProvider:
    """Mints a fresh IAM token on every call; tokens are never reused."""

    def __init__(self, signer: TokenSigner | None = None) -> None:
        self._signer = signer or boto3_token_signer

    async def obtain(self, config: ConnectionConfig) -> Credential:
        if not config.aws_region:
            raise AuthConfigError("AWS region is required for IAM authentication")
        if not config.user:
            raise AuthConfigError("AWS username is required for IAM authentication")
        if not config.host:
            raise AuthConfigError("Database host is required for IAM authentication")

        LOG.info(
            "Generating AWS auth token",
            extra={"region": config.aws_region, "host": config.host, "user": config.user},
        )
        try:
            token = await asyncio.to_thread(
                self._signer,
                host=config.host,
                port=config.port,
                user=config.user,
                region=config.aws_region,
            )
        except Exception as exc:
            LOG.error("Failed to generate AWS auth token", extra={"error": str(exc)})
            raise AuthProviderError(
                f"AWS IAM authentication failed: {exc}. "
                "Please check your AWS credentials and IAM permissions."
            ) from exc
        LOG.info("AWS auth token generated", extra={"host": config.host})
        return Credential(kind=CredentialKind.IAM_TOKEN, secret=token)


def credential_provider_for(
    config: ConnectionConfig,
    *,
    signer: TokenSigner | None = None,
) -> CredentialProvider:
    """Pick the provider matching the config's authentication mode."""

    if config.aws_iam_auth:
        return RdsIamCredentialProvider(signer)
    return StaticCredentialProvider()


__all__ = [
    "CredentialProvider",
    "RdsIamCredentialProvider",
    "StaticCredentialProvider",
    "TokenSigner",
    "boto3_token_signer",
    "credential_provider_for",
]
