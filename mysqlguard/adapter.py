"""MySQL adapter surface exposed to the host process."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, runtime_checkable

from pymysql.converters import escape_string

from .config import ConnectionConfig
from .credentials import CredentialProvider, TokenSigner, credential_provider_for
from .executor import Params, QueryExecutor
from .models import AdapterMetadata, AdapterState, WriteResult
from .pool import PoolFactory, PoolManager

LOG = logging.getLogger(__name__)


@runtime_checkable
class DbAdapter(Protocol):
    """Contract the host process relies on for every database engine."""

    async def initialize(self) -> None: ...

    async def query_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]: ...

    async def query_write(self, sql: str, params: Params = None) -> WriteResult: ...

    async def exec_batch(self, sql: str) -> None: ...

    async def close(self) -> None: ...

    def describe_self(self) -> AdapterMetadata: ...

    def list_tables_query(self) -> str: ...

    def describe_table_query(self, table_name: str) -> str: ...


class MysqlAdapter:
    """Pooled MySQL adapter that repairs its pool when the host drops connections."""

    def __init__(
        self,
        config: ConnectionConfig | Mapping[str, Any],
        *,
        signer: TokenSigner | None = None,
        credentials: CredentialProvider | None = None,
        pool_factory: PoolFactory | None = None,
    ) -> None:
        if not isinstance(config, ConnectionConfig):
            config = ConnectionConfig.model_validate(config)
        self._config = config
        provider = credentials or credential_provider_for(config, signer=signer)
        self._manager = PoolManager(config, credentials=provider, pool_factory=pool_factory)
        self._executor = QueryExecutor(self._manager)
        LOG.debug("MySQL connection will use port", extra={"port": config.port, "host": config.host})

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> AdapterState:
        return self._manager.state

    @property
    def pool_manager(self) -> PoolManager:
        return self._manager

    async def initialize(self) -> None:
        await self._manager.initialize()

    async def query_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        return await self._executor.query_all(sql, params)

    async def query_write(self, sql: str, params: Params = None) -> WriteResult:
        return await self._executor.query_write(sql, params)

    async def exec_batch(self, sql: str) -> None:
        await self._executor.exec_batch(sql)

    async def close(self) -> None:
        await self._manager.close()

    def describe_self(self) -> AdapterMetadata:
        return AdapterMetadata(
            engine_name="MySQL",
            engine_kind="mysql",
            host=self._config.host,
            database=self._config.database,
        )

    def list_tables_query(self) -> str:
        schema = escape_string(self._config.database)
        return f"SELECT table_name AS name FROM information_schema.tables WHERE table_schema = '{schema}'"

    def describe_table_query(self, table_name: str) -> str:
        quoted = table_name.replace("`", "``")
        return f"DESCRIBE `{quoted}`"

    async def __aenter__(self) -> MysqlAdapter:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["DbAdapter", "MysqlAdapter"]
