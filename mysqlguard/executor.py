"""Statement execution with a single repair-and-retry on lost connections."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar

import aiomysql

from .errors import (
    AdapterError,
    QueryError,
    TransientDisconnectError,
    classify_disconnect,
    error_message,
)
from .models import WriteResult
from .pool import PoolManager

LOG = logging.getLogger(__name__)

T = TypeVar("T")

Params = Sequence[Any] | Mapping[str, Any] | None
Operation = Callable[[Any], Awaitable[T]]


class QueryExecutor:
    """Routes reads, writes and batches through the pool manager."""

    def __init__(self, manager: PoolManager) -> None:
        self._manager = manager

    async def query_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        """Run a read query and return its rows as dicts (never ``None``)."""

        async def _fetch(conn: Any) -> list[dict[str, Any]]:
            async with conn.cursor(aiomysql.DictCursor) as cur:
                await cur.execute(sql, params)
                rows = await cur.fetchall()
            if isinstance(rows, (list, tuple)):
                return list(rows)
            return []

        return await self._run(_fetch, label="query")

    async def query_write(self, sql: str, params: Params = None) -> WriteResult:
        """Run a mutating statement and report affected rows and the last insert id."""

        async def _write(conn: Any) -> WriteResult:
            async with conn.cursor() as cur:
                await cur.execute(sql, params)
                return WriteResult(
                    rows_affected=_non_negative(cur.rowcount),
                    inserted_id=_non_negative(cur.lastrowid),
                )

        return await self._run(_write, label="query")

    async def exec_batch(self, sql: str) -> None:
        """Run a multi-statement script, draining every result set."""

        async def _batch(conn: Any) -> None:
            async with conn.cursor() as cur:
                await cur.execute(sql)
                while await cur.nextset():
                    pass

        await self._run(_batch, label="batch")

    async def _run(self, operation: Operation[T], *, label: str) -> T:
        await self._manager.ensure_healthy()
        try:
            return await self._attempt(operation, label=label)
        except TransientDisconnectError as exc:
            LOG.warning(
                "Connection lost, attempting reconnection",
                extra={"kind": exc.kind.value, "error": str(exc)},
            )

        await self._manager.ensure_healthy()
        try:
            return await self._attempt(operation, label=label)
        except TransientDisconnectError as exc:
            raise QueryError(f"MySQL {label} error: {exc}") from exc

    async def _attempt(self, operation: Operation[T], *, label: str) -> T:
        # A caller giving up does not abort the round-trip already on the wire.
        task = asyncio.ensure_future(self._physical(operation, label=label))
        task.add_done_callback(_observe)
        return await asyncio.shield(task)

    async def _physical(self, operation: Operation[T], *, label: str) -> T:
        timeout = self._manager.config.query_timeout_seconds
        try:
            async with self._manager.connection() as conn:
                try:
                    if timeout is None:
                        return await operation(conn)
                    return await asyncio.wait_for(operation(conn), timeout=timeout)
                except (asyncio.TimeoutError, asyncio.CancelledError):
                    # the reply may be half-read; drop the connection instead of pooling it
                    conn.close()
                    raise
        except AdapterError:
            raise
        except Exception as exc:
            message = error_message(exc)
            kind = classify_disconnect(exc)
            if kind is not None:
                raise TransientDisconnectError(message, kind) from exc
            raise QueryError(f"MySQL {label} error: {message}") from exc


def _non_negative(value: int | None) -> int:
    if value is None or value < 0:
        return 0
    return value


def _observe(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOG.debug("Physical operation failed", extra={"error": str(exc)})


__all__ = ["Params", "QueryExecutor"]
