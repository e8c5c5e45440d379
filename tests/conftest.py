"""Shared fakes standing in for aiomysql pools and a MySQL server."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from pymysql.err import OperationalError

from mysqlguard.config import ConnectionConfig, PoolSettings
from mysqlguard.health import PROBE_SQL


def lost_connection() -> OperationalError:
    return OperationalError(2013, "Lost connection to MySQL server during query")


class FakeCursor:
    def __init__(self, conn: "FakeConnection", dict_rows: bool) -> None:
        self._conn = conn
        self._dict_rows = dict_rows
        self._rows: Any = []
        self._sets = 1
        self.rowcount = -1
        self.lastrowid: int | None = None

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def execute(self, sql: str, args: object = None) -> int:
        pool = self._conn.pool
        server = pool.server
        if server.yield_on_execute:
            await asyncio.sleep(0)
        if pool.hang:
            await asyncio.sleep(3600)
        if sql == PROBE_SQL and not self._dict_rows:
            server.probes += 1
            healthy = pool.probe_outcomes.pop(0) if pool.probe_outcomes else not pool.broken
            if not healthy:
                raise lost_connection()
            self._rows = [(1,)]
            return 1
        server.executed.append((sql, args))
        if pool.broken:
            raise lost_connection()
        if server.failures:
            raise server.failures.pop(0)
        if server.delay:
            await asyncio.sleep(server.delay)
        server.completed += 1
        self._rows = server.rows.get(sql, [])
        self.rowcount, self.lastrowid = server.write_result
        self._sets = server.result_sets.get(sql, 1)
        return 0

    async def fetchone(self) -> Any:
        return self._rows[0] if self._rows else None

    async def fetchall(self) -> Any:
        return self._rows

    async def nextset(self) -> bool | None:
        self._conn.pool.server.nextset_calls += 1
        self._sets -= 1
        return True if self._sets > 0 else None


class FakeConnection:
    def __init__(self, pool: "FakePool") -> None:
        self.pool = pool
        self.closed = False

    def cursor(self, *cursors: object) -> FakeCursor:
        return FakeCursor(self, dict_rows=bool(cursors))

    def close(self) -> None:
        self.closed = True


class _Acquire:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool
        self._conn: FakeConnection | None = None

    def __await__(self):  # type: ignore[no-untyped-def]
        return self._pool._acquire().__await__()

    async def __aenter__(self) -> FakeConnection:
        self._conn = await self._pool._acquire()
        return self._conn

    async def __aexit__(self, *exc_info: object) -> None:
        if self._conn is not None:
            await self._pool.release(self._conn)


class FakePool:
    def __init__(self, server: "FakeServer", options: dict[str, Any]) -> None:
        self.server = server
        self.options = options
        self.maxsize = options.get("maxsize", 5)
        self.broken = False
        self.hang = False
        self.probe_outcomes: list[bool] = []
        self.closed = False
        self.terminated = False
        self.wait_closed_called = False
        self._free: list[FakeConnection] = []
        self._used: list[FakeConnection] = []
        self._released = asyncio.Event()

    @property
    def size(self) -> int:
        return len(self._free) + len(self._used)

    @property
    def freesize(self) -> int:
        return len(self._free)

    def acquire(self) -> _Acquire:
        return _Acquire(self)

    async def _acquire(self) -> FakeConnection:
        while True:
            if self.closed:
                raise RuntimeError("Cannot acquire connection after closing pool")
            if self._free:
                conn = self._free.pop()
                break
            if self.size < self.maxsize:
                conn = FakeConnection(self)
                break
            self._released.clear()
            await self._released.wait()
        self._used.append(conn)
        return conn

    async def release(self, conn: FakeConnection) -> None:
        if conn in self._used:
            self._used.remove(conn)
        if not conn.closed and not self.closed:
            self._free.append(conn)
        self._released.set()

    def close(self) -> None:
        self.closed = True

    def terminate(self) -> None:
        self.closed = True
        self.terminated = True

    async def wait_closed(self) -> None:
        self.wait_closed_called = True


class FakeServer:
    """Scripted MySQL stand-in shared by every pool built during a test."""

    def __init__(self) -> None:
        self.rows: dict[str, Any] = {"SELECT 1": [{"1": 1}]}
        self.write_result: tuple[int, int | None] = (0, 0)
        self.result_sets: dict[str, int] = {}
        self.failures: list[BaseException] = []
        self.create_failures: list[BaseException] = []
        self.executed: list[tuple[str, object]] = []
        self.pool_options: list[dict[str, Any]] = []
        self.pools: list[FakePool] = []
        self.probes = 0
        self.completed = 0
        self.nextset_calls = 0
        self.delay = 0.0
        self.yield_on_execute = False

    async def create_pool(self, **options: Any) -> FakePool:
        self.pool_options.append(options)
        if self.create_failures:
            raise self.create_failures.pop(0)
        pool = FakePool(self, options)
        self.pools.append(pool)
        return pool

    @property
    def pool(self) -> FakePool:
        return self.pools[-1]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def server(monkeypatch: pytest.MonkeyPatch) -> FakeServer:
    fake = FakeServer()
    monkeypatch.setattr("mysqlguard.pool.aiomysql.create_pool", fake.create_pool)
    return fake


@pytest.fixture
def config() -> ConnectionConfig:
    return ConnectionConfig(
        host="db.example.com",
        database="app",
        user="root",
        password="x",
        pool=PoolSettings(keep_alive=False),
    )


@pytest.fixture
def iam_config() -> ConnectionConfig:
    return ConnectionConfig(
        host="db.example.com",
        database="app",
        user="iam_user",
        awsIamAuth=True,
        awsRegion="us-east-1",
        pool=PoolSettings(keep_alive=False),
    )
