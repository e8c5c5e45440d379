"""Tests for query execution and the repair-and-retry policy."""

from __future__ import annotations

import asyncio

import pytest
from pymysql.err import OperationalError, ProgrammingError

from mysqlguard.adapter import MysqlAdapter
from mysqlguard.config import ConnectionConfig, PoolSettings
from mysqlguard.errors import ClosedAdapterError, QueryError
from mysqlguard.models import WriteResult


def _lost() -> OperationalError:
    return OperationalError(2013, "Lost connection to MySQL server during query")


@pytest.mark.anyio
async def test_query_all_returns_rows(server, config: ConnectionConfig) -> None:
    adapter = MysqlAdapter(config)
    await adapter.initialize()

    rows = await adapter.query_all("SELECT 1")

    assert rows == [{"1": 1}]
    assert server.executed == [("SELECT 1", None)]


@pytest.mark.anyio
async def test_query_all_passes_params(server, config: ConnectionConfig) -> None:
    server.rows["SELECT * FROM users WHERE id = %s"] = [{"id": 7, "email": "a@example.com"}]
    adapter = MysqlAdapter(config)

    rows = await adapter.query_all("SELECT * FROM users WHERE id = %s", [7])

    assert rows == [{"id": 7, "email": "a@example.com"}]
    assert server.executed[-1] == ("SELECT * FROM users WHERE id = %s", [7])


@pytest.mark.anyio
async def test_query_all_normalizes_non_sequence_results(server, config: ConnectionConfig) -> None:
    server.rows["SET @x = 1"] = None
    adapter = MysqlAdapter(config)

    assert await adapter.query_all("SET @x = 1") == []


@pytest.mark.anyio
async def test_query_write_reports_affected_rows_and_insert_id(server, config: ConnectionConfig) -> None:
    server.write_result = (1, 42)
    adapter = MysqlAdapter(config)

    result = await adapter.query_write("INSERT INTO users (email) VALUES (%s)", ["a@example.com"])

    assert result == WriteResult(rows_affected=1, inserted_id=42)


@pytest.mark.anyio
async def test_query_write_defaults_missing_counts_to_zero(server, config: ConnectionConfig) -> None:
    server.write_result = (-1, None)
    adapter = MysqlAdapter(config)

    result = await adapter.query_write("UPDATE users SET active = 1 WHERE 1 = 0")

    assert result == WriteResult(rows_affected=0, inserted_id=0)


@pytest.mark.anyio
async def test_exec_batch_drains_every_result_set(server, config: ConnectionConfig) -> None:
    script = "CREATE TABLE a (id INT); CREATE TABLE b (id INT); INSERT INTO a VALUES (1)"
    server.result_sets[script] = 3
    adapter = MysqlAdapter(config)

    assert await adapter.exec_batch(script) is None

    assert server.executed == [(script, None)]
    assert server.nextset_calls == 3


@pytest.mark.anyio
async def test_query_repairs_pool_and_retries_once(server, config: ConnectionConfig) -> None:
    adapter = MysqlAdapter(config)
    await adapter.initialize()
    stale = server.pool
    stale.probe_outcomes = [True, False]
    server.failures.append(_lost())

    rows = await adapter.query_all("SELECT 1")

    assert rows == [{"1": 1}]
    assert len(server.pools) == 2
    assert stale.terminated is True
    assert len(server.executed) == 2
    assert adapter.pool_manager.generation == 2


@pytest.mark.anyio
async def test_dead_pool_is_rebuilt_before_the_first_attempt(server, config: ConnectionConfig) -> None:
    adapter = MysqlAdapter(config)
    await adapter.initialize()
    server.pool.broken = True

    rows = await adapter.query_all("SELECT 1")

    assert rows == [{"1": 1}]
    assert len(server.pools) == 2
    assert len(server.executed) == 1


@pytest.mark.anyio
async def test_retry_is_bounded_to_one(server, config: ConnectionConfig) -> None:
    server.failures.extend([_lost(), _lost(), _lost()])
    adapter = MysqlAdapter(config)

    with pytest.raises(QueryError, match="MySQL query error: \\(2013\\) Lost connection") as excinfo:
        await adapter.query_write("INSERT INTO users (email) VALUES ('a@example.com')")

    assert len(server.executed) == 2
    assert len(server.failures) == 1
    assert excinfo.value.__cause__ is not None


@pytest.mark.anyio
async def test_non_transient_errors_are_not_retried(server, config: ConnectionConfig) -> None:
    server.failures.append(ProgrammingError(1146, "Table 'app.missing' doesn't exist"))
    adapter = MysqlAdapter(config)

    with pytest.raises(QueryError, match="Table 'app.missing' doesn't exist"):
        await adapter.query_all("SELECT * FROM missing")

    assert len(server.executed) == 1
    assert len(server.pools) == 1


@pytest.mark.anyio
async def test_batch_errors_are_labelled(server, config: ConnectionConfig) -> None:
    server.failures.append(ProgrammingError(1064, "You have an error in your SQL syntax"))
    adapter = MysqlAdapter(config)

    with pytest.raises(QueryError, match="MySQL batch error"):
        await adapter.exec_batch("CREATE TABLE")


@pytest.mark.anyio
async def test_closed_adapter_rejects_queries_without_network(server, config: ConnectionConfig) -> None:
    adapter = MysqlAdapter(config)
    await adapter.close()

    with pytest.raises(ClosedAdapterError):
        await adapter.query_all("SELECT 1")
    with pytest.raises(ClosedAdapterError):
        await adapter.query_write("DELETE FROM users")
    with pytest.raises(ClosedAdapterError):
        await adapter.exec_batch("SELECT 1; SELECT 2")

    assert server.pool_options == []
    assert server.executed == []


@pytest.mark.anyio
async def test_query_timeout_surfaces_query_error(server, config: ConnectionConfig) -> None:
    adapter = MysqlAdapter(config.model_copy(update={"pool": PoolSettings(keep_alive=False, query_timeout=20)}))
    await adapter.initialize()
    server.delay = 1.0

    with pytest.raises(QueryError, match="TimeoutError"):
        await adapter.query_all("SELECT SLEEP(1)")

    assert len(server.executed) == 1
    assert server.pool.freesize == 0
    assert server.pool.size == 0


@pytest.mark.anyio
async def test_cancelled_caller_does_not_abort_in_flight_query(server, config: ConnectionConfig) -> None:
    adapter = MysqlAdapter(config)
    await adapter.initialize()
    server.delay = 0.02

    caller = asyncio.ensure_future(adapter.query_write("UPDATE counters SET n = n + 1"))
    await asyncio.sleep(0.005)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    await asyncio.sleep(0.05)
    assert server.completed == 1


@pytest.mark.anyio
async def test_concurrent_queries_after_outage_share_one_rebuild(server, config: ConnectionConfig) -> None:
    adapter = MysqlAdapter(config)
    await adapter.initialize()
    server.pool.broken = True
    server.yield_on_execute = True

    results = await asyncio.gather(*(adapter.query_all("SELECT 1") for _ in range(4)))

    assert results == [[{"1": 1}]] * 4
    assert len(server.pools) == 2


@pytest.mark.anyio
async def test_busy_pool_is_waited_for_not_rebuilt(server, config: ConnectionConfig) -> None:
    settings = PoolSettings(keep_alive=False, connection_limit=1, probe_timeout=50)
    adapter = MysqlAdapter(config.model_copy(update={"pool": settings}))
    await adapter.initialize()
    server.delay = 0.2

    slow = asyncio.ensure_future(adapter.query_all("SELECT SLEEP(0.2)"))
    await asyncio.sleep(0.05)
    rows = await adapter.query_all("SELECT 1")
    await slow

    assert rows == [{"1": 1}]
    assert len(server.pools) == 1
    assert server.pool.terminated is False
    assert adapter.pool_manager.generation == 1
