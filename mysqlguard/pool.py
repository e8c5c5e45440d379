"""Pool lifecycle, single-flight reconnection and keep-alive."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

import aiomysql

from .config import ConnectionConfig
from .credentials import CredentialProvider
from .errors import (
    AdapterError,
    ClosedAdapterError,
    ConnectError,
    DisconnectKind,
    QueueLimitError,
    TransientDisconnectError,
    error_message,
)
from .health import ping, probe
from .models import AdapterState

LOG = logging.getLogger(__name__)

PoolFactory = Callable[..., Awaitable[Any]]


class KeepAlive:
    """Background task that periodically runs a health check coroutine."""

    def __init__(
        self,
        check: Callable[[], Awaitable[Any]],
        *,
        initial_delay: float,
        interval: float,
    ) -> None:
        self._check = check
        self._initial_delay = initial_delay
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop unless it is already running."""

        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._runner(), name="mysqlguard-keepalive")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to unwind."""

        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _runner(self) -> None:
        await asyncio.sleep(self._initial_delay)
        while True:
            try:
                await self._check()
            except ClosedAdapterError:
                return
            except AdapterError as exc:
                LOG.warning("Keep-alive check failed", extra={"error": str(exc)})
            await asyncio.sleep(self._interval)


class PoolManager:
    """Owns the single pool handle of one adapter instance.

    Every mutation of the handle happens under ``_lock``. ``_generation`` is
    bumped each time a new pool is installed, so callers whose probe failed can
    tell whether somebody else already replaced the pool they were looking at.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        credentials: CredentialProvider,
        pool_factory: PoolFactory | None = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._pool_factory = pool_factory
        self._pool: Any | None = None
        self._state = AdapterState.UNINITIALIZED
        self._generation = 0
        self._waiting = 0
        self._lock = asyncio.Lock()
        self._keep_alive: KeepAlive | None = None
        if config.pool.keep_alive:
            self._keep_alive = KeepAlive(
                self.ensure_healthy,
                initial_delay=config.pool.keep_alive_initial_delay / 1000,
                interval=config.pool.keep_alive_interval / 1000,
            )

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def generation(self) -> int:
        """Number of pools built so far."""

        return self._generation

    @property
    def keep_alive(self) -> KeepAlive | None:
        return self._keep_alive

    async def initialize(self) -> None:
        """Build the pool and verify it answers a probe. No-op when already built."""

        self._ensure_open()
        async with self._lock:
            self._ensure_open()
            if self._pool is not None:
                LOG.debug("Pool already initialized", extra={"host": self._config.host})
                return
            await self._initialize_locked()

    async def ensure_healthy(self) -> None:
        """Probe the pool and rebuild it if the probe fails.

        Concurrent callers that observe the same failed pool share one rebuild.
        """

        self._ensure_open()
        pool = self._pool
        if pool is None:
            async with self._lock:
                self._ensure_open()
                if self._pool is None:
                    LOG.info("Pool not initialized, initializing", extra={"host": self._config.host})
                    await self._initialize_locked()
            return

        generation = self._generation
        if await probe(pool, timeout=self._config.probe_timeout_seconds):
            return

        async with self._lock:
            self._ensure_open()
            if self._generation != generation:
                LOG.debug("Pool already rebuilt by a concurrent caller", extra={"generation": self._generation})
                return
            self._state = AdapterState.DEGRADED
            LOG.info("Attempting to reinitialize connection pool", extra={"host": self._config.host})
            stale, self._pool = self._pool, None
            if stale is not None:
                await self._discard(stale)
            await self._initialize_locked()

    async def teardown(self) -> None:
        """Gracefully close the pool, waiting for in-flight work, and go back to UNINITIALIZED."""

        self._ensure_open()
        async with self._lock:
            await self._stop_keep_alive()
            pool, self._pool = self._pool, None
            self._state = AdapterState.UNINITIALIZED
            if pool is not None:
                pool.close()
                await pool.wait_closed()
        LOG.info("Connection pool torn down", extra={"host": self._config.host})

    async def close(self) -> None:
        """Close the pool for good. Idempotent."""

        if self._state is AdapterState.CLOSED:
            return
        async with self._lock:
            if self._state is AdapterState.CLOSED:
                return
            self._state = AdapterState.CLOSED
            await self._stop_keep_alive()
            pool, self._pool = self._pool, None
            if pool is not None:
                pool.close()
                await pool.wait_closed()
        LOG.info("Connection pool closed", extra={"host": self._config.host})

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        """Borrow one physical connection from the current pool."""

        self._ensure_open()
        pool = self._pool
        if pool is None:
            raise TransientDisconnectError("Connection pool was released", DisconnectKind.CONNECTION_CLOSED)

        limit = self._config.pool.queue_limit
        exhausted = pool.freesize == 0 and pool.size >= pool.maxsize
        if limit and exhausted and self._waiting >= limit:
            raise QueueLimitError(f"Queue limit reached ({limit} callers waiting)")

        self._waiting += 1
        try:
            conn = await pool.acquire()
        except Exception as exc:
            if pool is self._pool:
                raise
            raise TransientDisconnectError(error_message(exc), DisconnectKind.CONNECTION_CLOSED) from exc
        finally:
            self._waiting -= 1

        try:
            yield conn
        finally:
            if not conn.closed and pool.freesize >= self._config.pool.max_idle:
                conn.close()
            await pool.release(conn)

    def _ensure_open(self) -> None:
        if self._state is AdapterState.CLOSED:
            raise ClosedAdapterError("Adapter has been closed")

    async def _initialize_locked(self) -> None:
        config = self._config
        self._state = AdapterState.UNINITIALIZED
        LOG.info(
            "Connecting to MySQL",
            extra={"host": config.host, "port": config.port, "database": config.database},
        )
        if config.aws_iam_auth:
            LOG.info("Using AWS IAM authentication", extra={"user": config.user})

        credential = await self._credentials.obtain(config)
        options = config.driver_options(credential.secret)
        factory = self._pool_factory or aiomysql.create_pool

        async def _create() -> Any:
            return await factory(**options)

        try:
            pool = await asyncio.wait_for(_create(), timeout=config.connect_timeout_seconds)
        except Exception as exc:
            LOG.error("MySQL connection error", extra={"error": error_message(exc)})
            raise ConnectError(self._connect_failure(exc)) from exc

        verified = False
        try:
            await ping(pool, timeout=config.probe_timeout_seconds)
            verified = True
        except Exception as exc:
            LOG.error("Initial liveness probe failed", extra={"error": error_message(exc)})
            raise ConnectError(self._connect_failure(exc)) from exc
        finally:
            if not verified:
                await self._discard(pool)

        self._pool = pool
        self._generation += 1
        self._state = AdapterState.HEALTHY
        LOG.info(
            "MySQL connection pool established",
            extra={"host": config.host, "generation": self._generation},
        )
        if self._keep_alive is not None:
            self._keep_alive.start()

    def _connect_failure(self, exc: BaseException) -> str:
        message = error_message(exc)
        if self._config.aws_iam_auth:
            return (
                f"Failed to connect to MySQL with AWS IAM authentication: {message}. "
                "Please verify your AWS credentials, IAM permissions, and RDS configuration."
            )
        return f"Failed to connect to MySQL: {message}"

    async def _discard(self, pool: Any) -> None:
        """Best-effort release of a pool that is being thrown away."""

        try:
            pool.terminate()
            await asyncio.wait_for(pool.wait_closed(), timeout=self._config.connect_timeout_seconds)
        except Exception as exc:
            LOG.warning("Error closing old pool", extra={"error": error_message(exc)})

    async def _stop_keep_alive(self) -> None:
        if self._keep_alive is not None:
            await self._keep_alive.stop()


__all__ = ["KeepAlive", "PoolFactory", "PoolManager"]
