"""Pool liveness probe."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

LOG = logging.getLogger(__name__)

PROBE_SQL = "SELECT 1"


async def ping(pool: Any, *, timeout: float) -> None:
    """Run ``SELECT 1`` on a borrowed connection; raise on failure or timeout.

    Only the round-trip is timed. Waiting for a busy pool to hand out a
    connection is queueing, not a sign of a dead server.
    """

    async def _roundtrip(conn: Any) -> None:
        async with conn.cursor() as cur:
            await cur.execute(PROBE_SQL)
            await cur.fetchone()

    async with pool.acquire() as conn:
        try:
            await asyncio.wait_for(_roundtrip(conn), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            # half-read response; never hand this connection out again
            conn.close()
            raise


async def probe(pool: Any, *, timeout: float) -> bool:
    """Return True if the pool answers the probe query within *timeout* seconds."""

    try:
        await ping(pool, timeout=timeout)
    except Exception as exc:
        LOG.warning("Pool liveness probe failed", extra={"error": str(exc) or type(exc).__name__})
        return False
    return True


__all__ = ["PROBE_SQL", "ping", "probe"]
