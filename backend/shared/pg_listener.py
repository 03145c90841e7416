"""PostgreSQL LISTEN/NOTIFY loop with keepalive and auto-reconnect."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import asyncpg

logger = logging.getLogger(__name__)

NotifyHandler = Callable[[str], Awaitable[None]]


class _Dispatcher:
    """Bridges asyncpg's sync listener callback to an async handler."""

    def __init__(self, channel: str, handler: NotifyHandler) -> None:
        self.channel = channel
        self.handler = handler
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, connection, pid, channel, payload) -> None:  # noqa: ANN001
        task = asyncio.create_task(self._run(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, payload: str) -> None:
        try:
            await self.handler(payload)
        except Exception:
            logger.exception(f"NOTIFY handler for '{self.channel}' failed")


async def _release_quietly(
    pool: asyncpg.Pool, connection: asyncpg.Connection, dispatcher: _Dispatcher
) -> None:
    try:
        await connection.remove_listener(dispatcher.channel, dispatcher)
    except Exception:
        pass
    try:
        await pool.release(connection)
    except Exception:
        connection.terminate()


async def pg_listen(
    pool: asyncpg.Pool,
    channel: str,
    handler: NotifyHandler,
    *,
    keepalive_interval: int = 30,
    reconnect_delay: int = 10,
) -> None:
    """Listen on *channel* until cancelled, calling ``handler(payload)``.

    A dedicated pooled connection holds the LISTEN; a ``SELECT 1`` every
    *keepalive_interval* seconds keeps poolers from reaping it.
    """
    dispatcher = _Dispatcher(channel, handler)
    while True:
        connection: asyncpg.Connection | None = None
        try:
            connection = await pool.acquire()
            await connection.add_listener(channel, dispatcher)
            logger.info(f"PostgreSQL LISTEN active on '{channel}'")
            while True:
                await asyncio.sleep(keepalive_interval)
                await connection.execute("SELECT 1")
        except asyncio.CancelledError:
            logger.info(f"PostgreSQL LISTEN '{channel}' shutting down")
            if connection is not None:
                await _release_quietly(pool, connection, dispatcher)
            break
        except Exception as e:
            logger.error(f"Error in pg_listen('{channel}'): {e}")
            if connection is not None:
                await _release_quietly(pool, connection, dispatcher)
            logger.warning(f"Reconnecting LISTEN '{channel}' in {reconnect_delay}s...")
            try:
                await asyncio.sleep(reconnect_delay)
            except asyncio.CancelledError:
                break
