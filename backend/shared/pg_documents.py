"""PostgreSQL implementation of :class:`shared.documents.DocumentStore`.

Every document is one row of the ``documents`` table (see migration
``001_documents``). Transactions lock the rows they read with
``SELECT ... FOR UPDATE`` and apply buffered writes at commit. Change feeds
ride on the ``document_changes`` NOTIFY channel fed by a row trigger.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import asyncpg

from shared.documents import (
    DELETE_FIELD,
    ChangeHandler,
    Document,
    DocumentStore,
    DocumentStoreError,
    Transaction,
    TransactionConflict,
    Unsubscribe,
    collection_of,
)
from shared.pg_listener import pg_listen

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOTIFY_CHANNEL = "document_changes"

_CONFLICT_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.UniqueViolationError,
)


def _split_fields(fields: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Separate values to write from keys marked ``DELETE_FIELD``."""
    values: dict[str, Any] = {}
    removed: list[str] = []
    for key, value in fields.items():
        if value is DELETE_FIELD:
            removed.append(key)
        else:
            values[key] = value
    return values, removed


@asynccontextmanager
async def _store_errors(action: str, path: str) -> AsyncIterator[None]:
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        raise DocumentStoreError(f"{action} {path} failed: {e}") from e


async def _write(
    conn: asyncpg.Connection, path: str, fields: Mapping[str, Any], *, merge: bool
) -> None:
    values, removed = _split_fields(fields)
    if not merge:
        # Without merge the stored data is replaced wholesale
        removed = []
    await conn.execute(
        f"""
        INSERT INTO documents (path, collection, doc_id, data)
        VALUES ($1, $2, $3, $4::jsonb)
        ON CONFLICT (path) DO UPDATE SET
            data = {"(documents.data || EXCLUDED.data)" if merge else "EXCLUDED.data"}
                   - $5::text[],
            updated_at = NOW()
        """,
        path,
        collection_of(path),
        path.rsplit("/", 1)[-1],
        values,
        removed,
    )


class _PgTransaction(Transaction):
    """Buffers writes until the surrounding database transaction commits."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn
        self._writes: list[tuple[str, str, Mapping[str, Any]]] = []

    async def get(self, path: str) -> Document | None:
        if self._writes:
            raise DocumentStoreError("Transaction reads must happen before writes")
        row = await self._conn.fetchrow(
            "SELECT data FROM documents WHERE path = $1 FOR UPDATE", path
        )
        return Document(path, dict(row["data"])) if row else None

    def set(self, path: str, fields: Mapping[str, Any], *, merge: bool = False) -> None:
        self._writes.append(("merge" if merge else "set", path, dict(fields)))

    def update(self, path: str, fields: Mapping[str, Any]) -> None:
        self._writes.append(("update", path, dict(fields)))

    def delete(self, path: str) -> None:
        self._writes.append(("delete", path, {}))

    async def commit_writes(self) -> None:
        for op, path, fields in self._writes:
            if op == "delete":
                await self._conn.execute("DELETE FROM documents WHERE path = $1", path)
            elif op == "update":
                values, removed = _split_fields(fields)
                status = await self._conn.execute(
                    """
                    UPDATE documents
                    SET data = (data || $2::jsonb) - $3::text[], updated_at = NOW()
                    WHERE path = $1
                    """,
                    path,
                    values,
                    removed,
                )
                if status.endswith(" 0"):
                    raise DocumentStoreError(f"Cannot update missing document {path}")
            else:
                await _write(self._conn, path, fields, merge=op == "merge")


class PostgresDocumentStore(DocumentStore):
    """Document store over an asyncpg pool."""

    MAX_TRANSACTION_ATTEMPTS = 5

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool
        self._subscribers: dict[str, list[ChangeHandler]] = {}
        self._listen_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    async def get(self, path: str) -> Document | None:
        async with _store_errors("get", path):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("SELECT data FROM documents WHERE path = $1", path)
        return Document(path, dict(row["data"])) if row else None

    async def set(self, path: str, fields: Mapping[str, Any], *, merge: bool = False) -> None:
        async with _store_errors("set", path):
            async with self.pool.acquire() as conn:
                await _write(conn, path, fields, merge=merge)

    async def delete(self, path: str) -> None:
        async with _store_errors("delete", path):
            async with self.pool.acquire() as conn:
                await conn.execute("DELETE FROM documents WHERE path = $1", path)

    async def query(
        self, collection: str, where: Mapping[str, Any] | None = None
    ) -> list[Document]:
        async with _store_errors("query", collection):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT path, data FROM documents
                    WHERE collection = $1 AND data @> $2::jsonb
                    ORDER BY path
                    """,
                    collection.strip("/"),
                    dict(where or {}),
                )
        return [Document(row["path"], dict(row["data"])) for row in rows]

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        last_error: Exception | None = None
        for attempt in range(1, self.MAX_TRANSACTION_ATTEMPTS + 1):
            try:
                async with self.pool.acquire() as conn:
                    async with conn.transaction(isolation="repeatable_read"):
                        tx = _PgTransaction(conn)
                        result = await fn(tx)
                        await tx.commit_writes()
                return result
            except _CONFLICT_ERRORS as e:
                last_error = e
                logger.debug(
                    f"Transaction conflict ({type(e).__name__}), "
                    f"attempt {attempt}/{self.MAX_TRANSACTION_ATTEMPTS}"
                )
                await asyncio.sleep(0.05 * attempt)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
                raise DocumentStoreError(f"Transaction failed: {e}") from e
        raise TransactionConflict(
            f"Transaction gave up after {self.MAX_TRANSACTION_ATTEMPTS} attempts"
        ) from last_error

    # ==================== Change feeds ====================

    def subscribe(self, collection: str, on_change: ChangeHandler) -> Unsubscribe:
        """Deliver the current contents of *collection*, then every change to it."""
        collection = collection.strip("/")
        self._subscribers.setdefault(collection, []).append(on_change)
        if self._listen_task is None or self._listen_task.done():
            self._listen_task = asyncio.create_task(
                pg_listen(self.pool, NOTIFY_CHANNEL, self._on_notify)
            )
        self._spawn(self._deliver_snapshot(collection, on_change))

        def unsubscribe() -> None:
            handlers = self._subscribers.get(collection, [])
            if on_change in handlers:
                handlers.remove(on_change)
            if not handlers:
                self._subscribers.pop(collection, None)
            if not self._subscribers and self._listen_task is not None:
                self._listen_task.cancel()
                self._listen_task = None

        return unsubscribe

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver_snapshot(self, collection: str, on_change: ChangeHandler) -> None:
        try:
            docs = await self.query(collection)
            if docs:
                await on_change(docs, [])
        except Exception:
            logger.exception(f"Initial snapshot delivery for {collection} failed")

    async def _on_notify(self, payload: str) -> None:
        event = json.loads(payload)
        handlers = list(self._subscribers.get(event["collection"], ()))
        if not handlers:
            return

        path = event["path"]
        changed: list[Document] = []
        removed: list[Document] = []
        if event["op"] == "DELETE":
            removed.append(Document(path))
        else:
            doc = await self.get(path)
            if doc is None:
                removed.append(Document(path))
            else:
                changed.append(doc)

        for handler in handlers:
            await handler(changed, removed)

    async def close(self) -> None:
        """Stop the change feed and any in-flight deliveries."""
        self._subscribers.clear()
        pending = list(self._tasks)
        if self._listen_task is not None:
            pending.append(self._listen_task)
            self._listen_task = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
