import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.documents import DELETE_FIELD, Document, DocumentStoreError
from shared.pg_documents import PostgresDocumentStore, _PgTransaction, _split_fields, _write


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        pool = self

        class _Acquire:
            async def __aenter__(self):
                return pool.conn

            async def __aexit__(self, *exc):
                return False

        return _Acquire()


def test_split_fields_separates_deletes():
    values, removed = _split_fields({"a": 1, "b": DELETE_FIELD})

    assert values == {"a": 1}
    assert removed == ["b"]


@pytest.mark.asyncio
async def test_merge_write_concatenates_and_removes_keys():
    conn = AsyncMock()

    await _write(conn, "communities/1/clips/c1", {"a": 1, "b": DELETE_FIELD}, merge=True)

    sql, *params = conn.execute.call_args.args
    assert "documents.data || EXCLUDED.data" in sql
    assert params == ["communities/1/clips/c1", "communities/1/clips", "c1", {"a": 1}, ["b"]]


@pytest.mark.asyncio
async def test_plain_write_replaces_data():
    conn = AsyncMock()

    await _write(conn, "communities/1/clips/c1", {"a": 1, "b": DELETE_FIELD}, merge=False)

    sql, *params = conn.execute.call_args.args
    assert "documents.data ||" not in sql
    assert params[-1] == []


@pytest.mark.asyncio
async def test_transaction_reads_must_precede_writes():
    tx = _PgTransaction(AsyncMock())
    tx.set("a/b", {"x": 1})

    with pytest.raises(DocumentStoreError):
        await tx.get("a/b")


@pytest.mark.asyncio
async def test_update_of_missing_document_fails_commit():
    conn = AsyncMock()
    conn.execute.return_value = "UPDATE 0"
    tx = _PgTransaction(conn)
    tx.update("a/b", {"x": 1})

    with pytest.raises(DocumentStoreError):
        await tx.commit_writes()


@pytest.mark.asyncio
async def test_notifications_reach_collection_subscribers():
    conn = AsyncMock()
    conn.fetchrow.return_value = {"data": {"processingStatus": "pending"}}
    store = PostgresDocumentStore(FakePool(conn))
    handler = AsyncMock()
    other = AsyncMock()
    store._subscribers = {"communities/1/clips": [handler], "elsewhere": [other]}

    await store._on_notify(
        json.dumps(
            {"path": "communities/1/clips/c1", "collection": "communities/1/clips", "op": "INSERT"}
        )
    )
    await store._on_notify(
        json.dumps(
            {"path": "communities/1/clips/c2", "collection": "communities/1/clips", "op": "DELETE"}
        )
    )

    first, second = handler.await_args_list
    assert first.args == (
        [Document("communities/1/clips/c1", {"processingStatus": "pending"})],
        [],
    )
    assert second.args == ([], [Document("communities/1/clips/c2")])
    other.assert_not_awaited()


@pytest.mark.asyncio
async def test_database_errors_become_store_errors():
    conn = AsyncMock()
    conn.fetchrow.side_effect = OSError("connection reset")
    store = PostgresDocumentStore(FakePool(conn))

    with pytest.raises(DocumentStoreError):
        await store.get("a/b")
