import asyncio

import pytest

from shared.cache import MISSING, AsyncTTLCache, cached
from shared.documents import (
    DELETE_FIELD,
    DocumentStoreError,
    apply_fields,
    collection_of,
    matches,
)


def test_collection_of_document_path():
    assert collection_of("communities/1/settings/vipLiveChannel") == "communities/1/settings"


@pytest.mark.parametrize("path", ["communities", "communities/1/settings", ""])
def test_collection_of_rejects_collection_paths(path):
    with pytest.raises(ValueError):
        collection_of(path)


def test_merge_keeps_untouched_fields_and_deletes_sentinels():
    current = {"a": 1, "b": 2, "c": 3}

    result = apply_fields(current, {"b": 20, "c": DELETE_FIELD}, merge=True)

    assert result == {"a": 1, "b": 20}
    assert current == {"a": 1, "b": 2, "c": 3}


def test_merge_replaces_nested_maps_whole():
    result = apply_fields(
        {"slots": {"header": "1", "footer": "2"}}, {"slots": {"header": "9"}}, merge=True
    )

    assert result == {"slots": {"header": "9"}}


def test_overwrite_drops_unlisted_fields():
    assert apply_fields({"a": 1}, {"b": 2}, merge=False) == {"b": 2}


def test_matches_on_top_level_equality():
    assert matches({"isVip": True, "x": 1}, {"isVip": True})
    assert not matches({"isVip": False}, {"isVip": True})
    assert matches({"anything": 1}, None)


# ==================== cache ====================


class Reader:
    def __init__(self, cache, failures=0):
        self.calls = 0
        self.failures = failures
        self.value = {"clipGifWidth": 320}

        @cached(
            cache,
            key_func=lambda guild_id: f"k:{guild_id}",
            retry=2,
            retry_on=(DocumentStoreError,),
        )
        async def read(guild_id):
            self.calls += 1
            if self.failures:
                self.failures -= 1
                raise DocumentStoreError("db down")
            return self.value

        self.read = read


@pytest.fixture
def no_backoff(monkeypatch):
    real_sleep = asyncio.sleep

    async def fast_sleep(seconds):
        await real_sleep(0)

    monkeypatch.setattr("shared.cache.asyncio.sleep", fast_sleep)


@pytest.mark.asyncio
async def test_cached_reads_hit_once():
    reader = Reader(AsyncTTLCache(ttl=60))

    await reader.read("g1")
    await reader.read("g1")

    assert reader.calls == 1


@pytest.mark.asyncio
async def test_cached_retries_then_succeeds(no_backoff):
    reader = Reader(AsyncTTLCache(ttl=60), failures=1)

    assert await reader.read("g1") == {"clipGifWidth": 320}
    assert reader.calls == 2


@pytest.mark.asyncio
async def test_cached_serves_last_good_when_store_is_down(no_backoff):
    cache = AsyncTTLCache(ttl=60)
    reader = Reader(cache)
    await reader.read("g1")
    cache._fresh.clear()
    reader.failures = 5

    assert await reader.read("g1") == {"clipGifWidth": 320}


@pytest.mark.asyncio
async def test_cached_raises_without_last_good(no_backoff):
    reader = Reader(AsyncTTLCache(ttl=60), failures=5)

    with pytest.raises(DocumentStoreError):
        await reader.read("g1")


def test_invalidate_forgets_both_stores():
    cache = AsyncTTLCache()
    cache.set("clip_gif:1", {"a": 1})
    cache.set("clip_gif:2", {"a": 2})

    cache.invalidate("clip_gif:1")
    cache.invalidate_prefix("clip_gif:")

    assert cache.get("clip_gif:2") is MISSING
    assert cache.get_last_good("clip_gif:1") is MISSING
    assert len(cache) == 0
