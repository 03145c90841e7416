import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from fakes import InMemoryDocumentStore
from shared.models.clip import ClipStatus
from shared.repositories.clip import ClipRepository
from shared.repositories.settings import GuildSettingsRepository, _clip_gif_cache, settings_path
from tracker.clips import converter
from tracker.clips.config import GifConfig, StorageConfig
from tracker.clips.pipeline import MISSING_VIDEO_MESSAGE, ClipPipeline
from tracker.engine.errors import ClipConversionError

GUILD = "g1"
VIDEO = "https://clips-media.example/abc.mp4"


class FakeStorage:
    def __init__(self):
        self.uploads: list[tuple[Path, str, str]] = []

    async def upload(self, local_path, destination, content_type="image/gif"):
        assert local_path.read_bytes().startswith(b"GIF")
        self.uploads.append((local_path, destination, content_type))
        return f"https://cdn.example/{destination}"


class FakeConverter:
    def __init__(self, probe_seconds=30.0, fail_download=None, download_delay=0.0):
        self.probe_seconds = probe_seconds
        self.fail_download = fail_download
        self.download_delay = download_delay
        self.downloads: list[str] = []
        self.scratch_dirs: list[Path] = []
        self.conversions: list[tuple[GifConfig, float | None]] = []

    async def download(self, http, url, dest):
        self.downloads.append(url)
        self.scratch_dirs.append(dest.parent)
        await asyncio.sleep(self.download_delay)
        if self.fail_download:
            raise ClipConversionError(self.fail_download)
        dest.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return dest

    async def probe_duration(self, path):
        return self.probe_seconds

    async def convert_to_gif(self, source, output, config, duration=None):
        self.conversions.append((config, duration))
        output.write_bytes(b"GIF89a")
        return output


@pytest.fixture(autouse=True)
def clear_override_cache():
    _clip_gif_cache.clear()
    yield
    _clip_gif_cache.clear()


@pytest.fixture
def fake_converter(monkeypatch) -> FakeConverter:
    fake = FakeConverter()
    monkeypatch.setattr(converter, "download", fake.download)
    monkeypatch.setattr(converter, "probe_duration", fake.probe_duration)
    monkeypatch.setattr(converter, "convert_to_gif", fake.convert_to_gif)
    return fake


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def clips(store) -> ClipRepository:
    return ClipRepository(store)


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


def make_pipeline(store, clips, storage, gif=None) -> ClipPipeline:
    return ClipPipeline(
        clips,
        GuildSettingsRepository(store),
        storage,
        gif or GifConfig(),
        StorageConfig(base_url="https://storage.example", service_key="key"),
        http=MagicMock(),
    )


def pending(store, clips, clip_id="abc", **extra) -> str:
    path = clips.path(GUILD, clip_id)
    store.put(path, {"videoUrl": VIDEO, "processingStatus": "pending", **extra})
    return path


@pytest.mark.asyncio
async def test_conversion_completes_document(store, clips, storage, fake_converter):
    path = pending(store, clips)

    result = await make_pipeline(store, clips, storage).claim_and_convert(GUILD, path)

    doc = store.data(path)
    assert result.gif_url == "https://cdn.example/converted-clips/g1/abc.gif"
    assert doc["processingStatus"] == "complete"
    assert doc["gifUrl"] == result.gif_url
    assert doc["gifStoragePath"] == "converted-clips/g1/abc.gif"
    assert "errorMessage" not in doc
    assert storage.uploads[0][2] == "image/gif"


@pytest.mark.asyncio
async def test_concurrent_claims_convert_exactly_once(store, clips, storage, fake_converter):
    path = pending(store, clips)
    first = make_pipeline(store, clips, storage)
    second = make_pipeline(store, clips, storage)

    results = await asyncio.gather(
        first.claim_and_convert(GUILD, path), second.claim_and_convert(GUILD, path)
    )

    assert len(fake_converter.downloads) == 1
    assert len(storage.uploads) == 1
    assert sum(r is not None for r in results) == 1
    assert store.data(path)["processingStatus"] == "complete"


@pytest.mark.asyncio
async def test_same_process_callers_share_one_run(store, clips, storage, fake_converter):
    path = pending(store, clips)
    pipeline = make_pipeline(store, clips, storage)

    a, b = await asyncio.gather(
        pipeline.claim_and_convert(GUILD, path), pipeline.claim_and_convert(GUILD, path)
    )

    assert a is b
    assert len(fake_converter.downloads) == 1


@pytest.mark.asyncio
async def test_download_failure_marks_error(store, clips, storage, fake_converter):
    fake_converter.fail_download = "Failed to download clip: 404"
    path = pending(store, clips)

    result = await make_pipeline(store, clips, storage).claim_and_convert(GUILD, path)

    doc = store.data(path)
    assert result is None
    assert doc["processingStatus"] == "error"
    assert doc["errorMessage"] == "Failed to download clip: 404"
    assert "gifUrl" not in doc
    assert storage.uploads == []
    assert all(not d.exists() for d in fake_converter.scratch_dirs)


@pytest.mark.asyncio
async def test_scratch_directory_is_removed_after_success(store, clips, storage, fake_converter):
    path = pending(store, clips)

    await make_pipeline(store, clips, storage).claim_and_convert(GUILD, path)

    assert fake_converter.scratch_dirs
    assert all(not d.exists() for d in fake_converter.scratch_dirs)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields",
    [
        {"processingStatus": "complete", "gifUrl": "https://cdn.example/x.gif"},
        {"processingStatus": "processing"},
        {"processingStatus": "error", "errorMessage": "boom"},
    ],
)
async def test_unclaimable_documents_are_left_alone(
    store, clips, storage, fake_converter, fields
):
    path = pending(store, clips, **fields)
    before = dict(store.data(path))

    result = await make_pipeline(store, clips, storage).claim_and_convert(GUILD, path)

    assert result is None
    assert fake_converter.downloads == []
    assert store.data(path) == before


@pytest.mark.asyncio
async def test_explicit_storage_destination_is_used(store, clips, storage, fake_converter):
    path = pending(store, clips, storageDestination="custom/place.gif")

    await make_pipeline(store, clips, storage).claim_and_convert(GUILD, path)

    assert storage.uploads[0][1] == "custom/place.gif"
    assert store.data(path)["gifStoragePath"] == "custom/place.gif"


@pytest.mark.asyncio
async def test_guild_overrides_and_duration_clamp(store, clips, storage, fake_converter):
    store.put(
        settings_path(GUILD, "clipGif"),
        {"clipGifWidth": 320, "clipGifFps": -3, "clipGifMaxDurationSeconds": 8},
    )
    path = pending(store, clips)

    await make_pipeline(store, clips, storage).claim_and_convert(GUILD, path)

    config, duration = fake_converter.conversions[0]
    assert config.width == 320
    assert config.fps == GifConfig().fps
    assert duration == 8
    assert store.data(path)["durationSeconds"] == 8


@pytest.mark.asyncio
async def test_subscription_converts_new_pending_documents(
    store, clips, storage, fake_converter
):
    pipeline = make_pipeline(store, clips, storage)
    assert pipeline.start_guild(GUILD) is True
    assert pipeline.start_guild(GUILD) is False

    path = clips.path(GUILD, "fresh")
    await store.set(path, {"videoUrl": VIDEO, "processingStatus": "pending"})
    await store.drain()

    assert store.data(path)["processingStatus"] == "complete"
    pipeline.stop_guild(GUILD)


@pytest.mark.asyncio
async def test_subscription_marks_documents_without_video(store, clips, storage, fake_converter):
    pipeline = make_pipeline(store, clips, storage)
    pipeline.start_guild(GUILD)

    path = clips.path(GUILD, "novideo")
    await store.set(path, {"processingStatus": "pending"})
    await store.drain()

    assert store.data(path)["processingStatus"] == "error"
    assert store.data(path)["errorMessage"] == MISSING_VIDEO_MESSAGE
    assert fake_converter.downloads == []


@pytest.mark.asyncio
async def test_subscription_picks_up_existing_backlog(store, clips, storage, fake_converter):
    path = pending(store, clips, clip_id="backlog")
    pipeline = make_pipeline(store, clips, storage)

    pipeline.start_guild(GUILD)
    await store.drain()

    assert store.data(path)["processingStatus"] == "complete"
