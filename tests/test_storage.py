import json

import aiofiles
import httpx
import pytest

from tracker.clips.config import StorageConfig
from tracker.clips.storage import CACHE_CONTROL, SupabaseStorage
from tracker.engine.errors import StorageUploadError

BASE = "https://proj.supabase.co"


def storage_with(handler, **config) -> tuple[SupabaseStorage, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(record))
    cfg = StorageConfig(base_url=BASE, service_key="service-key", **config)
    return SupabaseStorage(cfg, http=http), requests


@pytest.fixture
def gif(tmp_path):
    path = tmp_path / "out.gif"
    path.write_bytes(b"GIF89a")
    return path


@pytest.mark.asyncio
async def test_upload_returns_public_url(gif):
    storage, requests = storage_with(lambda r: httpx.Response(200, json={"Key": "x"}))

    url = await storage.upload(gif, "converted-clips/g1/abc.gif")

    assert url == f"{BASE}/storage/v1/object/public/clips/converted-clips/g1/abc.gif"
    upload = requests[0]
    assert upload.url == f"{BASE}/storage/v1/object/clips/converted-clips/g1/abc.gif"
    assert upload.headers["Authorization"] == "Bearer service-key"
    assert upload.headers["x-upsert"] == "true"
    assert upload.headers["Cache-Control"] == CACHE_CONTROL
    assert upload.headers["Content-Type"] == "image/gif"
    assert upload.content == b"GIF89a"
    await storage.close()


@pytest.mark.asyncio
async def test_public_base_url_template(gif):
    storage, _ = storage_with(
        lambda r: httpx.Response(200), public_base_url="https://cdn.example/gif?p={path}"
    )

    url = await storage.upload(gif, "a/b.gif")

    assert url == "https://cdn.example/gif?p=a%2Fb.gif"
    await storage.close()


@pytest.mark.asyncio
async def test_private_bucket_gets_signed_url(gif):
    def handler(request: httpx.Request) -> httpx.Response:
        if "/object/sign/" in request.url.path:
            assert json.loads(request.content) == {"expiresIn": 60}
            return httpx.Response(200, json={"signedURL": "/object/sign/clips/a.gif?token=t"})
        return httpx.Response(200)

    storage, requests = storage_with(handler, make_public=False, signed_url_ttl_seconds=60)

    url = await storage.upload(gif, "a.gif")

    assert url == f"{BASE}/storage/v1/object/sign/clips/a.gif?token=t"
    assert len(requests) == 2
    await storage.close()


@pytest.mark.asyncio
async def test_rejected_upload_raises(gif):
    storage, _ = storage_with(lambda r: httpx.Response(400, text="Bucket not found"))

    with pytest.raises(StorageUploadError, match="400"):
        await storage.upload(gif, "a.gif")
    await storage.close()


def test_missing_credentials_are_rejected():
    with pytest.raises(ValueError):
        SupabaseStorage(StorageConfig(base_url="", service_key=""))


@pytest.mark.asyncio
async def test_upload_reads_file_asynchronously(gif, monkeypatch):
    opened = []
    real_open = aiofiles.open

    def recording_open(path, mode="r", *args, **kwargs):
        opened.append((path, mode))
        return real_open(path, mode, *args, **kwargs)

    monkeypatch.setattr(aiofiles, "open", recording_open)
    storage, requests = storage_with(lambda r: httpx.Response(200, json={"Key": "x"}))

    await storage.upload(gif, "converted-clips/g1/abc.gif")

    assert opened == [(gif, "rb")]
    assert requests[0].content == b"GIF89a"
    await storage.close()
