"""Download a clip MP4 and transcode it to GIF with ffmpeg."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

import aiofiles
import httpx

from tracker.clips.config import GifConfig
from tracker.engine.errors import ClipConversionError

logger = logging.getLogger(__name__)

FFMPEG_BINARY = "ffmpeg"
FFPROBE_BINARY = "ffprobe"

_PREVIEW_SUFFIX = re.compile(r"-preview-.*\.(jpg|jpeg|png)$", re.IGNORECASE)
_DOWNLOAD_CHUNK = 64 * 1024


def derive_download_url(thumbnail_url: str) -> str:
    """Turn a Helix clip thumbnail URL into the URL of its MP4."""
    base = (thumbnail_url or "").split("?", 1)[0]
    video_url = _PREVIEW_SUFFIX.sub(".mp4", base)
    if not video_url.endswith(".mp4"):
        raise ClipConversionError(f"Cannot derive video URL from {thumbnail_url!r}")
    return video_url


async def download(http: httpx.AsyncClient, url: str, dest: Path) -> Path:
    """Stream *url* into *dest*."""
    try:
        async with http.stream("GET", url, follow_redirects=True) as response:
            if response.status_code != 200:
                raise ClipConversionError(f"Failed to download clip: {response.status_code}")
            async with aiofiles.open(dest, "wb") as fh:
                async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK):
                    await fh.write(chunk)
    except httpx.HTTPError as e:
        raise ClipConversionError(f"Failed to download clip: {e}") from e
    return dest


async def _run(command: list[str]) -> bytes:
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ClipConversionError(f"{command[0]} binary not available") from e

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        tail = stderr.decode(errors="ignore")[-400:]
        logger.error(f"{command[0]} exited with {process.returncode}: {tail}")
        raise ClipConversionError(f"{command[0]} returned non-zero exit code {process.returncode}")
    return stdout


async def probe_duration(path: Path) -> float | None:
    """Container duration in seconds, or ``None`` when ffprobe cannot tell."""
    output = await _run(
        [
            FFPROBE_BINARY,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=nw=1:nk=1",
            str(path),
        ]
    )
    try:
        duration = float(output.decode().strip())
    except ValueError:
        return None
    return duration if duration > 0 else None


def build_gif_command(
    source: Path, output: Path, config: GifConfig, duration: float | None = None
) -> list[str]:
    command = [FFMPEG_BINARY, "-y", "-i", str(source)]
    if duration is not None:
        command += ["-t", f"{duration:.3f}"]
    command += [
        "-vf",
        f"fps={config.fps},scale={config.width}:-1:flags=lanczos",
        "-loop",
        str(config.loop),
        "-an",
        str(output),
    ]
    return command


async def convert_to_gif(
    source: Path, output: Path, config: GifConfig, duration: float | None = None
) -> Path:
    await _run(build_gif_command(source, output, config, duration))
    if not output.exists() or output.stat().st_size == 0:
        raise ClipConversionError("ffmpeg produced no output")
    return output
