"""Resolved conversion and storage options for one clip operation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from tracker.config import TrackerSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GifConfig:
    """Output shape of a GIF."""

    width: int = 480
    fps: int = 15
    loop: int = 0
    max_duration_seconds: float | None = None

    @classmethod
    def from_settings(cls, settings: TrackerSettings) -> GifConfig:
        return cls(
            width=settings.gif_width,
            fps=settings.gif_fps,
            loop=settings.gif_loop,
            max_duration_seconds=settings.gif_max_duration_seconds,
        )

    def with_overrides(self, overrides: Mapping[str, Any]) -> GifConfig:
        """Apply guild ``clipGif*`` overrides; invalid values keep the default."""
        return replace(
            self,
            width=_positive_int(overrides.get("clipGifWidth"), self.width),
            fps=_positive_int(overrides.get("clipGifFps"), self.fps),
            loop=_non_negative_int(overrides.get("clipGifLoop"), self.loop),
            max_duration_seconds=_positive_float(
                overrides.get("clipGifMaxDurationSeconds"), self.max_duration_seconds
            ),
        )

    def clamp_duration(self, source_seconds: float | None) -> float | None:
        """Length to transcode: the source length capped by the configured maximum."""
        if self.max_duration_seconds is None:
            return source_seconds
        if not source_seconds or source_seconds <= 0:
            return self.max_duration_seconds
        return min(source_seconds, self.max_duration_seconds)


@dataclass(frozen=True)
class StorageConfig:
    """Where converted GIFs go and how their URLs are formed."""

    base_url: str
    service_key: str
    bucket: str = "clips"
    folder: str = "converted-clips"
    make_public: bool = True
    public_base_url: str = ""
    signed_url_ttl_seconds: int = 7 * 24 * 3600

    @classmethod
    def from_settings(cls, settings: TrackerSettings) -> StorageConfig:
        return cls(
            base_url=settings.storage_url,
            service_key=settings.storage_service_key,
            bucket=settings.gif_storage_bucket,
            folder=settings.gif_storage_folder.strip("/"),
            make_public=settings.gif_storage_make_public,
            public_base_url=settings.gif_public_base_url,
            signed_url_ttl_seconds=settings.gif_signed_url_ttl_seconds,
        )

    def destination_for(self, guild_id: str, clip_id: str) -> str:
        return f"{self.folder}/{guild_id}/{clip_id}.gif"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _positive_int(value: Any, default: int) -> int:
    if _is_number(value) and value > 0 and float(value).is_integer():
        return int(value)
    if value is not None:
        logger.debug(f"Ignoring invalid GIF override {value!r}")
    return default


def _non_negative_int(value: Any, default: int) -> int:
    if _is_number(value) and value >= 0 and float(value).is_integer():
        return int(value)
    return default


def _positive_float(value: Any, default: float | None) -> float | None:
    if _is_number(value) and value > 0:
        return float(value)
    return default
