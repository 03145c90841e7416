"""Data model for clip documents awaiting GIF conversion."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ClipStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ClipDocument:
    """A source clip and the state of its conversion."""

    path: str
    video_url: str | None = None
    gif_url: str | None = None
    gif_storage_path: str | None = None
    storage_destination: str | None = None
    status: ClipStatus = ClipStatus.PENDING
    error_message: str | None = None
    duration_seconds: float | None = None
    broadcaster_id: str | None = None
    clip_url: str | None = None

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def needs_conversion(self) -> bool:
        """True when a claim could succeed, judged from this snapshot only.

        ``error`` is terminal: a failed clip is only retried after its
        status is reset to ``pending`` outside the bot.
        """
        return bool(self.video_url) and not self.gif_url and self.status is ClipStatus.PENDING

    @classmethod
    def from_document(cls, path: str, data: dict[str, Any]) -> ClipDocument:
        try:
            status = ClipStatus(data.get("processingStatus") or ClipStatus.PENDING)
        except ValueError:
            status = ClipStatus.PENDING
        duration = data.get("durationSeconds")
        return cls(
            path=path,
            video_url=data.get("videoUrl") or None,
            gif_url=data.get("gifUrl") or None,
            gif_storage_path=data.get("gifStoragePath") or None,
            storage_destination=data.get("storageDestination") or None,
            status=status,
            error_message=data.get("errorMessage") or None,
            duration_seconds=float(duration) if isinstance(duration, (int, float)) else None,
            broadcaster_id=data.get("broadcasterId") or None,
            clip_url=data.get("clipUrl") or None,
        )
