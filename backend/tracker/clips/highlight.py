"""Produce the clip message for a tracker's highlighted streamer."""

from __future__ import annotations

import logging

from shared.models.clip import ClipStatus
from shared.models.roster import LiveEntity
from shared.repositories.clip import ClipRepository
from tracker.clips.converter import derive_download_url
from tracker.clips.pipeline import ClipPipeline
from tracker.engine.cards import MessageContent, clip_message
from tracker.engine.errors import ClipConversionError
from tracker.engine.live_source import ClipSummary, LiveSource

logger = logging.getLogger(__name__)

RECENT_CLIP_LIMIT = 5


def share_url(clip: ClipSummary) -> str:
    return clip.url or f"https://clips.twitch.tv/{clip.id}"


class ClipHighlighter:
    """Clip provider for the synchronizer.

    Looks at the streamer's recent clips, reuses a finished GIF when one
    exists and otherwise converts the newest usable clip inline.
    """

    def __init__(
        self,
        live_source: LiveSource,
        clips: ClipRepository,
        pipeline: ClipPipeline,
        *,
        limit: int = RECENT_CLIP_LIMIT,
    ) -> None:
        self.live_source = live_source
        self.clips = clips
        self.pipeline = pipeline
        self.limit = limit

    async def __call__(self, guild_id: str, entity: LiveEntity) -> MessageContent | None:
        candidates: list[tuple[ClipSummary, str]] = []
        for clip in await self.live_source.get_recent_clips(entity.twitch_id, self.limit):
            if not clip.id:
                continue
            try:
                candidates.append((clip, derive_download_url(clip.thumbnail_url)))
            except ClipConversionError:
                logger.debug(f"[{guild_id}] skipping clip {clip.id}: no video URL")
        if not candidates:
            return None

        chosen: tuple[ClipSummary, str] | None = None
        for clip, video_url in candidates:
            existing = await self.clips.get(self.clips.path(guild_id, clip.id))
            if existing is not None and existing.gif_url:
                return clip_message(share_url(clip), existing.gif_url, clip.title)
            if existing is not None and existing.status is ClipStatus.ERROR:
                continue
            if chosen is None:
                chosen = (clip, video_url)
        if chosen is None:
            return None

        clip, video_url = chosen
        doc = await self.clips.ensure_pending(
            guild_id,
            clip.id,
            video_url=video_url,
            broadcaster_id=entity.twitch_id,
            clip_url=share_url(clip),
        )
        converted = await self.pipeline.claim_and_convert(guild_id, doc.path)
        if converted is None or not converted.gif_url:
            return None
        return clip_message(share_url(clip), converted.gif_url, clip.title)
