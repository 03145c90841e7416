"""Claim a clip document and turn its video into a hosted GIF.

Both the clip-collection subscription and the highlight step of a
reconciliation pass feed :meth:`ClipPipeline.claim_and_convert`. The
transactional claim on the document is what guarantees a single
conversion; the in-process task map only avoids redundant claims from
this process.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

import httpx

from shared.documents import Document, Unsubscribe
from shared.models.clip import ClipDocument, ClipStatus
from shared.repositories.clip import ClipRepository
from shared.repositories.settings import GuildSettingsRepository
from tracker.clips import converter
from tracker.clips.config import GifConfig, StorageConfig
from tracker.clips.storage import SupabaseStorage

logger = logging.getLogger(__name__)

MISSING_VIDEO_MESSAGE = "Missing videoUrl for conversion."


class ClipPipeline:
    def __init__(
        self,
        clips: ClipRepository,
        guild_settings: GuildSettingsRepository,
        storage: SupabaseStorage,
        gif_defaults: GifConfig,
        storage_config: StorageConfig,
        *,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.clips = clips
        self.guild_settings = guild_settings
        self.storage = storage
        self.gif_defaults = gif_defaults
        self.storage_config = storage_config
        self._http = http or httpx.AsyncClient(timeout=60.0)
        self._inflight: dict[str, asyncio.Task[ClipDocument | None]] = {}
        self._subscriptions: dict[str, Unsubscribe] = {}

    async def close(self) -> None:
        for guild_id in list(self._subscriptions):
            self.stop_guild(guild_id)
        tasks = list(self._inflight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._http.aclose()

    # ==================== Entry point ====================

    async def claim_and_convert(self, guild_id: str, path: str) -> ClipDocument | None:
        """Convert the clip at *path* if this call wins the claim.

        Returns the completed document, or ``None`` when the clip was not
        claimable or the conversion failed. A caller that arrives while this
        process is already converting the same clip waits for that result.
        """
        return await asyncio.shield(self._task_for(guild_id, path))

    def _task_for(self, guild_id: str, path: str) -> asyncio.Task[ClipDocument | None]:
        task = self._inflight.get(path)
        if task is None:
            task = asyncio.create_task(
                self._claim_and_convert(guild_id, path), name=f"clip:{path}"
            )
            self._inflight[path] = task
            task.add_done_callback(lambda _: self._inflight.pop(path, None))
        return task

    async def _claim_and_convert(self, guild_id: str, path: str) -> ClipDocument | None:
        clip = await self.clips.claim(path)
        if clip is None:
            logger.debug(f"[{guild_id}] clip {path} not claimable")
            return None

        logger.info(f"[{guild_id}] converting clip {clip.id}")
        try:
            return await self._convert(guild_id, clip)
        except Exception as e:
            logger.warning(f"[{guild_id}] conversion of {clip.id} failed: {e}")
            try:
                await self.clips.mark_error(path, str(e) or type(e).__name__)
            except Exception:
                logger.exception(f"[{guild_id}] could not record failure of {clip.id}")
            return None

    async def _convert(self, guild_id: str, clip: ClipDocument) -> ClipDocument:
        gif_config = await self._gif_config(guild_id)
        destination = (
            clip.storage_destination
            or clip.gif_storage_path
            or self.storage_config.destination_for(guild_id, clip.id)
        )

        scratch = Path(tempfile.mkdtemp(prefix="clip-"))
        try:
            source = await converter.download(
                self._http, clip.video_url or "", scratch / "source.mp4"
            )
            duration = gif_config.clamp_duration(await converter.probe_duration(source))
            output = await converter.convert_to_gif(
                source, scratch / "output.gif", gif_config, duration
            )
            gif_url = await self.storage.upload(output, destination, "image/gif")
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        await self.clips.mark_complete(
            clip.path, gif_url=gif_url, storage_path=destination, duration_seconds=duration or 0.0
        )
        logger.info(f"[{guild_id}] clip {clip.id} converted")
        clip.gif_url = gif_url
        clip.gif_storage_path = destination
        clip.duration_seconds = duration
        clip.status = ClipStatus.COMPLETE
        return clip

    async def _gif_config(self, guild_id: str) -> GifConfig:
        try:
            overrides = await self.guild_settings.get_clip_gif_overrides(guild_id)
        except Exception as e:
            logger.warning(f"[{guild_id}] GIF overrides unavailable, using defaults: {e}")
            return self.gif_defaults
        return self.gif_defaults.with_overrides(overrides)

    # ==================== Subscription ====================

    async def on_clip_documents_changed(
        self, guild_id: str, changed: list[Document], removed: list[Document]
    ) -> None:
        """Start a conversion for each changed document that wants one."""
        for doc in changed:
            clip = ClipDocument.from_document(doc.path, doc.data)
            if clip.status is not ClipStatus.PENDING or clip.gif_url:
                continue
            if not clip.video_url:
                await self.clips.mark_error(doc.path, MISSING_VIDEO_MESSAGE)
                continue
            if doc.path not in self._inflight:
                self._task_for(guild_id, doc.path).add_done_callback(_log_failure)

    def start_guild(self, guild_id: str) -> bool:
        if guild_id in self._subscriptions:
            return False

        async def handler(changed: list[Document], removed: list[Document]) -> None:
            await self.on_clip_documents_changed(guild_id, changed, removed)

        self._subscriptions[guild_id] = self.clips.subscribe(guild_id, handler)
        logger.debug(f"[{guild_id}] watching {self.clips.collection(guild_id)}")
        return True

    def stop_guild(self, guild_id: str) -> None:
        unsubscribe = self._subscriptions.pop(guild_id, None)
        if unsubscribe is not None:
            unsubscribe()


def _log_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Clip task {task.get_name()} failed", exc_info=task.exception())
