"""Repository for clip documents and their conversion state."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from shared.documents import (
    DELETE_FIELD,
    ChangeHandler,
    DocumentStore,
    Transaction,
    Unsubscribe,
)
from shared.models.clip import ClipDocument, ClipStatus

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION_TEMPLATE = "communities/{guildId}/clips"


def _now() -> str:
    return datetime.now(UTC).isoformat()


class ClipRepository:
    """Clip documents live in a per-guild collection named by a template.

    A template without ``{guildId}`` names one collection shared by every
    guild.
    """

    def __init__(
        self, store: DocumentStore, collection_template: str = DEFAULT_COLLECTION_TEMPLATE
    ) -> None:
        self.store = store
        self.collection_template = collection_template or DEFAULT_COLLECTION_TEMPLATE

    def collection(self, guild_id: str) -> str:
        return self.collection_template.replace("{guildId}", guild_id).strip("/")

    def path(self, guild_id: str, clip_id: str) -> str:
        return f"{self.collection(guild_id)}/{clip_id}"

    async def get(self, path: str) -> ClipDocument | None:
        doc = await self.store.get(path)
        return ClipDocument.from_document(path, doc.data) if doc else None

    async def ensure_pending(
        self,
        guild_id: str,
        clip_id: str,
        *,
        video_url: str,
        broadcaster_id: str,
        clip_url: str | None = None,
    ) -> ClipDocument:
        """Return the clip document, creating it as ``pending`` when absent."""
        path = self.path(guild_id, clip_id)

        async def create_if_missing(tx: Transaction) -> ClipDocument:
            existing = await tx.get(path)
            if existing is not None:
                return ClipDocument.from_document(path, existing.data)
            fields = {
                "videoUrl": video_url,
                "broadcasterId": broadcaster_id,
                "clipUrl": clip_url,
                "processingStatus": ClipStatus.PENDING.value,
                "createdAt": _now(),
            }
            tx.set(path, fields)
            return ClipDocument.from_document(path, fields)

        return await self.store.run_transaction(create_if_missing)

    async def claim(self, path: str) -> ClipDocument | None:
        """Atomically move a claimable clip to ``processing``.

        Returns the snapshot read inside the transaction, or ``None`` when
        the document is missing, has no video, is already converted, or is
        held by another run.
        """

        async def claim_in_tx(tx: Transaction) -> ClipDocument | None:
            doc = await tx.get(path)
            if doc is None:
                return None
            clip = ClipDocument.from_document(path, doc.data)
            if not clip.needs_conversion:
                return None
            tx.update(
                path,
                {
                    "processingStatus": ClipStatus.PROCESSING.value,
                    "processingStartedAt": _now(),
                },
            )
            return clip

        return await self.store.run_transaction(claim_in_tx)

    async def mark_complete(
        self, path: str, *, gif_url: str, storage_path: str, duration_seconds: float
    ) -> None:
        await self.store.set(
            path,
            {
                "gifUrl": gif_url,
                "gifStoragePath": storage_path,
                "durationSeconds": duration_seconds,
                "processingStatus": ClipStatus.COMPLETE.value,
                "processedAt": _now(),
                "errorMessage": DELETE_FIELD,
                "errorAt": DELETE_FIELD,
            },
            merge=True,
        )

    async def mark_error(self, path: str, message: str) -> None:
        fields: dict[str, Any] = {
            "processingStatus": ClipStatus.ERROR.value,
            "errorMessage": message or "Unknown conversion error",
            "errorAt": _now(),
        }
        await self.store.set(path, fields, merge=True)

    def subscribe(self, guild_id: str, on_change: ChangeHandler) -> Unsubscribe:
        return self.store.subscribe(self.collection(guild_id), on_change)
