"""Repository for per-guild settings documents.

Tracker state is read fresh on every pass: the reconciliation loop owns it
and must never act on a stale copy. Clip GIF overrides change rarely and
are cached briefly.
"""

from __future__ import annotations

import logging
from typing import Any

from shared.cache import AsyncTTLCache, cached
from shared.documents import DocumentStore, DocumentStoreError
from shared.models.roster import PostedMessageState, TrackerType

logger = logging.getLogger(__name__)

CLIP_GIF_SETTINGS_DOC = "clipGif"

_clip_gif_cache = AsyncTTLCache(maxsize=256, ttl=300)


def settings_path(guild_id: str, doc_id: str) -> str:
    return f"communities/{guild_id}/settings/{doc_id}"


class TrackerStateRepository:
    """Load, persist and delete the posted-message state of each tracker."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def load(self, guild_id: str, tracker: TrackerType) -> PostedMessageState | None:
        """Return the stored state, or ``None`` when the tracker is not configured."""
        doc = await self.store.get(settings_path(guild_id, tracker.settings_doc))
        if doc is None:
            return None
        state = PostedMessageState.from_document(doc.data)
        return state if state.channel_id else None

    async def save(self, guild_id: str, tracker: TrackerType, state: PostedMessageState) -> None:
        """Merge the state into the settings document.

        The id maps are written as whole values, so entries dropped from them
        disappear from storage too.
        """
        await self.store.set(
            settings_path(guild_id, tracker.settings_doc), state.to_fields(), merge=True
        )

    async def delete(self, guild_id: str, tracker: TrackerType) -> None:
        await self.store.delete(settings_path(guild_id, tracker.settings_doc))


class GuildSettingsRepository:
    """Read-only access to guild-level overrides."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    @cached(
        cache=_clip_gif_cache,
        key_func=lambda self, guild_id: f"clip_gif:{guild_id}",
        retry_on=(DocumentStoreError,),
    )
    async def get_clip_gif_overrides(self, guild_id: str) -> dict[str, Any]:
        """Raw ``clipGif*`` fields for a guild; empty when none are set."""
        doc = await self.store.get(settings_path(guild_id, CLIP_GIF_SETTINGS_DOC))
        if doc is None:
            return {}
        return {k: v for k, v in doc.data.items() if k.startswith("clipGif")}

    @staticmethod
    def invalidate(guild_id: str) -> None:
        _clip_gif_cache.invalidate(f"clip_gif:{guild_id}")
