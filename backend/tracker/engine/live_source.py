"""Live status and recent clips, and joining them with roster members."""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from shared.models.roster import LiveEntity, RosterMember
from shared.twitch_api import TwitchAPIClient, TwitchAPIError
from tracker.engine.errors import LiveSourceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveStatus:
    twitch_id: str
    started_at: datetime
    login: str = ""
    display_name: str = ""
    viewer_count: int = 0
    title: str = ""
    game_name: str = ""


@dataclass(frozen=True)
class ClipSummary:
    id: str
    url: str
    thumbnail_url: str
    duration_seconds: float | None = None
    title: str | None = None


class LiveSource(abc.ABC):
    """Upstream view of who is broadcasting."""

    @abc.abstractmethod
    async def get_live_status(self, twitch_ids: set[str]) -> list[LiveStatus]:
        """Statuses of the ids currently live; offline ids are simply absent."""

    @abc.abstractmethod
    async def get_recent_clips(self, twitch_id: str, limit: int = 5) -> list[ClipSummary]: ...


def _parse_started_at(value: str | None) -> datetime:
    if not value:
        return datetime.now(UTC)
    started = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return started if started.tzinfo else started.replace(tzinfo=UTC)


class TwitchLiveSource(LiveSource):
    """:class:`LiveSource` backed by the Helix API."""

    def __init__(self, api: TwitchAPIClient) -> None:
        self.api = api

    async def get_live_status(self, twitch_ids: set[str]) -> list[LiveStatus]:
        if not twitch_ids:
            return []
        try:
            streams = await self.api.get_streams(sorted(twitch_ids))
        except TwitchAPIError as e:
            raise LiveSourceError(f"Stream lookup failed: {e}") from e

        statuses = []
        for stream in streams:
            if stream.get("type", "live") != "live":
                continue
            statuses.append(
                LiveStatus(
                    twitch_id=str(stream["user_id"]),
                    started_at=_parse_started_at(stream.get("started_at")),
                    login=stream.get("user_login") or "",
                    display_name=stream.get("user_name") or "",
                    viewer_count=int(stream.get("viewer_count") or 0),
                    title=stream.get("title") or "",
                    game_name=stream.get("game_name") or "",
                )
            )
        return statuses

    async def get_recent_clips(self, twitch_id: str, limit: int = 5) -> list[ClipSummary]:
        try:
            clips = await self.api.get_clips(twitch_id, limit)
        except TwitchAPIError as e:
            raise LiveSourceError(f"Clip lookup for {twitch_id} failed: {e}") from e
        return [
            ClipSummary(
                id=str(clip.get("id") or ""),
                url=clip.get("url") or "",
                thumbnail_url=clip.get("thumbnail_url") or "",
                duration_seconds=clip.get("duration"),
                title=clip.get("title"),
            )
            for clip in clips
        ]


def build_live_entities(
    members: Iterable[RosterMember],
    statuses: Sequence[LiveStatus],
    *,
    claimant_names: dict[str, str] | None = None,
) -> list[LiveEntity]:
    """Join live statuses with roster data.

    Ids without a member document still produce an entity (Raid Train
    claimants may not be registered); their names come from the stream.
    """
    by_id = {m.twitch_id: m for m in members}
    names = claimant_names or {}
    entities: dict[str, LiveEntity] = {}
    for status in statuses:
        if status.twitch_id in entities:
            continue
        member = by_id.get(status.twitch_id)
        display_name = (
            (member.display_name if member else "")
            or status.display_name
            or names.get(status.twitch_id, "")
            or status.login
        )
        entities[status.twitch_id] = LiveEntity(
            twitch_id=status.twitch_id,
            display_name=display_name,
            started_at=status.started_at,
            login=(member.login if member else "") or status.login,
            avatar_url=member.avatar_url if member else None,
            game_name=status.game_name,
            viewer_count=status.viewer_count,
            title=status.title,
            custom_message=member.custom_message if member else None,
            points=member.points if member else 0,
        )
    return list(entities.values())
