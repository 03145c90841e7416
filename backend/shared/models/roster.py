"""Data models for tracker rosters and the messages posted for them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

EMERGENCY_CLAIMANT = "emergency"


class TrackerType(str, Enum):
    """The four roster categories a guild can attach to a channel."""

    VIP = "vip"
    COMMUNITY_POOL = "community_pool"
    RAID_PILE = "raid_pile"
    RAID_TRAIN = "raid_train"

    @property
    def settings_doc(self) -> str:
        """Id of the settings document holding this tracker's state."""
        return _SETTINGS_DOCS[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_SETTINGS_DOCS = {
    TrackerType.VIP: "vipLiveChannel",
    TrackerType.COMMUNITY_POOL: "communityPoolChannel",
    TrackerType.RAID_PILE: "raidPileChannel",
    TrackerType.RAID_TRAIN: "raidTrainChannel",
}

_LABELS = {
    TrackerType.VIP: "VIP Live",
    TrackerType.COMMUNITY_POOL: "Community Pool",
    TrackerType.RAID_PILE: "Raid Pile",
    TrackerType.RAID_TRAIN: "Raid Train",
}


@dataclass
class RosterMember:
    """A guild member linked to a Twitch account."""

    discord_id: str
    twitch_id: str
    login: str = ""
    display_name: str = ""
    avatar_url: str | None = None
    custom_message: str | None = None
    points: int = 0

    @classmethod
    def from_document(cls, discord_id: str, data: dict[str, Any]) -> RosterMember | None:
        """Build from a ``users`` document; ``None`` when no Twitch id is linked."""
        twitch = data.get("twitchInfo") or {}
        discord_info = data.get("discordInfo") or {}
        twitch_id = twitch.get("id")
        if not twitch_id:
            return None
        login = twitch.get("login") or discord_info.get("username") or ""
        points = data.get("points")
        return cls(
            discord_id=discord_id,
            twitch_id=str(twitch_id),
            login=login,
            display_name=twitch.get("displayName") or login,
            avatar_url=twitch.get("avatar") or discord_info.get("avatar"),
            custom_message=data.get("vipMessage") or None,
            points=points if isinstance(points, int) else 0,
        )


@dataclass(frozen=True)
class LiveEntity:
    """One roster member observed live during a reconciliation pass."""

    twitch_id: str
    display_name: str
    started_at: datetime
    login: str = ""
    avatar_url: str | None = None
    game_name: str = ""
    viewer_count: int = 0
    title: str = ""
    custom_message: str | None = None
    points: int = 0

    @property
    def channel_url(self) -> str:
        return f"https://twitch.tv/{self.login or self.display_name}"


@dataclass
class ScheduleSlot:
    """A Raid Train hour label and who claimed it."""

    label: str
    claimant_id: str | None = None
    claimant_name: str | None = None

    @property
    def is_emergency(self) -> bool:
        return self.claimant_id == EMERGENCY_CLAIMANT

    @property
    def is_open(self) -> bool:
        return self.claimant_id is None or self.is_emergency


@dataclass
class PostedMessageState:
    """Message ids a tracker has posted in its channel for one guild.

    ``slots`` maps logical slot names (header, footer, holder, ...) to
    message ids; ``entity_message_ids`` maps Twitch ids to card message ids.
    """

    channel_id: str | None = None
    slots: dict[str, str] = field(default_factory=dict)
    entity_message_ids: dict[str, str] = field(default_factory=dict)
    clip_message_id: str | None = None
    rotation_index: int | None = None
    highlight_twitch_id: str | None = None

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> PostedMessageState:
        channel_id = data.get("channelId")
        rotation = data.get("rotationIndex")
        return cls(
            channel_id=str(channel_id) if channel_id else None,
            slots={k: str(v) for k, v in (data.get("slots") or {}).items() if v},
            entity_message_ids={
                k: str(v) for k, v in (data.get("entityMessageIds") or {}).items() if v
            },
            clip_message_id=data.get("clipMessageId") or None,
            rotation_index=rotation if isinstance(rotation, int) else None,
            highlight_twitch_id=data.get("highlightTwitchId") or None,
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "slots": dict(self.slots),
            "entityMessageIds": dict(self.entity_message_ids),
            "clipMessageId": self.clip_message_id,
            "rotationIndex": self.rotation_index,
            "highlightTwitchId": self.highlight_twitch_id,
        }

    def message_ids(self) -> list[str]:
        """Every message id this state references."""
        ids = list(self.slots.values()) + list(self.entity_message_ids.values())
        if self.clip_message_id:
            ids.append(self.clip_message_id)
        return list(dict.fromkeys(ids))
