"""Repository for guild roster members and the Raid Train schedule."""

from __future__ import annotations

import logging
from datetime import date

from shared.documents import DocumentStore
from shared.models.roster import RosterMember, ScheduleSlot

logger = logging.getLogger(__name__)


def users_collection(guild_id: str) -> str:
    return f"communities/{guild_id}/users"


def schedule_path(guild_id: str, day: date) -> str:
    return f"communities/{guild_id}/raidTrain/{day.isoformat()}"


def hour_label(hour: int) -> str:
    return f"{hour:02d}:00"


class RosterRepository:
    """Reads the member documents each tracker builds its roster from."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def list_members(self, guild_id: str, flag: str | None = None) -> list[RosterMember]:
        """Members with a linked Twitch account, optionally filtered on a boolean flag."""
        docs = await self.store.query(
            users_collection(guild_id), {flag: True} if flag else None
        )
        members = []
        for doc in docs:
            member = RosterMember.from_document(doc.id, doc.data)
            if member is not None:
                members.append(member)
        return members

    async def get_schedule(self, guild_id: str, day: date) -> list[ScheduleSlot]:
        """The 24 hourly slots of *day*; unclaimed hours have no claimant."""
        doc = await self.store.get(schedule_path(guild_id, day))
        signups = (doc.data.get("signups") if doc else None) or {}
        slots = []
        for hour in range(24):
            label = hour_label(hour)
            claim = signups.get(label) or {}
            claimant_id = claim.get("id")
            slots.append(
                ScheduleSlot(
                    label=label,
                    claimant_id=str(claimant_id) if claimant_id else None,
                    claimant_name=claim.get("name"),
                )
            )
        return slots
