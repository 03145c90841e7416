"""Shared data models for the tracker services."""

from .clip import ClipDocument, ClipStatus
from .roster import (
    EMERGENCY_CLAIMANT,
    LiveEntity,
    PostedMessageState,
    RosterMember,
    ScheduleSlot,
    TrackerType,
)

__all__ = [
    "EMERGENCY_CLAIMANT",
    "ClipDocument",
    "ClipStatus",
    "LiveEntity",
    "PostedMessageState",
    "RosterMember",
    "ScheduleSlot",
    "TrackerType",
]
