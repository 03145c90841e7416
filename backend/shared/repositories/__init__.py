"""Shared repository layer for the tracker services."""

from .clip import ClipRepository
from .roster import RosterRepository
from .settings import GuildSettingsRepository, TrackerStateRepository

__all__ = [
    "ClipRepository",
    "GuildSettingsRepository",
    "RosterRepository",
    "TrackerStateRepository",
]
