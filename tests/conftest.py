"""
Shared pytest fixtures
"""

from datetime import UTC, datetime, timedelta

import pytest

from fakes import FakeLiveSource, InMemoryDocumentStore, RecordingGateway
from shared.models.roster import LiveEntity
from shared.repositories.roster import RosterRepository, users_collection
from shared.repositories.settings import TrackerStateRepository
from tracker.engine.synchronizer import ChannelStateSynchronizer

GUILD_ID = "111"
CHANNEL_ID = "222"
NOW = datetime(2024, 5, 4, 15, 30, tzinfo=UTC)


def make_entity(twitch_id: str, minutes_ago: int = 10, **kwargs) -> LiveEntity:
    kwargs.setdefault("display_name", f"streamer{twitch_id}")
    kwargs.setdefault("login", f"streamer{twitch_id}")
    return LiveEntity(
        twitch_id=twitch_id, started_at=NOW - timedelta(minutes=minutes_ago), **kwargs
    )


def add_member(
    store: InMemoryDocumentStore,
    discord_id: str,
    twitch_id: str,
    guild_id: str = GUILD_ID,
    **flags,
) -> None:
    store.put(
        f"{users_collection(guild_id)}/{discord_id}",
        {
            "twitchInfo": {
                "id": twitch_id,
                "login": f"streamer{twitch_id}",
                "displayName": f"Streamer{twitch_id}",
            },
            **flags,
        },
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway(CHANNEL_ID)


@pytest.fixture
def live_source() -> FakeLiveSource:
    return FakeLiveSource()


@pytest.fixture
def states(store) -> TrackerStateRepository:
    return TrackerStateRepository(store)


@pytest.fixture
def synchronizer(store, states, live_source, gateway) -> ChannelStateSynchronizer:
    return ChannelStateSynchronizer(
        states,
        RosterRepository(store),
        live_source,
        gateway,
        clock=lambda: NOW,
    )
