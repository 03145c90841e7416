from datetime import date

import pytest

from conftest import GUILD_ID, add_member
from shared.models.clip import ClipStatus
from shared.models.roster import PostedMessageState, TrackerType
from shared.repositories.clip import ClipRepository
from shared.repositories.roster import RosterRepository, schedule_path, users_collection
from shared.repositories.settings import TrackerStateRepository, settings_path


@pytest.mark.asyncio
async def test_members_filtered_by_flag_and_linked_account(store):
    add_member(store, "d1", "1", isVip=True)
    add_member(store, "d2", "2", isVip=False)
    store.put(f"{users_collection(GUILD_ID)}/d3", {"isVip": True})

    members = await RosterRepository(store).list_members(GUILD_ID, "isVip")

    assert [m.twitch_id for m in members] == ["1"]
    assert members[0].display_name == "Streamer1"


@pytest.mark.asyncio
async def test_schedule_has_24_slots_with_claims(store):
    day = date(2024, 5, 4)
    store.put(
        schedule_path(GUILD_ID, day),
        {"signups": {"03:00": {"id": 42, "name": "Ann"}, "04:00": {"id": "emergency"}}},
    )

    slots = await RosterRepository(store).get_schedule(GUILD_ID, day)

    assert len(slots) == 24
    assert slots[3].claimant_id == "42"
    assert slots[3].claimant_name == "Ann"
    assert slots[4].is_emergency and slots[4].is_open
    assert slots[5].claimant_id is None


@pytest.mark.asyncio
async def test_missing_schedule_is_all_open(store):
    slots = await RosterRepository(store).get_schedule(GUILD_ID, date(2024, 1, 1))

    assert all(slot.is_open for slot in slots)


@pytest.mark.asyncio
async def test_state_without_channel_counts_as_unconfigured(store):
    store.put(settings_path(GUILD_ID, "vipLiveChannel"), {"slots": {"header": "1"}})

    assert await TrackerStateRepository(store).load(GUILD_ID, TrackerType.VIP) is None


@pytest.mark.asyncio
async def test_saved_state_drops_removed_entries(store):
    repo = TrackerStateRepository(store)
    state = PostedMessageState(channel_id="c", entity_message_ids={"a": "1", "b": "2"})
    await repo.save(GUILD_ID, TrackerType.VIP, state)

    state.entity_message_ids.pop("a")
    await repo.save(GUILD_ID, TrackerType.VIP, state)

    loaded = await repo.load(GUILD_ID, TrackerType.VIP)
    assert loaded.entity_message_ids == {"b": "2"}


@pytest.mark.asyncio
async def test_save_keeps_unrelated_settings_fields(store):
    path = settings_path(GUILD_ID, "raidPileChannel")
    store.put(path, {"channelId": "c", "customNote": "keep me"})

    await TrackerStateRepository(store).save(
        GUILD_ID, TrackerType.RAID_PILE, PostedMessageState(channel_id="c", rotation_index=3)
    )

    assert store.data(path)["customNote"] == "keep me"
    assert store.data(path)["rotationIndex"] == 3


def test_posted_state_tolerates_sparse_documents():
    state = PostedMessageState.from_document(
        {"channelId": 123, "slots": {"header": 9, "footer": None}, "rotationIndex": "x"}
    )

    assert state.channel_id == "123"
    assert state.slots == {"header": "9"}
    assert state.rotation_index is None
    assert state.message_ids() == ["9"]


@pytest.mark.asyncio
async def test_clip_collection_template(store):
    shared = ClipRepository(store, "clips")
    per_guild = ClipRepository(store)

    assert shared.path(GUILD_ID, "c1") == "clips/c1"
    assert per_guild.path(GUILD_ID, "c1") == f"communities/{GUILD_ID}/clips/c1"


@pytest.mark.asyncio
async def test_ensure_pending_does_not_overwrite(store):
    clips = ClipRepository(store)
    first = await clips.ensure_pending(GUILD_ID, "c1", video_url="v1", broadcaster_id="b")
    await clips.mark_error(first.path, "boom")

    again = await clips.ensure_pending(GUILD_ID, "c1", video_url="v2", broadcaster_id="b")

    assert again.status is ClipStatus.ERROR
    assert again.video_url == "v1"


@pytest.mark.asyncio
async def test_claim_moves_pending_to_processing_once(store):
    clips = ClipRepository(store)
    doc = await clips.ensure_pending(GUILD_ID, "c1", video_url="v", broadcaster_id="b")

    claimed = await clips.claim(doc.path)
    second = await clips.claim(doc.path)

    assert claimed is not None
    assert second is None
    assert store.data(doc.path)["processingStatus"] == "processing"
    assert "processingStartedAt" in store.data(doc.path)
