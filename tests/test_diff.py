import pytest

from conftest import GUILD_ID, NOW, make_entity
from tracker.engine.diff import CardAction, diff_roster
from tracker.engine.policies import (
    CommunityPoolPolicy,
    PassContext,
    RaidPilePolicy,
    VipPolicy,
)


def context(**kwargs) -> PassContext:
    return PassContext(guild_id=GUILD_ID, now=NOW, **kwargs)


def test_orders_earliest_start_first_and_creates_all():
    a = make_entity("a", minutes_ago=5)
    b = make_entity("b", minutes_ago=30)

    diff = diff_roster({}, [a, b], VipPolicy(), context())

    assert [e.twitch_id for e in diff.ordered] == ["b", "a"]
    assert [op.entity.twitch_id for op in diff.creates] == ["b", "a"]
    assert diff.to_delete == []
    assert diff.updates == []


def test_departed_entity_is_deleted_and_remaining_one_updated():
    b = make_entity("b")

    diff = diff_roster({"a": "msg1", "b": "msg2"}, [b], VipPolicy(), context())

    assert diff.to_delete == ["msg1"]
    assert [(op.action, op.message_id) for op in diff.card_ops] == [(CardAction.UPDATE, "msg2")]
    assert diff.new_state == {"b": "msg2"}


def test_empty_roster_deletes_every_card():
    diff = diff_roster({"a": "m1", "b": "m2"}, [], VipPolicy(), context())

    assert sorted(diff.to_delete) == ["m1", "m2"]
    assert diff.card_ops == []
    assert diff.highlight.entity is None


@pytest.mark.parametrize(
    "previous, live",
    [
        ({}, []),
        ({"a": "m1"}, ["a"]),
        ({"a": "m1", "b": "m2"}, ["b", "c"]),
        ({"a": "m1", "b": "m2", "c": "m3"}, ["d", "e"]),
    ],
)
def test_create_and_delete_counts_match_set_differences(previous, live):
    entities = [make_entity(tid, minutes_ago=i + 1) for i, tid in enumerate(live)]

    diff = diff_roster(previous, entities, VipPolicy(), context())

    assert len(diff.to_delete) == len(set(previous) - set(live))
    assert len(diff.creates) == len(set(live) - set(previous))


def test_second_diff_over_the_same_roster_only_updates():
    entities = [make_entity("a", 20), make_entity("b", 10)]
    first = diff_roster({}, entities, VipPolicy(), context())
    state = {op.entity.twitch_id: f"msg-{op.entity.twitch_id}" for op in first.creates}

    second = diff_roster(state, entities, VipPolicy(), context())

    assert second.to_delete == []
    assert second.creates == []
    assert second.new_state == state


def test_equal_start_times_break_ties_by_id():
    same = [make_entity("z", 10), make_entity("m", 10), make_entity("c", 10)]

    diff = diff_roster({}, same, VipPolicy(), context())

    assert [e.twitch_id for e in diff.ordered] == ["c", "m", "z"]


def test_duplicate_live_entities_are_rejected():
    with pytest.raises(ValueError):
        diff_roster({}, [make_entity("a"), make_entity("a")], VipPolicy(), context())


def test_card_less_tracker_deletes_stray_cards():
    diff = diff_roster({"a": "m1"}, [make_entity("a")], RaidPilePolicy(), context())

    assert diff.to_delete == ["m1"]
    assert diff.card_ops == []
    assert diff.highlight.entity.twitch_id == "a"


def test_highlight_keeps_previous_clip_id_for_replacement():
    diff = diff_roster(
        {}, [make_entity("a")], VipPolicy(), context(), previous_clip_id="clip-1"
    )

    assert diff.highlight.stale_message_id == "clip-1"
    assert diff.highlight.entity.twitch_id == "a"


def test_rotation_index_comes_from_the_policy():
    entities = [make_entity("a", 30), make_entity("b", 20), make_entity("c", 10)]

    diff = diff_roster({}, entities, CommunityPoolPolicy(), context(rotation_index=0))

    assert diff.rotation_index == 1
    assert diff.highlight.entity.twitch_id == "b"
