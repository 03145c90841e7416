"""Selection policies for the four trackers.

A policy decides which live entities get cards, which single entity is
highlighted with a clip, and how the tracker's fixed slot messages
render. Everything here is pure: given the same pass context and roster,
a policy makes the same choices.
"""

from __future__ import annotations

import abc
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

import discord

from shared.models.roster import LiveEntity, RosterMember, ScheduleSlot, TrackerType
from tracker.engine import cards
from tracker.engine.cards import ButtonSpec, MessageContent

HEADER = "header"
FOOTER = "footer"
HOLDER = "holder"
CONDUCTOR = "conductor"
LEADERBOARD = "leaderboard"
QUEUE = "queue"
SCHEDULE = "schedule"


@dataclass
class PassContext:
    """Inputs of one reconciliation pass besides the live roster."""

    guild_id: str
    now: datetime
    rotation_index: int | None = None
    schedule: list[ScheduleSlot] = field(default_factory=list)
    members: list[RosterMember] = field(default_factory=list)

    @property
    def current_slot_label(self) -> str:
        return f"{self.now.hour:02d}:00"

    def current_slot(self) -> ScheduleSlot | None:
        label = self.current_slot_label
        return next((slot for slot in self.schedule if slot.label == label), None)


@dataclass(frozen=True)
class HighlightSelection:
    entity: LiveEntity | None
    rotation_index: int | None = None


@dataclass
class RosterView:
    """What renderers see: the pass context plus the policy's choices."""

    context: PassContext
    ordered: list[LiveEntity]
    highlight: LiveEntity | None


def order_entities(entities: Sequence[LiveEntity]) -> list[LiveEntity]:
    """Earliest broadcaster first; ties broken by id."""
    seen: set[str] = set()
    for entity in entities:
        if entity.twitch_id in seen:
            raise ValueError(f"Duplicate live entity {entity.twitch_id}")
        seen.add(entity.twitch_id)
    return sorted(entities, key=lambda e: (e.started_at, e.twitch_id))


class RosterSelectionPolicy(abc.ABC):
    """Base policy: subclasses set the class attributes and override choices."""

    tracker: TrackerType
    member_flag: str | None = None
    initial_delay: float = 10.0
    posts_cards: bool = False
    roster_from_schedule: bool = False
    leading_slots: tuple[str, ...] = (HEADER,)
    trailing_slots: tuple[str, ...] = (FOOTER,)

    def order(self, entities: Sequence[LiveEntity]) -> list[LiveEntity]:
        return order_entities(entities)

    def select_cards(self, ordered: Sequence[LiveEntity]) -> list[LiveEntity]:
        return list(ordered) if self.posts_cards else []

    def select_highlight(
        self, ordered: Sequence[LiveEntity], context: PassContext
    ) -> HighlightSelection:
        return HighlightSelection(ordered[0] if ordered else None)

    @property
    def slot_names(self) -> tuple[str, ...]:
        return self.leading_slots + self.trailing_slots

    def render_card(self, entity: LiveEntity, view: RosterView) -> MessageContent:
        raise NotImplementedError(f"{type(self).__name__} posts no entity cards")

    def render_slot(self, name: str, view: RosterView) -> MessageContent:
        if name == HEADER:
            return self.render_header()
        if name == FOOTER:
            return cards.footer(self.status_line(view), view.context.now, self.footer_buttons(view))
        if name == LEADERBOARD:
            return cards.leaderboard_card(view.context.members, view.context.now)
        raise KeyError(f"{self.tracker.value} has no slot {name!r}")

    @abc.abstractmethod
    def render_header(self) -> MessageContent: ...

    def status_line(self, view: RosterView) -> str:
        return f"Tracking {len(view.ordered)} live member(s)."

    def footer_buttons(self, view: RosterView) -> tuple[ButtonSpec, ...]:
        return ()


class VipPolicy(RosterSelectionPolicy):
    """One card per live VIP; the longest-live VIP gets the clip."""

    tracker = TrackerType.VIP
    member_flag = "isVip"
    initial_delay = 10.0
    posts_cards = True

    def render_header(self) -> MessageContent:
        return cards.header(
            "🚀 VIPs LIVE NOW 🚀",
            "Partners, VIPs, admins and mods currently streaming. Drop in and show some love.",
            cards.GOLD,
        )

    def render_card(self, entity: LiveEntity, view: RosterView) -> MessageContent:
        return cards.vip_card(entity, view.context.now)

    def status_line(self, view: RosterView) -> str:
        return f"Tracking {len(view.ordered)} live VIP(s)."


class CommunityPoolPolicy(RosterSelectionPolicy):
    """One card per live member; the spotlight rotates one step per pass."""

    tracker = TrackerType.COMMUNITY_POOL
    member_flag = "inCommunityPool"
    initial_delay = 12.0
    posts_cards = True

    def select_highlight(
        self, ordered: Sequence[LiveEntity], context: PassContext
    ) -> HighlightSelection:
        if not ordered:
            return HighlightSelection(None, context.rotation_index)
        if context.rotation_index is None:
            index = 0
        else:
            index = (context.rotation_index + 1) % len(ordered)
        return HighlightSelection(ordered[index], index)

    def render_header(self) -> MessageContent:
        return cards.header(
            "🚀 COMMUNITY LIVE POOL 🚀",
            "Members of the community broadcasting right now. One featured stream every "
            "update, complete with a clip.\n"
            "Want to be featured? Tap **Join the Pool** below.",
            cards.SPOTLIGHT_BLUE,
        )

    def render_card(self, entity: LiveEntity, view: RosterView) -> MessageContent:
        spotlight = view.highlight is not None and view.highlight.twitch_id == entity.twitch_id
        return cards.pool_card(entity, view.context.now, spotlight=spotlight)

    def footer_buttons(self, view: RosterView) -> tuple[ButtonSpec, ...]:
        return (ButtonSpec("community_pool_join", "Join the Pool", emoji="🌟"),)


class RaidPilePolicy(RosterSelectionPolicy):
    """The earliest starter holds the pile; everyone else queues behind."""

    tracker = TrackerType.RAID_PILE
    member_flag = "inPile"
    initial_delay = 14.0
    leading_slots = (HEADER, HOLDER, LEADERBOARD, QUEUE)

    def render_header(self) -> MessageContent:
        return cards.header(
            "⚔️ The Raid Pile ⚔️",
            "The queue to be the next one raided by the community.",
            cards.RAID_RED,
        )

    def render_slot(self, name: str, view: RosterView) -> MessageContent:
        if name == HOLDER:
            return cards.featured_card(
                "Raid Pile Holder",
                view.highlight,
                view.context.now,
                color=cards.RAID_RED,
                empty="Nobody in the pile is live. Join the pile to become the holder!",
            )
        if name == QUEUE:
            holder_id = view.highlight.twitch_id if view.highlight else None
            return cards.queue_card([e for e in view.ordered if e.twitch_id != holder_id])
        return super().render_slot(name, view)

    def status_line(self, view: RosterView) -> str:
        return f"Tracking {len(view.ordered)} live member(s) in the pile."

    def footer_buttons(self, view: RosterView) -> tuple[ButtonSpec, ...]:
        return (
            ButtonSpec("raid_join", "Join the Pile", style=discord.ButtonStyle.danger, emoji="⚔️"),
        )


class RaidTrainPolicy(RosterSelectionPolicy):
    """The claimant of the current UTC hour conducts, when live."""

    tracker = TrackerType.RAID_TRAIN
    initial_delay = 15.0
    roster_from_schedule = True
    leading_slots = (HEADER, CONDUCTOR, LEADERBOARD, SCHEDULE)

    def select_highlight(
        self, ordered: Sequence[LiveEntity], context: PassContext
    ) -> HighlightSelection:
        slot = context.current_slot()
        if slot is None or slot.is_open:
            return HighlightSelection(None)
        conductor = next((e for e in ordered if e.twitch_id == slot.claimant_id), None)
        return HighlightSelection(conductor)

    def render_header(self) -> MessageContent:
        return cards.header(
            "🚂 The Raid Train 🚂",
            "Today's raid train schedule. Whoever holds the current hour is the **Conductor**.",
            cards.TRAIN_VIOLET,
        )

    def render_slot(self, name: str, view: RosterView) -> MessageContent:
        if name == CONDUCTOR:
            return cards.featured_card(
                f"Current Conductor: {view.context.current_slot_label}",
                view.highlight,
                view.context.now,
                color=cards.TRAIN_VIOLET,
                empty="The scheduled streamer for this hour is not live on Twitch.",
            )
        if name == SCHEDULE:
            return cards.schedule_card(view.context.schedule, view.context.now)
        return super().render_slot(name, view)

    def status_line(self, view: RosterView) -> str:
        claimed = sum(1 for slot in view.context.schedule if slot.claimant_id)
        return f"{claimed}/24 hours claimed today, {len(view.ordered)} claimant(s) live."

    def footer_buttons(self, view: RosterView) -> tuple[ButtonSpec, ...]:
        guild_id = view.context.guild_id
        return (
            ButtonSpec(f"raid-train_signup-button_{guild_id}", "Sign Up", emoji="🚂"),
            ButtonSpec(
                f"raid-train_giveaway-button_{guild_id}",
                "Give Away Spot",
                style=discord.ButtonStyle.danger,
                emoji="🎟️",
            ),
        )


POLICIES: dict[TrackerType, RosterSelectionPolicy] = {
    policy.tracker: policy
    for policy in (VipPolicy(), CommunityPoolPolicy(), RaidPilePolicy(), RaidTrainPolicy())
}


def policy_for(tracker: TrackerType) -> RosterSelectionPolicy:
    return POLICIES[tracker]
