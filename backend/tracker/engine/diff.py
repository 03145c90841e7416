"""Roster diff: previous posted cards + current live roster -> operations.

Pure and synchronous. The synchronizer executes the result; nothing here
talks to Discord or the document store.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from shared.models.roster import LiveEntity
from tracker.engine.policies import PassContext, RosterSelectionPolicy


class CardAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class CardOp:
    action: CardAction
    entity: LiveEntity
    message_id: str | None = None


@dataclass(frozen=True)
class HighlightPlan:
    """Clip replacement for this pass.

    ``stale_message_id`` is deleted first; a clip for ``entity`` is posted
    afterwards when one can be produced.
    """

    entity: LiveEntity | None
    stale_message_id: str | None = None


@dataclass
class RosterDiff:
    ordered: list[LiveEntity]
    to_delete: list[str]
    card_ops: list[CardOp]
    highlight: HighlightPlan
    new_state: dict[str, str] = field(default_factory=dict)
    rotation_index: int | None = None

    @property
    def creates(self) -> list[CardOp]:
        return [op for op in self.card_ops if op.action is CardAction.CREATE]

    @property
    def updates(self) -> list[CardOp]:
        return [op for op in self.card_ops if op.action is CardAction.UPDATE]


def diff_roster(
    previous: Mapping[str, str],
    current: Sequence[LiveEntity],
    policy: RosterSelectionPolicy,
    context: PassContext,
    *,
    previous_clip_id: str | None = None,
) -> RosterDiff:
    """Compute the card operations that bring the channel in line with *current*.

    ``new_state`` holds the retained mappings only; ids of cards created
    by the synchronizer are added as the sends succeed.
    """
    ordered = policy.order(current)
    shown = policy.select_cards(ordered)
    shown_ids = {entity.twitch_id for entity in shown}

    to_delete = [
        message_id for twitch_id, message_id in previous.items() if twitch_id not in shown_ids
    ]

    card_ops: list[CardOp] = []
    new_state: dict[str, str] = {}
    for entity in shown:
        message_id = previous.get(entity.twitch_id)
        if message_id:
            card_ops.append(CardOp(CardAction.UPDATE, entity, message_id))
            new_state[entity.twitch_id] = message_id
        else:
            card_ops.append(CardOp(CardAction.CREATE, entity))

    selection = policy.select_highlight(ordered, context)
    return RosterDiff(
        ordered=ordered,
        to_delete=to_delete,
        card_ops=card_ops,
        highlight=HighlightPlan(selection.entity, previous_clip_id),
        new_state=new_state,
        rotation_index=selection.rotation_index,
    )
