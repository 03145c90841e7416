"""Apply roster diffs to a channel and persist the resulting message ids.

One pass: load state, fetch the channel, load the roster and who is live,
diff, then delete stale cards, edit existing messages, post missing ones,
replace the highlight clip, refresh the footer, and persist.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from shared.models.roster import LiveEntity, PostedMessageState, TrackerType
from shared.repositories.roster import RosterRepository
from shared.repositories.settings import TrackerStateRepository
from tracker.engine.cards import MessageContent
from tracker.engine.diff import RosterDiff, diff_roster
from tracker.engine.errors import ChannelGoneError, TargetGoneError
from tracker.engine.gateway import ChannelGateway
from tracker.engine.live_source import LiveSource, build_live_entities
from tracker.engine.policies import (
    LEADERBOARD,
    PassContext,
    RosterSelectionPolicy,
    RosterView,
    policy_for,
)

logger = logging.getLogger(__name__)

ClipProvider = Callable[[str, LiveEntity], Awaitable[MessageContent | None]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class _PassWriter:
    """Tracks the state a pass is building and whether it posted anything."""

    def __init__(self, gateway: ChannelGateway, channel: Any, state: PostedMessageState):
        self.gateway = gateway
        self.channel = channel
        self.state = state
        self.created_any = False

    async def send(self, content: MessageContent) -> str:
        message_id = await self.gateway.send(self.channel, content)
        self.created_any = True
        return message_id

    async def edit(self, message_id: str, content: MessageContent) -> bool:
        """Edit a message; ``False`` when it is gone."""
        try:
            await self.gateway.edit(self.channel, message_id, content)
            return True
        except ChannelGoneError:
            raise
        except TargetGoneError:
            return False

    async def delete(self, message_id: str) -> None:
        try:
            await self.gateway.delete(self.channel, message_id)
        except ChannelGoneError:
            raise
        except TargetGoneError:
            pass


class ChannelStateSynchronizer:
    """Runs reconciliation passes for any (guild, tracker) pair."""

    def __init__(
        self,
        states: TrackerStateRepository,
        roster: RosterRepository,
        live_source: LiveSource,
        gateway: ChannelGateway,
        *,
        clip_provider: ClipProvider | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.states = states
        self.roster = roster
        self.live_source = live_source
        self.gateway = gateway
        self.clip_provider = clip_provider
        self.clock = clock

    # ==================== Entry points ====================

    async def reconcile(self, guild_id: str, tracker: TrackerType) -> None:
        """One steady-state pass. A tracker without configuration is a no-op."""
        state = await self.states.load(guild_id, tracker)
        if state is None or state.channel_id is None:
            logger.debug(f"[{guild_id}/{tracker.value}] not configured, skipping")
            return

        channel = await self.gateway.fetch_channel(state.channel_id)
        if channel is None:
            logger.warning(
                f"[{guild_id}/{tracker.value}] channel {state.channel_id} is gone, "
                f"removing configuration"
            )
            await self.states.delete(guild_id, tracker)
            return

        await self._run_pass(guild_id, tracker, channel, state)

    async def bootstrap(self, guild_id: str, tracker: TrackerType, channel_id: str) -> None:
        """Attach *tracker* to a channel, posting every message from scratch.

        Messages of a previous configuration are deleted first, and the empty
        configuration is stored before anything is posted, so a pass that
        fails part way leaves state the next tick can build on.
        """
        channel = await self.gateway.fetch_channel(channel_id)
        if channel is None:
            raise ChannelGoneError(f"Channel {channel_id} is not available")

        previous = await self.states.load(guild_id, tracker)
        if previous is not None:
            await self._delete_messages(previous)

        fresh = PostedMessageState(channel_id=str(channel_id))
        await self.states.save(guild_id, tracker, fresh)
        if not await self._run_pass(guild_id, tracker, channel, fresh):
            raise ChannelGoneError(f"Lost access to channel {channel_id} while posting")
        logger.info(f"[{guild_id}/{tracker.value}] bootstrapped in channel {channel_id}")

    async def is_configured(self, guild_id: str, tracker: TrackerType) -> bool:
        return await self.states.load(guild_id, tracker) is not None

    async def teardown(self, guild_id: str, tracker: TrackerType) -> bool:
        """Delete the configuration and every message it references.

        Returns ``False`` when there was nothing to remove.
        """
        state = await self.states.load(guild_id, tracker)
        if state is None:
            return False
        await self._delete_messages(state)
        await self.states.delete(guild_id, tracker)
        logger.info(f"[{guild_id}/{tracker.value}] disabled")
        return True

    # ==================== Pass ====================

    async def _run_pass(
        self, guild_id: str, tracker: TrackerType, channel: Any, state: PostedMessageState
    ) -> bool:
        """Run one pass; ``False`` when the channel turned out to be unusable."""
        policy = policy_for(tracker)
        context = await self._build_context(guild_id, policy, state.rotation_index)
        entities = await self._load_entities(guild_id, policy, context)

        diff = diff_roster(
            state.entity_message_ids,
            entities,
            policy,
            context,
            previous_clip_id=state.clip_message_id,
        )
        view = RosterView(context=context, ordered=diff.ordered, highlight=diff.highlight.entity)
        new_state = PostedMessageState(
            channel_id=state.channel_id,
            slots=dict(state.slots),
            entity_message_ids=dict(state.entity_message_ids),
            clip_message_id=state.clip_message_id,
            rotation_index=diff.rotation_index,
            highlight_twitch_id=diff.highlight.entity.twitch_id if diff.highlight.entity else None,
        )
        writer = _PassWriter(self.gateway, channel, new_state)

        try:
            await self._apply(guild_id, policy, diff, view, writer)
        except ChannelGoneError as e:
            logger.warning(f"[{guild_id}/{tracker.value}] {e}, removing configuration")
            await self.states.delete(guild_id, tracker)
            return False
        except Exception:
            # Keep whatever succeeded so the next pass does not orphan it
            try:
                await self.states.save(guild_id, tracker, new_state)
            except Exception as save_error:
                logger.error(
                    f"[{guild_id}/{tracker.value}] could not persist partial state: {save_error}"
                )
            raise

        await self.states.save(guild_id, tracker, new_state)
        if new_state.highlight_twitch_id != state.highlight_twitch_id:
            name = diff.highlight.entity.display_name if diff.highlight.entity else "nobody"
            logger.info(f"[{guild_id}/{tracker.value}] highlight moved to {name}")
        logger.debug(
            f"[{guild_id}/{tracker.value}] pass done: {len(diff.ordered)} live, "
            f"{len(diff.creates)} created, {len(diff.to_delete)} removed"
        )
        return True

    async def _apply(
        self,
        guild_id: str,
        policy: RosterSelectionPolicy,
        diff: RosterDiff,
        view: RosterView,
        writer: _PassWriter,
    ) -> None:
        state = writer.state
        posted_slots = set(state.slots)

        # Entries leave the map only once their message is gone
        stale_ids = set(diff.to_delete)
        for twitch_id, message_id in list(state.entity_message_ids.items()):
            if message_id in stale_ids:
                await writer.delete(message_id)
                del state.entity_message_ids[twitch_id]

        for name in policy.leading_slots:
            message_id = state.slots.get(name)
            if message_id and not await writer.edit(message_id, policy.render_slot(name, view)):
                del state.slots[name]
        for op in diff.updates:
            content = policy.render_card(op.entity, view)
            if op.message_id and not await writer.edit(op.message_id, content):
                state.entity_message_ids.pop(op.entity.twitch_id, None)

        # Slots dropped during this pass are re-posted on the next one
        for name in [n for n in policy.leading_slots if n not in posted_slots]:
            state.slots[name] = await writer.send(policy.render_slot(name, view))
        for op in diff.creates:
            state.entity_message_ids[op.entity.twitch_id] = await writer.send(
                policy.render_card(op.entity, view)
            )

        await self._replace_clip(guild_id, diff, writer)
        await self._refresh_trailing(policy, view, writer)

    async def _replace_clip(self, guild_id: str, diff: RosterDiff, writer: _PassWriter) -> None:
        stale = diff.highlight.stale_message_id
        if stale:
            try:
                await writer.delete(stale)
            except ChannelGoneError:
                raise
            except Exception as e:
                logger.warning(f"[{guild_id}] could not delete clip message {stale}: {e}")
                return

        new_id: str | None = None
        entity = diff.highlight.entity
        if entity is not None and self.clip_provider is not None:
            try:
                content = await self.clip_provider(guild_id, entity)
            except Exception as e:
                logger.warning(f"[{guild_id}] no clip for {entity.display_name}: {e}")
                content = None
            if content is not None:
                try:
                    new_id = await writer.send(content)
                except ChannelGoneError:
                    raise
                except Exception as e:
                    logger.warning(
                        f"[{guild_id}] posting clip for {entity.display_name} failed: {e}"
                    )
        writer.state.clip_message_id = new_id

    async def _refresh_trailing(
        self, policy: RosterSelectionPolicy, view: RosterView, writer: _PassWriter
    ) -> None:
        state = writer.state
        for name in policy.trailing_slots:
            content = policy.render_slot(name, view)
            message_id = state.slots.get(name)
            if message_id and writer.created_any:
                # Something was posted below it; re-post to stay last
                await writer.delete(message_id)
                state.slots[name] = await writer.send(content)
            elif message_id:
                if not await writer.edit(message_id, content):
                    del state.slots[name]
            else:
                state.slots[name] = await writer.send(content)

    # ==================== Inputs ====================

    async def _build_context(
        self, guild_id: str, policy: RosterSelectionPolicy, rotation_index: int | None
    ) -> PassContext:
        context = PassContext(guild_id=guild_id, now=self.clock(), rotation_index=rotation_index)
        if policy.roster_from_schedule:
            context.schedule = await self.roster.get_schedule(guild_id, context.now.date())
        if LEADERBOARD in policy.slot_names or policy.roster_from_schedule:
            context.members = await self.roster.list_members(guild_id)
        return context

    async def _load_entities(
        self, guild_id: str, policy: RosterSelectionPolicy, context: PassContext
    ) -> list[LiveEntity]:
        if policy.roster_from_schedule:
            claimants = {
                slot.claimant_id: slot.claimant_name or ""
                for slot in context.schedule
                if slot.claimant_id and not slot.is_emergency
            }
            members = [m for m in context.members if m.twitch_id in claimants]
            statuses = await self.live_source.get_live_status(set(claimants))
            return build_live_entities(members, statuses, claimant_names=claimants)

        members = await self.roster.list_members(guild_id, policy.member_flag)
        statuses = await self.live_source.get_live_status({m.twitch_id for m in members})
        return build_live_entities(members, statuses)

    async def _delete_messages(self, state: PostedMessageState) -> None:
        if state.channel_id is None:
            return
        channel = await self.gateway.fetch_channel(state.channel_id)
        if channel is None:
            return
        await self.gateway.delete_all(channel, state.message_ids())
