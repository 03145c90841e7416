"""Per-guild, per-tracker polling loops.

Each (guild, tracker) pair gets its own asyncio task. The first pass is
delayed by the tracker's stagger so a restart does not fire every
tracker of every guild at once; later passes follow the fixed interval.
Passes of one pair never overlap, and a failing pass only logs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from shared.models.roster import TrackerType
from tracker.engine.policies import policy_for
from tracker.engine.synchronizer import ChannelStateSynchronizer

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 7 * 60

TrackerKey = tuple[str, TrackerType]


@dataclass
class _Loop:
    task: asyncio.Task
    stop: asyncio.Event = field(default_factory=asyncio.Event)


class GuildScheduler:
    """Registry of running tracker loops, keyed by (guild id, tracker type)."""

    def __init__(
        self,
        synchronizer: ChannelStateSynchronizer,
        *,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        initial_delays: dict[TrackerType, float] | None = None,
    ) -> None:
        self.synchronizer = synchronizer
        self.interval = interval
        self.initial_delays = initial_delays or {
            tracker: policy_for(tracker).initial_delay for tracker in TrackerType
        }
        self._loops: dict[TrackerKey, _Loop] = {}
        self._locks: dict[TrackerKey, asyncio.Lock] = {}

    def _lock(self, key: TrackerKey) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def is_running(self, guild_id: str, tracker: TrackerType) -> bool:
        loop = self._loops.get((guild_id, tracker))
        return loop is not None and not loop.task.done()

    def running(self) -> list[TrackerKey]:
        return [key for key, loop in self._loops.items() if not loop.task.done()]

    def start(
        self, guild_id: str, tracker: TrackerType, *, initial_delay: float | None = None
    ) -> bool:
        """Begin ticking for the pair. Returns ``False`` if it was already running."""
        key = (guild_id, tracker)
        if self.is_running(guild_id, tracker):
            return False

        delay = self.initial_delays.get(tracker, 0.0) if initial_delay is None else initial_delay
        stop = asyncio.Event()
        task = asyncio.create_task(
            self._run(key, stop, delay), name=f"tracker:{guild_id}:{tracker.value}"
        )
        self._loops[key] = _Loop(task=task, stop=stop)
        logger.debug(f"[{guild_id}/{tracker.value}] loop started, first pass in {delay:.0f}s")
        return True

    def cancel(self, guild_id: str, tracker: TrackerType) -> bool:
        """Stop future ticks without touching the configuration.

        A pass already running is left to finish.
        """
        loop = self._loops.pop((guild_id, tracker), None)
        if loop is None:
            return False
        loop.stop.set()
        return True

    async def stop(self, guild_id: str, tracker: TrackerType) -> bool:
        """Cancel the loop, then delete the configuration and its messages.

        Returns whether a configuration existed.
        """
        self.cancel(guild_id, tracker)
        async with self._lock((guild_id, tracker)):
            return await self.synchronizer.teardown(guild_id, tracker)

    async def bootstrap(self, guild_id: str, tracker: TrackerType, channel_id: str) -> None:
        """Re-attach the tracker to *channel_id* from scratch, then resume ticking.

        The first tick after a bootstrap waits a full interval. The loop is
        resumed even when the bootstrap pass fails, as long as a configuration
        is stored, so later ticks finish the job.
        """
        self.cancel(guild_id, tracker)
        try:
            async with self._lock((guild_id, tracker)):
                await self.synchronizer.bootstrap(guild_id, tracker, channel_id)
        finally:
            await self._resume_if_configured(guild_id, tracker)

    async def _resume_if_configured(self, guild_id: str, tracker: TrackerType) -> None:
        try:
            configured = await self.synchronizer.is_configured(guild_id, tracker)
        except Exception as e:
            logger.warning(
                f"[{guild_id}/{tracker.value}] could not read configuration ({e}), "
                f"resuming loop anyway"
            )
            configured = True
        if configured:
            self.start(guild_id, tracker, initial_delay=self.interval)

    async def run_once(self, guild_id: str, tracker: TrackerType) -> None:
        """Run one pass now, serialized with the pair's loop."""
        async with self._lock((guild_id, tracker)):
            await self.synchronizer.reconcile(guild_id, tracker)

    async def _run(self, key: TrackerKey, stop: asyncio.Event, delay: float) -> None:
        guild_id, tracker = key
        wait = delay
        while not await self._sleep(stop, wait):
            try:
                await self.run_once(guild_id, tracker)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"[{guild_id}/{tracker.value}] reconciliation pass failed")
            wait = self.interval

    @staticmethod
    async def _sleep(stop: asyncio.Event, seconds: float) -> bool:
        """Wait *seconds*; ``True`` as soon as *stop* is set."""
        if stop.is_set():
            return True
        try:
            await asyncio.wait_for(stop.wait(), timeout=max(seconds, 0))
            return True
        except TimeoutError:
            return stop.is_set()

    async def shutdown(self) -> None:
        """Stop every loop and wait for in-flight passes to finish."""
        loops = list(self._loops.values())
        self._loops.clear()
        for loop in loops:
            loop.stop.set()
        await asyncio.gather(*(loop.task for loop in loops), return_exceptions=True)
