"""Asyncio driver for one player's tracker.

A ``TrackerHandle`` owns two background tasks: the periodic progress flush and
the retry loop. Player callbacks (``record_*``) are synchronous; each emitted
event is delivered on its own task so the player is never blocked on the
network.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable, Iterator

from tracker.context import TrackerContext
from tracker.retry import RetryEntry, RetryQueue
from tracker.session import Emission, PlaybackSession, TrackerState
from tracker.transport import DeliveryError, EventTransport

logger = logging.getLogger(__name__)


class TrackerHandle:
    def __init__(
        self,
        context: TrackerContext,
        *,
        session: PlaybackSession | None = None,
        transport: EventTransport | None = None,
    ) -> None:
        self.context = context
        self.session = session or PlaybackSession(context)
        self._transport = transport or EventTransport(context)
        self.queue: RetryQueue[Emission] = RetryQueue(
            base_delay=context.retry_base_delay,
            max_attempts=context.max_retries,
            capacity=context.queue_capacity,
            clock=context.clock,
        )
        self._deliveries: set[asyncio.Task[None]] = set()
        self._wake = asyncio.Event()
        self._flush_task: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self._closed = False

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._flush_task is not None:
            return
        self._flush_task = asyncio.create_task(self._flush_loop())
        self._retry_task = asyncio.create_task(self._retry_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> TrackerState:
        return self.session.state

    @property
    def session_id(self) -> str | None:
        return self.session.session_id

    async def teardown(self) -> None:
        """Send one final progress event, stop both loops and release the client.

        Safe to call more than once; later calls do nothing.
        """
        if self._closed:
            return
        self._closed = True

        await self._cancel(self._flush_task)
        await self.wait_idle()
        if self.session.started:
            final = self.session.progress()
            try:
                await self._transport.send(final)
            except DeliveryError as exc:
                logger.warning("Final progress for %s not delivered: %s", final.session_id, exc.reason)
        await self._cancel(self._retry_task)

        pending = self.queue.drain()
        if pending:
            logger.info("Tracker torn down with %d undelivered events", len(pending))
        await self._transport.aclose()

    @staticmethod
    async def _cancel(task: asyncio.Task[None] | None) -> None:
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # ── Player callbacks ─────────────────────────────────────────────────────

    def record_play(self) -> None:
        self._dispatch(self.session.on_play())

    def record_pause(self) -> None:
        self._dispatch(self.session.on_pause())

    def record_time_update(self, position: float) -> None:
        self._dispatch(self.session.on_time_update(position))

    def record_rate_change(self, rate: float) -> None:
        self.session.on_rate_change(rate)

    def record_quality_change(self) -> None:
        self.session.on_quality_change()

    def record_ended(self) -> None:
        self._dispatch(self.session.on_ended())

    async def flush(self) -> None:
        """Deliver a progress snapshot now (no-op before the first play)."""
        if self._closed or not self.session.started:
            return
        await self._deliver(self.session.progress())

    async def wait_idle(self) -> None:
        """Wait for every delivery already started to settle."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    # ── Delivery ─────────────────────────────────────────────────────────────

    def _dispatch(self, emissions: list[Emission]) -> None:
        if self._closed:
            return
        for emission in emissions:
            task = asyncio.create_task(self._deliver(emission))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, emission: Emission) -> None:
        try:
            await self._transport.send(emission)
        except DeliveryError as exc:
            logger.info("Queueing %s for retry: %s", emission.kind.value, exc.reason)
            self.queue.enqueue(emission.key, emission)
            self._wake.set()
            return
        # A fresher snapshot landed; the queued one would roll counters back.
        self.queue.discard(emission.key)

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.context.update_interval)
            if self.session.should_flush:
                self._dispatch([self.session.progress()])

    async def _retry_loop(self) -> None:
        while True:
            delay = self.queue.next_due_in()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            self._wake.clear()
            for entry in self.queue.due():
                await self._retry(entry)

    async def _retry(self, entry: RetryEntry[Emission]) -> None:
        self.queue.mark_in_flight(entry)
        try:
            await self._transport.send(entry.item)
        except DeliveryError as exc:
            logger.info(
                "Retry %d of %s failed: %s", entry.attempts, entry.item.kind.value, exc.reason
            )
            self.queue.mark_failed(entry)
            return
        self.queue.mark_succeeded(entry)


def init_tracker(context: TrackerContext) -> TrackerHandle:
    """Validate ``context`` and start a tracker on the running event loop."""
    context.validate()
    asyncio.get_running_loop()
    handle = TrackerHandle(context)
    handle.start()
    return handle


class TrackerGroup:
    """Several players on one page, torn down together."""

    def __init__(self, handles: Iterable[TrackerHandle] = ()) -> None:
        self._handles = list(handles)

    @classmethod
    def from_contexts(cls, contexts: Iterable[TrackerContext]) -> TrackerGroup:
        handles = []
        for context in contexts:
            try:
                handles.append(init_tracker(context))
            except ValueError as exc:
                logger.warning("Skipping tracker for video %s: %s", context.video_id, exc)
        return cls(handles)

    def __iter__(self) -> Iterator[TrackerHandle]:
        return iter(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    async def teardown(self) -> None:
        await asyncio.gather(*(handle.teardown() for handle in self._handles))
