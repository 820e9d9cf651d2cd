"""
core/scheduler.py -- Per-view refresh timers driving the Aggregator.

Each RefreshContext owns one timer task, one in-flight cycle at most, and its
own snapshot key in the SnapshotStore. State machine:

    Idle -> Fetching -> Idle            normal cycle
    Fetching + tick -> Fetching         tick skipped, never queued
    any -> Stopped                      timer cancelled, in-flight result dropped
    Stopped -> start -> Idle            a pre-stop cycle drains without publishing

RefreshScheduler groups the contexts so the API lifespan and the CLI can start
and stop them together. build_scheduler() wires the dashboard's three views.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional

from cache.store import SnapshotStore
from core.aggregator import Aggregator, SourceRequest, pool_size
from core.clock import Clock, SystemClock
from core.config import Settings
from core.fetcher import SourceClient
from core.models import Snapshot, SourceKind

logger = logging.getLogger("teleguard.scheduler")

Subscriber = Callable[[str, Snapshot], None]


class ContextState(str, Enum):
    idle = "idle"
    fetching = "fetching"
    stopped = "stopped"


class RefreshContext:
    def __init__(
        self,
        name: str,
        aggregator: Aggregator,
        store: SnapshotStore,
        clock: Optional[Clock] = None,
        interval_seconds: Optional[float] = None,
    ) -> None:
        if interval_seconds is not None and interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive, or None for on-demand only")
        self.name = name
        self.aggregator = aggregator
        self.store = store
        self.clock = clock or SystemClock()
        self.interval_seconds = interval_seconds
        self.skipped_ticks = 0
        self.completed_cycles = 0
        self._stopped = False
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._cycle: Optional[asyncio.Task] = None
        self._cycle_generation = 0
        # Cycles from before a stop/start pair, left to finish and discard.
        self._draining: set[asyncio.Task] = set()
        self._subscribers: list[Subscriber] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ContextState:
        if self._stopped:
            return ContextState.stopped
        if self._in_flight():
            return ContextState.fetching
        return ContextState.idle

    def _in_flight(self) -> bool:
        cycle = self._cycle
        return cycle is not None and not cycle.done() and self._cycle_generation == self._generation

    @property
    def window_seconds(self) -> Optional[int]:
        windows = {r.window_seconds for r in self.aggregator.requests if r.window_seconds is not None}
        return windows.pop() if len(windows) == 1 else None

    def snapshot(self) -> Snapshot:
        return self.store.get(self.name)

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def set_window(self, window_seconds: int) -> None:
        """Retarget windowed sources. Takes effect from the next cycle."""
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.aggregator = self.aggregator.with_window(window_seconds)
        logger.info("Context %s window set to %ds", self.name, window_seconds)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """Start a refresh cycle unless one is already running. Returns True if started."""
        if self._stopped:
            return False
        if self.state is ContextState.fetching:
            self.skipped_ticks += 1
            logger.info("Context %s still fetching; tick skipped (%d so far)", self.name, self.skipped_ticks)
            return False
        previous = self._cycle
        if previous is not None and not previous.done():
            self._draining.add(previous)
            previous.add_done_callback(self._draining.discard)
        self._cycle_generation = self._generation
        self._cycle = asyncio.get_running_loop().create_task(
            self._run_cycle(self._generation), name=f"refresh-{self.name}"
        )
        return True

    async def refresh_now(self) -> Snapshot:
        """On-demand refresh: start a cycle or join the one in flight, then return the snapshot."""
        if self._stopped:
            raise RuntimeError(f"Context {self.name} is stopped")
        if self.state is not ContextState.fetching:
            self.tick()
        cycle = self._cycle
        if cycle is not None:
            await asyncio.shield(cycle)
        return self.snapshot()

    async def _run_cycle(self, generation: int) -> None:
        previous = self.store.get(self.name)
        updated = await self.aggregator.refresh(previous)
        if self._stopped or generation != self._generation:
            logger.debug("Context %s stopped mid-cycle; result discarded", self.name)
            return
        version = self.store.publish(self.name, updated)
        self.completed_cycles += 1
        logger.debug("Context %s published cycle %d (version %d)", self.name, self.completed_cycles, version)
        for callback in list(self._subscribers):
            try:
                callback(self.name, updated)
            except Exception:
                logger.exception("Subscriber for context %s raised", self.name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _timer_loop(self) -> None:
        """Tick immediately, then every interval on the injected clock.

        CancelledError from stop() propagates out of clock.sleep and unwinds
        the loop; it is never swallowed here.
        """
        self.tick()
        if self.interval_seconds is None:
            return
        while True:
            await self.clock.sleep(self.interval_seconds)
            self.tick()

    def start(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        self._stopped = False
        self._timer = asyncio.get_running_loop().create_task(self._timer_loop(), name=f"timer-{self.name}")
        logger.info("Context %s started (interval=%s)", self.name, self.interval_seconds or "on-demand")

    def stop(self) -> None:
        """Cancel the timer now; an in-flight cycle may finish but will not publish."""
        self._stopped = True
        # A restart must not let a cycle from before the stop publish.
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.info("Context %s stopped", self.name)

    async def wait_idle(self) -> None:
        """Await the in-flight cycle and any draining ones. Used for orderly shutdown and in tests."""
        pending = [t for t in (self._cycle, *self._draining) if t is not None and not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class RefreshScheduler:
    def __init__(self, executor: Optional[Executor] = None) -> None:
        self._contexts: dict[str, RefreshContext] = {}
        # Worker pool shared by the contexts' aggregators, owned here.
        self.executor = executor

    def add(self, context: RefreshContext) -> RefreshContext:
        if context.name in self._contexts:
            raise ValueError(f"Context {context.name!r} already registered")
        self._contexts[context.name] = context
        return context

    def get(self, name: str) -> RefreshContext:
        return self._contexts[name]

    def __contains__(self, name: object) -> bool:
        return name in self._contexts

    def __iter__(self):
        return iter(self._contexts.values())

    def names(self) -> list[str]:
        return list(self._contexts)

    def start(self) -> None:
        for context in self._contexts.values():
            context.start()

    def stop(self) -> None:
        for context in self._contexts.values():
            context.stop()

    def close(self) -> None:
        """Stop every context and release the worker pool. Calls still running are not waited for."""
        self.stop()
        if self.executor is not None:
            self.executor.shutdown(wait=False, cancel_futures=True)


# ---------------------------------------------------------------------------
# Default wiring
# ---------------------------------------------------------------------------


def default_requests(settings: Settings) -> dict[str, list[SourceRequest]]:
    """Source sets per view context, mirroring what each dashboard page shows."""
    overview = settings.overview_window_seconds
    logs = settings.logs_window_seconds
    analytics = settings.analytics_window_seconds
    return {
        "overview": [
            SourceRequest(SourceKind.status),
            SourceRequest(SourceKind.threats),
            SourceRequest(SourceKind.metrics, overview),
            SourceRequest(SourceKind.network, overview),
            SourceRequest(SourceKind.alerts),
            SourceRequest(SourceKind.logs, overview),
        ],
        "logs": [
            SourceRequest(SourceKind.logs, logs),
            SourceRequest(SourceKind.alerts),
            SourceRequest(SourceKind.threats),
        ],
        "analytics": [
            SourceRequest(SourceKind.analytics),
            SourceRequest(SourceKind.metrics, analytics),
            SourceRequest(SourceKind.network, analytics),
            SourceRequest(SourceKind.alerts),
        ],
    }


def build_scheduler(
    settings: Settings,
    client: SourceClient,
    store: SnapshotStore,
    clock: Optional[Clock] = None,
) -> RefreshScheduler:
    clock = clock or SystemClock()
    request_sets = default_requests(settings)
    # One pool for every context, since their first cycles fan out together.
    executor = ThreadPoolExecutor(
        max_workers=pool_size(sum(len(r) for r in request_sets.values())),
        thread_name_prefix="teleguard-fetch",
    )
    scheduler = RefreshScheduler(executor)
    for name, requests in request_sets.items():
        aggregator = Aggregator(
            client, requests, call_timeout=settings.call_timeout_seconds, clock=clock, executor=executor
        )
        scheduler.add(
            RefreshContext(
                name,
                aggregator,
                store,
                clock=clock,
                interval_seconds=settings.interval_for(name),
            )
        )
    return scheduler
