"""
core/aggregator.py -- Concurrent fan-out over the Source Client and the merge step.

refresh() never fails. Each source runs on a worker thread from a dedicated
pool, bounded by its own asyncio.wait_for budget, and any failure is converted
into a FetchOutcome value before the pure merge_outcomes() step builds the next
Snapshot. One slow or broken source cannot delay or abort its siblings.

The budget starts when a worker picks the call up. A call that has used up its
budget keeps its thread until the transport timeout fires, so the pool is
sized with headroom for those (see pool_size).
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from core.classifier import classify_all
from core.clock import Clock, SystemClock
from core.fetcher import WINDOWED, SourceClient
from core.models import FetchErrorKind, FetchOutcome, Snapshot, SourceKind

logger = logging.getLogger("teleguard.aggregator")


def pool_size(request_count: int) -> int:
    """Workers for a fan-out of request_count calls, doubled for calls still draining after a timeout."""
    return max(1, 2 * request_count)


@dataclass(frozen=True)
class SourceRequest:
    kind: SourceKind
    window_seconds: Optional[int] = None


def normalize(outcome: FetchOutcome) -> FetchOutcome:
    """Apply post-fetch normalization. Log batches are classified here."""
    if outcome.ok and outcome.kind is SourceKind.logs:
        return replace(outcome, payload=classify_all(outcome.payload))
    return outcome


def merge_outcomes(snapshot: Snapshot, outcomes: Iterable[FetchOutcome], at: datetime) -> Snapshot:
    """Build the next Snapshot from the previous one plus this cycle's outcomes.

    Successes replace payload and fetched_at; failures only annotate
    last_error and bump consecutive_failures. Slots with no outcome this cycle
    are carried over untouched. The input snapshot is never modified.
    """
    slots = dict(snapshot.slots)
    for outcome in outcomes:
        current = snapshot.slot(outcome.kind)
        if outcome.ok:
            slots[outcome.kind] = current.succeeded(outcome.payload, at)
        else:
            slots[outcome.kind] = current.failed(outcome.error)
    return Snapshot(slots=slots, updated_at=at)


class Aggregator:
    def __init__(
        self,
        client: SourceClient,
        requests: Iterable[SourceRequest],
        call_timeout: float = 5.0,
        clock: Optional[Clock] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.client = client
        self.requests = tuple(requests)
        self.call_timeout = call_timeout
        self.clock = clock or SystemClock()
        # Dedicated pool, never the loop's default executor.
        self.executor = executor or ThreadPoolExecutor(
            max_workers=pool_size(len(self.requests)), thread_name_prefix="teleguard-fetch"
        )
        kinds = [r.kind for r in self.requests]
        if len(kinds) != len(set(kinds)):
            raise ValueError(f"Each source kind may appear once per aggregator: {[k.value for k in kinds]}")

    @property
    def kinds(self) -> tuple[SourceKind, ...]:
        return tuple(r.kind for r in self.requests)

    def with_window(self, window_seconds: int) -> Aggregator:
        """Return a copy whose windowed sources query the new window."""
        retargeted = [
            SourceRequest(r.kind, window_seconds) if r.kind in WINDOWED else r for r in self.requests
        ]
        return Aggregator(self.client, retargeted, self.call_timeout, self.clock, self.executor)

    async def _fetch_one(self, request: SourceRequest) -> FetchOutcome:
        kind = request.kind
        loop = asyncio.get_running_loop()
        running = asyncio.Event()

        def call() -> FetchOutcome:
            loop.call_soon_threadsafe(running.set)
            return self.client.fetch(kind, request.window_seconds)

        work = None
        try:
            work = loop.run_in_executor(self.executor, call)
            # Also released if the pool drops the call before it runs.
            work.add_done_callback(lambda _: running.set())
            await running.wait()
            outcome = await asyncio.wait_for(work, timeout=self.call_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s exceeded its %.1fs budget", kind.value, self.call_timeout)
            return FetchOutcome.failure(kind, FetchErrorKind.timeout, f"no response within {self.call_timeout:.1f}s")
        except asyncio.CancelledError:
            if work is not None:
                work.cancel()
            raise
        except Exception as e:
            # Isolation boundary: a client bug must not take down sibling sources.
            logger.exception("%s fetch raised unexpectedly", kind.value)
            return FetchOutcome.failure(kind, FetchErrorKind.bad_response, f"{type(e).__name__}: {e}")
        return normalize(outcome)

    async def fetch_all(self) -> list[FetchOutcome]:
        """Run every source concurrently; always returns one outcome per request."""
        return list(await asyncio.gather(*(self._fetch_one(r) for r in self.requests)))

    async def refresh(self, snapshot: Snapshot) -> Snapshot:
        started = self.clock.monotonic()
        outcomes = await self.fetch_all()
        failed = [o.kind.value for o in outcomes if not o.ok]
        if failed:
            logger.info("Refresh finished with %d/%d failed sources: %s", len(failed), len(outcomes), ", ".join(failed))
        logger.debug("Refresh of %d sources took %.2fs", len(outcomes), self.clock.monotonic() - started)
        return merge_outcomes(snapshot, outcomes, self.clock.now())
