"""Reconciliation driver.

Consumes raw events from any iterable (normally EventWatcher.stream()),
classifies each one and merges the result into the store. No business logic
lives here: a classifier None is dropped, a StoreError is logged and dropped.
Redelivery, if wanted, is the event source's job.
"""

from __future__ import annotations

import logging
import threading
import zlib
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

from pod_timeline.classifier import classify
from pod_timeline.models import MilestoneEvent
from pod_timeline.store import ReconciliationStore, StoreError

logger = logging.getLogger(__name__)

Classifier = Callable[[Any], MilestoneEvent | None]


@dataclass
class DriverStats:
    """Counters for one driver run."""

    received: int = 0
    ignored: int = 0  # not relevant or malformed
    merged: int = 0
    failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def bump(self, counter: str) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def to_dict(self) -> dict[str, int]:
        return {
            "received": self.received,
            "ignored": self.ignored,
            "merged": self.merged,
            "failed": self.failed,
        }


class ReconciliationDriver:
    """Connects an event feed to a ReconciliationStore.

    Args:
        store: Where records are merged.
        classifier: Raw event -> MilestoneEvent | None. Defaults to ``classify``.
        workers: Number of merge threads. 1 = inline. With more, each pod UID
            is pinned to one thread so a pod's events merge in delivery order.

    ``stats`` holds the counters of the current (or last) run and stays
    readable while ``run`` is in progress or after it was interrupted.
    """

    def __init__(
        self,
        store: ReconciliationStore,
        classifier: Classifier = classify,
        workers: int = 1,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.store = store
        self.classifier = classifier
        self.workers = workers
        self.stats = DriverStats()
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Stop consuming new events. Merges already in flight still complete."""
        self._stop.set()

    def handle(self, raw_event: Any) -> MilestoneEvent | None:
        """Classify and merge a single raw event."""
        event = self._classify(raw_event)
        if event is None:
            return None
        return self._merge(event)

    def _classify(self, raw_event: Any) -> MilestoneEvent | None:
        self.stats.bump("received")
        event = self.classifier(raw_event)
        if event is None:
            self.stats.bump("ignored")
        return event

    def _merge(self, event: MilestoneEvent) -> MilestoneEvent | None:
        try:
            self.store.merge(event)
        except StoreError as exc:
            self.stats.bump("failed")
            logger.error(
                "Dropping %s for pod %s: %s", event.kind.value, event.identity, exc
            )
            return None

        self.stats.bump("merged")
        return event

    def run(self, events: Iterable[Any]) -> DriverStats:
        """Consume ``events`` until exhausted or stop() is called."""
        self.stats = stats = DriverStats()
        if self.workers == 1:
            for raw_event in events:
                if self.stopped:
                    break
                self.handle(raw_event)
        else:
            self._run_sharded(events)

        logger.info(
            "Reconciliation finished: %d received, %d merged, %d ignored, %d failed",
            stats.received,
            stats.merged,
            stats.ignored,
            stats.failed,
        )
        return stats

    def _run_sharded(self, events: Iterable[Any]) -> None:
        # Classification is pure and runs on the feed thread; merges for one
        # UID always go to the same single-thread shard, in feed order.
        shards = [
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"reconcile-{i}")
            for i in range(self.workers)
        ]
        # Bound in-flight work so a fast feed cannot queue unbounded memory
        max_pending = self.workers * 4
        pending: set[Future[Any]] = set()

        try:
            for raw_event in events:
                if self.stopped:
                    break
                event = self._classify(raw_event)
                if event is None:
                    continue
                if len(pending) >= max_pending:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    _raise_unexpected(done)
                shard = shards[shard_for(event.identity.uid, self.workers)]
                pending.add(shard.submit(self._merge, event))

            done, pending = wait(pending)
            _raise_unexpected(done)
        finally:
            # In-flight merges always run to completion
            for shard in shards:
                shard.shutdown(wait=True)


def shard_for(uid: str, shards: int) -> int:
    """Stable shard index for a pod UID."""
    return zlib.crc32(uid.encode("utf-8")) % shards


def _raise_unexpected(done: Iterable[Future[Any]]) -> None:
    for fut in done:
        exc = fut.exception()
        if exc is not None:
            raise exc
