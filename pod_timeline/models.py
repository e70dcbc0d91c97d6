"""Data models for the pod lifecycle timeline.

Core concepts:
- PodIdentity: the stable key (UID) of a pod, plus display-only namespace/name
- MilestoneKind: the closed set of lifecycle phases we record
- MilestoneEvent: one classified observation, consumed immediately by the store
- LifecycleRecord: the per-pod timeline and its first-write-wins merge law
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MilestoneKind(str, Enum):
    """Named pod-lifecycle phase transitions."""

    SCHEDULED = "Scheduled"
    NETWORK_READY = "NetworkReady"
    PULL_STARTED = "PullStarted"
    PULL_FINISHED = "PullFinished"
    CONTAINER_CREATED = "ContainerCreated"
    CONTAINER_STARTED = "ContainerStarted"
    KILLING = "Killing"


# ---------------------------------------------------------------------------
# Pod identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PodIdentity:
    """Unique identifier for a pod.

    Only ``uid`` takes part in equality and hashing; namespace and name are
    informational and may change between observations of the same pod.
    """

    uid: str
    namespace: str = field(default="", compare=False)
    name: str = field(default="", compare=False)

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name} ({self.uid})"
        return f"{self.name or '?'} ({self.uid})"


# ---------------------------------------------------------------------------
# Milestone event: one classified observation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MilestoneEvent:
    """A single classified lifecycle observation for one pod."""

    identity: PodIdentity
    kind: MilestoneKind
    timestamp: datetime


# ---------------------------------------------------------------------------
# Lifecycle record: the per-pod timeline
# ---------------------------------------------------------------------------


@dataclass
class LifecycleRecord:
    """Per-pod timeline of milestone timestamps.

    Every milestone is ``None`` until first observed. Once set, a milestone is
    never changed again (first observation wins, regardless of delivery order).
    """

    identity: PodIdentity

    scheduled: datetime | None = None
    network_ready: datetime | None = None
    pull_started: datetime | None = None
    pull_finished: datetime | None = None
    container_created: datetime | None = None
    container_started: datetime | None = None
    killing: datetime | None = None

    @property
    def uid(self) -> str:
        return self.identity.uid

    def milestone(self, kind: MilestoneKind) -> datetime | None:
        """Return the recorded timestamp for a milestone, or None if unset."""
        if kind is MilestoneKind.SCHEDULED:
            return self.scheduled
        if kind is MilestoneKind.NETWORK_READY:
            return self.network_ready
        if kind is MilestoneKind.PULL_STARTED:
            return self.pull_started
        if kind is MilestoneKind.PULL_FINISHED:
            return self.pull_finished
        if kind is MilestoneKind.CONTAINER_CREATED:
            return self.container_created
        if kind is MilestoneKind.CONTAINER_STARTED:
            return self.container_started
        if kind is MilestoneKind.KILLING:
            return self.killing
        raise ValueError(f"Unknown milestone kind: {kind!r}")

    def apply(self, event: MilestoneEvent) -> bool:
        """Fold a milestone event into this record.

        Refreshes the informational namespace/name when the event carries them,
        then sets the targeted milestone only if it is still unset.

        Returns:
            True if the milestone field was newly set, False if it was already
            present and left untouched.
        """
        if event.identity != self.identity:
            raise ValueError(
                f"Event for pod {event.identity.uid} applied to record {self.identity.uid}"
            )

        self.identity = PodIdentity(
            uid=self.identity.uid,
            namespace=event.identity.namespace or self.identity.namespace,
            name=event.identity.name or self.identity.name,
        )

        if self.milestone(event.kind) is not None:
            return False

        ts = event.timestamp
        if event.kind is MilestoneKind.SCHEDULED:
            self.scheduled = ts
        elif event.kind is MilestoneKind.NETWORK_READY:
            self.network_ready = ts
        elif event.kind is MilestoneKind.PULL_STARTED:
            self.pull_started = ts
        elif event.kind is MilestoneKind.PULL_FINISHED:
            self.pull_finished = ts
        elif event.kind is MilestoneKind.CONTAINER_CREATED:
            self.container_created = ts
        elif event.kind is MilestoneKind.CONTAINER_STARTED:
            self.container_started = ts
        elif event.kind is MilestoneKind.KILLING:
            self.killing = ts
        return True

    def milestones(self) -> dict[MilestoneKind, datetime | None]:
        return {kind: self.milestone(kind) for kind in MilestoneKind}

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.identity.uid,
            "namespace": self.identity.namespace,
            "name": self.identity.name,
            **{
                kind.value: ts.isoformat() if ts is not None else None
                for kind, ts in self.milestones().items()
            },
        }
