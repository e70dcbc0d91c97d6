"""Milestone classifier.

Maps a raw Kubernetes event to the pod milestone it marks, or to nothing.
Pure and stateless: safe to call from any number of threads.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pod_timeline.models import MilestoneEvent, MilestoneKind, PodIdentity

logger = logging.getLogger(__name__)

POD_KIND = "Pod"

# Event reasons emitted by the scheduler, kubelet and CNI plugins
REASON_MILESTONES: dict[str, MilestoneKind] = {
    "Scheduled": MilestoneKind.SCHEDULED,
    "AllocIPSucceed": MilestoneKind.NETWORK_READY,
    "Pulling": MilestoneKind.PULL_STARTED,
    "Pulled": MilestoneKind.PULL_FINISHED,
    "Created": MilestoneKind.CONTAINER_CREATED,
    "Started": MilestoneKind.CONTAINER_STARTED,
    "Killing": MilestoneKind.KILLING,
}


def classify(event: Any) -> MilestoneEvent | None:
    """Classify a raw event into a MilestoneEvent.

    Returns None for events that do not concern a pod, carry an unrecognised
    reason, or are malformed (no UID, no timestamp). Never raises on bad input.
    """
    obj = getattr(event, "involved_object", None)
    if obj is None:
        logger.warning("Dropping event without involved object: %r", _event_name(event))
        return None

    kind = getattr(obj, "kind", None)
    if kind != POD_KIND:
        logger.debug("Ignoring event %s for kind %s", _event_name(event), kind)
        return None

    reason = getattr(event, "reason", None)
    milestone = REASON_MILESTONES.get(reason or "")
    if milestone is None:
        logger.debug("event %s not supported", reason)
        return None

    uid = getattr(obj, "uid", None)
    if not uid:
        logger.warning(
            "Dropping %s event %s: involved pod %s/%s has no UID",
            reason,
            _event_name(event),
            getattr(obj, "namespace", None) or "",
            getattr(obj, "name", None) or "",
        )
        return None

    ts = first_observed(event)
    if ts is None:
        logger.warning("Dropping %s event %s: no timestamp", reason, _event_name(event))
        return None

    return MilestoneEvent(
        identity=PodIdentity(
            uid=str(uid),
            namespace=getattr(obj, "namespace", None) or "",
            name=getattr(obj, "name", None) or "",
        ),
        kind=milestone,
        timestamp=ts,
    )


def first_observed(event: Any) -> datetime | None:
    """Return when an event first happened.

    Prefers the object creation timestamp, then ``first_timestamp``, then the
    micro-time ``event_time``. The last-seen time is never used.
    """
    meta = getattr(event, "metadata", None)
    ts = (
        getattr(meta, "creation_timestamp", None)
        or getattr(event, "first_timestamp", None)
        or getattr(event, "event_time", None)
    )
    if not isinstance(ts, datetime):
        return None

    # Ensure timezone-aware
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _event_name(event: Any) -> str:
    meta = getattr(event, "metadata", None)
    name = getattr(meta, "name", None)
    return name or "<unnamed>"
