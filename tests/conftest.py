"""Shared fixtures and helpers for pod-timeline tests.

We build lightweight mock objects that replicate the attribute-access interface
of the kubernetes Python client objects, without needing a cluster.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from pod_timeline.store import SqlAlchemyReconciliationStore

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """A fixed UTC timestamp ``seconds`` after T0."""
    return T0 + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Generic attribute-bag that behaves like a K8s API object
# ---------------------------------------------------------------------------


class K8sObj:
    """Minimal mock for K8s API objects.  Supports nested attribute access."""

    def __init__(self, **kwargs: Any):
        for k, v in kwargs.items():
            if isinstance(v, dict):
                setattr(self, k, K8sObj(**v))
            else:
                setattr(self, k, v)

    def __getattr__(self, name: str) -> Any:
        # Return None for any attribute not set (mirrors K8s client behaviour)
        return None


# ---------------------------------------------------------------------------
# Event factory
# ---------------------------------------------------------------------------


def make_event(
    reason: str = "Scheduled",
    uid: str | None = "uid-1",
    pod_name: str = "web-0",
    namespace: str = "default",
    kind: str = "Pod",
    timestamp: datetime | None = None,
    first_timestamp: datetime | None = None,
    last_timestamp: datetime | None = None,
    event_time: datetime | None = None,
    resource_version: str = "1",
    name: str | None = None,
) -> K8sObj:
    """Build a CoreV1Event-shaped mock.

    ``timestamp`` becomes metadata.creation_timestamp; pass None together with
    first_timestamp/event_time to exercise the fallbacks.
    """
    return K8sObj(
        metadata=K8sObj(
            name=name or f"{pod_name}.{reason.lower()}",
            namespace=namespace,
            creation_timestamp=timestamp,
            resource_version=resource_version,
        ),
        involved_object=K8sObj(
            kind=kind,
            uid=uid,
            name=pod_name,
            namespace=namespace,
        ),
        type="Normal",
        reason=reason,
        message=f"{reason} {pod_name}",
        count=1,
        first_timestamp=first_timestamp,
        last_timestamp=last_timestamp,
        event_time=event_time,
    )


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    s = SqlAlchemyReconciliationStore.from_url("sqlite://", retry_backoff=0)
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'store.sqlite'}"


@pytest.fixture
def file_store(db_url):
    s = SqlAlchemyReconciliationStore.from_url(db_url, retry_backoff=0)
    try:
        yield s
    finally:
        s.close()
