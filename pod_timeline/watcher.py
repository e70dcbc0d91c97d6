"""Pod event watcher.

Turns the Kubernetes watch API for v1 Events into a lazy iterator of raw
event objects. Delivery is at-least-once: after a server-side timeout the
watch resumes from the last resource version seen, and when that version has
expired (410 Gone) the watch relists from scratch, replaying events that may
already have been delivered.

Transient failures (5xx, 429, dropped connections, read timeouts) are retried
forever with capped exponential backoff. Only authentication and authorization
errors end the stream.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any

from kubernetes import watch
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from pod_timeline.k8s_client import K8sClient

logger = logging.getLogger(__name__)

# Server-side filter; the classifier still checks the kind itself
POD_EVENTS_SELECTOR = "involvedObject.kind=Pod"

HTTP_GONE = 410
FATAL_STATUSES = frozenset({401, 403})

DEFAULT_BACKOFF_INITIAL = 1.0  # seconds
DEFAULT_BACKOFF_MAX = 30.0


class EventWatcher:
    """Streams newly added pod events from the cluster.

    Args:
        k8s: Connected K8sClient instance.
        namespace: If set, watch only this namespace. None = all namespaces.
        timeout_seconds: Server-side watch timeout before the stream is re-opened.
        watch_factory: Builds the underlying ``kubernetes.watch.Watch``.
        backoff_initial: First delay before re-opening after a transient error.
        backoff_max: Upper bound for the doubling delay.
    """

    def __init__(
        self,
        k8s: K8sClient,
        namespace: str | None = None,
        timeout_seconds: int = 300,
        watch_factory: Callable[[], Any] = watch.Watch,
        backoff_initial: float = DEFAULT_BACKOFF_INITIAL,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
    ):
        self.k8s = k8s
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._watch_factory = watch_factory
        self._watch: Any = None
        self._stopped = threading.Event()
        self.resource_version = ""

    def stop(self) -> None:
        """Stop streaming; the iterator returns after the current notification."""
        self._stopped.set()
        if self._watch is not None:
            self._watch.stop()

    def _list_call(self) -> tuple[Callable[..., Any], dict[str, Any]]:
        core = self.k8s.core_v1
        if self.namespace:
            return core.list_namespaced_event, {"namespace": self.namespace}
        return core.list_event_for_all_namespaces, {}

    def stream(self) -> Iterator[Any]:
        """Yield raw event objects until stop() is called.

        Raises:
            ApiException: The API server rejected our credentials (401/403).
        """
        list_fn, base_kwargs = self._list_call()
        delay = self.backoff_initial

        while not self._stopped.is_set():
            kwargs = {
                **base_kwargs,
                "field_selector": POD_EVENTS_SELECTOR,
                "timeout_seconds": self.timeout_seconds,
            }
            if self.resource_version:
                kwargs["resource_version"] = self.resource_version

            self._watch = self._watch_factory()
            logger.debug(
                "Opening event watch (namespace=%s, resource_version=%s)",
                self.namespace or "*",
                self.resource_version or "<list>",
            )
            failure: Exception | None = None
            try:
                for notification in self._watch.stream(list_fn, **kwargs):
                    delay = self.backoff_initial
                    obj = notification.get("object")
                    rv = getattr(getattr(obj, "metadata", None), "resource_version", None)
                    if rv:
                        self.resource_version = rv
                    if notification.get("type") != "ADDED":
                        continue
                    yield obj
                    if self._stopped.is_set():
                        return
            except ApiException as exc:
                if exc.status in FATAL_STATUSES:
                    raise
                if exc.status == HTTP_GONE:
                    logger.info(
                        "Resource version %s expired, relisting events", self.resource_version
                    )
                    self.resource_version = ""
                else:
                    failure = exc
            except HTTPError as exc:
                failure = exc
            finally:
                self._watch.stop()

            if failure is None:
                continue
            logger.warning(
                "Event watch failed (%s), re-opening from resource version %s in %.1fs",
                _describe(failure),
                self.resource_version or "<list>",
                delay,
            )
            if self._stopped.wait(delay):
                return
            delay = min(delay * 2, self.backoff_max)


def _describe(exc: Exception) -> str:
    if isinstance(exc, ApiException):
        return f"{exc.status} {exc.reason}"
    return f"{type(exc).__name__}: {exc}"
