"""Cache of recently bound pods per node, kept for load-aware scoring."""

from __future__ import annotations

import bisect
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .core import Pod

log = logging.getLogger(__name__)

# Maximum staleness of metrics possible by the load watcher.
CACHE_CLEANUP_INTERVAL_SECONDS = 5 * 60
# Time interval for each metrics agent ingestion.
METRICS_AGENT_REPORTING_INTERVAL_SECONDS = 60


@dataclass
class ScheduledPod:
    """A pod bound to a node, with the time (epoch seconds) it was seen bound."""

    pod: Pod
    timestamp: float = 0.0


class PodAssignEventHandler:
    """Watches assigned pods and remembers them per node for a short while."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = CACHE_CLEANUP_INTERVAL_SECONDS,
    ):
        self.scheduled_pods: dict[str, list[ScheduledPod]] = {}
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._lock = threading.Lock()
        self._thread_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None

    def on_add(self, pod: Pod) -> None:
        self._update_cache(pod)

    def on_update(self, old_pod: Pod, new_pod: Pod) -> None:
        if old_pod.node_name != new_pod.node_name:
            self._update_cache(new_pod)

    def on_delete(self, pod: Pod) -> None:
        """Forget the first cached entry with the same UID on the pod's node."""
        with self._lock:
            entries = self.scheduled_pods.get(pod.node_name)
            if entries is None:
                return
            for position, entry in enumerate(entries):
                if entry.pod.uid == pod.uid:
                    log.debug("deleting pod %r", entry.pod)
                    del entries[position]
                    break

    def _update_cache(self, pod: Pod) -> None:
        if not pod.node_name:
            return
        with self._lock:
            self.scheduled_pods.setdefault(pod.node_name, []).append(
                ScheduledPod(pod=pod, timestamp=self._clock())
            )

    def cleanup_cache(self) -> None:
        """Drop entries older than the metrics reporting interval.

        Entries are assumed to be in time order. A node whose entries are all
        stale is left untouched.
        """
        with self._lock:
            for node_name, entries in list(self.scheduled_pods.items()):
                cutoff = self._clock() - METRICS_AGENT_REPORTING_INTERVAL_SECONDS
                first_fresh = bisect.bisect_right(
                    entries, cutoff, key=lambda entry: entry.timestamp
                )
                if first_fresh == len(entries):
                    continue
                remaining = entries[first_fresh:]
                if remaining:
                    self.scheduled_pods[node_name] = remaining
                else:
                    del self.scheduled_pods[node_name]

    def pods_for_node(self, node_name: str) -> list[ScheduledPod]:
        """Return a copy of the cached entries for a node."""
        with self._lock:
            return list(self.scheduled_pods.get(node_name, ()))

    @property
    def running(self) -> bool:
        with self._thread_lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start periodic cache cleanup in a background thread."""
        with self._thread_lock:
            if self._thread is not None:
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="pod-assign-cache-cleanup",
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        """Stop the background cleanup and wait for it to finish."""
        with self._thread_lock:
            thread, event = self._thread, self._stop_event
            self._thread = None
            self._stop_event = None
        if thread is None:
            return
        event.set()
        thread.join()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._cleanup_interval):
            self.cleanup_cache()

    def __enter__(self) -> PodAssignEventHandler:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()