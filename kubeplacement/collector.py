"""Periodic collection of node load metrics from a load watcher."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from .watcher import Metric, ServiceClient, WatcherError, WatcherMetrics

log = logging.getLogger(__name__)

METRICS_UPDATE_INTERVAL_SECONDS = 30

DEFAULT_METRIC_PROVIDER_TYPE = "KubernetesMetricsServer"
DEFAULT_SAFE_VARIANCE_MARGIN = 1.0
DEFAULT_SAFE_VARIANCE_SENSITIVITY = 1.0


class MetricsClient(Protocol):
    def get_latest_watcher_metrics(self) -> WatcherMetrics: ...


@dataclass
class LoadVariationRiskBalancingArgs:
    """Configuration of the load variation risk balancing plugin."""

    metric_provider_type: str = DEFAULT_METRIC_PROVIDER_TYPE
    metric_provider_address: str = ""
    metric_provider_token: str = ""
    safe_variance_margin: float = DEFAULT_SAFE_VARIANCE_MARGIN
    safe_variance_sensitivity: float = DEFAULT_SAFE_VARIANCE_SENSITIVITY
    watcher_address: str = ""


def get_args(obj) -> LoadVariationRiskBalancingArgs:
    """Return obj if it is a plugin configuration, otherwise the defaults."""
    if isinstance(obj, LoadVariationRiskBalancingArgs):
        return obj
    log.error(
        "want args to be of type LoadVariationRiskBalancingArgs, got %s, using defaults",
        type(obj).__name__,
    )
    return LoadVariationRiskBalancingArgs()


class Collector:
    """Holds the latest metrics from a load watcher and refreshes them periodically."""

    def __init__(
        self,
        obj=None,
        client: MetricsClient | None = None,
        update_interval: float = METRICS_UPDATE_INTERVAL_SECONDS,
    ):
        self.args = get_args(obj)
        log.debug(
            "Using LoadVariationRiskBalancingArgs: MetricProvider.Type=%r, "
            "MetricProvider.Address=%r, SafeVarianceMargin=%f, "
            "SafeVarianceSensitivity=%f, WatcherAddress=%r",
            self.args.metric_provider_type,
            self.args.metric_provider_address,
            self.args.safe_variance_margin,
            self.args.safe_variance_sensitivity,
            self.args.watcher_address,
        )
        if client is None:
            if not self.args.watcher_address:
                raise ValueError(
                    "no load watcher address configured and no metrics client given"
                )
            client = ServiceClient(self.args.watcher_address)
        self.client = client
        self._update_interval = update_interval
        self._metrics = WatcherMetrics()
        self._lock = threading.Lock()
        self._thread_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None

        try:
            self.update_metrics()
        except WatcherError as err:
            log.warning("unable to populate metrics initially: %s", err)

    def get_all_metrics(self) -> WatcherMetrics:
        """Return the most recently collected metrics."""
        with self._lock:
            return self._metrics

    def get_node_metrics(self, node_name: str) -> list[Metric] | None:
        """Return the metrics of a node, or None when the watcher has none for it."""
        node_metrics = self.get_all_metrics().node_metrics.get(node_name)
        if node_metrics is None:
            log.error("unable to find metrics for node %s", node_name)
            return None
        return node_metrics.metrics

    def update_metrics(self) -> None:
        """Fetch the latest metrics; raise WatcherError if the watcher fails."""
        try:
            metrics = self.client.get_latest_watcher_metrics()
        except WatcherError as err:
            log.error("load watcher client failed: %s", err)
            raise
        with self._lock:
            self._metrics = metrics

    @property
    def running(self) -> bool:
        with self._thread_lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start refreshing metrics in a background thread."""
        with self._thread_lock:
            if self._thread is not None:
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="load-watcher-collector",
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        """Stop the background refresh and wait for it to finish."""
        with self._thread_lock:
            thread, event = self._thread, self._stop_event
            self._thread = None
            self._stop_event = None
        if thread is None:
            return
        event.set()
        thread.join()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._update_interval):
            try:
                self.update_metrics()
            except WatcherError as err:
                log.warning("unable to update metrics: %s", err)

    def __enter__(self) -> Collector:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()