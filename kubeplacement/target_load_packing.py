"""Best-fit bin packing of pods around a target CPU utilisation of each node."""

from __future__ import annotations

import enum
import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Protocol

from .core import RESOURCE_CPU, Container, Pod, ResourceList
from .framework import MIN_NODE_SCORE, NodeScore, Snapshot
from .quantity import ZERO, parse_quantity
from .trimaran_handler import PodAssignEventHandler
from .watcher import AVERAGE, CPU, LATEST, ServiceClient, WatcherError, WatcherMetrics

log = logging.getLogger(__name__)

# Time interval for each metrics agent ingestion.
METRICS_AGENT_REPORTING_INTERVAL_SECONDS = 60
METRICS_UPDATE_INTERVAL_SECONDS = 30
LOAD_WATCHER_SERVICE_CLIENT_NAME = "load-watcher"

DEFAULT_TARGET_UTILIZATION_PERCENT = 40
DEFAULT_REQUESTS_MULTIPLIER = "1.5"
DEFAULT_REQUESTS_CPU = "1"


class MetricProviderType(enum.Enum):
    KUBERNETES_METRICS_SERVER = "KubernetesMetricsServer"
    PROMETHEUS = "Prometheus"
    SIGNAL_FX = "SignalFx"


class MetricsClient(Protocol):
    def get_latest_watcher_metrics(self) -> WatcherMetrics: ...


def _default_requests() -> ResourceList:
    return {RESOURCE_CPU: parse_quantity(DEFAULT_REQUESTS_CPU)}


@dataclass
class TargetLoadPackingArgs:
    """Configuration of the target load packing plugin."""

    target_utilization: int = DEFAULT_TARGET_UTILIZATION_PERCENT
    default_requests: ResourceList = field(default_factory=_default_requests)
    default_requests_multiplier: str = DEFAULT_REQUESTS_MULTIPLIER
    watcher_address: str = ""
    metric_provider_type: MetricProviderType | str = ""
    metric_provider_address: str = ""
    metric_provider_token: str = ""


def validate_args(args) -> TargetLoadPackingArgs:
    """Check and complete the plugin arguments; raise TypeError or ValueError."""
    if not isinstance(args, TargetLoadPackingArgs):
        raise TypeError(
            f"want args to be of type TargetLoadPackingArgs, got {type(args).__name__}"
        )
    if not args.watcher_address:
        if not args.metric_provider_type:
            args.metric_provider_type = MetricProviderType.KUBERNETES_METRICS_SERVER
        else:
            try:
                args.metric_provider_type = MetricProviderType(args.metric_provider_type)
            except ValueError:
                raise ValueError(
                    f"invalid MetricProvider.Type, got {args.metric_provider_type!r}"
                ) from None
    try:
        float(args.default_requests_multiplier)
    except (TypeError, ValueError) as err:
        raise ValueError(f"unable to parse DefaultRequestsMultiplier: {err}") from err
    return args


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _cpu_milli(resources: ResourceList | None) -> int:
    if not resources:
        return 0
    return resources.get(RESOURCE_CPU, ZERO).milli_value()


class _AssignedPodEvents:
    """Forwards pod events to a handler, seen only through assigned pods."""

    def __init__(self, handler: PodAssignEventHandler):
        self.handler = handler

    @staticmethod
    def _accept(obj) -> bool:
        if isinstance(obj, Pod):
            return bool(obj.node_name)
        log.error("unable to handle object in TargetLoadPacking: %s", type(obj).__name__)
        return False

    def on_add(self, obj) -> None:
        if self._accept(obj):
            self.handler.on_add(obj)

    def on_update(self, old_obj, new_obj) -> None:
        newer = self._accept(new_obj)
        older = self._accept(old_obj)
        if newer and older:
            self.handler.on_update(old_obj, new_obj)
        elif newer:
            self.handler.on_add(new_obj)
        elif older:
            self.handler.on_delete(old_obj)

    def on_delete(self, obj) -> None:
        if self._accept(obj):
            self.handler.on_delete(obj)


class TargetLoadPacking:
    """Score plugin packing nodes up to a target CPU utilisation."""

    NAME = "TargetLoadPacking"

    def __init__(
        self,
        args,
        handle: Snapshot,
        *,
        client: MetricsClient | None = None,
        event_handler: PodAssignEventHandler | None = None,
        update_interval: float = METRICS_UPDATE_INTERVAL_SECONDS,
    ):
        args = validate_args(args)
        self.args = args
        self.handle = handle
        self.target_utilization = args.target_utilization
        self.requests_milli_cores = _cpu_milli(args.default_requests)
        self.requests_multiplier = float(args.default_requests_multiplier)

        if client is None:
            if not args.watcher_address:
                raise ValueError(
                    "no load watcher address configured and no metrics client given"
                )
            client = ServiceClient(args.watcher_address)
        self.client = client
        self.event_handler = (
            event_handler if event_handler is not None else PodAssignEventHandler()
        )
        self.pod_events = _AssignedPodEvents(self.event_handler)

        self._metrics = WatcherMetrics()
        self._lock = threading.Lock()
        self._update_interval = update_interval
        self._thread_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None

        try:
            self.update_metrics()
        except WatcherError as err:
            log.warning("unable to populate metrics initially: %s", err)

    @property
    def name(self) -> str:
        return self.NAME

    @property
    def metrics(self) -> WatcherMetrics:
        with self._lock:
            return self._metrics

    def update_metrics(self) -> None:
        """Fetch the latest metrics; raise WatcherError if the watcher fails."""
        metrics = self.client.get_latest_watcher_metrics()
        with self._lock:
            self._metrics = metrics

    def predict_utilisation(self, container: Container) -> int:
        """Predict a container's CPU use in millicores from its limits or requests."""
        if RESOURCE_CPU in container.limits:
            return container.limits[RESOURCE_CPU].milli_value()
        if RESOURCE_CPU in container.requests:
            return _round_half_away(
                container.requests[RESOURCE_CPU].milli_value() * self.requests_multiplier
            )
        return self.requests_milli_cores

    def score(self, pod: Pod, node_name: str) -> int:
        """Score a node; raise KeyError if it is not in the snapshot."""
        node_info = self.handle.get(node_name)
        metrics = self.metrics
        node_metrics = metrics.node_metrics.get(node_name)
        if node_metrics is None:
            log.debug("unable to find metrics for node %s", node_name)
            return MIN_NODE_SCORE

        pod_cpu = sum(self.predict_utilisation(c) for c in pod.containers)
        log.debug("predicted utilization for pod %s: %d", pod.name, pod_cpu)
        if pod.overhead is not None:
            pod_cpu += _cpu_milli(pod.overhead)

        node_util_percent = 0.0
        cpu_metric_found = False
        for metric in node_metrics.metrics:
            if metric.type == CPU and metric.operator in (AVERAGE, LATEST):
                node_util_percent = metric.value
                cpu_metric_found = True
        if not cpu_metric_found:
            log.error(
                "cpu metric not found for node %s in node metrics %s",
                node_name, node_metrics.metrics,
            )
            return MIN_NODE_SCORE

        node_cap_millis = float(_cpu_milli(node_info.node.capacity))
        node_util_millis = node_util_percent / 100 * node_cap_millis
        log.debug(
            "node %s CPU utilization (millicores): %f, capacity: %f",
            node_name, node_util_millis, node_cap_millis,
        )

        window_end = metrics.window.end
        missing_millis = 0
        for info in self.event_handler.pods_for_node(node_name):
            seen = math.floor(info.timestamp)
            if seen > window_end or window_end - seen < METRICS_AGENT_REPORTING_INTERVAL_SECONDS:
                missing_millis += sum(
                    self.predict_utilisation(c) for c in info.pod.containers
                )
                missing_millis += _cpu_milli(info.pod.overhead)
        log.debug("missing utilization for node %s: %d", node_name, missing_millis)

        predicted = 0.0
        if node_cap_millis != 0:
            predicted = 100 * (node_util_millis + pod_cpu + missing_millis) / node_cap_millis

        target = float(self.target_utilization)
        if predicted > target:
            if predicted > 100:
                return MIN_NODE_SCORE
            penalised = _round_half_away(50 * (100 - predicted) / (100 - target))
            log.debug("penalised score for host %s: %d", node_name, penalised)
            return penalised

        score = _round_half_away((100 - target) * predicted / target + target)
        log.debug("score for host %s: %d", node_name, score)
        return score

    def normalize_score(self, pod: Pod | None, scores: list[NodeScore]) -> None:
        """Scores are already on the framework's range; nothing to do."""
        return None

    @property
    def running(self) -> bool:
        with self._thread_lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start refreshing metrics and cleaning the pod cache in the background."""
        with self._thread_lock:
            if self._thread is None:
                self._stop_event = threading.Event()
                self._thread = threading.Thread(
                    target=self._run,
                    args=(self._stop_event,),
                    name="target-load-packing-metrics",
                    daemon=True,
                )
                self._thread.start()
        self.event_handler.start()

    def stop(self) -> None:
        """Stop the background work and wait for it to finish."""
        self.event_handler.stop()
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

    def __enter__(self) -> TargetLoadPacking:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()