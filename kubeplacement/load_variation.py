"""Score nodes by balancing the risk of load variation across the cluster.

Risk combines the average and the standard deviation of measured load, so
nodes with volatile load are avoided as well as busy ones.
"""

from __future__ import annotations

import logging
import math

from .collector import Collector
from .core import RESOURCE_CPU, RESOURCE_MEMORY, Pod
from .framework import MIN_NODE_SCORE, NodeScore, Snapshot
from .risk_analysis import create_resource_stats, get_resource_requested
from .trimaran_handler import PodAssignEventHandler
from .watcher import CPU, MEMORY

log = logging.getLogger(__name__)


def is_assigned(pod: Pod) -> bool:
    """Return True if the pod is bound to a node."""
    return bool(pod.node_name)


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


class _AssignedPodEvents:
    """Forwards pod events to a handler, seen only through assigned pods."""

    def __init__(self, handler: PodAssignEventHandler):
        self.handler = handler

    @staticmethod
    def _accept(obj) -> bool:
        if isinstance(obj, Pod):
            return is_assigned(obj)
        log.error("unable to handle object: %s", type(obj).__name__)
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


class LoadVariationRiskBalancing:
    """Score plugin using the average and variation of measured node load."""

    NAME = "LoadVariationRiskBalancing"

    def __init__(self, args, handle: Snapshot, *, client=None):
        log.debug("Creating new instance of the LoadVariationRiskBalancing plugin")
        self.collector = Collector(args, client=client)
        self.handle = handle
        self.event_handler = PodAssignEventHandler()
        self.pod_events = _AssignedPodEvents(self.event_handler)

    @property
    def name(self) -> str:
        return self.NAME

    def score(self, pod: Pod, node_name: str) -> int:
        """Score a node; raise KeyError if it is not in the snapshot."""
        log.debug("Calculating score for pod %r on node %r", pod.name, node_name)
        node_info = self.handle.get(node_name)
        metrics = self.collector.get_node_metrics(node_name)
        if metrics is None:
            log.warning("failure getting metrics for node %r; using minimum score", node_name)
            return MIN_NODE_SCORE

        pod_request = get_resource_requested(pod)
        node = node_info.node
        margin = self.collector.args.safe_variance_margin
        sensitivity = self.collector.args.safe_variance_sensitivity

        cpu_stats = create_resource_stats(metrics, node, pod_request, RESOURCE_CPU, CPU)
        cpu_score = cpu_stats.compute_score(margin, sensitivity) if cpu_stats else 0.0
        memory_stats = create_resource_stats(
            metrics, node, pod_request, RESOURCE_MEMORY, MEMORY
        )
        memory_score = (
            memory_stats.compute_score(margin, sensitivity) if memory_stats else 0.0
        )
        log.debug(
            "pod:%s; node:%s; CPUScore=%f; MemoryScore=%f",
            pod.name, node_name, cpu_score, memory_score,
        )

        if cpu_stats is not None and memory_stats is not None:
            total = min(memory_score, cpu_score)
        else:
            total = max(memory_score, cpu_score)
        score = _round_half_away(total)
        log.debug("pod:%s; node:%s; TotalScore=%d", pod.name, node_name, score)
        return score

    def normalize_score(self, pod: Pod | None, scores: list[NodeScore]) -> None:
        """Scores are already on the framework's range; nothing to do."""
        return None

    def __enter__(self) -> LoadVariationRiskBalancing:
        self.collector.start()
        self.event_handler.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.event_handler.stop()
        self.collector.stop()