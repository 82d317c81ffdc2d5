"""Risk scores from measured load average and variation of a node's resources."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable

from .core import RESOURCE_CPU, RESOURCE_MEMORY, Node, Pod
from .framework import MAX_NODE_SCORE, Resource
from .quantity import ZERO
from .watcher import AVERAGE, LATEST, STD, Metric

log = logging.getLogger(__name__)

_MEGA_FACTOR = 1.0 / 1024.0 / 1024.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(min(value, high), low)


@dataclass
class ResourceStats:
    """Usage statistics of one resource on a node, in absolute units."""

    used_avg: float = 0.0
    used_stdev: float = 0.0
    req: float = 0.0
    capacity: float = 0.0

    def compute_score(self, margin: float, sensitivity: float) -> float:
        """Score = (1 - risk) * max score, risk = (avg + margin * stdev^(1/sensitivity)) / 2."""
        if self.capacity <= 0:
            log.error("invalid resource capacity %f!", self.capacity)
            return 0.0

        req = max(self.req, 0.0)
        used_avg = _clamp(self.used_avg, 0.0, self.capacity)
        used_stdev = _clamp(self.used_stdev, 0.0, self.capacity)

        mu = _clamp((used_avg + req) / self.capacity, 0.0, 1.0)

        sigma = _clamp(used_stdev / self.capacity, 0.0, 1.0)
        if sensitivity >= 0:
            if sensitivity == 0:
                exponent = math.copysign(math.inf, sensitivity)
            else:
                exponent = 1 / sensitivity
            sigma = math.pow(sigma, exponent)
        sigma = _clamp(sigma * margin, 0.0, 1.0)

        risk = (mu + sigma) / 2
        log.debug(
            "mu=%f; sigma=%f; margin=%f; sensitivity=%f; risk=%f",
            mu, sigma, margin, sensitivity, risk,
        )
        return (1.0 - risk) * MAX_NODE_SCORE


def get_resource_data(
    metrics: Iterable[Metric], resource_type: str
) -> tuple[float, float] | None:
    """Return (average, standard deviation) for a resource type, or None if absent.

    An explicit average wins; otherwise a latest value (or one with no
    operator) stands in for it.
    """
    avg = 0.0
    stdev = 0.0
    avg_found = False
    found = False
    for metric in metrics:
        if metric.type != resource_type:
            continue
        if metric.operator == AVERAGE:
            avg = metric.value
            avg_found = True
        elif metric.operator == STD:
            stdev = metric.value
        elif metric.operator in ("", LATEST) and not avg_found:
            avg = metric.value
        found = True
    return (avg, stdev) if found else None


def create_resource_stats(
    metrics: Iterable[Metric],
    node: Node,
    pod_request: Resource,
    resource_name: str,
    watcher_type: str,
) -> ResourceStats | None:
    """Build usage statistics for one resource of a node, or None without data.

    CPU is measured in millicores, memory in mebibytes.
    """
    data = get_resource_data(metrics, watcher_type)
    if data is None:
        log.debug(
            "resource %s usage statistics for node %s: no valid data",
            watcher_type, node.name,
        )
        return None
    node_util, node_std = data

    allocatable = node.allocatable.get(resource_name, ZERO)
    if resource_name == RESOURCE_CPU:
        capacity = float(allocatable.milli_value())
        req = float(pod_request.milli_cpu)
    else:
        capacity = float(allocatable.value()) * _MEGA_FACTOR
        req = float(pod_request.memory) * _MEGA_FACTOR

    stats = ResourceStats(
        used_avg=node_util * capacity / 100,
        used_stdev=node_std * capacity / 100,
        req=req,
        capacity=capacity,
    )
    log.debug("resource %s usage statistics for node %s: %s", watcher_type, node.name, stats)
    return stats


def get_resource_requested(pod: Pod) -> Resource:
    """CPU and memory demand of a pod: containers summed, at least any init container, plus overhead."""
    result = Resource()
    for container in pod.containers:
        result.add(container.requests)
    for container in pod.init_containers:
        for name, quantity in container.requests.items():
            if name == RESOURCE_CPU:
                result.milli_cpu = max(result.milli_cpu, quantity.milli_value())
            elif name == RESOURCE_MEMORY:
                result.memory = max(result.memory, quantity.value())
    if pod.overhead is not None:
        result.add(pod.overhead)
    return result