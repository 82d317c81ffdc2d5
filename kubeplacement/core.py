"""Pods, containers and nodes, with QoS class and priority helpers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from .quantity import ZERO, Quantity

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCE_PODS = "pods"
RESOURCE_EPHEMERAL_STORAGE = "ephemeral-storage"
RESOURCE_HUGEPAGES_PREFIX = "hugepages-"

_QOS_COMPUTE_RESOURCES = frozenset({RESOURCE_CPU, RESOURCE_MEMORY})

ResourceList = dict[str, Quantity]


class PodQOSClass(enum.Enum):
    GUARANTEED = "Guaranteed"
    BURSTABLE = "Burstable"
    BEST_EFFORT = "BestEffort"


@dataclass
class Container:
    name: str = ""
    requests: ResourceList = field(default_factory=dict)
    limits: ResourceList = field(default_factory=dict)


@dataclass
class Pod:
    name: str = ""
    namespace: str = "default"
    uid: str = ""
    priority: int | None = None
    containers: list[Container] = field(default_factory=list)
    init_containers: list[Container] = field(default_factory=list)
    overhead: ResourceList | None = None
    node_name: str = ""
    deletion_timestamp: datetime | None = None
    nominated_node_name: str = ""

    def all_containers(self) -> list[Container]:
        """Init containers followed by regular containers."""
        return [*self.init_containers, *self.containers]


@dataclass
class Node:
    name: str = ""
    capacity: ResourceList = field(default_factory=dict)
    allocatable: ResourceList = field(default_factory=dict)


def pod_qos(pod: Pod) -> PodQOSClass:
    """Compute the QoS class of a pod from its containers' requests and limits."""
    requests: ResourceList = {}
    limits: ResourceList = {}
    guaranteed = True
    for container in pod.all_containers():
        for name, quantity in container.requests.items():
            if name in _QOS_COMPUTE_RESOURCES and quantity > ZERO:
                requests[name] = requests.get(name, ZERO) + quantity
        found_limits = set()
        for name, quantity in container.limits.items():
            if name in _QOS_COMPUTE_RESOURCES and quantity > ZERO:
                found_limits.add(name)
                limits[name] = limits.get(name, ZERO) + quantity
        if not _QOS_COMPUTE_RESOURCES <= found_limits:
            guaranteed = False

    if not requests and not limits:
        return PodQOSClass.BEST_EFFORT
    if guaranteed and any(
        name not in limits or limits[name] != req for name, req in requests.items()
    ):
        guaranteed = False
    if guaranteed and len(requests) == len(limits):
        return PodQOSClass.GUARANTEED
    return PodQOSClass.BURSTABLE


def pod_priority(pod: Pod) -> int:
    """Return the pod's priority, or 0 when none is set."""
    return pod.priority if pod.priority is not None else 0