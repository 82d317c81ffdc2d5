"""Scheduling framework types: statuses, node scores, node info and snapshots."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Mapping

from .core import (
    RESOURCE_CPU,
    RESOURCE_EPHEMERAL_STORAGE,
    RESOURCE_HUGEPAGES_PREFIX,
    RESOURCE_MEMORY,
    RESOURCE_PODS,
    Node,
    Pod,
)
from .quantity import Quantity

MAX_NODE_SCORE = 100
MIN_NODE_SCORE = 0


class Code(enum.Enum):
    SUCCESS = "Success"
    ERROR = "Error"
    UNSCHEDULABLE = "Unschedulable"
    UNSCHEDULABLE_AND_UNRESOLVABLE = "UnschedulableAndUnresolvable"
    WAIT = "Wait"
    SKIP = "Skip"


@dataclass(frozen=True)
class Status:
    """Outcome of a plugin call; None is used where the result is plain success."""

    code: Code = Code.SUCCESS
    message: str = ""

    def is_success(self) -> bool:
        return self.code is Code.SUCCESS


@dataclass
class NodeScore:
    name: str
    score: int


@dataclass
class NodeInfo:
    node: Node | None = None
    pods: list[Pod] = field(default_factory=list)


def _is_scalar_resource_name(name: str) -> bool:
    return (
        "/" in name
        or name.startswith(RESOURCE_HUGEPAGES_PREFIX)
        or name.startswith("attachable-volumes-")
    )


@dataclass
class Resource:
    """Aggregated resource amounts: CPU in millicores, memory in bytes."""

    milli_cpu: int = 0
    memory: int = 0
    ephemeral_storage: int = 0
    allowed_pod_number: int = 0
    scalar_resources: dict[str, int] = field(default_factory=dict)

    def add(self, resources: Mapping[str, Quantity]) -> None:
        """Add every quantity of a resource list to this total."""
        for name, quantity in resources.items():
            if name == RESOURCE_CPU:
                self.milli_cpu += quantity.milli_value()
            elif name == RESOURCE_MEMORY:
                self.memory += quantity.value()
            elif name == RESOURCE_PODS:
                self.allowed_pod_number += quantity.value()
            elif name == RESOURCE_EPHEMERAL_STORAGE:
                self.ephemeral_storage += quantity.value()
            elif _is_scalar_resource_name(name):
                self.scalar_resources[name] = (
                    self.scalar_resources.get(name, 0) + quantity.value()
                )


class Snapshot:
    """Node infos keyed by name, plus the pods nominated to each node."""

    def __init__(self, node_infos=()):
        self._node_infos: dict[str, NodeInfo] = {}
        self._nominated: dict[str, list[Pod]] = {}
        for info in node_infos:
            self.add_node_info(info)

    def get(self, node_name: str) -> NodeInfo:
        """Return the info for a node; raise KeyError if it is unknown."""
        try:
            return self._node_infos[node_name]
        except KeyError:
            raise KeyError(f"nodeinfo not found for node name {node_name!r}") from None

    def add_node_info(self, node_info: NodeInfo) -> None:
        if node_info.node is None:
            raise ValueError("node info has no node")
        self._node_infos[node_info.node.name] = node_info

    def add_nominated_pod(self, pod: Pod, node_name: str) -> None:
        """Nominate a pod to a node, replacing any earlier nomination of it."""
        if pod.uid:
            for pods in self._nominated.values():
                pods[:] = [p for p in pods if p.uid != pod.uid]
        self._nominated.setdefault(node_name, []).append(pod)

    def nominated_pods_for_node(self, node_name: str) -> list[Pod]:
        return list(self._nominated.get(node_name, ()))