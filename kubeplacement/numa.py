"""NUMA topology objects published per node, and helpers to read them."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from .core import Container, Pod, ResourceList
from .quantity import ZERO, Quantity, parse_quantity

log = logging.getLogger(__name__)

MAX_NUMA_ID = 63
ZONE_TYPE_NODE = "Node"

_NUMA_NAME_RE = re.compile(r"node-([+-]?\d+)")


class TopologyManagerPolicy(enum.Enum):
    SINGLE_NUMA_NODE_POD_LEVEL = "SingleNUMANodePodLevel"
    SINGLE_NUMA_NODE_CONTAINER_LEVEL = "SingleNUMANodeContainerLevel"
    RESTRICTED_POD_LEVEL = "RestrictedPodLevel"
    RESTRICTED_CONTAINER_LEVEL = "RestrictedContainerLevel"
    BEST_EFFORT_POD_LEVEL = "BestEffortPodLevel"
    BEST_EFFORT_CONTAINER_LEVEL = "BestEffortContainerLevel"
    NONE = "None"


@dataclass
class ResourceInfo:
    name: str
    capacity: Quantity = ZERO
    available: Quantity = ZERO


@dataclass
class Zone:
    name: str
    type: str = ZONE_TYPE_NODE
    resources: list[ResourceInfo] = field(default_factory=list)
    parent: str = ""


@dataclass
class NodeResourceTopology:
    name: str
    namespace: str = "default"
    topology_policies: list[str] = field(default_factory=list)
    zones: list[Zone] = field(default_factory=list)


@dataclass
class NUMANode:
    numa_id: int
    resources: ResourceList = field(default_factory=dict)


class TopologyStore:
    """In-memory store of node resource topologies keyed by namespace and name."""

    def __init__(self, topologies: Iterable[NodeResourceTopology] = ()):
        self._items: dict[tuple[str, str], NodeResourceTopology] = {}
        for topology in topologies:
            self.add(topology)

    def add(self, topology: NodeResourceTopology) -> None:
        self._items[(topology.namespace, topology.name)] = topology

    def get(self, namespace: str, name: str) -> NodeResourceTopology:
        """Return a topology; raise KeyError if none is stored under that key."""
        try:
            return self._items[(namespace, name)]
        except KeyError:
            raise KeyError(
                f"noderesourcetopology {name!r} not found in namespace {namespace!r}"
            ) from None

    def __len__(self) -> int:
        return len(self._items)


def find_node_topology(
    node_name: str, store: TopologyStore, namespaces: Iterable[str]
) -> NodeResourceTopology | None:
    """Return the first topology for the node found in the given namespaces."""
    for namespace in namespaces:
        try:
            return store.get(namespace, node_name)
        except KeyError as err:
            log.debug("cannot get node topology: %s", err)
    return None


def make_topology_res_info(name: str, capacity: str, available: str) -> ResourceInfo:
    return ResourceInfo(
        name=name,
        capacity=parse_quantity(capacity),
        available=parse_quantity(available),
    )


def extract_resources(zone: Zone) -> ResourceList:
    """Map each resource of a zone to its available quantity."""
    return {info.name: info.available for info in zone.resources}


def create_numa_node_list(zones: Iterable[Zone]) -> list[NUMANode]:
    """Build NUMA nodes from zones of type Node named node-<id>, id in 0..63."""
    nodes = []
    for zone in zones:
        if zone.type != ZONE_TYPE_NODE:
            continue
        match = _NUMA_NAME_RE.match(zone.name)
        if match is None:
            log.error("Invalid format: %s", zone.name)
            continue
        numa_id = int(match.group(1))
        if not 0 <= numa_id <= MAX_NUMA_ID:
            log.error("Invalid NUMA id range: %d", numa_id)
            continue
        nodes.append(NUMANode(numa_id=numa_id, resources=extract_resources(zone)))
    return nodes


def make_resource_list_from_zones(zones: Iterable[Zone]) -> ResourceList:
    """Sum the available quantity of every resource over all zones."""
    result: ResourceList = {}
    for zone in zones:
        for info in zone.resources:
            result[info.name] = result.get(info.name, ZERO) + info.available
    return result


def make_pod_by_resource_list(resources: ResourceList) -> Pod:
    """A pod with one container whose requests and limits are both `resources`."""
    return make_pod_by_resource_list_with_many_containers(resources, 1)


def make_pod_by_resource_list_with_many_containers(
    resources: ResourceList, container_count: int
) -> Pod:
    containers = [
        Container(requests=dict(resources), limits=dict(resources))
        for _ in range(container_count)
    ]
    return Pod(containers=containers)