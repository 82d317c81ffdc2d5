"""Filter and score nodes by how well a pod's requests fit onto a single NUMA zone."""

from __future__ import annotations

import enum
import logging
import statistics
from dataclasses import dataclass, field
from typing import Callable, Iterable, NamedTuple

from .core import (
    RESOURCE_CPU,
    RESOURCE_HUGEPAGES_PREFIX,
    RESOURCE_MEMORY,
    Pod,
    PodQOSClass,
    ResourceList,
    pod_qos,
)
from .framework import Code, NodeInfo, Status
from .numa import (
    MAX_NUMA_ID,
    NUMANode,
    TopologyManagerPolicy,
    TopologyStore,
    Zone,
    create_numa_node_list,
    find_node_topology,
)
from .numa_scoring import (
    ResourceWeights,
    ScoreStrategy,
    ScoringStrategyType,
    get_scoring_strategy_function,
    score_for_each_numa_node,
)
from .quantity import ZERO

log = logging.getLogger(__name__)

_FULL_MASK = (1 << (MAX_NUMA_ID + 1)) - 1

FilterHandler = Callable[[Pod, list[Zone]], "Status | None"]
ScoreHandler = Callable[[Pod, list[Zone], ScoreStrategy, ResourceWeights], int]


class ActionType(enum.Flag):
    ADD = enum.auto()
    DELETE = enum.auto()
    UPDATE_NODE_ALLOCATABLE = enum.auto()


class ClusterEvent(NamedTuple):
    resource: str
    action_type: ActionType


@dataclass(frozen=True)
class ScopeHandler:
    """The filter and score functions applied for one topology manager scope."""

    filter: FilterHandler
    score: ScoreHandler


@dataclass
class NodeResourceTopologyMatchArgs:
    namespaces: list[str] = field(default_factory=lambda: ["default"])
    scoring_strategy: ScoringStrategyType | str = ScoringStrategyType.LEAST_ALLOCATED
    resource_weights: dict[str, int] = field(default_factory=dict)


def _sum_requests(pod: Pod) -> ResourceList:
    resources: ResourceList = {}
    for container in pod.all_containers():
        for name, quantity in container.requests.items():
            resources[name] = resources.get(name, ZERO) + quantity
    return resources


def res_match_numa_nodes(
    nodes: Iterable[NUMANode], resources: ResourceList, qos: PodQOSClass
) -> bool:
    """Return True if the resources cannot be aligned on any single NUMA node."""
    nodes = list(nodes)
    bitmask = _FULL_MASK
    for name, quantity in resources.items():
        resource_mask = 0
        zero_requested = quantity.is_zero()
        for numa in nodes:
            numa_quantity = numa.resources.get(name)
            if numa_quantity is None and not zero_requested:
                continue
            if (
                name == RESOURCE_MEMORY
                or name.startswith(RESOURCE_HUGEPAGES_PREFIX)
                or (name == RESOURCE_CPU and qos is not PodQOSClass.GUARANTEED)
                or zero_requested
                or (numa_quantity or ZERO) >= quantity
            ):
                resource_mask |= 1 << numa.numa_id
        bitmask &= resource_mask
        if bitmask == 0:
            return True
    return bitmask == 0


def single_numa_container_level_handler(pod: Pod, zones: list[Zone]) -> Status | None:
    """Require every container, taken alone, to fit on one NUMA node."""
    log.debug("Single NUMA node handler")
    nodes = create_numa_node_list(zones)
    qos = pod_qos(pod)
    for container in pod.all_containers():
        if res_match_numa_nodes(nodes, container.requests, qos):
            return Status(Code.UNSCHEDULABLE, f"cannot align container: {container.name}")
    return None


def single_numa_pod_level_handler(pod: Pod, zones: list[Zone]) -> Status | None:
    """Require the summed requests of the whole pod to fit on one NUMA node."""
    log.debug("Pod level resource handler")
    if res_match_numa_nodes(create_numa_node_list(zones), _sum_requests(pod), pod_qos(pod)):
        return Status(Code.UNSCHEDULABLE, f"cannot align pod: {pod.name}")
    return None


def pod_scope_score(
    pod: Pod, zones: list[Zone], scorer: ScoreStrategy, weights: ResourceWeights
) -> int:
    """Score the pod's summed requests against each NUMA zone."""
    return score_for_each_numa_node(
        _sum_requests(pod), create_numa_node_list(zones), scorer, weights
    )


def container_scope_score(
    pod: Pod, zones: list[Zone], scorer: ScoreStrategy, weights: ResourceWeights
) -> int:
    """Score each container separately and return the truncated mean (0 if none)."""
    containers = pod.all_containers()
    if not containers:
        return 0
    numa_nodes = create_numa_node_list(zones)
    scores = [
        float(score_for_each_numa_node(c.requests, numa_nodes, scorer, weights))
        for c in containers
    ]
    return int(statistics.fmean(scores))


def new_policy_handler_map() -> dict[TopologyManagerPolicy, ScopeHandler]:
    return {
        TopologyManagerPolicy.SINGLE_NUMA_NODE_POD_LEVEL: ScopeHandler(
            filter=single_numa_pod_level_handler, score=pod_scope_score
        ),
        TopologyManagerPolicy.SINGLE_NUMA_NODE_CONTAINER_LEVEL: ScopeHandler(
            filter=single_numa_container_level_handler, score=container_scope_score
        ),
    }


def _policy(name: str) -> TopologyManagerPolicy | None:
    try:
        return TopologyManagerPolicy(name)
    except ValueError:
        return None


class TopologyMatch:
    """Simplified topology manager admission run at filter and score time."""

    NAME = "NodeResourceTopologyMatch"

    def __init__(
        self,
        store: TopologyStore,
        namespaces: Iterable[str] = ("default",),
        policy_handlers: dict[TopologyManagerPolicy, ScopeHandler] | None = None,
        scorer: ScoreStrategy | None = None,
        weights: ResourceWeights | None = None,
    ):
        self.store = store
        self.namespaces = list(namespaces)
        self.policy_handlers = (
            policy_handlers if policy_handlers is not None else new_policy_handler_map()
        )
        self.scorer = scorer
        self.weights = weights if weights is not None else ResourceWeights()

    @property
    def name(self) -> str:
        return self.NAME

    def _handlers_for(self, node_name: str):
        topology = find_node_topology(node_name, self.store, self.namespaces)
        if topology is None:
            return None, []
        handlers = []
        for policy_name in topology.topology_policies:
            handler = self.policy_handlers.get(_policy(policy_name))
            if handler is None:
                log.debug("Policy handler not found for policy %s", policy_name)
            else:
                handlers.append(handler)
        return topology, handlers

    def filter(self, pod: Pod, node_info: NodeInfo) -> Status | None:
        """Return None if the pod may be placed on the node, else a failing status."""
        if node_info.node is None:
            return Status(Code.ERROR, "node not found")
        if pod_qos(pod) is PodQOSClass.BEST_EFFORT:
            return None
        topology, handlers = self._handlers_for(node_info.node.name)
        for handler in handlers:
            status = handler.filter(pod, topology.zones)
            if status is not None:
                return status
        return None

    def score(self, pod: Pod, node_name: str) -> int:
        """Score the node by the first known topology policy it publishes."""
        log.debug("Call score for node %s", node_name)
        topology, handlers = self._handlers_for(node_name)
        if not handlers:
            return 0
        return handlers[0].score(pod, topology.zones, self.scorer, self.weights)

    def events_to_register(self) -> list[ClusterEvent]:
        return [
            ClusterEvent("Pod", ActionType.DELETE),
            ClusterEvent("Node", ActionType.ADD | ActionType.UPDATE_NODE_ALLOCATABLE),
        ]


def new_topology_match(args, store: TopologyStore) -> TopologyMatch:
    """Build the plugin from its arguments; raise on wrong arguments or strategy."""
    if not isinstance(args, NodeResourceTopologyMatchArgs):
        raise TypeError(
            "want args to be of type NodeResourceTopologyMatchArgs, "
            f"got {type(args).__name__}"
        )
    scorer = get_scoring_strategy_function(args.scoring_strategy)
    return TopologyMatch(
        store=store,
        namespaces=args.namespaces,
        policy_handlers=new_policy_handler_map(),
        scorer=scorer,
        weights=ResourceWeights(args.resource_weights),
    )