"""Per-NUMA-zone scoring strategies and their aggregation over a node."""

from __future__ import annotations

import enum
import logging
import statistics
from typing import Callable, Iterable

from .core import ResourceList
from .framework import MAX_NODE_SCORE
from .numa import NUMANode
from .quantity import ZERO, Quantity

log = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1


class ScoringStrategyType(enum.Enum):
    MOST_ALLOCATED = "MostAllocated"
    LEAST_ALLOCATED = "LeastAllocated"
    BALANCED_ALLOCATION = "BalancedAllocation"


class ResourceWeights(dict):
    """Resource name to weight; missing or non-positive weights count as 1."""

    def weight(self, resource: str) -> int:
        w = self.get(resource)
        if w is None or w < 1:
            return DEFAULT_WEIGHT
        return w


ScoreStrategy = Callable[[ResourceList, ResourceList, ResourceWeights], int]


def _div_trunc(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def fraction_of_capacity(requested: Quantity, capacity: Quantity) -> float:
    if capacity.value() == 0:
        return 1.0
    return requested.value() / capacity.value()


def balanced_allocation_score_strategy(
    requested: ResourceList, allocatable: ResourceList, weights: ResourceWeights
) -> int:
    """Score higher when the requested fractions of each resource are even.

    With fewer than two resources there is no spread, so the variance is 0.
    """
    fractions = []
    for name, quantity in requested.items():
        fraction = fraction_of_capacity(quantity, allocatable.get(name, ZERO))
        if fraction > 1:
            return 0
        fractions.append(fraction)
    variance = statistics.variance(fractions) if len(fractions) >= 2 else 0.0
    return int((1 - variance) * MAX_NODE_SCORE)


def least_allocated_score(requested: Quantity, capacity: Quantity) -> int:
    """0..100, higher the more capacity would be left free."""
    if capacity.is_zero() or requested > capacity:
        return 0
    cap = capacity.value()
    return _div_trunc((cap - requested.value()) * MAX_NODE_SCORE, cap)


def most_allocated_score(requested: Quantity, capacity: Quantity) -> int:
    """0..100, higher the more capacity would be used."""
    if capacity.is_zero() or requested > capacity:
        return 0
    return _div_trunc(requested.value() * MAX_NODE_SCORE, capacity.value())


def _weighted_score(
    requested: ResourceList,
    allocatable: ResourceList,
    weights: ResourceWeights,
    per_resource: Callable[[Quantity, Quantity], int],
) -> int:
    if not requested:
        raise ValueError("no resources requested")
    total = 0
    weight_sum = 0
    for name, quantity in requested.items():
        weight = weights.weight(name)
        total += per_resource(quantity, allocatable.get(name, ZERO)) * weight
        weight_sum += weight
    return _div_trunc(total, weight_sum)


def least_allocated_score_strategy(
    requested: ResourceList, allocatable: ResourceList, weights: ResourceWeights
) -> int:
    return _weighted_score(requested, allocatable, weights, least_allocated_score)


def most_allocated_score_strategy(
    requested: ResourceList, allocatable: ResourceList, weights: ResourceWeights
) -> int:
    return _weighted_score(requested, allocatable, weights, most_allocated_score)


_STRATEGIES: dict[ScoringStrategyType, ScoreStrategy] = {
    ScoringStrategyType.MOST_ALLOCATED: most_allocated_score_strategy,
    ScoringStrategyType.LEAST_ALLOCATED: least_allocated_score_strategy,
    ScoringStrategyType.BALANCED_ALLOCATION: balanced_allocation_score_strategy,
}


def get_scoring_strategy_function(strategy: ScoringStrategyType | str) -> ScoreStrategy:
    """Return the scoring function for a strategy; raise ValueError if unknown."""
    try:
        return _STRATEGIES[ScoringStrategyType(strategy)]
    except (ValueError, KeyError):
        raise ValueError("illegal scoring strategy found") from None


def score_for_each_numa_node(
    requested: ResourceList,
    numa_list: Iterable[NUMANode],
    score: ScoreStrategy,
    weights: ResourceWeights,
) -> int:
    """Score every NUMA zone and return the lowest non-zero score (0 if none)."""
    min_score = 0
    numa_scores = {}
    for numa in numa_list:
        numa_score = score(requested, numa.resources, weights)
        if min_score == 0 or (numa_score != 0 and numa_score < min_score):
            min_score = numa_score
        numa_scores[numa.numa_id] = numa_score
    log.debug("numa scores: %s; node score: %s", numa_scores, min_score)
    return min_score