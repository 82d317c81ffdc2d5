"""Score plugin favouring nodes with terminating pods over nominated ones."""

from __future__ import annotations

from .core import Pod
from .framework import MAX_NODE_SCORE, MIN_NODE_SCORE, NodeInfo, NodeScore, Snapshot


class PodState:
    """Scores a node by its terminating pods minus the pods nominated to it."""

    NAME = "PodState"

    def __init__(self, handle: Snapshot):
        self.handle = handle

    @property
    def name(self) -> str:
        return self.NAME

    def score(self, pod: Pod | None, node_name: str) -> int:
        """Return the raw score; raise KeyError if the node is not in the snapshot."""
        node_info = self.handle.get(node_name)
        return self._score(node_info)

    def _score(self, node_info: NodeInfo) -> int:
        nominated = len(self.handle.nominated_pods_for_node(node_info.node.name))
        terminating = sum(1 for p in node_info.pods if p.deletion_timestamp is not None)
        return terminating - nominated

    def normalize_score(self, pod: Pod | None, scores: list[NodeScore]) -> None:
        """Rescale scores in place onto the framework's score range."""
        if not scores:
            return
        highest = max(s.score for s in scores)
        lowest = min(s.score for s in scores)
        old_range = highest - lowest
        new_range = MAX_NODE_SCORE - MIN_NODE_SCORE
        for node_score in scores:
            if old_range == 0:
                node_score.score = MIN_NODE_SCORE
            else:
                node_score.score = (
                    (node_score.score - lowest) * new_range // old_range + MIN_NODE_SCORE
                )