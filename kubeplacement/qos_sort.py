"""Queue ordering by priority, with QoS class as the tie-breaker."""

from __future__ import annotations

from .core import Pod, PodQOSClass, pod_priority, pod_qos


class QOSSort:
    """Orders pods by priority; equal priorities are ordered by QoS class."""

    NAME = "QOSSort"

    @property
    def name(self) -> str:
        return self.NAME

    def less(self, pod_info1: Pod, pod_info2: Pod) -> bool:
        """Return True if the first pod should be scheduled before the second."""
        p1 = pod_priority(pod_info1)
        p2 = pod_priority(pod_info2)
        return p1 > p2 or (p1 == p2 and compare_qos(pod_info1, pod_info2))


def compare_qos(p1: Pod, p2: Pod) -> bool:
    """Return True if p1's QoS class ranks at least as high as p2's."""
    q1, q2 = pod_qos(p1), pod_qos(p2)
    if q1 is PodQOSClass.GUARANTEED:
        return True
    if q1 is PodQOSClass.BURSTABLE:
        return q2 is not PodQOSClass.GUARANTEED
    return q2 is PodQOSClass.BEST_EFFORT