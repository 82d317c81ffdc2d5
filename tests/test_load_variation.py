import pytest

from kubeplacement.collector import LoadVariationRiskBalancingArgs
from kubeplacement.core import Container, Node, Pod
from kubeplacement.framework import MIN_NODE_SCORE, NodeInfo, NodeScore, Snapshot
from kubeplacement.load_variation import LoadVariationRiskBalancing, is_assigned
from kubeplacement.quantity import from_int, from_milli, parse_quantity
from kubeplacement.watcher import (
    AVERAGE,
    CPU,
    MEMORY,
    STD,
    Metric,
    NodeMetrics,
    WatcherMetrics,
)

MEGA = 1024 * 1024


class _StaticClient:
    def __init__(self, metrics):
        self.metrics = metrics

    def get_latest_watcher_metrics(self):
        return self.metrics


def _node(name="node-1"):
    resources = {"cpu": parse_quantity("1000m"), "memory": parse_quantity("1Gi")}
    return Node(name=name, capacity=dict(resources), allocatable=dict(resources))


def _snapshot(*nodes):
    return Snapshot([NodeInfo(node=n) for n in nodes])


def _pod_with_containers(overhead, init_cpu, init_mem, cont_cpu, cont_mem):
    init = Container(
        name="test-init",
        requests={"cpu": from_milli(init_cpu), "memory": from_int(init_mem)},
    )
    containers = []
    for i, (cpu, mem) in enumerate(zip(cont_cpu, cont_mem)):
        res = {"cpu": from_milli(cpu), "memory": from_int(mem)}
        containers.append(
            Container(name=f"test-container-{i}", requests=dict(res), limits=dict(res))
        )
    return Pod(
        init_containers=[init],
        containers=containers,
        overhead={"cpu": from_milli(overhead)},
    )


def _metrics(*metrics):
    return WatcherMetrics(node_metrics={"node-1": NodeMetrics(metrics=list(metrics))})


def _plugin(watcher_metrics, args=None):
    if args is None:
        args = LoadVariationRiskBalancingArgs()
    return LoadVariationRiskBalancing(
        args, _snapshot(_node()), client=_StaticClient(watcher_metrics)
    )


@pytest.mark.parametrize(
    "pod, watcher_metrics, expected",
    [
        (
            Pod(name="p"),
            _metrics(Metric(type=CPU, operator=AVERAGE, value=50)),
            75,
        ),
        (
            Pod(name="p"),
            _metrics(Metric(type=CPU, operator=AVERAGE, value=100)),
            50,
        ),
        (
            _pod_with_containers(0, 0, 0, [200], [256 * MEGA]),
            _metrics(
                Metric(type=CPU, operator=AVERAGE, value=30),
                Metric(type=CPU, operator=STD, value=16),
            ),
            67,
        ),
        (
            _pod_with_containers(0, 0, 0, [100], [512 * MEGA]),
            _metrics(
                Metric(type=CPU, operator=AVERAGE, value=40),
                Metric(type=CPU, operator=STD, value=16),
                Metric(type=MEMORY, operator=AVERAGE, value=50),
                Metric(type=MEMORY, operator=STD, value=10),
            ),
            45,
        ),
        (
            _pod_with_containers(0, 0, 0, [100], [512 * MEGA]),
            _metrics(
                Metric(type=CPU, operator=AVERAGE, value=80),
                Metric(type=CPU, operator=STD, value=20),
                Metric(type=MEMORY, operator=AVERAGE, value=25),
                Metric(type=MEMORY, operator=STD, value=15),
            ),
            45,
        ),
        (Pod(name="p"), WatcherMetrics(), MIN_NODE_SCORE),
    ],
    ids=[
        "new node",
        "hot node",
        "average and stDev metrics",
        "CPU and Memory metrics",
        "pick worst case: CPU or Memory",
        "404 resp from watcher",
    ],
)
def test_score(pod, watcher_metrics, expected):
    plugin = _plugin(watcher_metrics)
    assert plugin.score(pod, "node-1") == expected


def test_new_accepts_bad_arguments():
    watcher_metrics = _metrics(Metric(type=CPU, operator=AVERAGE, value=50))
    bad_margin = LoadVariationRiskBalancingArgs(safe_variance_margin=-5)
    assert _plugin(watcher_metrics, bad_margin).score(Pod(name="p"), "node-1") == 75
    bad_both = LoadVariationRiskBalancingArgs(
        safe_variance_margin=-5, safe_variance_sensitivity=-1
    )
    assert _plugin(watcher_metrics, bad_both).score(Pod(name="p"), "node-1") == 75


def test_name():
    assert _plugin(WatcherMetrics()).name == "LoadVariationRiskBalancing"


def test_score_unknown_node_raises():
    plugin = _plugin(_metrics(Metric(type=CPU, operator=AVERAGE, value=50)))
    with pytest.raises(KeyError):
        plugin.score(Pod(name="p"), "node-9")


def test_normalize_score_leaves_scores_alone():
    plugin = _plugin(WatcherMetrics())
    scores = [NodeScore("node-1", 42), NodeScore("node-2", 7)]
    assert plugin.normalize_score(None, scores) is None
    assert [s.score for s in scores] == [42, 7]


def test_is_assigned():
    assert is_assigned(Pod(name="a", node_name="node-1"))
    assert not is_assigned(Pod(name="b"))


def test_pod_events_only_track_assigned_pods():
    plugin = _plugin(WatcherMetrics())
    plugin.pod_events.on_add(Pod(name="unbound", uid="u1"))
    plugin.pod_events.on_add(Pod(name="bound", uid="u2", node_name="node-1"))
    plugin.pod_events.on_add("not a pod")
    cached = plugin.event_handler.pods_for_node("node-1")
    assert [entry.pod.name for entry in cached] == ["bound"]


def test_pod_events_update_from_unassigned_adds():
    plugin = _plugin(WatcherMetrics())
    old = Pod(name="p", uid="u1")
    new = Pod(name="p", uid="u1", node_name="node-1")
    plugin.pod_events.on_update(old, new)
    assert [e.pod.name for e in plugin.event_handler.pods_for_node("node-1")] == ["p"]
    plugin.pod_events.on_delete(new)
    assert plugin.event_handler.pods_for_node("node-1") == []


def test_context_manager_starts_and_stops_background_work():
    plugin = _plugin(WatcherMetrics())
    with plugin:
        assert plugin.collector.running
        assert plugin.event_handler.running
    assert not plugin.collector.running
    assert not plugin.event_handler.running