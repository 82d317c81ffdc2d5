import http.server
import json
import threading

import pytest

from kubeplacement.core import Container, Node, Pod
from kubeplacement.framework import MIN_NODE_SCORE, NodeInfo, NodeScore, Snapshot
from kubeplacement.quantity import from_milli, parse_quantity
from kubeplacement.target_load_packing import (
    DEFAULT_TARGET_UTILIZATION_PERCENT,
    MetricProviderType,
    TargetLoadPacking,
    TargetLoadPackingArgs,
    validate_args,
)
from kubeplacement.trimaran_handler import PodAssignEventHandler
from kubeplacement.watcher import (
    CPU,
    LATEST,
    MEMORY,
    Metric,
    NodeMetrics,
    WatcherError,
    WatcherMetrics,
    Window,
)

NODE_RESOURCES = {"cpu": parse_quantity("1000m"), "memory": parse_quantity("1Gi")}


class FakeClient:
    def __init__(self, metrics=None, error=False):
        self.metrics = metrics if metrics is not None else WatcherMetrics()
        self.error = error

    def get_latest_watcher_metrics(self):
        if self.error:
            raise WatcherError("load watcher returned status 404")
        return self.metrics


def make_snapshot(*names):
    return Snapshot(
        NodeInfo(node=Node(name=n, capacity=dict(NODE_RESOURCES), allocatable=dict(NODE_RESOURCES)))
        for n in names
    )


def cpu_metrics(value, node="node-1", end=0):
    return WatcherMetrics(
        window=Window(end=end),
        node_metrics={node: NodeMetrics([Metric(type=CPU, operator=LATEST, value=value)])},
    )


def pod_with_containers(overhead, *requests):
    return Pod(
        name="p",
        overhead={"cpu": from_milli(overhead)},
        containers=[
            Container(
                name=f"test-container-{i}",
                requests={"cpu": from_milli(r)},
                limits={"cpu": from_milli(r)},
            )
            for i, r in enumerate(requests)
        ],
    )


def make_plugin(metrics, handler=None, **arg_overrides):
    args = TargetLoadPackingArgs(watcher_address="http://localhost:2020", **arg_overrides)
    return TargetLoadPacking(
        args, make_snapshot("node-1"), client=FakeClient(metrics), event_handler=handler
    )


@pytest.mark.parametrize(
    "pod, metrics, expected",
    [
        (Pod(name="p"), cpu_metrics(0), DEFAULT_TARGET_UTILIZATION_PERCENT),
        (Pod(name="p"), cpu_metrics(DEFAULT_TARGET_UTILIZATION_PERCENT + 10), 42),
        (pod_with_containers(0, 1000), cpu_metrics(30), MIN_NODE_SCORE),
        (Pod(name="p"), WatcherMetrics(), MIN_NODE_SCORE),
    ],
    ids=["new node", "hot node", "excess utilization", "404 resp from watcher"],
)
def test_scoring(pod, metrics, expected):
    plugin = make_plugin(metrics)
    assert plugin.score(pod, "node-1") == expected


def test_scoring_over_http():
    body = json.dumps(cpu_metrics(0).to_dict()).encode()

    class Handler(http.server.BaseHTTPRequestHandler):
        def do_GET(self):
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    server = http.server.HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        args = TargetLoadPackingArgs(watcher_address=f"http://127.0.0.1:{server.server_port}")
        plugin = TargetLoadPacking(args, make_snapshot("node-1"))
        assert plugin.score(Pod(name="p"), "node-1") == DEFAULT_TARGET_UTILIZATION_PERCENT
    finally:
        server.shutdown()
        server.server_close()


def test_missing_cpu_metric_gives_min_score():
    metrics = WatcherMetrics(
        node_metrics={"node-1": NodeMetrics([Metric(type=MEMORY, operator=LATEST, value=10)])}
    )
    assert make_plugin(metrics).score(Pod(name="p"), "node-1") == MIN_NODE_SCORE


def test_unknown_node_raises():
    plugin = make_plugin(cpu_metrics(0))
    with pytest.raises(KeyError):
        plugin.score(Pod(name="p"), "node-9")


def test_failing_watcher_scores_minimum():
    args = TargetLoadPackingArgs(watcher_address="http://localhost:2020")
    plugin = TargetLoadPacking(args, make_snapshot("node-1"), client=FakeClient(error=True))
    assert plugin.score(Pod(name="p"), "node-1") == MIN_NODE_SCORE
    with pytest.raises(WatcherError):
        plugin.update_metrics()


def test_update_metrics_replaces_metrics():
    client = FakeClient(WatcherMetrics())
    args = TargetLoadPackingArgs(watcher_address="http://localhost:2020")
    plugin = TargetLoadPacking(args, make_snapshot("node-1"), client=client)
    assert plugin.score(Pod(name="p"), "node-1") == MIN_NODE_SCORE
    client.metrics = cpu_metrics(0)
    plugin.update_metrics()
    assert plugin.score(Pod(name="p"), "node-1") == 40


def test_recently_bound_pods_count_as_missing_utilisation():
    handler = PodAssignEventHandler(clock=lambda: 1000.0)
    bound = pod_with_containers(0, 100)
    bound.node_name = "node-1"
    handler.on_add(bound)
    plugin = make_plugin(cpu_metrics(0, end=1000), handler=handler)
    # predicted 10% of capacity: (100 - 40) * 10 / 40 + 40
    assert plugin.score(Pod(name="p"), "node-1") == 55


def test_old_bound_pods_are_not_counted():
    handler = PodAssignEventHandler(clock=lambda: 880.0)
    bound = pod_with_containers(0, 100)
    bound.node_name = "node-1"
    handler.on_add(bound)
    plugin = make_plugin(cpu_metrics(0, end=1000), handler=handler)
    assert plugin.score(Pod(name="p"), "node-1") == 40


def test_predict_utilisation():
    plugin = make_plugin(cpu_metrics(0))
    assert plugin.predict_utilisation(Container(limits={"cpu": from_milli(300)})) == 300
    assert plugin.predict_utilisation(Container(requests={"cpu": from_milli(100)})) == 150
    assert plugin.predict_utilisation(Container()) == 1000


def test_predict_utilisation_with_custom_defaults():
    plugin = make_plugin(
        cpu_metrics(0),
        default_requests={"cpu": parse_quantity("500m")},
        default_requests_multiplier="2",
    )
    assert plugin.predict_utilisation(Container()) == 500
    assert plugin.predict_utilisation(Container(requests={"cpu": from_milli(100)})) == 200


def test_validate_args_sets_default_provider():
    args = validate_args(TargetLoadPackingArgs())
    assert args.metric_provider_type is MetricProviderType.KUBERNETES_METRICS_SERVER


def test_validate_args_accepts_known_provider():
    args = validate_args(TargetLoadPackingArgs(metric_provider_type="Prometheus"))
    assert args.metric_provider_type is MetricProviderType.PROMETHEUS


def test_validate_args_rejects_unknown_provider():
    with pytest.raises(ValueError):
        validate_args(TargetLoadPackingArgs(metric_provider_type="Graphite"))


def test_validate_args_ignores_provider_with_watcher_address():
    args = validate_args(
        TargetLoadPackingArgs(watcher_address="http://localhost:2020", metric_provider_type="Graphite")
    )
    assert args.metric_provider_type == "Graphite"


def test_validate_args_rejects_bad_multiplier():
    with pytest.raises(ValueError, match="DefaultRequestsMultiplier"):
        validate_args(TargetLoadPackingArgs(default_requests_multiplier="abc"))


def test_validate_args_rejects_wrong_type():
    with pytest.raises(TypeError):
        validate_args(object())


def test_no_client_without_watcher_address_raises():
    with pytest.raises(ValueError):
        TargetLoadPacking(TargetLoadPackingArgs(), make_snapshot("node-1"))


def test_normalize_score_leaves_scores_unchanged():
    plugin = make_plugin(cpu_metrics(0))
    scores = [NodeScore("node-1", 42), NodeScore("node-2", 7)]
    plugin.normalize_score(None, scores)
    assert [s.score for s in scores] == [42, 7]


def test_pod_events_only_cache_assigned_pods():
    plugin = make_plugin(cpu_metrics(0))
    plugin.pod_events.on_add(Pod(name="unassigned"))
    plugin.pod_events.on_add(Pod(name="assigned", node_name="node-1"))
    assert [e.pod.name for e in plugin.event_handler.pods_for_node("node-1")] == ["assigned"]
    assert plugin.event_handler.pods_for_node("") == []


def test_start_and_stop():
    plugin = make_plugin(cpu_metrics(0))
    with plugin:
        assert plugin.running
        assert plugin.event_handler.running
    assert not plugin.running
    assert not plugin.event_handler.running


def test_name():
    assert make_plugin(cpu_metrics(0)).name == "TargetLoadPacking"