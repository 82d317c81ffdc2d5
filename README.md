# kubeplacement

Node-selection plugins for a container cluster scheduler, written as plain
Python objects that you drive from your own scheduling loop. The package
uses only the standard library.

## What is included

- **`QOSSort`** (`kubeplacement.qos_sort`): `less(pod1, pod2)` orders pods
  by priority first, then by QoS class (Guaranteed, then Burstable, then
  BestEffort). `compare_qos(p1, p2)` is the tie-breaker on its own.
- **`PodState`** (`kubeplacement.podstate`): `score(pod, node_name)` gives a
  node's terminating pods minus the pods nominated to it;
  `normalize_score(pod, scores)` rescales a list of `NodeScore` in place onto
  0–100.
- **`TopologyMatch`** (`kubeplacement.topology_match`): filters and scores
  nodes by per-NUMA-zone resource availability under the
  `SingleNUMANodePodLevel` and `SingleNUMANodeContainerLevel` policies. Build
  it with `new_topology_match(args, store)` from a
  `NodeResourceTopologyMatchArgs`. Scoring strategies are `MostAllocated`,
  `LeastAllocated` and `BalancedAllocation`
  (`kubeplacement.numa_scoring.ScoringStrategyType`); per-resource weights
  go in `resource_weights`.
- **`LoadVariationRiskBalancing`** (`kubeplacement.load_variation`): scores
  nodes by a risk computed from the average and standard deviation of
  measured CPU and memory use (`kubeplacement.risk_analysis`).
- **`TargetLoadPacking`** (`kubeplacement.target_load_packing`): packs pods
  around a target CPU utilisation, using live metrics plus the predicted use
  of pods bound to the node recently.

Supporting modules:

- `kubeplacement.quantity`: `Quantity`, `parse_quantity("100m")`,
  `from_int`, `from_milli`, with `value()` and `milli_value()` rounding up.
- `kubeplacement.core`: `Pod`, `Container`, `Node`, `PodQOSClass`,
  `pod_qos`, `pod_priority`.
- `kubeplacement.framework`: `Status`, `Code`, `NodeScore`, `NodeInfo`,
  `Resource`, and `Snapshot` (node infos by name plus nominated pods).
- `kubeplacement.numa`: `NodeResourceTopology`, `Zone`, `ResourceInfo`,
  `NUMANode`, `TopologyStore` and helpers such as `create_numa_node_list`.
- `kubeplacement.trimaran_handler`: `PodAssignEventHandler`, a per-node
  cache of recently bound pods with background cleanup.
- `kubeplacement.watcher`: the load-watcher metrics model,
  `parse_watcher_metrics`, and `ServiceClient`, which fetches
  `<address>/watcher` over HTTP.
- `kubeplacement.collector`: `Collector`, which keeps the latest metrics
  and can refresh them in a background thread.

## Installation

```
pip install .
```

## Example

```python
from kubeplacement.core import Node
from kubeplacement.framework import NodeInfo
from kubeplacement.numa import (
    NodeResourceTopology, TopologyManagerPolicy, TopologyStore, Zone,
    make_pod_by_resource_list, make_topology_res_info,
)
from kubeplacement.numa_scoring import ScoringStrategyType
from kubeplacement.quantity import parse_quantity
from kubeplacement.topology_match import NodeResourceTopologyMatchArgs, new_topology_match

store = TopologyStore([
    NodeResourceTopology(
        name="node1",
        topology_policies=[TopologyManagerPolicy.SINGLE_NUMA_NODE_CONTAINER_LEVEL.value],
        zones=[
            Zone(name="node-0", resources=[
                make_topology_res_info("cpu", "4", "4"),
                make_topology_res_info("memory", "8Gi", "8Gi"),
            ]),
        ],
    ),
])
plugin = new_topology_match(
    NodeResourceTopologyMatchArgs(scoring_strategy=ScoringStrategyType.LEAST_ALLOCATED),
    store,
)
pod = make_pod_by_resource_list({"cpu": parse_quantity("2"), "memory": parse_quantity("1Gi")})

plugin.filter(pod, NodeInfo(node=Node(name="node1")))  # None: the pod fits
plugin.score(pod, "node1")                              # 68
```

`filter` returns `None` when the pod fits, otherwise a `Status` whose code is
`Code.UNSCHEDULABLE` (or `Code.ERROR` when the node info has no node).
Nodes with no topology in the store pass the filter and score 0.

## Load-aware plugins

`LoadVariationRiskBalancing(args, snapshot, client=...)` and
`TargetLoadPacking(args, snapshot, client=...)` take their metrics from any
object with a `get_latest_watcher_metrics()` method; when no client is given
they build a `ServiceClient` from `args.watcher_address`, and raise
`ValueError` if that is empty. Metrics are fetched once on construction.

- `TargetLoadPacking` has `start()` and `stop()` to refresh metrics and clean
  the bound-pod cache in the background, and works as a context manager.
- `LoadVariationRiskBalancing` works as a context manager, which starts and
  stops its `collector` and `event_handler`.

Both expose `pod_events`, whose `on_add`, `on_update` and `on_delete` accept
pod events and pass on only those for pods bound to a node. `score` raises
`KeyError` for a node missing from the snapshot.

## What the package does not do

It is a library of plugin objects, not a scheduler: there is no command, no
scheduling loop, and no connection to a cluster API. You fill `Snapshot` and
`TopologyStore` yourself and feed pod events to `pod_events`. The only
metrics source it can reach on its own is a load-watcher service over HTTP;
metric-provider settings in the argument classes are validated but no client
for those providers is included.

## Running the tests

```
pip install .[test]
pytest
```