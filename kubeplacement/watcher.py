"""Load watcher metrics: data model, JSON form and an HTTP service client."""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Mapping

log = logging.getLogger(__name__)

CPU = "CPU"
MEMORY = "Memory"
AVERAGE = "AVG"
STD = "STD"
LATEST = "Latest"

WATCHER_PATH = "/watcher"


class WatcherError(Exception):
    """Raised when metrics cannot be fetched or decoded."""


@dataclass
class Metric:
    name: str = ""
    type: str = ""
    operator: str = ""
    rollup: str = ""
    value: float = 0.0


@dataclass
class Window:
    duration: str = ""
    start: int = 0
    end: int = 0


@dataclass
class NodeMetrics:
    metrics: list[Metric] = field(default_factory=list)


@dataclass
class WatcherMetrics:
    timestamp: int = 0
    window: Window = field(default_factory=Window)
    source: str = ""
    node_metrics: dict[str, NodeMetrics] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form served by the load watcher."""
        return {
            "timestamp": self.timestamp,
            "window": {
                "duration": self.window.duration,
                "start": self.window.start,
                "end": self.window.end,
            },
            "source": self.source,
            "data": {
                "NodeMetricsMap": {
                    node: {
                        "metrics": [
                            {
                                "name": m.name,
                                "type": m.type,
                                "operator": m.operator,
                                "rollup": m.rollup,
                                "value": m.value,
                            }
                            for m in node_metrics.metrics
                        ]
                    }
                    for node, node_metrics in self.node_metrics.items()
                }
            },
        }


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise WatcherError(f"{what} must be an object")
    return value


def _parse_metric(raw: Any) -> Metric:
    raw = _mapping(raw, "metric")
    return Metric(
        name=str(raw.get("name") or ""),
        type=str(raw.get("type") or ""),
        operator=str(raw.get("operator") or ""),
        rollup=str(raw.get("rollup") or ""),
        value=float(raw.get("value") or 0.0),
    )


def _parse_node_metrics(raw: Any) -> NodeMetrics:
    raw = _mapping(raw, "node metrics")
    metrics = raw.get("metrics") or []
    if not isinstance(metrics, list):
        raise WatcherError("metrics must be a list")
    return NodeMetrics(metrics=[_parse_metric(m) for m in metrics])


def parse_watcher_metrics(payload: str | bytes | Mapping[str, Any]) -> WatcherMetrics:
    """Decode watcher metrics from JSON text or an already decoded object."""
    if isinstance(payload, (str, bytes, bytearray)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as err:
            raise WatcherError(f"invalid watcher response: {err}") from err
    try:
        root = _mapping(payload, "watcher metrics")
        window = _mapping(root.get("window"), "window")
        data = _mapping(root.get("data"), "data")
        node_map = _mapping(data.get("NodeMetricsMap"), "NodeMetricsMap")
        return WatcherMetrics(
            timestamp=int(root.get("timestamp") or 0),
            window=Window(
                duration=str(window.get("duration") or ""),
                start=int(window.get("start") or 0),
                end=int(window.get("end") or 0),
            ),
            source=str(root.get("source") or ""),
            node_metrics={
                str(node): _parse_node_metrics(raw) for node, raw in node_map.items()
            },
        )
    except (TypeError, ValueError) as err:
        raise WatcherError(f"invalid watcher response: {err}") from err


class ServiceClient:
    """Fetches the latest metrics from a load watcher service over HTTP."""

    def __init__(self, address: str, timeout: float = 10.0):
        if "://" not in address:
            address = "http://" + address
        self.address = address.rstrip("/")
        self.timeout = timeout

    @property
    def url(self) -> str:
        return self.address + WATCHER_PATH

    def get_latest_watcher_metrics(self) -> WatcherMetrics:
        """Return the latest metrics; raise WatcherError on any failure."""
        request = urllib.request.Request(self.url, headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as err:
            raise WatcherError(f"load watcher returned status {err.code}") from err
        except (urllib.error.URLError, OSError) as err:
            raise WatcherError(f"load watcher request failed: {err}") from err
        return parse_watcher_metrics(body)