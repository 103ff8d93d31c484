"""
Audit Pipeline Metrics
======================
In-process counters for the audit pipeline, exportable as Prometheus text.

Dropped and abandoned counts are the observability gap of the pipeline:
events that were captured but never reached the bus.
"""

from collections import Counter
from typing import Dict, List, Mapping, Optional, Tuple

LabelSet = Tuple[Tuple[str, str], ...]


class MetricNames:
    CAPTURED = "audit_events_captured"
    DELIVERED = "audit_events_delivered"
    ENQUEUED = "audit_events_enqueued"
    RETRIED = "audit_events_retried"
    DROPPED = "audit_events_dropped"
    ABANDONED = "audit_events_abandoned"
    SKIPPED = "audit_events_skipped"
    CAPTURE_FAILURES = "audit_capture_failures"
    QUEUE_DEPTH = "audit_retry_queue_depth"
    CAPTURE_DURATION = "audit_capture_duration_ms"


def _label_set(labels: Optional[Mapping[str, str]]) -> LabelSet:
    return tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _render_labels(*label_sets: LabelSet) -> str:
    pairs = [f'{key}="{_escape(value)}"' for label_set in label_sets for key, value in label_set]
    return "{" + ",".join(pairs) + "}" if pairs else ""


class AuditMetrics:
    """
    Pipeline counters, gauges and duration summaries.

    Every mutation happens on the event loop thread, so plain dicts are
    enough. ``service`` is attached to every exported sample.
    """

    def __init__(self, service: str = "ms-security"):
        self.service = service
        self._counters: Counter = Counter()
        self._gauges: Dict[Tuple[str, LabelSet], float] = {}
        self._durations: Dict[Tuple[str, LabelSet], List[float]] = {}

    def increment(self, name: str, value: int = 1, labels: Optional[Mapping[str, str]] = None) -> None:
        self._counters[(name, _label_set(labels))] += value

    def set_gauge(self, name: str, value: float, labels: Optional[Mapping[str, str]] = None) -> None:
        self._gauges[(name, _label_set(labels))] = value

    def observe(self, name: str, value: float, labels: Optional[Mapping[str, str]] = None) -> None:
        self._durations.setdefault((name, _label_set(labels)), []).append(value)

    def get_counter(self, name: str, labels: Optional[Mapping[str, str]] = None) -> int:
        return self._counters[(name, _label_set(labels))]

    def get_gauge(self, name: str, labels: Optional[Mapping[str, str]] = None) -> float:
        return self._gauges.get((name, _label_set(labels)), 0)

    def get_histogram_stats(self, name: str, labels: Optional[Mapping[str, str]] = None) -> Dict[str, float]:
        """count / sum / avg / max of the recorded observations."""
        values = self._durations.get((name, _label_set(labels)), [])
        total = sum(values)
        return {
            "count": len(values),
            "sum": total,
            "avg": total / len(values) if values else 0,
            "max": max(values, default=0),
        }

    def snapshot(self) -> Dict[str, float]:
        """Unlabelled counters and gauges by name."""
        flat: Dict[str, float] = {}
        for (name, label_set), value in list(self._counters.items()) + list(self._gauges.items()):
            if not label_set:
                flat[name] = value
        return flat

    def export_prometheus(self) -> str:
        """Render every sample in Prometheus text exposition format."""
        service = (("service", self.service),)
        lines: List[str] = []
        families: Dict[str, str] = {}

        def family(name: str, kind: str) -> None:
            if families.get(name) != kind:
                families[name] = kind
                lines.append(f"# TYPE {name} {kind}")

        for (name, label_set), value in sorted(self._counters.items()):
            family(f"{name}_total", "counter")
            lines.append(f"{name}_total{_render_labels(service, label_set)} {value}")
        for (name, label_set), value in sorted(self._gauges.items()):
            family(name, "gauge")
            lines.append(f"{name}{_render_labels(service, label_set)} {value}")
        for (name, label_set), values in sorted(self._durations.items()):
            family(name, "summary")
            labels = _render_labels(service, label_set)
            lines.append(f"{name}_count{labels} {len(values)}")
            lines.append(f"{name}_sum{labels} {sum(values)}")
        return "\n".join(lines)
