"""
In-process metrics for the expiry job, exposed on ``GET /metrics``.

Counters:
- expiry_runs_total{status,trigger}: runs by outcome and by how they were started
- entries_expired_total: entries moved to expired
- entries_checked_total: stale entries examined

Histogram:
- expiry_run_duration_seconds: wall-clock time of runs that processed entries
"""
import re as _re
from collections import defaultdict
from typing import Any

_EMPTY_STATS = {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}
_KEY_RE = _re.compile(r'^([^{]+)(?:\{(.+)\})?$')
_PREFIX = "tcbf_"


class MetricsCollector:
    """Counters and raw histogram samples keyed by ``name{label=value,...}``."""

    def __init__(self):
        self.counters: dict[str, int] = defaultdict(int)
        self.histograms: dict[str, list[float]] = defaultdict(list)

    @staticmethod
    def key(name: str, labels: dict[str, str] | None = None) -> str:
        if not labels:
            return name
        return name + "{" + ",".join(f"{k}={v}" for k, v in sorted(labels.items())) + "}"

    def increment_counter(self, name: str, value: int = 1, labels: dict[str, str] | None = None):
        self.counters[self.key(name, labels)] += value

    def observe_histogram(self, name: str, value: float, labels: dict[str, str] | None = None):
        self.histograms[self.key(name, labels)].append(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        return self.counters.get(self.key(name, labels), 0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        """count / sum / min / max / avg of the samples, zeros when there are none."""
        values = self.histograms.get(self.key(name, labels))
        if not values:
            return dict(_EMPTY_STATS)
        total = sum(values)
        return {
            "count": len(values),
            "sum": total,
            "min": min(values),
            "max": max(values),
            "avg": total / len(values),
        }

    def get_all_metrics(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "histograms": {k: self.get_histogram_stats(k) for k in self.histograms},
        }

    def reset(self):
        self.counters.clear()
        self.histograms.clear()


metrics = MetricsCollector()


def record_expiry_run(
    status: str,
    trigger: str = "scheduled",
    expired: int = 0,
    checked: int = 0,
    duration_seconds: float | None = None,
):
    """
    Record the outcome of one expiry run.

    Args:
        status: completed, skipped_locked, skipped_no_form or error
        trigger: scheduled (locked run) or manual (operator run, no lock)
        expired: entries transitioned to expired during the run
        checked: stale entries returned by the store during the run
        duration_seconds: wall-clock run time, when the run processed entries
    """
    metrics.increment_counter("expiry_runs_total", labels={"status": status, "trigger": trigger})
    if expired:
        metrics.increment_counter("entries_expired_total", value=expired)
    if checked:
        metrics.increment_counter("entries_checked_total", value=checked)
    if duration_seconds is not None:
        metrics.observe_histogram("expiry_run_duration_seconds", duration_seconds)


def _parse_metric_key(key: str) -> tuple[str, str]:
    """``expiry_runs_total{status=completed}`` → ``("expiry_runs_total", '{status="completed"}')``."""
    m = _KEY_RE.match(key)
    if not m:
        return key, ""
    base_name, raw_labels = m.group(1), m.group(2)
    if not raw_labels:
        return base_name, ""
    pairs = [pair.split("=", 1) for pair in raw_labels.split(",") if "=" in pair]
    if not pairs:
        return base_name, ""
    return base_name, "{" + ",".join(f'{k.strip()}="{v.strip()}"' for k, v in pairs) + "}"


def _families(samples: dict[str, Any]) -> dict[str, list[tuple[str, Any]]]:
    grouped: dict[str, list[tuple[str, Any]]] = defaultdict(list)
    for key, value in samples.items():
        base_name, label_str = _parse_metric_key(key)
        grouped[_PREFIX + base_name].append((label_str, value))
    return grouped


def to_prometheus_text() -> str:
    """Prometheus text exposition of everything collected.

    One ``# TYPE`` line per family; histograms are rendered as summaries with
    ``_count`` / ``_sum`` / ``_max`` samples.
    """
    snapshot = metrics.get_all_metrics()
    lines: list[str] = []

    for family, samples in _families(snapshot["counters"]).items():
        lines.append(f"# TYPE {family} counter")
        lines.extend(f"{family}{labels} {value}" for labels, value in samples)

    for family, samples in _families(snapshot["histograms"]).items():
        lines.append(f"# TYPE {family} summary")
        for labels, stats in samples:
            lines.append(f"{family}_count{labels} {stats['count']}")
            lines.append(f"{family}_sum{labels} {stats['sum']:.6f}")
            lines.append(f"{family}_max{labels} {stats['max']:.6f}")

    return "\n".join(lines) + "\n"
