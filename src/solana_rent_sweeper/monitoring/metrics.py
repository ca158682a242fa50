"""In-process counters, gauges and sample histograms for RPC, cache, builder and ledger activity."""

from __future__ import annotations

import math
import re
import threading
from collections import deque
from typing import Deque, Dict, Iterator, List

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")
_QUANTILES = (0.5, 0.9, 0.99)


def prometheus_name(name: str) -> str:
    """Map a dotted metric name such as ``rpc.calls`` onto the Prometheus charset."""

    cleaned = _INVALID_NAME_CHARS.sub("_", name) or "_"
    return f"_{cleaned}" if cleaned[0].isdigit() else cleaned


def _quantile(ordered: List[float], q: float) -> float:
    rank = max(math.ceil(q * len(ordered)) - 1, 0)
    return ordered[min(rank, len(ordered) - 1)]


class MetricsRegistry:
    """Thread-safe metric store; histograms keep the latest ``sample_limit`` observations."""

    def __init__(self, *, sample_limit: int = 1024) -> None:
        self._guard = threading.Lock()
        self._sample_limit = sample_limit
        self._counters: Dict[str, float] = {}
        self._gauges: Dict[str, float] = {}
        self._samples: Dict[str, Deque[float]] = {}

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._guard:
            self._counters[name] = self._counters.get(name, 0.0) + float(amount)

    def get(self, name: str) -> float:
        with self._guard:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str, value: float) -> None:
        with self._guard:
            self._gauges[name] = float(value)

    def observe(self, name: str, value: float) -> None:
        with self._guard:
            samples = self._samples.setdefault(name, deque(maxlen=self._sample_limit))
            samples.append(float(value))

    def _summaries(self) -> Dict[str, Dict[str, float]]:
        summaries: Dict[str, Dict[str, float]] = {}
        for name, samples in self._samples.items():
            if not samples:
                continue
            ordered = sorted(samples)
            summary = {"count": float(len(ordered)), "sum": math.fsum(ordered)}
            summary["avg"] = summary["sum"] / len(ordered)
            for q in _QUANTILES:
                summary[f"p{round(q * 100)}"] = _quantile(ordered, q)
            summaries[name] = summary
        return summaries

    def snapshot(self) -> Dict[str, Dict]:
        with self._guard:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": self._summaries(),
            }

    def _prometheus_lines(self) -> Iterator[str]:
        snap = self.snapshot()
        for kind in ("counters", "gauges"):
            metric_type = "counter" if kind == "counters" else "gauge"
            for name, value in sorted(snap[kind].items()):
                exported = prometheus_name(name)
                yield f"# TYPE {exported} {metric_type}"
                yield f"{exported} {value}"
        for name, summary in sorted(snap["histograms"].items()):
            exported = prometheus_name(name)
            yield f"# TYPE {exported} summary"
            for q in _QUANTILES:
                yield f'{exported}{{quantile="{q}"}} {summary[f"p{round(q * 100)}"]}'
            yield f"{exported}_sum {summary['sum']}"
            yield f"{exported}_count {int(summary['count'])}"

    def export_prometheus(self) -> str:
        """Render the registry in the Prometheus text exposition format."""

        return "\n".join(self._prometheus_lines()) + "\n"

    def reset(self) -> None:
        with self._guard:
            self._counters.clear()
            self._gauges.clear()
            self._samples.clear()


METRICS = MetricsRegistry()


__all__ = ["METRICS", "MetricsRegistry", "prometheus_name"]
