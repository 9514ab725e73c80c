"""Request and pipeline timing counters for the Bonito API."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from statistics import mean
from threading import RLock
from time import perf_counter


@dataclass(frozen=True, slots=True)
class RequestMetric:
    method: str
    path: str
    status_code: int
    duration_ms: float


def _summarize(latencies: dict[str, list[float]]) -> dict[str, dict[str, float]]:
    return {
        name: {
            "count": len(values),
            "avg_ms": round(mean(values), 2),
            "max_ms": round(max(values), 2),
        }
        for name, values in latencies.items()
        if values
    }


class MetricsStore:
    def __init__(self) -> None:
        self._lock = RLock()
        self._request_count = 0
        self._status_counts: dict[str, int] = defaultdict(int)
        self._route_counts: dict[str, int] = defaultdict(int)
        self._route_latencies: dict[str, list[float]] = defaultdict(list)
        self._pipeline_latencies: dict[str, list[float]] = defaultdict(list)
        self._query_errors: dict[str, int] = defaultdict(int)

    def record(self, metric: RequestMetric) -> None:
        key = f"{metric.method} {metric.path}"
        status_bucket = f"{metric.status_code // 100}xx"
        with self._lock:
            self._request_count += 1
            self._status_counts[status_bucket] += 1
            self._route_counts[key] += 1
            self._route_latencies[key].append(metric.duration_ms)

    def record_pipeline_timing(self, stage: str, timing_ms: float) -> None:
        with self._lock:
            self._pipeline_latencies[stage].append(timing_ms)

    def record_query_error(self, kind: str) -> None:
        with self._lock:
            self._query_errors[kind] += 1

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "request_count": self._request_count,
                "status_counts": dict(self._status_counts),
                "route_counts": dict(self._route_counts),
                "route_latency_ms": _summarize(self._route_latencies),
                "pipeline_latency_ms": _summarize(self._pipeline_latencies),
                "query_errors": dict(self._query_errors),
            }


def duration_ms(start_time: float) -> float:
    return (perf_counter() - start_time) * 1000.0
