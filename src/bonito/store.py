"""Document store interface and the in-memory implementation."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from fnmatch import fnmatchcase
from threading import RLock
from typing import Any, Protocol

from bonito.errors import BackendError
from bonito.timerange import parse_time


class DocumentStore(Protocol):
    def search(
        self, index: str, body: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]: ...


Document = dict[str, Any]

_INTERVAL = re.compile(r"^(?P<amount>\d+)(?P<unit>ms|s|m|h|d)$")
_INTERVAL_MS = {"ms": 1, "s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}
_DEFAULT_PERCENTS = (1.0, 5.0, 25.0, 50.0, 75.0, 95.0, 99.0)
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _field(document: Mapping[str, Any], path: str) -> Any:
    if path in document:
        return document[path]
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def _numbers(documents: Iterable[Document], field: str) -> list[float]:
    values: list[float] = []
    for document in documents:
        value = _field(document, field)
        if isinstance(value, int | float) and not isinstance(value, bool):
            values.append(float(value))
    return values


def _compare_key(value: Any) -> Any:
    if isinstance(value, int | float) and not isinstance(value, bool):
        return float(value)
    return parse_time(value)


_RANGE_OPS = {
    "gte": lambda current, bound: current >= bound,
    "gt": lambda current, bound: current > bound,
    "lte": lambda current, bound: current <= bound,
    "lt": lambda current, bound: current < bound,
}


def _in_range(value: Any, bounds: Mapping[str, Any]) -> bool:
    if value is None:
        return False
    try:
        current = _compare_key(value)
        checks = {op: _compare_key(bound) for op, bound in bounds.items() if op in _RANGE_OPS}
        return all(_RANGE_OPS[op](current, bound) for op, bound in checks.items())
    except (TypeError, ValueError) as exc:
        raise BackendError(f"cannot compare range bounds with {value!r}") from exc


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


def _matches(document: Document, query: Mapping[str, Any]) -> bool:
    if not query or "match_all" in query:
        return True
    if "term" in query:
        ((field, expected),) = query["term"].items()
        if isinstance(expected, Mapping):
            expected = expected.get("value")
        return _field(document, field) == expected
    if "range" in query:
        ((field, bounds),) = query["range"].items()
        return _in_range(_field(document, field), bounds)
    if "bool" in query:
        clauses = query["bool"]
        required = _as_list(clauses.get("must")) + _as_list(clauses.get("filter"))
        if not all(_matches(document, clause) for clause in required):
            return False
        if any(_matches(document, clause) for clause in _as_list(clauses.get("must_not"))):
            return False
        should = _as_list(clauses.get("should"))
        return not should or any(_matches(document, clause) for clause in should)
    raise BackendError(f"unsupported query: {sorted(query)}")


def _percentile(sorted_values: list[float], percent: float) -> float | None:
    if not 0.0 <= percent <= 100.0:
        raise ValueError(f"percent {percent} must be in [0, 100]")
    if not sorted_values:
        return None
    rank = (percent / 100.0) * (len(sorted_values) - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return sorted_values[lower]
    weight = rank - lower
    return sorted_values[lower] * (1.0 - weight) + sorted_values[upper] * weight


def _interval_ms(spec: Mapping[str, Any]) -> int:
    raw = spec.get("fixed_interval", spec.get("interval"))
    match = _INTERVAL.match(str(raw))
    if match is None:
        raise BackendError(f"unsupported date_histogram interval: {raw!r}")
    millis = int(match.group("amount")) * _INTERVAL_MS[match.group("unit")]
    if millis <= 0:
        raise BackendError("date_histogram interval must be positive")
    return millis


def _format_ts(millis: int) -> str:
    moment = datetime.fromtimestamp(millis / 1000.0, tz=UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis % 1000:03d}Z"


def _epoch_ms(value: Any) -> int:
    return (parse_time(value) - _EPOCH) // timedelta(milliseconds=1)


def _terms(documents: list[Document], spec: Mapping[str, Any], sub: Mapping[str, Any]) -> dict:
    field = spec["field"]
    size = int(spec.get("size", 10))
    groups: dict[Any, list[Document]] = {}
    for document in documents:
        value = _field(document, field)
        if value is None:
            continue
        for key in _as_list(value):
            groups.setdefault(key, []).append(document)
    ordered = sorted(groups.items(), key=lambda item: (-len(item[1]), str(item[0])))
    kept = ordered[:size]
    return {
        "doc_count_error_upper_bound": 0,
        "sum_other_doc_count": sum(len(group) for _, group in ordered[size:]),
        "buckets": [
            {"key": key, "doc_count": len(group), **_aggregate(group, sub)}
            for key, group in kept
        ],
    }


def _date_histogram(
    documents: list[Document], spec: Mapping[str, Any], sub: Mapping[str, Any]
) -> dict:
    interval = _interval_ms(spec)
    min_doc_count = int(spec.get("min_doc_count", 0))
    groups: dict[int, list[Document]] = {}
    for document in documents:
        value = _field(document, spec["field"])
        if value is None:
            continue
        key = (_epoch_ms(value) // interval) * interval
        groups.setdefault(key, []).append(document)
    if groups and min_doc_count == 0:
        for key in range(min(groups), max(groups) + interval, interval):
            groups.setdefault(key, [])
    return {
        "buckets": [
            {
                "key_as_string": _format_ts(key),
                "key": key,
                "doc_count": len(group),
                **_aggregate(group, sub),
            }
            for key, group in sorted(groups.items())
            if len(group) >= min_doc_count
        ]
    }


def _aggregate(documents: list[Document], aggs: Mapping[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for name, definition in aggs.items():
        sub = definition.get("aggs", definition.get("aggregations", {}))
        if "terms" in definition:
            result[name] = _terms(documents, definition["terms"], sub)
        elif "date_histogram" in definition:
            result[name] = _date_histogram(documents, definition["date_histogram"], sub)
        elif "filter" in definition:
            matched = [doc for doc in documents if _matches(doc, definition["filter"])]
            result[name] = {"doc_count": len(matched), **_aggregate(matched, sub)}
        elif "sum" in definition:
            values = _numbers(documents, definition["sum"]["field"])
            result[name] = {"value": float(sum(values))}
        elif "stats" in definition:
            values = _numbers(documents, definition["stats"]["field"])
            result[name] = {
                "count": len(values),
                "min": min(values) if values else None,
                "max": max(values) if values else None,
                "avg": sum(values) / len(values) if values else None,
                "sum": float(sum(values)),
            }
        elif "percentiles" in definition:
            spec = definition["percentiles"]
            values = sorted(_numbers(documents, spec["field"]))
            percents = spec.get("percents", _DEFAULT_PERCENTS)
            result[name] = {
                "values": {
                    repr(float(percent)): _percentile(values, float(percent))
                    for percent in percents
                }
            }
        elif "cardinality" in definition:
            field = definition["cardinality"]["field"]
            distinct = {
                _field(document, field)
                for document in documents
                if _field(document, field) is not None
            }
            result[name] = {"value": len(distinct)}
        else:
            raise BackendError(f"unsupported aggregation '{name}': {sorted(definition)}")
    return result


class InMemoryDocumentStore:
    """Holds documents per index and answers the aggregation subset we emit."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._indices: dict[str, list[Document]] = {}

    def index_documents(self, index: str, documents: Iterable[Mapping[str, Any]]) -> int:
        with self._lock:
            bucket = self._indices.setdefault(index, [])
            added = [dict(document) for document in documents]
            bucket.extend(added)
            return len(added)

    def delete_index(self, index: str) -> bool:
        with self._lock:
            return self._indices.pop(index, None) is not None

    def indices(self) -> list[str]:
        with self._lock:
            return sorted(self._indices)

    def _resolve(self, index: str) -> list[Document]:
        with self._lock:
            names = [
                name
                for pattern in index.split(",")
                for name in self._indices
                if fnmatchcase(name, pattern.strip())
            ]
            if not names:
                raise BackendError(f"no such index [{index}]")
            return [document for name in dict.fromkeys(names) for document in self._indices[name]]

    def search(
        self, index: str, body: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        documents = self._resolve(index)
        matched = [doc for doc in documents if _matches(doc, body.get("query") or {})]
        aggs = body.get("aggs", body.get("aggregations", {}))
        try:
            aggregations = _aggregate(matched, aggs)
        except (IndexError, KeyError, TypeError, ValueError) as exc:
            raise BackendError(f"invalid aggregation request: {exc}") from exc
        return {
            "took": 0,
            "timed_out": False,
            "hits": {"total": {"value": len(matched), "relation": "eq"}, "hits": []},
            "aggregations": aggregations,
        }
