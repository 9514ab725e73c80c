"""Registry of the metrics a by-dimension query can compute.

Every metric declares the sub-aggregations it needs (by reserved key) and an
extractor that turns one raw primary-dimension bucket into output values.
Sub-aggregations are built from their own table so that metrics sharing a key
(``rt_max``/``rt_avg`` on ``rt_stats``, ``errors_rate`` on ``volume``) get
exactly one fragment per key.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from bonito.errors import BackendError, ClientError
from bonito.models import ByDimensionConfig
from bonito.timerange import parse_time

TIMESTAMP_FIELD = "timestamp"

Bucket = Mapping[str, Any]
AggregationBuilder = Callable[[ByDimensionConfig], dict[str, Any]]
HistogramBuilder = Callable[[ByDimensionConfig, int], dict[str, Any]]
Extractor = Callable[[Bucket, ByDimensionConfig], Iterable[tuple[str, float]]]
SeriesExtractor = Callable[[Bucket, ByDimensionConfig], list[tuple[datetime, float]]]


@dataclass(frozen=True, slots=True)
class ScalarMetric:
    name: str
    requires: tuple[str, ...]
    extract: Extractor


@dataclass(frozen=True, slots=True)
class HistogramMetric:
    name: str
    requires: tuple[str, ...]
    extract: SeriesExtractor


def _sub(bucket: Bucket, key: str) -> Mapping[str, Any]:
    value = bucket.get(key)
    if not isinstance(value, Mapping):
        raise BackendError(f"missing or malformed sub-aggregation '{key}' in bucket")
    return value


def _number(value: Any, where: str) -> float:
    # Aggregations over documents lacking the field report null.
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise BackendError(f"expected a number at '{where}', got {value!r}")
    return float(value)


def _value(bucket: Bucket, key: str) -> float:
    return _number(_sub(bucket, key).get("value"), f"{key}.value")


# Sub-aggregation builders, keyed by the reserved name they populate.


def _volume_agg(config: ByDimensionConfig) -> dict[str, Any]:
    return {"sum": {"field": config.count_field}}


def _rt_stats_agg(config: ByDimensionConfig) -> dict[str, Any]:
    return {"stats": {"field": config.responsetime_field}}


def _rt_percentiles_agg(config: ByDimensionConfig) -> dict[str, Any]:
    return {
        "percentiles": {
            "field": config.responsetime_field,
            "percents": list(config.percentiles),
        }
    }


def _secondary_card_agg(config: ByDimensionConfig) -> dict[str, Any]:
    return {"cardinality": {"field": config.secondary_dimension}}


def _errors_count_agg(config: ByDimensionConfig) -> dict[str, Any]:
    return {
        "filter": {
            "bool": {
                "must_not": {"term": {config.status_field: config.status_value_ok}},
            }
        },
        "aggs": {"count": {"sum": {"field": config.count_field}}},
    }


def _volume_hist_agg(config: ByDimensionConfig, interval_ms: int) -> dict[str, Any]:
    return {
        "date_histogram": {
            "field": TIMESTAMP_FIELD,
            "fixed_interval": f"{interval_ms}ms",
            "min_doc_count": 1,
        },
        "aggs": {"volume": {"sum": {"field": config.count_field}}},
    }


AGGREGATIONS: dict[str, AggregationBuilder] = {
    "volume": _volume_agg,
    "rt_stats": _rt_stats_agg,
    "rt_percentiles": _rt_percentiles_agg,
    "secondary_card": _secondary_card_agg,
    "errors_count": _errors_count_agg,
}

HISTOGRAM_AGGREGATIONS: dict[str, HistogramBuilder] = {
    "volume_hist": _volume_hist_agg,
}


# Extractors.


def _extract_volume(bucket: Bucket, _config: ByDimensionConfig) -> Iterator[tuple[str, float]]:
    yield "volume", _value(bucket, "volume")


def _extract_rt_max(bucket: Bucket, _config: ByDimensionConfig) -> Iterator[tuple[str, float]]:
    yield "rt_max", _number(_sub(bucket, "rt_stats").get("max"), "rt_stats.max")


def _extract_rt_avg(bucket: Bucket, _config: ByDimensionConfig) -> Iterator[tuple[str, float]]:
    yield "rt_avg", _number(_sub(bucket, "rt_stats").get("avg"), "rt_stats.avg")


def percentile_key(percentile: float) -> str:
    return f"rt_{float(percentile)!r}p"


def _find_percentile(values: Mapping[str, Any], percentile: float) -> Any:
    key = repr(float(percentile))
    if key in values:
        return values[key]
    for raw_key, raw_value in values.items():
        try:
            if float(raw_key) == percentile:
                return raw_value
        except ValueError:
            continue
    raise BackendError(f"percentile {key} missing from rt_percentiles")


def _extract_rt_percentiles(
    bucket: Bucket, config: ByDimensionConfig
) -> Iterator[tuple[str, float]]:
    values = _sub(bucket, "rt_percentiles").get("values")
    if not isinstance(values, Mapping):
        raise BackendError("rt_percentiles.values must be an object")
    for percentile in config.percentiles:
        yield percentile_key(percentile), _number(
            _find_percentile(values, percentile), f"rt_percentiles.values.{percentile!r}"
        )


def _extract_secondary_count(
    bucket: Bucket, _config: ByDimensionConfig
) -> Iterator[tuple[str, float]]:
    yield "secondary_count", _value(bucket, "secondary_card")


def _extract_errors_rate(
    bucket: Bucket, _config: ByDimensionConfig
) -> Iterator[tuple[str, float]]:
    errors = _value(_sub(bucket, "errors_count"), "count")
    volume = _value(bucket, "volume")
    # A group without volume has no errors either; report 0 rather than NaN.
    yield "errors_rate", errors / volume if volume else 0.0


def _bucket_timestamp(raw: Mapping[str, Any]) -> datetime:
    key = raw.get("key")
    if isinstance(key, int | float) and not isinstance(key, bool):
        return datetime.fromtimestamp(key / 1000.0, tz=UTC)
    try:
        return parse_time(raw.get("key_as_string"))
    except ValueError as exc:
        raise BackendError("histogram bucket without a usable key") from exc


def _extract_volume_hist(
    bucket: Bucket, _config: ByDimensionConfig
) -> list[tuple[datetime, float]]:
    buckets = _sub(bucket, "volume_hist").get("buckets")
    if not isinstance(buckets, list):
        raise BackendError("volume_hist.buckets must be a list")
    series: list[tuple[datetime, float]] = []
    for raw in buckets:
        if not isinstance(raw, Mapping):
            raise BackendError("volume_hist bucket must be an object")
        value = _value(raw, "volume")
        if value == 0:
            continue
        series.append((_bucket_timestamp(raw), value))
    series.sort(key=lambda point: point[0])
    return series


METRIC_NAMES = (
    "volume",
    "rt_max",
    "rt_avg",
    "rt_percentiles",
    "secondary_count",
    "errors_rate",
)
HISTOGRAM_METRIC_NAMES = ("volume",)

METRICS: dict[str, ScalarMetric] = {
    "volume": ScalarMetric("volume", ("volume",), _extract_volume),
    "rt_max": ScalarMetric("rt_max", ("rt_stats",), _extract_rt_max),
    "rt_avg": ScalarMetric("rt_avg", ("rt_stats",), _extract_rt_avg),
    "rt_percentiles": ScalarMetric(
        "rt_percentiles", ("rt_percentiles",), _extract_rt_percentiles
    ),
    "secondary_count": ScalarMetric(
        "secondary_count", ("secondary_card",), _extract_secondary_count
    ),
    "errors_rate": ScalarMetric(
        "errors_rate", ("errors_count", "volume"), _extract_errors_rate
    ),
}

HISTOGRAM_METRICS: dict[str, HistogramMetric] = {
    "volume": HistogramMetric("volume", ("volume_hist",), _extract_volume_hist),
}


def validate_registry() -> None:
    if set(METRICS) != set(METRIC_NAMES):
        raise RuntimeError(f"metric table does not match declared names: {sorted(METRICS)}")
    if set(HISTOGRAM_METRICS) != set(HISTOGRAM_METRIC_NAMES):
        raise RuntimeError(
            f"histogram table does not match declared names: {sorted(HISTOGRAM_METRICS)}"
        )
    for metric in METRICS.values():
        missing = [key for key in metric.requires if key not in AGGREGATIONS]
        if missing:
            raise RuntimeError(f"metric {metric.name} requires unknown aggregations {missing}")
    for hist_metric in HISTOGRAM_METRICS.values():
        missing = [key for key in hist_metric.requires if key not in HISTOGRAM_AGGREGATIONS]
        if missing:
            raise RuntimeError(
                f"histogram metric {hist_metric.name} requires unknown aggregations {missing}"
            )
    shared = set(AGGREGATIONS) & set(HISTOGRAM_AGGREGATIONS)
    if shared:
        raise RuntimeError(f"aggregation keys defined twice: {sorted(shared)}")


def get_metric(name: str) -> ScalarMetric:
    metric = METRICS.get(name)
    if metric is None:
        raise ClientError(f"Unknown metric name '{name}'")
    return metric


def get_histogram_metric(name: str) -> HistogramMetric:
    metric = HISTOGRAM_METRICS.get(name)
    if metric is None:
        raise ClientError(f"Unknown histogram metric name '{name}'")
    return metric


def required_aggregations(metrics: Iterable[ScalarMetric | HistogramMetric]) -> list[str]:
    """Return the sub-aggregation keys needed by ``metrics``, deduplicated in order."""
    keys: list[str] = []
    for metric in metrics:
        for key in metric.requires:
            if key not in keys:
                keys.append(key)
    return keys


validate_registry()
