"""Turn the store's nested aggregation answer into per-dimension results."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bonito.errors import BackendError
from bonito.metrics import get_histogram_metric, get_metric
from bonito.models import (
    ByDimensionRequest,
    ByDimensionResponse,
    HistogramValue,
    PrimaryDimension,
)


def primary_buckets(raw: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    aggregations = raw.get("aggregations")
    primary = aggregations.get("primary") if isinstance(aggregations, Mapping) else None
    buckets = primary.get("buckets") if isinstance(primary, Mapping) else None
    if not isinstance(buckets, list):
        raise BackendError("search response has no aggregations.primary.buckets list")
    for bucket in buckets:
        if not isinstance(bucket, Mapping):
            raise BackendError("primary bucket must be an object")
    return buckets


def bucket_to_primary(
    bucket: Mapping[str, Any], request: ByDimensionRequest
) -> PrimaryDimension:
    key = bucket.get("key")
    if key is None or isinstance(key, Mapping | list):
        raise BackendError(f"primary bucket has an unusable key: {key!r}")
    # Numeric or boolean term keys come back as JSON scalars.
    name = key if isinstance(key, str) else str(bucket.get("key_as_string", key))

    metrics: dict[str, float] = {}
    for metric_name in request.metrics:
        metric = get_metric(metric_name)
        metrics.update(metric.extract(bucket, request.config))

    hist_metrics: dict[str, list[HistogramValue]] = {}
    for metric_name in request.histogram_metrics:
        hist_metric = get_histogram_metric(metric_name)
        hist_metrics[metric_name] = [
            HistogramValue(ts=ts, value=value)
            for ts, value in hist_metric.extract(bucket, request.config)
        ]

    return PrimaryDimension(name=name, metrics=metrics, hist_metrics=hist_metrics)


def reshape_response(
    raw: Mapping[str, Any], request: ByDimensionRequest
) -> ByDimensionResponse:
    return ByDimensionResponse(
        status="ok",
        primary=[bucket_to_primary(bucket, request) for bucket in primary_buckets(raw)],
    )
