"""Compile a defaulted by-dimension request into a search body."""

from __future__ import annotations

from typing import Any

from bonito.errors import ClientError
from bonito.interval import compute_interval_ms
from bonito.metrics import (
    AGGREGATIONS,
    HISTOGRAM_AGGREGATIONS,
    TIMESTAMP_FIELD,
    get_histogram_metric,
    get_metric,
    required_aggregations,
)
from bonito.models import ByDimensionRequest

DEFAULT_PRIMARY_SIZE = 100


def merge_aggregations(target: dict[str, Any], fragments: dict[str, Any]) -> dict[str, Any]:
    """Merge ``fragments`` into ``target`` by key.

    A key may be contributed more than once only with an identical fragment.
    """
    for key, fragment in fragments.items():
        existing = target.get(key)
        if existing is not None and existing != fragment:
            raise ValueError(f"conflicting definitions for aggregation '{key}'")
        target[key] = fragment
    return target


def build_metric_aggregations(request: ByDimensionRequest) -> dict[str, Any]:
    metrics = [get_metric(name) for name in request.metrics]
    return {key: AGGREGATIONS[key](request.config) for key in required_aggregations(metrics)}


def build_histogram_aggregations(request: ByDimensionRequest) -> dict[str, Any]:
    hist_metrics = [get_histogram_metric(name) for name in request.histogram_metrics]
    if not hist_metrics:
        return {}
    interval_ms = compute_interval_ms(request.timerange, request.config.histogram_points)
    if interval_ms <= 0:
        raise ClientError(
            "time range is too short for "
            f"{request.config.histogram_points} histogram points"
        )
    return {
        key: HISTOGRAM_AGGREGATIONS[key](request.config, interval_ms)
        for key in required_aggregations(hist_metrics)
    }


def build_aggregations(request: ByDimensionRequest) -> dict[str, Any]:
    """Return the merged sub-aggregations nested under the primary terms bucket.

    Every metric name is resolved before anything is returned, so an unknown
    name raises ``ClientError`` without a partial tree.
    """
    aggs = merge_aggregations({}, build_metric_aggregations(request))
    return merge_aggregations(aggs, build_histogram_aggregations(request))


def build_search_body(
    request: ByDimensionRequest, primary_size: int = DEFAULT_PRIMARY_SIZE
) -> dict[str, Any]:
    timerange = request.timerange
    if timerange.from_ is None or timerange.to is None:
        raise ClientError("time range must be set before building a query")
    return {
        "size": 0,
        "query": {
            "range": {
                TIMESTAMP_FIELD: {
                    "gte": timerange.from_.isoformat(),
                    "lte": timerange.to.isoformat(),
                }
            }
        },
        "aggs": {
            "primary": {
                "terms": {
                    "field": request.config.primary_dimension,
                    "size": primary_size,
                },
                "aggs": build_aggregations(request),
            }
        },
    }
