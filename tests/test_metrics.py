from __future__ import annotations

import math
from datetime import UTC, datetime

import pytest

from bonito import metrics
from bonito.errors import BackendError, ClientError
from bonito.models import ByDimensionConfig, ByDimensionRequest, apply_defaults

CONFIG = apply_defaults(
    ByDimensionRequest(config=ByDimensionConfig(percentiles=[50, 99.995]))
).config


def test_registry_matches_declared_names() -> None:
    metrics.validate_registry()
    assert set(metrics.METRICS) == {
        "volume",
        "rt_max",
        "rt_avg",
        "rt_percentiles",
        "secondary_count",
        "errors_rate",
    }
    assert set(metrics.HISTOGRAM_METRICS) == {"volume"}


def test_registry_check_catches_missing_builder(monkeypatch: pytest.MonkeyPatch) -> None:
    broken = dict(metrics.AGGREGATIONS)
    del broken["rt_stats"]
    monkeypatch.setattr(metrics, "AGGREGATIONS", broken)
    with pytest.raises(RuntimeError, match="rt_max"):
        metrics.validate_registry()


def test_unknown_names_are_client_errors() -> None:
    with pytest.raises(ClientError, match="Unknown metric name 'something'"):
        metrics.get_metric("something")
    with pytest.raises(ClientError, match="Unknown histogram metric name 'rt_max'"):
        metrics.get_histogram_metric("rt_max")


def test_shared_aggregations_are_requested_once() -> None:
    names = ("rt_max", "errors_rate", "rt_avg", "volume")
    requested = [metrics.get_metric(name) for name in names]
    assert metrics.required_aggregations(requested) == ["rt_stats", "errors_count", "volume"]


def test_errors_rate_declares_volume_dependency() -> None:
    assert "volume" in metrics.get_metric("errors_rate").requires


@pytest.mark.parametrize("key", sorted(metrics.AGGREGATIONS))
def test_builders_are_idempotent(key: str) -> None:
    assert metrics.AGGREGATIONS[key](CONFIG) == metrics.AGGREGATIONS[key](CONFIG)


def test_histogram_builder_uses_interval_and_count_field() -> None:
    fragment = metrics.HISTOGRAM_AGGREGATIONS["volume_hist"](CONFIG, 60000)
    assert fragment == {
        "date_histogram": {
            "field": "timestamp",
            "fixed_interval": "60000ms",
            "min_doc_count": 1,
        },
        "aggs": {"volume": {"sum": {"field": "count"}}},
    }


def test_errors_count_filters_out_success_status() -> None:
    config = CONFIG.model_copy(update={"status_field": "code", "status_value_ok": "200"})
    fragment = metrics.AGGREGATIONS["errors_count"](config)
    assert fragment["filter"] == {"bool": {"must_not": {"term": {"code": "200"}}}}
    assert fragment["aggs"] == {"count": {"sum": {"field": "count"}}}


def _extract(name: str, bucket: dict) -> dict[str, float]:
    return dict(metrics.get_metric(name).extract(bucket, CONFIG))


def test_scalar_extractors() -> None:
    bucket = {
        "key": "service1",
        "volume": {"value": 5.0},
        "rt_stats": {"count": 2, "min": 2000.0, "max": 2100.0, "avg": 2050.0, "sum": 4100.0},
        "rt_percentiles": {"values": {"50.0": 2050.0, "99.995": 2099.99}},
        "secondary_card": {"value": 2},
        "errors_count": {"doc_count": 1, "count": {"value": 3.0}},
    }
    assert _extract("volume", bucket) == {"volume": 5.0}
    assert _extract("rt_max", bucket) == {"rt_max": 2100.0}
    assert _extract("rt_avg", bucket) == {"rt_avg": 2050.0}
    assert _extract("rt_percentiles", bucket) == {"rt_50.0p": 2050.0, "rt_99.995p": 2099.99}
    assert _extract("secondary_count", bucket) == {"secondary_count": 2.0}
    assert _extract("errors_rate", bucket) == {"errors_rate": pytest.approx(0.6)}


def test_percentile_lookup_tolerates_other_key_spellings() -> None:
    bucket = {"rt_percentiles": {"values": {"50": 10.0, "99.995": 20.0}}}
    assert _extract("rt_percentiles", bucket) == {"rt_50.0p": 10.0, "rt_99.995p": 20.0}


def test_missing_percentile_is_backend_error() -> None:
    with pytest.raises(BackendError, match="percentile 99.995"):
        _extract("rt_percentiles", {"rt_percentiles": {"values": {"50.0": 1.0}}})


def test_errors_rate_with_zero_volume_is_zero() -> None:
    bucket = {"volume": {"value": 0.0}, "errors_count": {"count": {"value": 0.0}}}
    rate = _extract("errors_rate", bucket)["errors_rate"]
    assert rate == 0.0
    assert not math.isnan(rate)


def test_null_values_read_as_zero() -> None:
    bucket = {"rt_stats": {"count": 0, "min": None, "max": None, "avg": None, "sum": 0.0}}
    assert _extract("rt_max", bucket) == {"rt_max": 0.0}


@pytest.mark.parametrize(
    "bucket",
    [
        {},
        {"volume": 5},
        {"volume": {"value": "five"}},
        {"volume": {"value": True}},
    ],
)
def test_malformed_sub_results_are_backend_errors(bucket: dict) -> None:
    with pytest.raises(BackendError):
        _extract("volume", bucket)


def test_volume_histogram_drops_empty_buckets_and_sorts() -> None:
    bucket = {
        "volume_hist": {
            "buckets": [
                {"key": 1420211100000, "doc_count": 1, "volume": {"value": 4.0}},
                {"key": 1420211040000, "doc_count": 2, "volume": {"value": 5.0}},
                {"key": 1420210980000, "doc_count": 0, "volume": {"value": 0.0}},
            ]
        }
    }
    series = metrics.get_histogram_metric("volume").extract(bucket, CONFIG)
    assert series == [
        (datetime(2015, 1, 2, 15, 4, tzinfo=UTC), 5.0),
        (datetime(2015, 1, 2, 15, 5, tzinfo=UTC), 4.0),
    ]


def test_volume_histogram_falls_back_to_key_as_string() -> None:
    bucket = {
        "volume_hist": {
            "buckets": [
                {"key_as_string": "2015-01-02T15:04:00.000Z", "volume": {"value": 5.0}},
            ]
        }
    }
    series = metrics.get_histogram_metric("volume").extract(bucket, CONFIG)
    assert series == [(datetime(2015, 1, 2, 15, 4, tzinfo=UTC), 5.0)]


def test_volume_histogram_requires_bucket_list() -> None:
    with pytest.raises(BackendError, match="volume_hist.buckets"):
        metrics.get_histogram_metric("volume").extract({"volume_hist": {}}, CONFIG)
