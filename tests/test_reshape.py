from __future__ import annotations

from datetime import UTC, datetime

import pytest

from bonito.errors import BackendError
from bonito.models import ByDimensionConfig, ByDimensionRequest, apply_defaults
from bonito.reshape import bucket_to_primary, reshape_response


def _request(**kwargs: object) -> ByDimensionRequest:
    return apply_defaults(ByDimensionRequest(**kwargs))


def _raw(*buckets: dict) -> dict:
    return {"aggregations": {"primary": {"buckets": list(buckets)}}}


def test_preserves_backend_group_order() -> None:
    raw = _raw(
        {"key": "service2", "doc_count": 1, "volume": {"value": 4.0}},
        {"key": "service1", "doc_count": 2, "volume": {"value": 5.0}},
    )
    response = reshape_response(raw, _request(metrics=["volume"]))
    assert response.status == "ok"
    assert [primary.name for primary in response.primary] == ["service2", "service1"]
    assert response.primary[0].metrics == {"volume": 4.0}
    assert response.primary[0].hist_metrics == {}


def test_percentiles_fan_out_per_requested_value() -> None:
    bucket = {
        "key": "service1",
        "rt_percentiles": {"values": {"50.0": 2050.0, "90.0": 2090.0}},
    }
    primary = bucket_to_primary(
        bucket,
        _request(metrics=["rt_percentiles"], config=ByDimensionConfig(percentiles=[50, 90])),
    )
    assert primary.metrics == {"rt_50.0p": 2050.0, "rt_90.0p": 2090.0}


def test_histogram_series_skips_zero_buckets() -> None:
    bucket = {
        "key": "service1",
        "volume": {"value": 5.0},
        "volume_hist": {
            "buckets": [
                {"key": 1420210980000, "doc_count": 0, "volume": {"value": 0.0}},
                {"key": 1420211040000, "doc_count": 2, "volume": {"value": 5.0}},
            ]
        },
    }
    primary = bucket_to_primary(
        bucket, _request(metrics=["volume"], histogram_metrics=["volume"])
    )
    assert primary.metrics == {"volume": 5.0}
    series = primary.hist_metrics["volume"]
    assert len(series) == 1
    assert series[0].ts == datetime(2015, 1, 2, 15, 4, tzinfo=UTC)
    assert series[0].value == 5.0


def test_numeric_keys_are_stringified() -> None:
    bucket = {"key": 404, "doc_count": 1, "volume": {"value": 1.0}}
    assert bucket_to_primary(bucket, _request(metrics=["volume"])).name == "404"


def test_missing_sub_aggregation_is_backend_error() -> None:
    raw = _raw({"key": "service1", "doc_count": 1, "volume": {"value": 5.0}})
    with pytest.raises(BackendError, match="errors_count"):
        reshape_response(raw, _request(metrics=["errors_rate"]))


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"aggregations": {}},
        {"aggregations": {"primary": {"buckets": "nope"}}},
        {"aggregations": {"primary": {"buckets": ["nope"]}}},
    ],
)
def test_unexpected_response_shape_is_backend_error(raw: dict) -> None:
    with pytest.raises(BackendError):
        reshape_response(raw, _request(metrics=["volume"]))


def test_bucket_without_key_is_backend_error() -> None:
    with pytest.raises(BackendError, match="unusable key"):
        bucket_to_primary({"volume": {"value": 1.0}}, _request(metrics=["volume"]))


def test_empty_result() -> None:
    response = reshape_response(_raw(), _request(metrics=["volume"]))
    assert response.primary == []
