"""API and domain models for by-dimension queries."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bonito.timerange import Timerange

DEFAULT_PRIMARY_DIMENSION = "service"
DEFAULT_SECONDARY_DIMENSION = "host"
DEFAULT_RESPONSETIME_FIELD = "responsetime"
DEFAULT_STATUS_FIELD = "status"
DEFAULT_STATUS_VALUE_OK = "ok"
DEFAULT_COUNT_FIELD = "count"
DEFAULT_PERCENTILES = (50.0, 90.0, 99.0, 99.5)
DEFAULT_HISTOGRAM_POINTS = 10
DEFAULT_WINDOW = timedelta(hours=1)


class ByDimensionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary_dimension: str = ""
    secondary_dimension: str = ""
    responsetime_field: str = ""
    status_field: str = ""
    status_value_ok: str = ""
    count_field: str = ""
    percentiles: list[float] = Field(default_factory=list)
    histogram_points: int = 0

    @field_validator("percentiles")
    @classmethod
    def _percentiles_in_range(cls, value: list[float]) -> list[float]:
        for percent in value:
            if not 0.0 <= percent <= 100.0:
                raise ValueError(f"percentile {percent} is outside [0, 100]")
        return value


class ByDimensionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    timerange: Timerange = Field(default_factory=Timerange)
    metrics: list[str] = Field(default_factory=list)
    histogram_metrics: list[str] = Field(default_factory=list)
    config: ByDimensionConfig = Field(default_factory=ByDimensionConfig)


class HistogramValue(BaseModel):
    ts: datetime
    value: float


class PrimaryDimension(BaseModel):
    name: str
    metrics: dict[str, float] = Field(default_factory=dict)
    hist_metrics: dict[str, list[HistogramValue]] = Field(default_factory=dict)


class ByDimensionResponse(BaseModel):
    status: Literal["ok"] = "ok"
    primary: list[PrimaryDimension] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    status: Literal["error"] = "error"
    error: str


def _default_timerange(timerange: Timerange, now: datetime) -> Timerange:
    if timerange.is_zero():
        return Timerange.last(DEFAULT_WINDOW, now=now)
    if timerange.to is None:
        return Timerange(from_=timerange.from_, to=now)
    if timerange.from_ is None:
        return Timerange(from_=timerange.to - DEFAULT_WINDOW, to=timerange.to)
    return timerange


def apply_defaults(
    request: ByDimensionRequest, now: datetime | None = None
) -> ByDimensionRequest:
    """Return a copy of ``request`` with every unset option filled in.

    Applying it to an already defaulted request returns an equal request.
    """
    config = request.config
    filled = config.model_copy(
        update={
            "primary_dimension": config.primary_dimension or DEFAULT_PRIMARY_DIMENSION,
            "secondary_dimension": config.secondary_dimension or DEFAULT_SECONDARY_DIMENSION,
            "responsetime_field": config.responsetime_field or DEFAULT_RESPONSETIME_FIELD,
            "status_field": config.status_field or DEFAULT_STATUS_FIELD,
            "status_value_ok": config.status_value_ok or DEFAULT_STATUS_VALUE_OK,
            "count_field": config.count_field or DEFAULT_COUNT_FIELD,
            "percentiles": list(config.percentiles) or list(DEFAULT_PERCENTILES),
            "histogram_points": config.histogram_points or DEFAULT_HISTOGRAM_POINTS,
        }
    )
    timerange = _default_timerange(
        request.timerange, now if now is not None else datetime.now(UTC)
    )
    return request.model_copy(update={"config": filled, "timerange": timerange})
