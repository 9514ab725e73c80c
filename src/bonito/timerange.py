"""Time range model and relative time parsing."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_RELATIVE = re.compile(r"^now(?:(?P<sign>[+-])(?P<amount>\d+)(?P<unit>[smhdw]))?$")

_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def parse_time(value: Any, now: datetime | None = None) -> datetime:
    """Parse an absolute or relative timestamp into an aware UTC datetime.

    Accepts datetimes, epoch milliseconds, ISO-8601 strings and the relative
    forms ``now``, ``now-1h``, ``now+30m``.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000.0, tz=UTC)
    if not isinstance(value, str):
        raise ValueError(f"invalid timestamp: {value!r}")

    text = value.strip()
    match = _RELATIVE.match(text)
    if match is not None:
        base = now if now is not None else datetime.now(UTC)
        if match.group("sign") is None:
            return base
        delta = _UNITS[match.group("unit")] * int(match.group("amount"))
        return base - delta if match.group("sign") == "-" else base + delta

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"invalid timestamp: {value!r}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


class Timerange(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: datetime | None = Field(default=None, alias="from")
    to: datetime | None = None

    @field_validator("from_", "to", mode="before")
    @classmethod
    def _parse(cls, value: Any) -> datetime | None:
        if value is None or value == "":
            return None
        return parse_time(value)

    def is_zero(self) -> bool:
        return self.from_ is None and self.to is None

    def duration(self) -> timedelta:
        if self.from_ is None or self.to is None:
            raise ValueError("time range is not fully set")
        return self.to - self.from_

    @classmethod
    def last(cls, window: timedelta, now: datetime | None = None) -> Timerange:
        end = now if now is not None else datetime.now(UTC)
        return cls(from_=end - window, to=end)
