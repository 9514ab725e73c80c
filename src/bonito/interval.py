"""Histogram bucket width calculation."""

from __future__ import annotations

from datetime import timedelta

from bonito.errors import ClientError
from bonito.timerange import Timerange


def compute_interval_ms(timerange: Timerange, points: int) -> int:
    if points <= 0:
        raise ClientError(f"histogram_points must be positive, got {points}")
    # Integer microseconds so the division truncates toward zero, never rounds.
    total_us = timerange.duration() // timedelta(microseconds=1)
    millis = abs(total_us) // points // 1000
    return millis if total_us >= 0 else -millis


def compute_interval(timerange: Timerange, points: int) -> str:
    """Return a bucket width giving roughly ``points`` buckets over the range.

    The width is truncated to whole milliseconds and rendered in seconds with
    three decimals, e.g. ``"900.000s"`` for one hour over four points.
    """
    millis = compute_interval_ms(timerange, points)
    sign = "-" if millis < 0 else ""
    seconds, remainder = divmod(abs(millis), 1000)
    return f"{sign}{seconds}.{remainder:03d}s"
