"""Sample transaction documents for local runs and tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any


def transaction(
    timestamp: datetime,
    service: str,
    host: str,
    count: int,
    responsetime: float,
    status: str,
) -> dict[str, Any]:
    return {
        "timestamp": timestamp.isoformat(),
        "service": service,
        "host": host,
        "count": count,
        "responsetime": responsetime,
        "status": status,
    }


def sample_transactions(start: datetime) -> list[dict[str, Any]]:
    """Two services, one failing transaction, all within one millisecond of ``start``."""
    later = start + timedelta(milliseconds=1)
    return [
        transaction(start, "service1", "Host0", 2, 2000, "ok"),
        transaction(later, "service2", "Host3", 4, 2000, "ok"),
        transaction(later, "service1", "host2", 3, 2100, "error"),
    ]


TRANSACTION_MAPPINGS: dict[str, Any] = {
    "properties": {
        "timestamp": {"type": "date"},
        "service": {"type": "keyword"},
        "host": {"type": "keyword"},
        "count": {"type": "long"},
        "responsetime": {"type": "double"},
        "status": {"type": "keyword"},
    }
}
