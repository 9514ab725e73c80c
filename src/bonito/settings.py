"""Runtime settings for Bonito."""

from __future__ import annotations

import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    store_backend: str = "inmemory"
    elasticsearch_url: str = "http://localhost:9200"
    index: str = "packetbeat-*"
    request_timeout_s: float = 10.0
    primary_size: int = 100
    seed_sample_data: bool = False
    sample_index: str = "packetbeat-sample"


def load_settings() -> Settings:
    return Settings(
        store_backend=os.getenv("BONITO_STORE_BACKEND", "inmemory").lower(),
        elasticsearch_url=os.getenv("BONITO_ELASTICSEARCH_URL", "http://localhost:9200"),
        index=os.getenv("BONITO_INDEX", "packetbeat-*"),
        request_timeout_s=float(os.getenv("BONITO_REQUEST_TIMEOUT_S", "10.0")),
        primary_size=int(os.getenv("BONITO_PRIMARY_SIZE", "100")),
        seed_sample_data=os.getenv("BONITO_SEED_SAMPLE_DATA", "").lower() in _TRUTHY,
        sample_index=os.getenv("BONITO_SAMPLE_INDEX", "packetbeat-sample"),
    )
