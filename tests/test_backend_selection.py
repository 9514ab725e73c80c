from __future__ import annotations

import httpx
import pytest

from bonito.api import create_app, create_store
from bonito.settings import Settings, load_settings
from bonito.store import InMemoryDocumentStore
from bonito.store_elasticsearch import ElasticsearchStore


def test_default_backend_is_inmemory() -> None:
    assert isinstance(create_store(Settings()), InMemoryDocumentStore)


def test_elasticsearch_backend() -> None:
    store = create_store(Settings(store_backend="elasticsearch"))
    assert isinstance(store, ElasticsearchStore)
    store.close()


def test_elasticsearch_backend_requires_url() -> None:
    with pytest.raises(ValueError, match="BONITO_ELASTICSEARCH_URL"):
        create_app(settings=Settings(store_backend="elasticsearch", elasticsearch_url=""))


def test_unknown_backend_rejected() -> None:
    with pytest.raises(ValueError, match="unsupported BONITO_STORE_BACKEND"):
        create_app(settings=Settings(store_backend="unknown"))


def test_load_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BONITO_STORE_BACKEND", "ElasticSearch")
    monkeypatch.setenv("BONITO_INDEX", "logs-*")
    monkeypatch.setenv("BONITO_REQUEST_TIMEOUT_S", "2.5")
    monkeypatch.setenv("BONITO_PRIMARY_SIZE", "20")
    settings = load_settings()
    assert settings.store_backend == "elasticsearch"
    assert settings.index == "logs-*"
    assert settings.request_timeout_s == 2.5
    assert settings.primary_size == 20
    assert settings.elasticsearch_url == "http://localhost:9200"


def test_inmemory_backend_starts_empty_by_default() -> None:
    store = create_store(Settings())
    assert isinstance(store, InMemoryDocumentStore)
    assert store.indices() == []


def test_inmemory_backend_seeds_sample_data() -> None:
    store = create_store(Settings(seed_sample_data=True, sample_index="packetbeat-demo"))
    assert isinstance(store, InMemoryDocumentStore)
    assert store.indices() == ["packetbeat-demo"]


@pytest.mark.anyio
async def test_seeded_app_answers_default_query() -> None:
    app = create_app(settings=Settings(seed_sample_data=True))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/api/bydimension", json={"metrics": ["volume"]})
    assert response.status_code == 200
    volumes = {group["name"]: group["metrics"]["volume"] for group in response.json()["primary"]}
    assert volumes == {"service1": 5.0, "service2": 4.0}


def test_load_seed_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BONITO_SEED_SAMPLE_DATA", "True")
    monkeypatch.setenv("BONITO_SAMPLE_INDEX", "packetbeat-local")
    settings = load_settings()
    assert settings.seed_sample_data is True
    assert settings.sample_index == "packetbeat-local"
    monkeypatch.setenv("BONITO_SEED_SAMPLE_DATA", "0")
    assert load_settings().seed_sample_data is False
