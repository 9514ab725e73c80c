"""HTTP API for Bonito."""

import json
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from functools import partial
from time import perf_counter

import anyio.to_thread
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.responses import Response

from bonito.bydimension import ByDimensionService
from bonito.errors import BackendError, BonitoError, ClientError
from bonito.metrics import HISTOGRAM_METRIC_NAMES, METRIC_NAMES
from bonito.models import ByDimensionRequest, ByDimensionResponse, ErrorResponse
from bonito.observability import MetricsStore, RequestMetric, duration_ms
from bonito.settings import Settings, load_settings
from bonito.store import DocumentStore, InMemoryDocumentStore
from bonito.store_elasticsearch import ElasticsearchStore
from bonito.testdata import sample_transactions

LOGGER = logging.getLogger("bonito.api")
VERSION = "0.3.0"
SAMPLE_DATA_AGE = timedelta(minutes=5)


def create_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "inmemory":
        store = InMemoryDocumentStore()
        if settings.seed_sample_data:
            start = datetime.now(UTC) - SAMPLE_DATA_AGE
            store.index_documents(settings.sample_index, sample_transactions(start))
            LOGGER.info("seeded in-memory index %s with sample data", settings.sample_index)
        return store
    if settings.store_backend == "elasticsearch":
        if not settings.elasticsearch_url:
            raise ValueError(
                "BONITO_ELASTICSEARCH_URL is required when BONITO_STORE_BACKEND=elasticsearch"
            )
        return ElasticsearchStore(
            settings.elasticsearch_url, timeout=settings.request_timeout_s
        )
    raise ValueError(f"unsupported BONITO_STORE_BACKEND: {settings.store_backend}")


def create_app(
    store: DocumentStore | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    runtime_settings = settings if settings is not None else load_settings()
    document_store = store if store is not None else create_store(runtime_settings)
    metrics = MetricsStore()
    service = ByDimensionService(
        store=document_store,
        index=runtime_settings.index,
        primary_size=runtime_settings.primary_size,
        metrics=metrics,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        try:
            yield
        finally:
            if isinstance(document_store, ElasticsearchStore):
                document_store.close()

    app = FastAPI(
        title="Bonito API",
        version=VERSION,
        description="Per-dimension metrics over an Elasticsearch transaction index.",
        lifespan=lifespan,
    )

    def resolve_route_path(request: Request) -> str:
        route = request.scope.get("route")
        if route is not None and hasattr(route, "path"):
            return str(route.path)
        return request.url.path

    @app.middleware("http")
    async def observe_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        start_perf = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            metrics.record(
                RequestMetric(
                    method=request.method,
                    path=resolve_route_path(request),
                    status_code=status_code,
                    duration_ms=duration_ms(start_perf),
                )
            )

    @app.exception_handler(BonitoError)
    async def bonito_error_handler(_request: Request, exc: BonitoError) -> JSONResponse:
        if isinstance(exc, ClientError):
            LOGGER.warning("bydimension client error: %s", exc)
            metrics.record_query_error("client")
        else:
            LOGGER.error("bydimension backend error: %s", exc)
            metrics.record_query_error("backend")
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        metrics.record_query_error("client")
        messages = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=ClientError.status_code,
            content=ErrorResponse(error="; ".join(messages)).model_dump(),
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok", "service": "bonito", "version": VERSION}

    @app.post(
        "/api/bydimension",
        response_model=ByDimensionResponse,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def bydimension(payload: ByDimensionRequest) -> ByDimensionResponse:
        query_start = perf_counter()
        try:
            response, timings = await anyio.to_thread.run_sync(
                partial(
                    service.query_with_timings,
                    payload,
                    timeout=runtime_settings.request_timeout_s,
                )
            )
        except (ClientError, BackendError):
            raise
        except Exception as exc:
            raise BackendError(f"unexpected failure running query: {exc}") from exc

        LOGGER.info(
            "bydimension_trace %s",
            json.dumps(
                {
                    "index": runtime_settings.index,
                    "metrics": payload.metrics,
                    "histogram_metrics": payload.histogram_metrics,
                    "groups": len(response.primary),
                    "build_ms": round(timings["build_ms"], 2),
                    "store_ms": round(timings["store_ms"], 2),
                    "reshape_ms": round(timings["reshape_ms"], 2),
                    "total_ms": round(duration_ms(query_start), 2),
                },
                sort_keys=True,
            ),
        )
        return response

    @app.get("/api/meta")
    async def meta() -> dict[str, object]:
        return {
            "service": "bonito",
            "store_backend": runtime_settings.store_backend,
            "index": runtime_settings.index,
            "metrics": list(METRIC_NAMES),
            "histogram_metrics": list(HISTOGRAM_METRIC_NAMES),
            "generated_at": datetime.now(UTC).isoformat(),
        }

    @app.get("/v0/metrics")
    async def metrics_snapshot() -> dict[str, object]:
        return {
            "service": "bonito",
            "store_backend": runtime_settings.store_backend,
            "index": runtime_settings.index,
            "snapshot": metrics.snapshot(),
        }

    return app
