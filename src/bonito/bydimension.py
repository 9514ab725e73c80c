"""By-dimension query: defaults, compile, execute, reshape."""

from __future__ import annotations

import logging
from time import perf_counter

from bonito.errors import BackendError
from bonito.models import ByDimensionRequest, ByDimensionResponse, apply_defaults
from bonito.observability import MetricsStore, duration_ms
from bonito.query import DEFAULT_PRIMARY_SIZE, build_search_body
from bonito.reshape import reshape_response
from bonito.store import DocumentStore

LOGGER = logging.getLogger("bonito.bydimension")


class ByDimensionService:
    def __init__(
        self,
        store: DocumentStore,
        index: str,
        primary_size: int = DEFAULT_PRIMARY_SIZE,
        metrics: MetricsStore | None = None,
    ) -> None:
        self.store = store
        self.index = index
        self.primary_size = primary_size
        self.metrics = metrics

    def _record(self, stage: str, start: float) -> float:
        elapsed = duration_ms(start)
        if self.metrics is not None:
            self.metrics.record_pipeline_timing(stage, elapsed)
        return elapsed

    def query(
        self, request: ByDimensionRequest, timeout: float | None = None
    ) -> ByDimensionResponse:
        """Run one by-dimension query.

        Raises ``ClientError`` before touching the store when the request
        names an unknown metric or asks for an impossible histogram, and
        ``BackendError`` for anything that goes wrong afterwards.
        """
        return self.query_with_timings(request, timeout=timeout)[0]

    def query_with_timings(
        self, request: ByDimensionRequest, timeout: float | None = None
    ) -> tuple[ByDimensionResponse, dict[str, float]]:
        """Like ``query``, also returning build/store/reshape timings in ms."""
        request = apply_defaults(request)

        build_start = perf_counter()
        body = build_search_body(request, primary_size=self.primary_size)
        build_ms = self._record("bydimension.build", build_start)

        store_start = perf_counter()
        raw = self.store.search(self.index, body, timeout=timeout)
        store_ms = self._record("bydimension.store", store_start)
        if not isinstance(raw, dict):
            raise BackendError("store returned a non-object search response")

        reshape_start = perf_counter()
        response = reshape_response(raw, request)
        reshape_ms = self._record("bydimension.reshape", reshape_start)

        LOGGER.debug(
            "bydimension index=%s groups=%d build_ms=%.2f store_ms=%.2f reshape_ms=%.2f",
            self.index,
            len(response.primary),
            build_ms,
            store_ms,
            reshape_ms,
        )
        return response, {"build_ms": build_ms, "store_ms": store_ms, "reshape_ms": reshape_ms}
