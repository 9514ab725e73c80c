"""Elasticsearch document store over its REST API."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from bonito.errors import BackendError


def _error_reason(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("reason") or error.get("type") or error)
    return str(error or payload)


class ElasticsearchStore:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        content: str | None = None,
        timeout: float | None = None,
        allow_missing: bool = False,
    ) -> dict[str, Any]:
        try:
            response = self._client.request(
                method,
                path,
                content=content,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as exc:
            raise BackendError(f"elasticsearch {method} {path} failed: {exc}") from exc

        if allow_missing and response.status_code == 404:
            return {}
        if response.status_code >= 400:
            raise BackendError(
                f"elasticsearch {method} {path} returned {response.status_code}: "
                f"{_error_reason(response)}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendError(f"elasticsearch {method} {path} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise BackendError(f"elasticsearch {method} {path} returned a non-object body")
        return payload

    def search(
        self, index: str, body: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        try:
            content = json.dumps(body)
        except (TypeError, ValueError) as exc:
            raise BackendError(f"cannot encode search body: {exc}") from exc
        payload = self._request("POST", f"/{index}/_search", content=content, timeout=timeout)
        if payload.get("timed_out"):
            raise BackendError(f"search on {index} timed out in elasticsearch")
        return payload

    def index_documents(
        self, index: str, documents: Iterable[Mapping[str, Any]], refresh: bool = True
    ) -> int:
        lines: list[str] = []
        for document in documents:
            lines.append(json.dumps({"index": {"_index": index}}))
            lines.append(json.dumps(dict(document), default=str))
        if not lines:
            return 0
        suffix = "?refresh=true" if refresh else ""
        payload = self._request("POST", f"/_bulk{suffix}", content="\n".join(lines) + "\n")
        if payload.get("errors"):
            raise BackendError(f"bulk indexing into {index} reported errors")
        return len(lines) // 2

    def create_index(self, index: str, mappings: Mapping[str, Any] | None = None) -> None:
        body = {"mappings": dict(mappings)} if mappings else {}
        self._request("PUT", f"/{index}", content=json.dumps(body))

    def refresh(self, index: str) -> None:
        self._request("POST", f"/{index}/_refresh", allow_missing=True)

    def delete_index(self, index: str) -> bool:
        return bool(self._request("DELETE", f"/{index}", allow_missing=True))
