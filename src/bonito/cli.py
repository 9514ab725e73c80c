"""Bonito command-line interface."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from urllib.error import URLError
from urllib.request import urlopen

from pydantic import ValidationError

from bonito.api import create_store
from bonito.bydimension import ByDimensionService
from bonito.errors import BonitoError
from bonito.interval import compute_interval
from bonito.main import run as run_api
from bonito.models import ByDimensionRequest
from bonito.settings import load_settings
from bonito.store_elasticsearch import ElasticsearchStore
from bonito.timerange import Timerange


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bonito operations CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve-api", help="Run Bonito API server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)

    query = subparsers.add_parser("query", help="Run a by-dimension query from a JSON file")
    query.add_argument("--request", required=True, help="Path to the request JSON")
    query.add_argument("--index", default="", help="Override BONITO_INDEX")
    query.add_argument(
        "--backend",
        choices=["inmemory", "elasticsearch"],
        default="",
        help="Override BONITO_STORE_BACKEND",
    )
    query.add_argument("--url", default="", help="Override BONITO_ELASTICSEARCH_URL")
    query.add_argument("--timeout", type=float, default=0.0)

    interval = subparsers.add_parser(
        "interval", help="Print the histogram interval for a time range"
    )
    interval.add_argument("--from", dest="from_", required=True)
    interval.add_argument("--to", required=True)
    interval.add_argument("--points", type=int, default=10)

    health = subparsers.add_parser("health", help="Run HTTP health check")
    health.add_argument("--url", default="http://localhost:8080/healthz")

    return parser


def _run_query(args: argparse.Namespace) -> int:
    settings = load_settings()
    overrides: dict[str, object] = {}
    if args.index:
        overrides["index"] = args.index
    if args.backend:
        overrides["store_backend"] = args.backend
    if args.url:
        overrides["elasticsearch_url"] = args.url
    if args.timeout > 0:
        overrides["request_timeout_s"] = args.timeout
    settings = replace(settings, **overrides)

    try:
        raw = Path(args.request).read_text(encoding="utf-8")
        request = ByDimensionRequest.model_validate_json(raw)
    except (OSError, ValidationError) as exc:
        print(f"Invalid request: {exc}", file=sys.stderr)
        return 1

    store = create_store(settings)
    service = ByDimensionService(
        store=store,
        index=settings.index,
        primary_size=settings.primary_size,
    )
    try:
        response = service.query(request, timeout=settings.request_timeout_s)
    except BonitoError as exc:
        print(f"Query failed ({exc.status_code}): {exc}", file=sys.stderr)
        return 1
    finally:
        if isinstance(store, ElasticsearchStore):
            store.close()
    print(response.model_dump_json(indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve-api":
        run_api(host=args.host, port=args.port)
        return 0

    if args.command == "query":
        return _run_query(args)

    if args.command == "interval":
        try:
            timerange = Timerange.model_validate({"from": args.from_, "to": args.to})
            print(compute_interval(timerange, args.points))
        except (ValidationError, BonitoError) as exc:
            print(f"Invalid interval request: {exc}", file=sys.stderr)
            return 1
        return 0

    if args.command == "health":
        try:
            with urlopen(args.url, timeout=5) as response:
                payload = response.read().decode("utf-8")
            print(payload)
            return 0
        except URLError as exc:
            print(f"Health check failed: {exc}", file=sys.stderr)
            return 1

    parser.error(f"Unsupported command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
