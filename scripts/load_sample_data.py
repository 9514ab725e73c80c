#!/usr/bin/env python3
"""Index the sample transaction set into Elasticsearch."""

from __future__ import annotations

import argparse
from datetime import UTC, datetime

from bonito.store_elasticsearch import ElasticsearchStore
from bonito.testdata import TRANSACTION_MAPPINGS, sample_transactions
from bonito.timerange import parse_time


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load Bonito sample transactions.")
    parser.add_argument("--url", default="http://localhost:9200", help="Elasticsearch URL.")
    parser.add_argument("--index", default="packetbeat-sample", help="Target index.")
    parser.add_argument(
        "--start",
        default="now-5m",
        help="Timestamp of the first transaction (ISO-8601 or now-<n><unit>).",
    )
    parser.add_argument(
        "--recreate",
        action="store_true",
        help="Delete the index before loading.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    store = ElasticsearchStore(args.url)
    try:
        if args.recreate:
            store.delete_index(args.index)
            store.create_index(args.index, TRANSACTION_MAPPINGS)
        start = parse_time(args.start, now=datetime.now(UTC))
        loaded = store.index_documents(args.index, sample_transactions(start))
        store.refresh(args.index)
    finally:
        store.close()
    print(f"Indexed {loaded} transactions into {args.index}")


if __name__ == "__main__":
    main()
