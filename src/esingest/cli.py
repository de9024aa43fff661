"""
esingest CLI — Command-Line Interface
=====================================

Usage:
    python -m esingest cluster health
    python -m esingest ingest "data/*.jsonl" --index myindex
    python -m esingest ingest "data/**/*.jsonl" --index myindex \\
        --max-operations 200 --flush-interval-ms 5000 --concurrency 1

Ingester settings not given as flags are read from ESINGEST_* environment
variables (see IngesterConfig.from_env).
"""

import argparse
import logging
import os
from typing import List, Optional


HEALTH_FIELDS = [
    ("Cluster", "cluster_name"),
    ("Status", "status"),
    ("Nodes", "number_of_nodes"),
    ("Data nodes", "number_of_data_nodes"),
    ("Active shards", "active_shards"),
    ("Unassigned shards", "unassigned_shards"),
]


def parse_hosts(value: Optional[str]) -> Optional[List[str]]:
    """Comma-separated hosts from --hosts or ESINGEST_HOSTS; None means the client default."""
    value = value or os.environ.get("ESINGEST_HOSTS")
    if not value:
        return None
    return [host.strip() for host in value.split(",") if host.strip()]


def connect(args):
    from .client import build_client

    return build_client(hosts=parse_hosts(args.hosts), api_key=args.api_key)


def build_config(args):
    """Environment settings overridden by command-line flags."""
    from .config import IngesterConfig

    base = IngesterConfig.from_env()
    overrides = {
        "max_operations": args.max_operations,
        "max_bytes": args.max_bytes,
        "flush_interval_ms": args.flush_interval_ms,
        "max_concurrent_requests": args.concurrency,
        "max_retries": args.max_retries,
    }
    return base.replace(**{k: v for k, v in overrides.items() if v is not None})


def cmd_cluster_health(args):
    """Show cluster health."""
    from .client import cluster_health

    client = connect(args)
    try:
        health = cluster_health(client)
    finally:
        client.close()

    print()
    for label, key in HEALTH_FIELDS:
        print(f"{label}: {health.get(key, '-')}")


def cmd_ingest(args):
    """Stream JSONL files into an index through a BulkIngester."""
    from .ingester import BulkIngester
    from .listener import LoggingResultListener
    from .loader import JsonlLoader

    config = build_config(args)
    client = connect(args)

    ingester = BulkIngester.for_client(
        client,
        config,
        listener=LoggingResultListener(name=args.name),
        name=args.name,
        refresh=args.refresh
    )

    try:
        loader = JsonlLoader(ingester, args.index)
        stats = loader.load(args.pattern, limit=args.limit)
    finally:
        ingester.close()
        client.close()

    summary = ingester.stats()
    print()
    print("=" * 60)
    print("INGEST COMPLETE")
    print("=" * 60)
    print(f"Records read: {stats['total_records']:,}")
    print(f"Unreadable lines: {stats['total_errors']:,}")
    print(f"Operations succeeded: {summary['operations_succeeded']:,}")
    print(f"Operations failed: {summary['operations_failed']:,}")
    print(f"Batches: {summary['batches_completed']} completed, {summary['batches_failed']} failed")
    print(f"Files processed: {stats['files_processed']}")
    print("=" * 60)

    return 1 if summary["operations_failed"] else 0


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="esingest",
        description="esingest — batching bulk writes for Elasticsearch"
    )

    # Global options
    parser.add_argument(
        "--hosts",
        help="Elasticsearch hosts (comma-separated, default $ESINGEST_HOSTS or localhost)",
        default=None
    )
    parser.add_argument(
        "--api-key",
        dest="api_key",
        help="Elasticsearch API key",
        default=None
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # cluster command
    cluster_parser = subparsers.add_parser("cluster", help="Cluster operations")
    cluster_sub = cluster_parser.add_subparsers(dest="cluster_cmd")
    cluster_sub.add_parser("health", help="Show cluster health")

    # ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Ingest JSONL files")
    ingest_parser.add_argument("pattern", help="Glob pattern for JSONL files")
    ingest_parser.add_argument("--index", required=True, help="Target index name")
    ingest_parser.add_argument("--name", default="esingest", help="Ingester name")
    ingest_parser.add_argument("--max-operations", type=int, help="Flush after N operations")
    ingest_parser.add_argument("--max-bytes", type=int, help="Flush after N bytes")
    ingest_parser.add_argument("--flush-interval-ms", type=int, help="Flush every N ms (0 = off)")
    ingest_parser.add_argument("--concurrency", type=int, help="Concurrent bulk requests")
    ingest_parser.add_argument("--max-retries", type=int, help="Retries for transient failures")
    ingest_parser.add_argument("--refresh", choices=["true", "false", "wait_for"],
                               help="Bulk refresh parameter")
    ingest_parser.add_argument("--limit", type=int, help="Limit records (for testing)")

    # Parse and dispatch
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    if args.command == "cluster":
        if args.cluster_cmd == "health":
            cmd_cluster_health(args)
        else:
            cluster_parser.print_help()
    elif args.command == "ingest":
        return cmd_ingest(args)
    else:
        parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
