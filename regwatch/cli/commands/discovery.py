"""CLI commands for the regulatory discovery pipeline.

Commands:
- discovery run: Run one discovery cycle over all due endpoints
- discovery status: Show endpoint schedules, circuit state and item counts
- discovery seed: Load sources and endpoints from a seed file
- discovery classify: Classify a local file or URL without storing anything
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def register_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add discovery subcommands to the main CLI parser."""

    discovery_parser = subparsers.add_parser(
        "discovery",
        description="Scheduled discovery and classification of regulatory content.",
        help="Poll regulatory endpoints and hand off new documents.",
    )
    discovery_subparsers = discovery_parser.add_subparsers(
        dest="discovery_command",
        metavar="SUBCOMMAND",
    )
    discovery_subparsers.required = True

    def add_common_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--data-root",
            type=Path,
            help="Root directory for the store, raw content, queues and audit log.",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            dest="output_json",
            help="Output results in JSON format.",
        )
        parser.add_argument(
            "--log-level",
            choices=LOG_LEVELS,
            default="INFO",
            help="Logging verbosity (default: INFO).",
        )

    # discovery run
    run_parser = discovery_subparsers.add_parser(
        "run",
        description="Run one discovery cycle over all due endpoints.",
        help="Fetch due endpoints, classify and hand off new items.",
    )
    add_common_args(run_parser)
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List due endpoints without fetching anything.",
    )
    run_parser.add_argument(
        "--max-workers",
        type=int,
        help="Parallel endpoint workers (default: from config, 8).",
    )
    run_parser.add_argument(
        "--seed",
        type=Path,
        help="Apply this seed file before running.",
    )
    run_parser.set_defaults(func=discovery_run_cli, discovery_command="run")

    # discovery status
    status_parser = discovery_subparsers.add_parser(
        "status",
        description="Show endpoint schedules, domain health and item counts.",
        help="Display endpoint and item status.",
    )
    add_common_args(status_parser)
    status_parser.add_argument(
        "--due-only",
        action="store_true",
        help="Show only endpoints that are due.",
    )
    status_parser.set_defaults(func=discovery_status_cli, discovery_command="status")

    # discovery seed
    seed_parser = discovery_subparsers.add_parser(
        "seed",
        description="Load sources and endpoints from a JSON seed file.",
        help="Apply a seed file to the store.",
    )
    add_common_args(seed_parser)
    seed_parser.add_argument(
        "--seed",
        type=Path,
        help="Seed file (default: $REGWATCH_SEED or <data-root>/seed.json).",
    )
    seed_parser.set_defaults(func=discovery_seed_cli, discovery_command="seed")

    # discovery classify
    classify_parser = discovery_subparsers.add_parser(
        "classify",
        description="Classify a local file or URL and print the result.",
        help="Run the content classifier on one document.",
    )
    classify_parser.add_argument("target", help="Local file path or http(s) URL.")
    classify_parser.add_argument(
        "--content-type",
        help="Content-Type to assume for a local file.",
    )
    classify_parser.add_argument(
        "--json",
        action="store_true",
        dest="output_json",
        help="Output results in JSON format.",
    )
    classify_parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default="WARNING",
        help="Logging verbosity (default: WARNING).",
    )
    classify_parser.set_defaults(func=discovery_classify_cli, discovery_command="classify")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _load_config(args: argparse.Namespace):
    from regwatch.config import get_config

    config = get_config().to_discovery_config()
    if getattr(args, "data_root", None):
        config.data_root = args.data_root
    if getattr(args, "max_workers", None):
        config.politeness = replace(config.politeness, max_workers=args.max_workers)
    config.dry_run = bool(getattr(args, "dry_run", False))
    return config


def _data_root(args: argparse.Namespace, config) -> Path:
    from regwatch import paths

    return Path(args.data_root or config.data_root or paths.get_data_root())


def discovery_run_cli(args: argparse.Namespace) -> int:
    """Execute one discovery cycle."""
    from regwatch import paths
    from regwatch.discovery.errors import StoreError
    from regwatch.discovery.seed import SeedError, apply_seed, load_seed
    from regwatch.discovery.sentinel import Sentinel

    _configure_logging(args.log_level)
    config = _load_config(args)
    data_root = _data_root(args, config)

    try:
        sentinel = Sentinel.from_data_root(data_root, config)
        if args.seed:
            apply_seed(sentinel.store, load_seed(args.seed))
        if not args.output_json:
            print(f"Starting discovery cycle (data root: {data_root})...")
            if config.dry_run:
                print("  [DRY RUN - nothing will be fetched]")
            print(f"  Max workers: {config.politeness.max_workers}")
            print(f"  Store: {paths.get_store_file(data_root)}")
            print()
        try:
            summary = sentinel.run_discovery_cycle()
        finally:
            sentinel.fetcher.close()
    except (StoreError, SeedError, OSError) as exc:
        print(f"Discovery failed: {exc}", file=sys.stderr)
        return 2

    if args.output_json:
        print(json.dumps(summary.to_dict(), indent=2, default=str))
    else:
        print(summary.summary())

    return 1 if summary.endpoints_failed else 0


def discovery_status_cli(args: argparse.Namespace) -> int:
    """Display endpoint schedules, domain health and item counts."""
    from regwatch import paths
    from regwatch.discovery.errors import StoreError
    from regwatch.discovery.rate_limiter import DomainRateLimiter
    from regwatch.discovery.store import JsonDiscoveryStore

    _configure_logging(args.log_level)
    config = _load_config(args)
    data_root = _data_root(args, config)

    try:
        store = JsonDiscoveryStore(paths.get_store_file(data_root))
    except StoreError as exc:
        print(f"Cannot open store: {exc}", file=sys.stderr)
        return 2

    now = datetime.now(timezone.utc)
    limiter = DomainRateLimiter(config.rate_limit, store=store)
    item_counts: dict[str, dict[str, int]] = {}
    for item in store.list_items():
        counts = item_counts.setdefault(item.endpoint_id, {})
        counts[item.status.value] = counts.get(item.status.value, 0) + 1

    endpoints = []
    for endpoint in sorted(store.list_endpoints(), key=lambda e: (e.priority.rank, e.url)):
        is_due = endpoint.is_active and endpoint.is_due(now)
        info = {
            "id": endpoint.id,
            "name": endpoint.name,
            "url": endpoint.url,
            "priority": endpoint.priority.value,
            "frequency": endpoint.frequency.value,
            "is_active": endpoint.is_active,
            "is_due": is_due,
            "last_checked_at": endpoint.last_checked_at.isoformat() if endpoint.last_checked_at else None,
            "consecutive_errors": endpoint.consecutive_errors,
            "last_error": endpoint.last_error,
            "circuit_open": endpoint.is_circuit_open(now),
            "circuit_open_until": (
                endpoint.circuit_open_until.isoformat() if endpoint.circuit_open_until else None
            ),
            "items": item_counts.get(endpoint.id, {}),
        }
        if not is_due and endpoint.last_checked_at is not None:
            info["next_check_in"] = str(endpoint.last_checked_at + endpoint.frequency.interval - now)
        endpoints.append(info)

    if args.due_only:
        endpoints = [info for info in endpoints if info["is_due"]]

    status = {
        "timestamp": now.isoformat(),
        "total_sources": len(store.list_sources()),
        "total_endpoints": len(store.list_endpoints()),
        "due_endpoints": sum(1 for info in endpoints if info["is_due"]),
        "items_by_status": store.count_items_by_status(),
        "health": limiter.health_status(),
        "endpoints": endpoints,
    }

    if args.output_json:
        print(json.dumps(status, indent=2, default=str))
        return 0

    print(f"Discovery Status as of {now.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    print("=" * 60)
    print(f"Sources: {status['total_sources']}")
    print(f"Endpoints: {status['total_endpoints']} ({status['due_endpoints']} due)")
    print("Items: " + ", ".join(f"{k}={v}" for k, v in status["items_by_status"].items()))
    print(f"Overall healthy: {status['health']['overall_healthy']}")
    print()

    for info in endpoints[:20]:
        print(f"[{info['priority']}] {info['name'] or info['id']}")
        print(f"   URL: {info['url']}")
        if info["circuit_open"]:
            print(f"   Circuit open until {info['circuit_open_until']}")
        elif info["is_due"]:
            print("   Due now")
        else:
            print(f"   Next check in {info.get('next_check_in', 'unknown')}")
        if info["consecutive_errors"]:
            print(f"   Consecutive errors: {info['consecutive_errors']} ({info['last_error']})")
        print()

    if len(endpoints) > 20:
        print(f"... and {len(endpoints) - 20} more endpoints")
        print("Use --json for complete listing")

    return 0


def discovery_seed_cli(args: argparse.Namespace) -> int:
    """Apply a seed file to the store."""
    from regwatch import paths
    from regwatch.discovery.errors import StoreError
    from regwatch.discovery.seed import SeedError, apply_seed, load_seed
    from regwatch.discovery.store import JsonDiscoveryStore

    _configure_logging(args.log_level)
    config = _load_config(args)
    data_root = _data_root(args, config)
    seed_path = args.seed or paths.get_seed_file()

    try:
        seed = load_seed(seed_path)
        store = JsonDiscoveryStore(paths.get_store_file(data_root))
        result = apply_seed(store, seed)
    except (SeedError, StoreError, OSError) as exc:
        print(f"Seeding failed: {exc}", file=sys.stderr)
        return 2

    if args.output_json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Applied seed {seed_path}")
        print(f"  Sources: {result.sources_added} added, {result.sources_updated} updated")
        print(f"  Endpoints: {result.endpoints_added} added, {result.endpoints_updated} updated")
    return 0


def discovery_classify_cli(args: argparse.Namespace) -> int:
    """Classify one document and print the proposed kind."""
    from regwatch.discovery.errors import DiscoveryError
    from regwatch.parsing.classifier import ContentClassifier
    from regwatch.parsing.fetcher import Fetcher
    from regwatch.parsing.url_scope import is_valid_http_url

    _configure_logging(args.log_level)
    config = _load_config(args)
    classifier = ContentClassifier(config.classifier)

    try:
        if is_valid_http_url(args.target):
            with Fetcher(
                user_agent=config.user_agent,
                timeout=config.rate_limit.request_timeout_seconds,
            ) as fetcher:
                response = fetcher.fetch(args.target)
            url, content_type, body = args.target, response.content_type, response.body
        else:
            path = Path(args.target)
            url, content_type, body = path.resolve().as_uri(), args.content_type, path.read_bytes()
        result = classifier.classify(url, content_type, body)
    except (DiscoveryError, OSError) as exc:
        if args.output_json:
            print(json.dumps({"target": args.target, "error": str(exc), "error_type": type(exc).__name__}))
        else:
            print(f"Cannot classify {args.target}: {exc}", file=sys.stderr)
        return 1

    if args.output_json:
        print(json.dumps({"target": args.target, **result.to_dict()}, indent=2))
    else:
        print(f"{args.target}: {result.kind.value}")
        if result.page_count is not None:
            print(f"  Pages: {result.page_count} ({result.chars_per_page:.1f} chars/page)")
        if result.converter:
            print(f"  Converter: {result.converter}")
    return 0
