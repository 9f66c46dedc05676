"""Command line entry point.

Usage::

    python -m collection_monitor init-db
    python -m collection_monitor run
    python -m collection_monitor refresh [--payloads payloads.json]
    python -m collection_monitor sweep [--retention-hours 72] [--batch-size 500]
    python -m collection_monitor show-config
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError as SettingsError

from collection_monitor.config import Settings, get_settings
from collection_monitor.errors import MonitorError
from collection_monitor.pipeline import Pipeline
from collection_monitor.storage.database import DatabaseManager

logger = logging.getLogger("collection_monitor")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="collection_monitor",
        description="Market metrics and alerting engine for asset collections.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables (use Alembic for upgrades)")

    run = sub.add_parser("run", help="Run the pipeline with its scheduled jobs")
    run.add_argument("--dry-run", action="store_true", default=None, help="Never send notifications")

    refresh = sub.add_parser("refresh", help="Ingest payloads and/or refresh all metrics once")
    refresh.add_argument(
        "--payloads",
        type=Path,
        default=None,
        help="JSON file with a list of {collectionId, metadata?, snapshot?, listingEvents?, purchaseEvents?}",
    )
    refresh.add_argument("--dry-run", action="store_true", default=None, help="Never send notifications")

    sweep = sub.add_parser("sweep", help="Run one retention sweep")
    sweep.add_argument("--retention-hours", type=float, default=None)
    sweep.add_argument("--batch-size", type=int, default=None)

    sub.add_parser("show-config", help="Print the effective configuration with secrets redacted")
    return parser.parse_args(argv)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _load_payloads(path: Path) -> list[Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        return [data]
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON object or list")
    return data


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
        logger.info("Database schema created")
    finally:
        await db.dispose_async()


async def _refresh(settings: Settings, args: argparse.Namespace) -> int:
    async with Pipeline(settings, dry_run=args.dry_run) as pipeline:
        if args.payloads is not None:
            summary = await pipeline.ingest_payloads(_load_payloads(args.payloads))
            _print_json(summary.to_dict())
            return 0 if summary.success else 1
        refresh = await pipeline.refresh_all()
        _print_json(
            {
                "collectionsUpdated": refresh.collections_updated,
                "metricsGenerated": refresh.metrics_generated,
                "failures": refresh.failures,
                "durationMs": refresh.duration_ms,
            }
        )
        return 0 if not refresh.failures else 1


async def _sweep(settings: Settings, args: argparse.Namespace) -> int:
    async with Pipeline(settings) as pipeline:
        result = await pipeline.run_sweep(args.retention_hours, args.batch_size)
    _print_json(result.to_dict())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        settings = get_settings()
    except SettingsError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "show-config":
            _print_json(settings.redacted_summary())
            return 0
        if args.command == "init-db":
            asyncio.run(_init_db(settings))
            return 0
        if args.command == "run":
            asyncio.run(Pipeline(settings, dry_run=args.dry_run).run())
            return 0
        if args.command == "refresh":
            return asyncio.run(_refresh(settings, args))
        if args.command == "sweep":
            return asyncio.run(_sweep(settings, args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except (MonitorError, ValueError, OSError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
