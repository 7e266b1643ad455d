"""
Command-line interface for batch ingestion.

    batchfeed run [--dry-run] [--json]
    batchfeed status [--offline] [--json]
    batchfeed set-watermark <batch_id> [--force]

Exit codes:
    0  success (committed, nothing new, dry run)
    1  fatal error (configuration, watermark store, listing discovery)
    2  run finished but at least one batch failed; watermark not advanced
"""

import argparse
import asyncio
import json
import sys
from typing import Optional, Sequence

from redis.exceptions import RedisError

from batchfeed import __version__
from batchfeed.ingestion import (
    ListingDiscoverer,
    RedisWatermarkStore,
    build_orchestrator,
    compute_pending,
)
from batchfeed.ingestion.errors import IngestionError, StoreError
from batchfeed.ingestion.models import RunOutcome, RunReport
from batchfeed.shared.config import Config, Settings, reload_config
from batchfeed.shared.connections import ConnectionManager
from batchfeed.shared.observability import get_logger, setup_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def _apply_overrides(settings: Settings, args) -> Settings:
    """
    Command-line flags win over environment settings.

    Raises:
        ValidationError: If an overridden value is invalid
    """
    overrides = {
        "files_url": args.files_url,
        "redis_uri": args.redis,
        "redis_max_connections": args.max_connections,
        "log_level": args.log_level,
    }
    update = {k: v for k, v in overrides.items() if v is not None}
    if not update:
        return settings
    return Settings.model_validate({**settings.model_dump(), **update})


def render_report(report: RunReport) -> str:
    lines = [
        f"Run:        {report.run_id}",
        f"Watermark:  {report.cursor if report.cursor is not None else 'unset'}",
        f"Discovered: {len(report.discovered)}",
        f"Pending:    {len(report.pending)}",
    ]
    for result in report.results:
        if result.succeeded:
            lines.append(f"  ✓ {result.batch_id} | {result.documents} documents")
            continue
        stage = result.failed_stage.value if result.failed_stage else "CRASHED"
        lines.append(f"  ✗ {result.batch_id} | {stage}: {result.error}")
    if report.committed_watermark is not None:
        lines.append(f"Committed:  {report.committed_watermark}")
    lines.append(f"Outcome:    {report.outcome.value}")
    return "\n".join(lines)


async def _run(config: Config, settings: Settings, args) -> RunReport:
    async with ConnectionManager(settings, config) as connections:
        orchestrator = await build_orchestrator(
            connections, config, settings, max_concurrency=args.concurrency
        )
        return await orchestrator.run(dry_run=args.dry_run)


def cmd_run(config: Config, settings: Settings, args) -> int:
    """Implement 'batchfeed run'."""
    try:
        report = asyncio.run(_run(config, settings, args))
    except IngestionError as e:
        logger.error("Run aborted", error=str(e), error_type=type(e).__name__)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(render_report(report))

    if report.outcome == RunOutcome.FAILED:
        return EXIT_PARTIAL
    return EXIT_OK


async def _status(config: Config, settings: Settings, args) -> dict:
    async with ConnectionManager(settings, config) as connections:
        store = RedisWatermarkStore(
            await connections.get_redis_client(), key=config.store.watermark_key
        )
        watermark = await store.get()
        status = {"watermark": watermark}
        if not args.offline:
            discoverer = ListingDiscoverer(
                connections.get_http_client(),
                archive_ext=config.listing.archive_ext,
                strict=config.listing.strict_ids,
            )
            discovered = await discoverer.discover(settings.files_url)
            status["discovered"] = discovered
            status["pending"] = compute_pending(discovered, watermark)
        return status


def cmd_status(config: Config, settings: Settings, args) -> int:
    """Implement 'batchfeed status'."""
    try:
        status = asyncio.run(_status(config, settings, args))
    except IngestionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL

    if args.json:
        print(json.dumps(status, indent=2))
        return EXIT_OK

    watermark = status["watermark"]
    print(f"Watermark: {watermark if watermark is not None else 'unset'}")
    if "discovered" in status:
        print(f"Discovered: {len(status['discovered'])}")
        print(f"Pending:    {len(status['pending'])}")
        for batch_id in status["pending"]:
            print(f"  {batch_id}")
    return EXIT_OK


async def _set_watermark(config: Config, settings: Settings, args) -> Optional[int]:
    async with ConnectionManager(settings, config) as connections:
        store = RedisWatermarkStore(
            await connections.get_redis_client(), key=config.store.watermark_key
        )
        current = await store.get()
        if current is not None and args.batch_id < current and not args.force:
            raise StoreError(
                f"Refusing to lower watermark from {current} to {args.batch_id} "
                "(use --force)"
            )
        await store.set(args.batch_id)
        return current


def cmd_set_watermark(config: Config, settings: Settings, args) -> int:
    """Implement 'batchfeed set-watermark'."""
    try:
        previous = asyncio.run(_set_watermark(config, settings, args))
    except IngestionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL

    print(f"Watermark: {previous} -> {args.batch_id}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="batchfeed",
        description="Incremental ingestion of archived document batches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("--files-url", help="URL of the listing of batch archives")
    parser.add_argument("--redis", help="Redis URI (redis://host:port/db)")
    parser.add_argument(
        "--max-connections", type=int, help="Max number of Redis connections"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Run command
    run_parser = subparsers.add_parser("run", help="Ingest all new batches once")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show pending batches without ingesting them",
    )
    run_parser.add_argument(
        "--concurrency", type=int, help="Max batches processed at the same time"
    )
    run_parser.add_argument("--json", action="store_true", help="JSON output")

    # Status command
    status_parser = subparsers.add_parser(
        "status", help="Show the watermark and pending batches"
    )
    status_parser.add_argument(
        "--offline", action="store_true", help="Do not fetch the listing"
    )
    status_parser.add_argument("--json", action="store_true", help="JSON output")

    # Set-watermark command
    set_parser = subparsers.add_parser(
        "set-watermark", help="Overwrite the stored watermark"
    )
    set_parser.add_argument("batch_id", type=int, help="New watermark value")
    set_parser.add_argument(
        "--force", action="store_true", help="Allow lowering the watermark"
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_FATAL

    if args.command == "run" and args.concurrency is not None:
        if args.concurrency < 1:
            print("Error: --concurrency must be positive", file=sys.stderr)
            return EXIT_FATAL

    try:
        config, settings = reload_config()
        settings = _apply_overrides(settings, args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL

    setup_logging(settings.log_level)

    try:
        if args.command == "run":
            return cmd_run(config, settings, args)
        elif args.command == "status":
            return cmd_status(config, settings, args)
        elif args.command == "set-watermark":
            return cmd_set_watermark(config, settings, args)
    except RedisError as e:
        print(f"Error: Redis failure: {e}", file=sys.stderr)
        return EXIT_FATAL

    parser.print_help()
    return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
