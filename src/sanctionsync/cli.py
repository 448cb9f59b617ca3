"""Command-line interface for sanctionsync.

CLI for database, ingestion, cache and scheduler commands.
"""

import argparse
import asyncio
import sys

import structlog

# Configure structlog for simple console output
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)


def get_logger(name: str):
    """Get a structured logger."""
    return structlog.get_logger(name)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="sanctionsync",
        description="sanctionsync: sanctions-list ingestion and reconciliation",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")

    db_init_parser = db_subparsers.add_parser("init", help="Initialize the database")
    db_init_parser.add_argument(
        "--path",
        default=None,
        help="Path to database file (default: data/sanctionsync.db)",
    )

    db_subparsers.add_parser("status", help="Show database status")

    # Ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a sanctions source now")
    ingest_parser.add_argument(
        "source",
        nargs="?",
        default="all",
        help="Source to ingest (default: all enabled sources)",
    )
    ingest_parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore the freshness gate",
    )

    # Cache commands
    cache_parser = subparsers.add_parser("cache", help="Freshness cache management")
    cache_subparsers = cache_parser.add_subparsers(dest="cache_command", help="Cache commands")

    cache_clear_parser = cache_subparsers.add_parser(
        "clear", help="Drop ingestion markers so the next run fetches"
    )
    cache_clear_parser.add_argument(
        "source",
        nargs="?",
        default="all",
        help="Source whose marker to drop (default: all enabled sources)",
    )

    # Serve command (scheduler)
    serve_parser = subparsers.add_parser("serve", help="Run the scheduler daemon")
    serve_parser.add_argument(
        "--once",
        action="store_true",
        help="Run every source once and exit",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "db":
        return run_db(args, parser)
    elif args.command == "ingest":
        return run_ingest(args)
    elif args.command == "cache":
        return run_cache(args, parser)
    elif args.command == "serve":
        return run_serve(args)
    else:
        parser.print_help()
        return 0


def run_db(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    """Handle database commands."""
    log = get_logger("db")

    if args.db_command == "init":
        return asyncio.run(db_init(args.path, log))
    elif args.db_command == "status":
        return asyncio.run(db_status(log))
    else:
        parser.print_help()
        return 0


async def db_init(db_path: str | None, log) -> int:
    """Initialize the database."""
    from sanctionsync.config import get_settings
    from sanctionsync.db.session import get_database_url, init_db

    try:
        path = db_path or get_settings().db_path
        log.info("Initializing database", url=get_database_url(path))

        engine, _ = await init_db(path)
        await engine.dispose()
        log.info("Database initialized successfully")
        return 0
    except Exception as e:
        log.error("Failed to initialize database", error=str(e))
        return 1


async def db_status(log) -> int:
    """Show database status and entity aggregates."""
    from sanctionsync.config import get_settings
    from sanctionsync.db.repositories import SQLiteEntityRepository
    from sanctionsync.db.session import init_db, session_scope

    settings = get_settings()
    db_path = settings.db_path

    if not db_path.exists():
        log.warning("Database file does not exist", path=str(db_path))
        log.info("Run 'sanctionsync db init' to create the database")
        return 0

    try:
        size_kb = db_path.stat().st_size / 1024
        log.info("Database file exists", path=str(db_path), size_kb=f"{size_kb:.2f}")

        engine, factory = await init_db(db_path)
        try:
            async with session_scope(factory) as session:
                stats = await SQLiteEntityRepository(session).stats()
        finally:
            await engine.dispose()

        log.info(
            "Entities",
            total=stats["total_entities"],
            average_risk_score=stats["average_risk_score"],
        )
        for entity_type, count in stats["by_type"].items():
            log.info("By type", entity_type=entity_type, count=count)
        for status, count in stats["by_status"].items():
            log.info("By sanction status", status=status, count=count)
        for list_source, count in stats["by_source"].items():
            log.info("By list source", list_source=list_source, count=count)
        return 0
    except Exception as e:
        log.error("Failed to get database status", error=str(e))
        return 1


def run_ingest(args: argparse.Namespace) -> int:
    """Run ingestion for one or all sources."""
    log = get_logger("ingest")
    return asyncio.run(ingest(args.source, args.force, log))


async def ingest(source: str, force: bool, log) -> int:
    """Ingest sources and report the outcome of each."""
    from sanctionsync.config import get_settings
    from sanctionsync.db.session import init_db
    from sanctionsync.exceptions import ConfigurationError
    from sanctionsync.scheduler.jobs import RunStatus, create_jobs

    settings = get_settings()
    engine, factory = await init_db(settings.db_path, echo=settings.db_echo)

    try:
        try:
            jobs = create_jobs(settings, factory)
        except ConfigurationError as e:
            log.error("Invalid configuration", error=str(e))
            return 1

        if source != "all" and source not in jobs:
            log.error("Unknown or disabled source", source=source, available=list(jobs))
            return 1

        selected = list(jobs.values()) if source == "all" else [jobs[source]]
        failed = 0
        for job in selected:
            outcome = await job.run(force=force)
            if outcome.status is RunStatus.FAILED:
                failed += 1
                log.error("Ingestion failed", source=job.name, error=outcome.error)
            elif outcome.result is not None:
                result = outcome.result
                log.info(
                    "Ingestion complete",
                    source=job.name,
                    entries_found=result.entries_found,
                    created=result.created,
                    updated=result.updated,
                    failed=result.failed + result.normalization_failed,
                    removed=result.removed,
                )
                for error in result.errors[:5]:  # Show first 5 errors
                    log.warning("Entry error", source=job.name, error=error)
            else:
                log.info("Ingestion skipped", source=job.name, status=outcome.status.value)

        return 1 if failed else 0
    finally:
        await engine.dispose()


def run_cache(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    """Handle cache commands."""
    log = get_logger("cache")

    if args.cache_command == "clear":
        return asyncio.run(cache_clear(args.source, log))
    else:
        parser.print_help()
        return 0


async def cache_clear(source: str, log) -> int:
    """Invalidate ingestion markers."""
    from sanctionsync.cache import FreshnessCache, marker_key
    from sanctionsync.config import get_settings
    from sanctionsync.db.session import init_db
    from sanctionsync.scheduler.jobs import default_sources

    settings = get_settings()
    names = [s.name for s in default_sources(settings) if s.enabled]
    if source != "all":
        names = [source]

    engine, factory = await init_db(settings.db_path)
    try:
        cache = FreshnessCache(factory)
        ok = True
        for name in names:
            if await cache.invalidate(marker_key(name)):
                log.info("Ingestion marker cleared", source=name)
            else:
                ok = False
        return 0 if ok else 1
    finally:
        await engine.dispose()


def run_serve(args: argparse.Namespace) -> int:
    """Run the scheduler daemon."""
    log = get_logger("serve")
    return asyncio.run(serve_scheduler(args.once, log))


async def serve_scheduler(run_once: bool, log) -> int:
    """Start the scheduler service."""
    from sanctionsync.config import get_settings
    from sanctionsync.db.session import init_db
    from sanctionsync.scheduler import SchedulerService, create_jobs

    settings = get_settings()
    try:
        engine, factory = await init_db(settings.db_path, echo=settings.db_echo)
    except Exception as e:
        log.error("Failed to open database", error=str(e))
        return 1

    try:
        service = SchedulerService(settings, create_jobs(settings, factory))
        await service.run(run_once=run_once)
        return 0
    except Exception as e:
        log.error("Scheduler failed", error=str(e))
        return 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
