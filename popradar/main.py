"""
Pop Radar - Application Entrypoint

Configures structlog, creates the async SQLAlchemy engine, and either runs
one population scrape or starts the scheduler.

Run via:
    python -m popradar.main fetch https://www.psacard.com/pop/tcg-cards/1999/pokemon-jungle/57801
    python -m popradar.main fetch <url> --store
    python -m popradar.main schedule
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from popradar import __version__
from popradar.config import settings
from popradar.pipeline.population import PopulationStore
from popradar.pipeline.scheduler import run_scheduler
from popradar.scraper import PopulationRecord, PopulationResult
from popradar.scraper.runner import fetch_population


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    # Configure stdlib logging first (for third-party libraries)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


async def create_db_engine() -> tuple[Any, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory.

    Returns:
        (engine, session_factory) tuple.
    """
    logger = structlog.get_logger(__name__)
    logger.info("database_engine_initializing")

    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        pool_pre_ping=True,
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready")
    return engine, session_factory


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


def _describe(record: PopulationRecord) -> str:
    variant = f" ({record.variant})" if record.variant else ""
    return (
        f"Card: {record.description}{variant}, "
        f"Number: {record.certification_number}, Population: {record.population}"
    )


def format_summary(url: str, result: PopulationResult, duration: float) -> str:
    """Human-readable report of one scrape."""
    records = result.records
    if records and result.records_total:
        success = f"{len(records) / result.records_total * 100:.2f}"
    else:
        success = "0.00"
    variants = sorted({r.variant for r in records if r.variant})

    lines = [
        "===================== RESULTS =====================",
        f"Set: {url}",
        f"Total records: {result.records_total}",
        f"Records fetched: {len(records)}",
        f"Pages processed: {result.pages_processed}",
        f"Time taken: {duration:.2f} seconds",
        f"Success rate: {success}%",
        f"Variant types found: {', '.join(variants) if variants else 'None'}",
    ]
    if result.timed_out:
        lines.append("WARNING: global timeout reached, result is partial")

    if records:
        lines.append("")
        lines.append("Sample data (first 5 records):")
        for i, record in enumerate(records[:5], start=1):
            lines.append(f"[{i}] {_describe(record)}")
        if len(records) > 10:
            middle = len(records) // 2
            lines.append("")
            lines.append(f"Middle record (#{middle + 1}):")
            lines.append(_describe(records[middle]))
        if len(records) > 5:
            lines.append("")
            lines.append(f"Last record (#{len(records)}):")
            lines.append(_describe(records[-1]))

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def fetch_command(url: str, store: bool = False) -> int:
    """Scrape one set page, print the summary, optionally store it."""
    logger = structlog.get_logger(__name__)

    started = time.monotonic()
    result = await fetch_population(url)
    print(format_summary(url, result, time.monotonic() - started))

    if not store:
        return 0 if result.records else 1

    engine, session_factory = await create_db_engine()
    try:
        async with session_factory() as session:
            stored = await PopulationStore().store_result(result, url, session)
        print(f"\nStored {stored} rows.")
    except Exception as e:
        logger.error("population_store_failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        await engine.dispose()
    return 0 if result.records else 1


async def schedule_command() -> None:
    """
    Start the population scheduler and block until shutdown.

    Execution order:
    1. Create async database engine and session factory
    2. Verify database connection (health check)
    3. Run the scheduler until SIGTERM/SIGINT
    """
    logger = structlog.get_logger(__name__)
    logger.info("pop_radar_startup_begin", version=__version__)

    engine, session_factory = await create_db_engine()

    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        logger.info("database_health_check_passed")
    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        await engine.dispose()
        raise

    logger.info(
        "pop_radar_startup_complete",
        sets=len(settings.POPULATION_SET_URLS),
        cadence_hours=settings.POPULATION_POLL_INTERVAL_HOURS,
    )

    try:
        await run_scheduler(session_factory)
    except Exception as e:
        logger.error("pop_radar_fatal_error", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        await engine.dispose()
        logger.info("pop_radar_shutdown_complete")


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Scrape graded-card population tables.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m popradar.main fetch https://www.psacard.com/pop/tcg-cards/2000/pokemon-neo-discovery/60078
  python -m popradar.main fetch <url> --store
  python -m popradar.main schedule
""",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    fetch = commands.add_parser("fetch", help="Scrape one population page and print a summary.")
    fetch.add_argument("url", help="Population page URL.")
    fetch.add_argument(
        "--store",
        action="store_true",
        help="Upsert the records into psa_populations.",
    )

    commands.add_parser("schedule", help="Run the population update on its cadence.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(log_level=args.log_level or settings.LOG_LEVEL)

    if args.command == "fetch":
        return asyncio.run(fetch_command(args.url, store=args.store))

    try:
        asyncio.run(schedule_command())
    except KeyboardInterrupt:
        structlog.get_logger(__name__).info("pop_radar_interrupted_by_user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
