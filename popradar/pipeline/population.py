"""
Pop Radar - Population Update Job

Scrapes each configured set page and upserts the records into
psa_populations. Scraping lives in popradar/scraper; this module handles
only storing and the per-run bookkeeping. Scheduling is in
pipeline/scheduler.py.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from popradar.config import settings
from popradar.scraper import PopulationResult
from popradar.scraper.dedup import dedup_key
from popradar.scraper.runner import PopulationScraper

logger = structlog.get_logger(__name__)


_UPSERT = text("""
    INSERT INTO psa_populations (
        set_url, record_key, spec_id, description, variant, certification_number,
        population, grade, qualifier, grade_higher, grade_higher_plus_current, last_updated
    )
    VALUES (
        :set_url, :record_key, :spec_id, :description, :variant, :certification_number,
        :population, :grade, :qualifier, :grade_higher, :grade_higher_plus_current, CURRENT_TIMESTAMP
    )
    ON CONFLICT (set_url, record_key) DO UPDATE SET
        spec_id = EXCLUDED.spec_id,
        description = EXCLUDED.description,
        variant = EXCLUDED.variant,
        certification_number = EXCLUDED.certification_number,
        population = EXCLUDED.population,
        grade = EXCLUDED.grade,
        qualifier = EXCLUDED.qualifier,
        grade_higher = EXCLUDED.grade_higher,
        grade_higher_plus_current = EXCLUDED.grade_higher_plus_current,
        last_updated = CURRENT_TIMESTAMP
""")


class PopulationStore:
    """Writes scrape results to the psa_populations table."""

    async def store_result(
        self,
        result: PopulationResult,
        set_url: str,
        session: AsyncSession,
    ) -> int:
        """
        Upsert every record of `result`, keyed by (set_url, record_key).

        Args:
            result: Output of a population scrape.
            set_url: Page the result was scraped from.
            session: Async database session.

        Returns:
            Number of rows upserted.
        """
        if not result.records:
            return 0

        count = 0
        for record in result.records:
            key = dedup_key(record)
            if key is None:
                logger.debug("population_skip_no_key", set_url=set_url)
                continue

            await session.execute(
                _UPSERT,
                {
                    "set_url": set_url,
                    "record_key": key,
                    "spec_id": record.spec_id,
                    "description": record.description,
                    "variant": record.variant,
                    "certification_number": record.certification_number,
                    "population": record.population,
                    "grade": record.grade,
                    "qualifier": record.qualifier,
                    "grade_higher": record.grade_higher,
                    "grade_higher_plus_current": record.grade_higher_plus_current,
                },
            )
            count += 1

        await session.commit()

        logger.info(
            "population_records_stored",
            count=count,
            set_url=set_url,
            source="population_store",
        )
        return count


async def run_population_update(
    session_factory: async_sessionmaker[AsyncSession],
    urls: list[str] | None = None,
    scraper: Any = None,
    store: PopulationStore | None = None,
) -> int:
    """
    Scrape and store every set page in turn.

    A failing set is logged and skipped; the remaining sets still run.

    Returns:
        Total number of rows upserted.
    """
    urls = settings.POPULATION_SET_URLS if urls is None else urls
    scraper = scraper or PopulationScraper()
    store = store or PopulationStore()

    logger.info("population_update_start", sets=len(urls))
    rowcount = 0

    for url in urls:
        result = await scraper.fetch(url)

        if result.is_partial:
            logger.warning(
                "population_update_partial_result",
                set_url=url,
                records_filtered=result.records_filtered,
                records_total=result.records_total,
                timed_out=result.timed_out,
            )
        if not result.records:
            logger.warning("population_update_no_records", set_url=url)
            continue

        try:
            async with session_factory() as session:
                rowcount += await store.store_result(result, url, session)
        except Exception as e:
            logger.error(
                "population_update_store_failed",
                set_url=url,
                error=str(e),
                error_type=type(e).__name__,
            )

    logger.info("population_update_complete", rowcount=rowcount, sets=len(urls))
    return rowcount
