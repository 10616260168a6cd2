"""
Pop Radar - Deduplicator

Single pass over the collected records, first-seen order preserved.
A positive SpecID is the preferred key; otherwise a lowercase composite of
description, variant and certification number is used.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from popradar.scraper import PopulationRecord

logger = structlog.get_logger(__name__)


def dedup_key(record: PopulationRecord) -> str | None:
    """Return the dedup key for a record, or None if no key can be formed."""
    if record.spec_id is not None and record.spec_id > 0:
        return f"specid:{record.spec_id}"

    if not (record.description or record.variant or record.certification_number):
        return None

    return f"{record.description}|{record.variant}|{record.certification_number}".lower()


def remove_duplicates(records: Iterable[PopulationRecord]) -> list[PopulationRecord]:
    """
    Remove duplicate records. Idempotent.

    Records that cannot form a key are kept rather than risk dropping data.
    """
    seen: set[str] = set()
    unique: list[PopulationRecord] = []
    duplicates = 0

    for record in records:
        key = dedup_key(record)
        if key is None:
            unique.append(record)
            continue
        if key in seen:
            duplicates += 1
            continue
        seen.add(key)
        unique.append(record)

    logger.info(
        "dedup_complete",
        unique=len(unique),
        duplicates=duplicates,
        source="dedup",
    )
    return unique
