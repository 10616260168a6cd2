"""
Pop Radar - Record Normalizer

Converts raw rows (intercepted API items or DOM-scraped rows) into canonical
PopulationRecord objects. Summary rows and rows without a usable subject name
are skipped and counted, never raised.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from typing import Any

import structlog
from pydantic import ValidationError

from popradar.config import settings
from popradar.scraper import ApiItem, DomItem, PopulationRecord, RawItem
from popradar.scraper.variant import extract_variant

logger = structlog.get_logger(__name__)

_LEADING_INT = re.compile(r"^-?\d+")


def parse_population(value: Any) -> int:
    """
    Coerce a population total to a non-negative integer.

    Ints pass through, strings are comma-stripped and parsed from their
    leading digits. Anything else, or a negative result, yields 0.
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return max(int(value), 0) if math.isfinite(value) else 0
    if isinstance(value, str):
        match = _LEADING_INT.match(value.replace(",", "").strip())
        if match:
            return max(int(match.group()), 0)
    return 0


def _coerce_item(item: Any) -> RawItem | None:
    """Validate a raw dict into an ApiItem. Typed items pass through."""
    if isinstance(item, (ApiItem, DomItem)):
        return item
    if not isinstance(item, dict):
        return None
    try:
        return ApiItem.model_validate(item)
    except ValidationError:
        return None


def normalize_item(item: RawItem) -> PopulationRecord | None:
    """Map one typed raw item to a canonical record, or None if unusable."""
    subject = (item.subject_name or "").strip()
    if not subject or subject.upper() == settings.TOTAL_ROW_MARKER:
        return None

    description = subject
    variant = (item.variety or "").strip()
    if not variant:
        description, variant = extract_variant(subject)

    if not description:
        return None

    population = parse_population(item.total)
    spec_id = item.spec_id if isinstance(item, ApiItem) else None

    return PopulationRecord(
        spec_id=spec_id,
        description=description.strip(),
        variant=variant,
        certification_number=(item.card_number or "").strip(),
        population=population,
        grade_higher_plus_current=population,
    )


def format_response_data(items: Iterable[Any] | None) -> list[PopulationRecord]:
    """
    Normalize a batch of raw items.

    Args:
        items: ApiItem/DomItem instances or raw dicts from the API body.

    Returns:
        Canonical records in input order. Invalid items are skipped.
    """
    if not items:
        return []

    records: list[PopulationRecord] = []
    skipped = 0

    for index, raw in enumerate(items):
        item = _coerce_item(raw)
        if item is None:
            logger.debug("normalizer_invalid_item", index=index, source="normalizer")
            skipped += 1
            continue

        record = normalize_item(item)
        if record is None:
            skipped += 1
            continue

        records.append(record)

    logger.info(
        "normalizer_batch_formatted",
        formatted=len(records),
        skipped=skipped,
        source="normalizer",
    )
    return records
