"""
Tests for the deduplicator.
"""

from __future__ import annotations

from popradar.scraper import PopulationRecord
from popradar.scraper.dedup import dedup_key, remove_duplicates


def _record(**kwargs: object) -> PopulationRecord:
    defaults: dict[str, object] = {"description": "Pikachu", "certification_number": "58"}
    defaults.update(kwargs)
    return PopulationRecord(**defaults)


class TestDedupKey:
    def test_positive_spec_id_preferred(self) -> None:
        assert dedup_key(_record(spec_id=42)) == "specid:42"

    def test_zero_spec_id_uses_composite(self) -> None:
        assert dedup_key(_record(spec_id=0, variant="Holo")) == "pikachu|holo|58"

    def test_composite_is_lowercase(self) -> None:
        assert dedup_key(_record(description="PIKACHU")) == dedup_key(_record(description="pikachu"))


class TestRemoveDuplicates:
    def test_same_spec_id_collapses_to_first(self) -> None:
        first = _record(spec_id=7, population=10)
        second = _record(spec_id=7, description="Raichu", population=99)
        assert remove_duplicates([first, second]) == [first]

    def test_composite_collapse_is_case_insensitive(self) -> None:
        a = _record(description="Charizard", variant="Holo", certification_number="4")
        b = _record(description="CHARIZARD", variant="holo", certification_number="4")
        assert remove_duplicates([a, b]) == [a]

    def test_distinct_records_kept_in_order(self) -> None:
        records = [_record(certification_number=str(i)) for i in range(5)]
        assert remove_duplicates(records) == records

    def test_api_and_dom_copies_not_merged(self) -> None:
        """An API row (SpecID) and a DOM row (composite) use different keys."""
        api = _record(spec_id=1001)
        dom = _record()
        assert remove_duplicates([api, dom]) == [api, dom]

    def test_idempotent(self) -> None:
        records = [
            _record(spec_id=1),
            _record(spec_id=1),
            _record(description="Eevee"),
            _record(description="eevee"),
            _record(description="Mew", certification_number="151"),
        ]
        once = remove_duplicates(records)
        assert remove_duplicates(once) == once
        assert len(once) == 3

    def test_empty(self) -> None:
        assert remove_duplicates([]) == []
