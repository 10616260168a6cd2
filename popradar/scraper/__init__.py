"""Pop Radar - Population Scraper Layer"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Raw items: the two physical shapes that reach the normalizer
# ---------------------------------------------------------------------------


class _RawItemBase(BaseModel):
    """Fields shared by intercepted API rows and DOM-scraped rows."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subject_name: str | None = Field(default=None, alias="SubjectName")
    variety: str | None = Field(default=None, alias="Variety")
    card_number: str | None = Field(default=None, alias="CardNumber")
    total: Any = Field(default=None, alias="Total")

    @field_validator("subject_name", "variety", "card_number", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        """The API sends card numbers as ints on some sets."""
        if v is None:
            return None
        if isinstance(v, (str, int)) and not isinstance(v, bool):
            return str(v)
        raise ValueError(f"unexpected text value: {v!r}")


class ApiItem(_RawItemBase):
    """One row of the intercepted population endpoint's `data` array."""

    source: Literal["api"] = "api"
    spec_id: int | None = Field(default=None, alias="SpecID")

    @field_validator("spec_id", mode="before")
    @classmethod
    def coerce_spec_id(cls, v: Any) -> int | None:
        """SpecID is only trusted when it is a real integer."""
        if isinstance(v, int) and not isinstance(v, bool):
            return v
        return None


class DomItem(_RawItemBase):
    """One row synthesized from rendered table cells. Never carries a SpecID."""

    source: Literal["dom"] = "dom"


RawItem = Annotated[Union[ApiItem, DomItem], Field(discriminator="source")]


# ---------------------------------------------------------------------------
# Canonical record and result
# ---------------------------------------------------------------------------


class PopulationRecord(BaseModel):
    """Canonical population row. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    spec_id: int | None = None
    description: str = Field(min_length=1)
    variant: str = ""
    certification_number: str = ""
    population: int = Field(default=0, ge=0)
    grade: str = ""
    qualifier: str = ""
    grade_higher: int = 0
    grade_higher_plus_current: int = 0


class PopulationResult(BaseModel):
    """Structured result of one scrape. Always returned, possibly partial."""

    records: list[PopulationRecord] = Field(default_factory=list)
    records_total: int = 0
    records_filtered: int = 0
    timed_out: bool = False
    pages_processed: int = 0

    @property
    def is_partial(self) -> bool:
        return self.records_filtered < self.records_total


# ---------------------------------------------------------------------------
# Scrape state
# ---------------------------------------------------------------------------


@dataclass
class ScrapeState:
    """
    Mutable state for a single fetch_population call.

    Touched only by the orchestrator's call stack and the interceptor
    callback, both on the same event loop. `collected` is append-only until
    the final deduplication pass.
    """

    total_records: int = 0
    page_size: int = 0
    current_page: int = 0
    collected: list[PopulationRecord] = field(default_factory=list)
    pending_response: bool = False
    intercepted_count: int = 0
    timed_out: bool = False
    pages_processed: int = 0

    def set_total_records(self, value: int) -> bool:
        """Record the expected row count the first time a positive value is seen."""
        if value > 0 and self.total_records == 0:
            self.total_records = value
            return True
        return False

    def set_page_size(self, value: int) -> bool:
        """Record the page size the first time a positive value is seen."""
        if value > 0 and self.page_size == 0:
            self.page_size = value
            return True
        return False

    def append(self, records: list[PopulationRecord]) -> None:
        self.collected.extend(records)

    def begin_page(self) -> None:
        """Reset per-page interception bookkeeping before a navigation."""
        self.intercepted_count = 0
        self.pending_response = True
