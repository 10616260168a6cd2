"""
Pop Radar - PSA Population Model

One row per graded-card variant per set page. Rows are upserted on every
scrape; the latest count wins.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import INTEGER, TIMESTAMP, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from popradar.models.base import Base


class PsaPopulation(Base):
    """
    Population count for one card variant on one set page.

    Primary key is (set_url, record_key). record_key is the deduplication
    key of the scraped record: "specid:<id>" when the API supplied one,
    otherwise the lowercase description|variant|cert composite.
    """

    __tablename__ = "psa_populations"

    set_url: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Population page the row was scraped from"
    )
    record_key: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Deduplication key of the record"
    )
    spec_id: Mapped[int | None] = mapped_column(
        INTEGER, nullable=True, comment="Upstream SpecID, API rows only"
    )
    description: Mapped[str] = mapped_column(String, nullable=False)
    variant: Mapped[str] = mapped_column(String, nullable=False, server_default="")
    certification_number: Mapped[str] = mapped_column(
        String, nullable=False, server_default="", comment="Card number within the set"
    )
    population: Mapped[int] = mapped_column(INTEGER, nullable=False, server_default="0")
    grade: Mapped[str] = mapped_column(String, nullable=False, server_default="")
    qualifier: Mapped[str] = mapped_column(String, nullable=False, server_default="")
    grade_higher: Mapped[int] = mapped_column(INTEGER, nullable=False, server_default="0")
    grade_higher_plus_current: Mapped[int] = mapped_column(
        INTEGER, nullable=False, server_default="0"
    )
    last_updated: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="UTC timestamp of the last scrape that touched this row",
    )

    __table_args__ = (
        Index("ix_psa_populations_spec_id", "spec_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PsaPopulation set_url={self.set_url!r} key={self.record_key!r} "
            f"population={self.population}>"
        )
