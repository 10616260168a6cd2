"""PSA population table

Revision ID: 001_psa_populations
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001_psa_populations"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "psa_populations",
        sa.Column("set_url", sa.String(), nullable=False, comment="Population page the row was scraped from"),
        sa.Column("record_key", sa.String(), nullable=False, comment="Deduplication key of the record"),
        sa.Column("spec_id", sa.Integer(), nullable=True, comment="Upstream SpecID, API rows only"),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("variant", sa.String(), nullable=False, server_default=""),
        sa.Column("certification_number", sa.String(), nullable=False, server_default=""),
        sa.Column("population", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("grade", sa.String(), nullable=False, server_default=""),
        sa.Column("qualifier", sa.String(), nullable=False, server_default=""),
        sa.Column("grade_higher", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("grade_higher_plus_current", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "last_updated",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("set_url", "record_key"),
    )
    op.create_index("ix_psa_populations_spec_id", "psa_populations", ["spec_id"])


def downgrade() -> None:
    op.drop_index("ix_psa_populations_spec_id", table_name="psa_populations")
    op.drop_table("psa_populations")
