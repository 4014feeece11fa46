"""tax_calculations

Revision ID: 001_tax_calculations
Revises:
Create Date: 2026-10-19 09:00:00.000000 UTC

Creates the tax_calculations table:
  - unconstrained Numeric input and derived amounts (exact decimal storage,
    no precision or scale, so nothing the engine computes is rounded)
  - calculation_data JSONB breakdown (NULL for drafts)
  - status / verified_at approval workflow columns
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_tax_calculations"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AMOUNT = sa.Numeric()
RATE = sa.Numeric(precision=10, scale=6)


def upgrade() -> None:
    op.create_table(
        "tax_calculations",
        sa.Column("id", sa.String(length=36), nullable=False, comment="UUID string — plain String so malformed ids in URLs simply miss (404)"),
        sa.Column("user_id", sa.String(length=36), nullable=False, comment="Owning taxpayer"),
        sa.Column("tax_type", sa.String(length=32), nullable=False),
        sa.Column("calculation_type", sa.String(length=16), nullable=False, comment="MONTHLY | QUARTERLY | SEMI_ANNUAL | ANNUAL | SPECIAL — informational"),
        sa.Column("period", sa.String(length=32), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("gross_income", AMOUNT, nullable=False),
        sa.Column("deductible_expenses", AMOUNT, nullable=False),
        sa.Column("tax_deductions", AMOUNT, nullable=False),
        sa.Column("tax_credits", AMOUNT, nullable=False),
        sa.Column("previous_tax_paid", AMOUNT, nullable=False),
        sa.Column("taxable_income", AMOUNT, nullable=False),
        sa.Column("tax_rate", RATE, nullable=False),
        sa.Column("calculated_tax", AMOUNT, nullable=False),
        sa.Column("final_tax_amount", AMOUNT, nullable=False),
        sa.Column("calculation_data", postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment="Serialized Breakdown — method, rule parameters, echoed inputs"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tax_calculations_user_id"), "tax_calculations", ["user_id"], unique=False)
    op.create_index(op.f("ix_tax_calculations_tax_type"), "tax_calculations", ["tax_type"], unique=False)
    op.create_index(op.f("ix_tax_calculations_year"), "tax_calculations", ["year"], unique=False)
    op.create_index(op.f("ix_tax_calculations_status"), "tax_calculations", ["status"], unique=False)
    op.create_index(op.f("ix_tax_calculations_created_at"), "tax_calculations", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_tax_calculations_created_at"), table_name="tax_calculations")
    op.drop_index(op.f("ix_tax_calculations_status"), table_name="tax_calculations")
    op.drop_index(op.f("ix_tax_calculations_year"), table_name="tax_calculations")
    op.drop_index(op.f("ix_tax_calculations_tax_type"), table_name="tax_calculations")
    op.drop_index(op.f("ix_tax_calculations_user_id"), table_name="tax_calculations")
    op.drop_table("tax_calculations")
