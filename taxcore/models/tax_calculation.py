"""
models/tax_calculation.py — SQLAlchemy ORM model for tax calculation records.

Table: tax_calculations
One row per calculation. Input and derived amounts are Numeric columns so
listings and reports can filter/aggregate without parsing JSON; the breakdown is
a JSONB blob written by breakdown.serialize_breakdown().
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from taxcore.database import Base

# Unconstrained numeric: PostgreSQL stores the engine's Decimal results digit for digit,
# so derived columns always equal the totals inside calculation_data
AMOUNT = Numeric()
# Scheme rates are fixed constants with at most three decimal places
RATE = Numeric(10, 6)


class TaxCalculationORM(Base):
    """
    ORM model for one tax calculation record.

    calculation_data: serialized Breakdown (camelCase keys, decimals as strings).
                      NULL only while the record is a DRAFT.
    status:           DRAFT | CALCULATED | VERIFIED | APPROVED | REJECTED.
    """
    __tablename__ = "tax_calculations"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="UUID string — plain String so malformed ids in URLs simply miss (404)",
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
        comment="Owning taxpayer",
    )

    # --- Classification ---
    tax_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    calculation_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="MONTHLY | QUARTERLY | SEMI_ANNUAL | ANNUAL | SPECIAL — informational",
    )
    period: Mapped[str] = mapped_column(String(32), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # --- Inputs ---
    gross_income: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    deductible_expenses: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    tax_deductions: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    tax_credits: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    previous_tax_paid: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))

    # --- Derived (engine-owned) ---
    taxable_income: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    tax_rate: Mapped[Decimal] = mapped_column(RATE, nullable=False, default=Decimal("0"))
    calculated_tax: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    final_tax_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    calculation_data: Mapped[Optional[dict]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Serialized Breakdown — method, rule parameters, echoed inputs",
    )

    # --- Workflow ---
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True, default="DRAFT")
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # --- Audit ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
