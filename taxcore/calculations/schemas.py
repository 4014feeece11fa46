"""
schemas.py — Tax calculation Pydantic v2 data contracts.

Defines:
  - TaxCategory, CalculationType, CalculationStatus enums
  - BreakdownBracket, Breakdown   (auditable record of how a number was derived)
  - FinancialInputs, TaxComputation (engine input / output)
  - TaxCalculationRecord           (the persisted unit, domain view)
  - Create/Draft/Update/Preview/Bulk request bodies
  - CalculationQuery, Pagination, CalculationPage, BulkResult
  - ErrorDetail, ErrorBody, ErrorResponse  (cross-cutting error envelope)

WIRE NAMES: every model serializes with camelCase aliases (grossIncome, taxType,
calculationData ...) and accepts either camelCase or snake_case on input.

MONEY: all amounts are decimal.Decimal. JSON output renders them as strings so a
stored breakdown never loses precision.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaxCategory(str, Enum):
    PPH_21 = "PPH_21"                    # Employment income tax, progressive
    PPN = "PPN"                          # Value-added tax, flat 11%
    PPH_23 = "PPH_23"                    # Withholding on services, flat 2%
    PPH_25 = "PPH_25"                    # Monthly income-tax installment
    PBB = "PBB"                          # Land & building tax, flat 0.5%
    BPHTB = "BPHTB"                      # Transfer duty, flat 5%
    PAJAK_KENDARAAN = "PAJAK_KENDARAAN"  # Vehicle tax, progressive


class CalculationType(str, Enum):
    """Informational only — never changes the math."""
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    ANNUAL = "ANNUAL"
    SPECIAL = "SPECIAL"


class CalculationStatus(str, Enum):
    DRAFT = "DRAFT"
    CALCULATED = "CALCULATED"
    VERIFIED = "VERIFIED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# The five caller-supplied amounts. Any change to one of them forces recomputation.
INPUT_FIELDS: tuple[str, ...] = (
    "gross_income",
    "deductible_expenses",
    "tax_deductions",
    "tax_credits",
    "previous_tax_paid",
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Breakdown — persisted audit trail of one computation
# ---------------------------------------------------------------------------

class BreakdownBracket(_CamelModel):
    """
    One tier of a progressive table as it was applied.
    Bounded tiers carry `max`; the unbounded top tier carries `above` instead.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    max: Optional[Decimal] = None
    above: Optional[Decimal] = None
    rate: Decimal


class Breakdown(_CamelModel):
    """
    Self-contained description of a computation: the method and the exact rule
    parameters used, echoed inputs, and the pre/post deduction totals.

    extra='ignore' so records written by newer code (extra keys) still load.

    calculated_tax_before_deductions = calculated tax AFTER deductions and credits
    were clamped, plus tax_deductions, plus tax_credits. Replaying the clamps on
    that value reproduces the stored calculated tax exactly.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    # progressive | flat | monthly_installment | default when written by the engine;
    # any other name still loads so older records stay displayable
    method: str
    rate: Optional[Decimal] = None                  # flat / default
    annual_rate: Optional[Decimal] = None           # monthly_installment
    brackets: Optional[List[BreakdownBracket]] = None  # progressive
    description: Optional[str] = None

    gross_income: Decimal
    deductible_expenses: Decimal = Decimal("0")
    tax_deductions: Decimal = Decimal("0")
    tax_credits: Decimal = Decimal("0")
    previous_tax_paid: Decimal = Decimal("0")

    calculated_tax_before_deductions: Decimal
    final_tax_amount: Decimal


# ---------------------------------------------------------------------------
# Engine contracts
# ---------------------------------------------------------------------------

class FinancialInputs(_CamelModel):
    """Raw amounts fed to the engine. Missing optional amounts are zero."""
    gross_income: Decimal
    deductible_expenses: Decimal = Decimal("0")
    tax_deductions: Decimal = Decimal("0")
    tax_credits: Decimal = Decimal("0")
    previous_tax_paid: Decimal = Decimal("0")


class TaxComputation(_CamelModel):
    """
    Output of tax_engine.compute().

    tax_rate is the rate actually applied: the single marginal rate for
    progressive schemes, the flat rate otherwise, the ANNUAL rate for installments.
    calculated_tax is after deductions and credits, before prior payments.
    """
    taxable_income: Decimal
    tax_rate: Decimal
    calculated_tax: Decimal
    final_tax_amount: Decimal
    breakdown: Breakdown


# ---------------------------------------------------------------------------
# TaxCalculationRecord — persisted unit (domain view, store-agnostic)
# ---------------------------------------------------------------------------

class TaxCalculationRecord(_CamelModel):
    id: str
    user_id: str

    tax_type: str
    calculation_type: CalculationType
    period: str
    year: int

    gross_income: Decimal
    deductible_expenses: Decimal = Decimal("0")
    tax_deductions: Decimal = Decimal("0")
    tax_credits: Decimal = Decimal("0")
    previous_tax_paid: Decimal = Decimal("0")

    # Engine-owned, never taken from a request body
    taxable_income: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    calculated_tax: Decimal = Decimal("0")
    final_tax_amount: Decimal = Decimal("0")
    calculation_data: Optional[Breakdown] = None    # None only for DRAFT records

    status: CalculationStatus = CalculationStatus.DRAFT
    verified_at: Optional[datetime] = None
    notes: str = ""

    created_at: datetime
    updated_at: datetime

    @field_serializer("calculation_data")
    def _serialize_calculation_data(self, value: Optional[Breakdown]) -> Optional[dict[str, Any]]:
        if value is None:
            return None
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)

    def inputs(self) -> dict[str, Decimal]:
        """The five input amounts, keyed by snake_case field name."""
        return {name: getattr(self, name) for name in INPUT_FIELDS}


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class CreateCalculationRequest(_CamelModel):
    """
    Body of POST /api/tax-calculations (and /drafts).

    Structural validation only. Business rules (non-negative amounts, positive
    gross income, sane year) live in validator.py so all violations are reported
    together.
    extra='forbid' keeps derived fields (calculatedTax, status ...) out of requests.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    tax_type: str = Field(..., min_length=1, max_length=32)
    calculation_type: CalculationType
    period: str = Field(..., min_length=1, max_length=32)
    year: int

    gross_income: Decimal
    deductible_expenses: Optional[Decimal] = Decimal("0")
    tax_deductions: Optional[Decimal] = Decimal("0")
    tax_credits: Optional[Decimal] = Decimal("0")
    previous_tax_paid: Optional[Decimal] = Decimal("0")

    notes: Optional[str] = ""


class UpdateCalculationRequest(_CamelModel):
    """
    Body of PATCH /api/tax-calculations/{id}. Every field is optional; an
    omitted or null amount keeps the stored value.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    status: Optional[CalculationStatus] = None
    notes: Optional[str] = None

    gross_income: Optional[Decimal] = None
    deductible_expenses: Optional[Decimal] = None
    tax_deductions: Optional[Decimal] = None
    tax_credits: Optional[Decimal] = None
    previous_tax_paid: Optional[Decimal] = None

    def input_changes(self) -> dict[str, Decimal]:
        """Amounts explicitly supplied (non-null) in this patch."""
        return {
            name: getattr(self, name)
            for name in INPUT_FIELDS
            if getattr(self, name) is not None
        }


class PreviewRequest(_CamelModel):
    """Body of POST /api/tax-calculations/preview — compute without persisting."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    tax_type: str = Field(..., min_length=1, max_length=32)
    gross_income: Decimal
    deductible_expenses: Optional[Decimal] = Decimal("0")
    tax_deductions: Optional[Decimal] = Decimal("0")
    tax_credits: Optional[Decimal] = Decimal("0")
    previous_tax_paid: Optional[Decimal] = Decimal("0")


class BulkData(_CamelModel):
    status: Optional[CalculationStatus] = None


class BulkActionRequest(_CamelModel):
    """Body of POST /api/tax-calculations/bulk."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    action: Literal["DELETE", "UPDATE_STATUS", "EXPORT"]
    calculation_ids: List[str] = Field(..., min_length=1)
    data: Optional[BulkData] = None


# ---------------------------------------------------------------------------
# Listing and bulk results
# ---------------------------------------------------------------------------

class CalculationQuery(_CamelModel):
    """Filters for listing. user_id is forced to the actor for non-elevated roles."""
    user_id: Optional[str] = None
    tax_type: Optional[str] = None
    status: Optional[CalculationStatus] = None
    year: Optional[int] = None
    calculation_type: Optional[CalculationType] = None
    search: Optional[str] = None
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(_CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int


class CalculationPage(_CamelModel):
    calculations: List[TaxCalculationRecord]
    pagination: Pagination


class BulkSkip(_CamelModel):
    id: str
    reason: str


class BulkResult(_CamelModel):
    action: str
    requested: int
    affected: int
    affected_ids: List[str] = Field(default_factory=list)
    skipped: List[BulkSkip] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Error response models — used by main.py exception handlers (cross-cutting)
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single field-level validation or business-rule error."""
    model_config = ConfigDict(extra="forbid")

    field: Optional[str] = None   # Dot-notation field path, e.g. "grossIncome"
    issue: str                     # Human-readable description of the problem


class ErrorBody(BaseModel):
    """Error envelope body."""
    model_config = ConfigDict(extra="forbid")

    code: str                                      # VALIDATION_ERROR, NOT_FOUND, etc.
    message: str                                   # High-level error description
    details: List[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standard error response format for all taxcore endpoints.

    Structure: {"error": {"code": "...", "message": "...", "details": [...]}}
    """
    model_config = ConfigDict(extra="forbid")

    error: ErrorBody


__all__ = [
    "TaxCategory",
    "CalculationType",
    "CalculationStatus",
    "INPUT_FIELDS",
    "BreakdownBracket",
    "Breakdown",
    "FinancialInputs",
    "TaxComputation",
    "TaxCalculationRecord",
    "CreateCalculationRequest",
    "UpdateCalculationRequest",
    "PreviewRequest",
    "BulkData",
    "BulkActionRequest",
    "CalculationQuery",
    "Pagination",
    "CalculationPage",
    "BulkSkip",
    "BulkResult",
    "ErrorDetail",
    "ErrorBody",
    "ErrorResponse",
]
