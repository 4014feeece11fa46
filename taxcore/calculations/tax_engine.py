"""
taxcore Tax Engine — deterministic, no I/O. Same input → same output.

compute(tax_category, inputs) turns raw amounts into a tax liability:

  1. taxable_income = gross_income - deductible_expenses   (NOT floored)
  2. scheme = resolve_scheme(tax_category); rate, tax = scheme.apply(taxable_income)
  3. tax = max(0, tax - tax_deductions); tax = max(0, tax - tax_credits)
  4. final_tax_amount = max(0, tax - previous_tax_paid)
  5. breakdown = scheme parameters + echoed inputs + pre/post totals

No rounding anywhere: amounts stay decimal.Decimal until presentation.
Domain-level oddities (negative income, negative expenses) are computed through;
only non-numeric values raise InvalidInputError.
"""
from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Mapping, Union

from pydantic.alias_generators import to_camel

from taxcore.calculations.rate_schemes import resolve_scheme
from taxcore.calculations.schemas import (
    INPUT_FIELDS,
    Breakdown,
    FinancialInputs,
    TaxCategory,
    TaxComputation,
)
from taxcore.errors import InvalidInputError

ZERO = Decimal("0")


# ===========================================================================
# INTERNAL HELPERS
# ===========================================================================

def _to_decimal(field: str, value: Any) -> Decimal:
    """
    None → 0. int / float / Decimal → Decimal (floats via repr, so 0.1 stays 0.1).
    bool, str, NaN, ±inf and anything else → InvalidInputError.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise _not_numeric(field, value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise _not_numeric(field, value)
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise _not_numeric(field, value)
        return Decimal(repr(value))
    raise _not_numeric(field, value)


def _not_numeric(field: str, value: Any) -> InvalidInputError:
    issue = f"must be a finite number, got {type(value).__name__} {value!r}"
    return InvalidInputError(
        f"{field} {issue}",
        details=[{"field": to_camel(field), "issue": issue}],
    )


def _lookup(inputs: Mapping[str, Any], name: str) -> Any:
    """First non-None of the snake_case and camelCase keys for `name`."""
    value = inputs.get(name)
    if value is None:
        value = inputs.get(to_camel(name))
    return value


def _coerce_inputs(inputs: Union[FinancialInputs, Mapping[str, Any]]) -> dict[str, Decimal]:
    """
    Normalise engine input to the five Decimal amounts.
    Mappings may use snake_case or camelCase keys; unknown keys are ignored.
    """
    if isinstance(inputs, FinancialInputs):
        inputs = inputs.model_dump()
    if not isinstance(inputs, Mapping):
        raise InvalidInputError(f"inputs must be a mapping of amounts, got {type(inputs).__name__}")

    amounts: dict[str, Decimal] = {}
    for name in INPUT_FIELDS:
        amounts[name] = _to_decimal(name, _lookup(inputs, name))

    if _lookup(inputs, "gross_income") is None:
        raise InvalidInputError(
            "gross_income is required",
            details=[{"field": "grossIncome", "issue": "is required"}],
        )
    return amounts


# ===========================================================================
# PUBLIC API
# ===========================================================================

def compute(
    tax_category: Union[str, TaxCategory],
    inputs: Union[FinancialInputs, Mapping[str, Any]],
) -> TaxComputation:
    """
    Compute the liability for one tax category.

    Args:
        tax_category: One of TaxCategory, or any other string (→ default 10% scheme).
        inputs: FinancialInputs or a mapping with gross_income and the optional
            deductible_expenses, tax_deductions, tax_credits, previous_tax_paid.

    Returns:
        TaxComputation with taxable_income, tax_rate, calculated_tax,
        final_tax_amount and the auditable breakdown.

    Raises:
        InvalidInputError: an amount is not a finite number, or gross_income is missing.
    """
    amounts = _coerce_inputs(inputs)
    scheme = resolve_scheme(tax_category)

    # Step 1: Taxable base
    taxable_income = amounts["gross_income"] - amounts["deductible_expenses"]

    # Step 2: Scheme rate
    tax_rate, calculated_tax = scheme.apply(taxable_income)

    # Step 3: Deductions then credits, each clamped at zero
    calculated_tax = max(ZERO, calculated_tax - amounts["tax_deductions"])
    calculated_tax = max(ZERO, calculated_tax - amounts["tax_credits"])

    # Step 4: Offset prior payments
    final_tax_amount = max(ZERO, calculated_tax - amounts["previous_tax_paid"])

    # Step 5: Breakdown
    breakdown = Breakdown(
        **scheme.breakdown_fields(),
        **amounts,
        calculated_tax_before_deductions=(
            calculated_tax + amounts["tax_deductions"] + amounts["tax_credits"]
        ),
        final_tax_amount=final_tax_amount,
    )

    return TaxComputation(
        taxable_income=taxable_income,
        tax_rate=tax_rate,
        calculated_tax=calculated_tax,
        final_tax_amount=final_tax_amount,
        breakdown=breakdown,
    )
