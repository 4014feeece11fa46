"""
Calculation input validator — runs BEFORE amounts reach the tax engine.

Pydantic has already enforced structure (types, required fields). This module
enforces business rules, collecting every violation in a single pass and
raising one InvalidInputError whose details list has one {field, issue} per
problem, so the client sees all errors at once.

Rules enforced:
  1. Every supplied amount is finite and >= 0
  2. grossIncome > 0 when creating (or when a patch supplies it)
  3. year within MIN_YEAR..MAX_YEAR
  4. taxType, period not blank

The engine itself never re-validates: a negative deductibleExpenses that slipped
past here would be computed through, not rejected.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping, Optional

from pydantic.alias_generators import to_camel

from taxcore.calculations.schemas import (
    INPUT_FIELDS,
    CreateCalculationRequest,
    PreviewRequest,
    UpdateCalculationRequest,
)
from taxcore.errors import InvalidInputError

logger = logging.getLogger(__name__)

MIN_YEAR = 1983      # self-assessment system introduced
MAX_YEAR = 2100


def _check_amounts(amounts: Mapping[str, Optional[Decimal]], violations: list[dict[str, Any]]) -> None:
    for name in INPUT_FIELDS:
        value = amounts.get(name)
        if value is None:
            continue
        if not value.is_finite():
            violations.append({"field": to_camel(name), "issue": "must be a finite number"})
        elif value < 0:
            violations.append({"field": to_camel(name), "issue": f"must not be negative (got {value})"})


def _check_gross_income(value: Optional[Decimal], violations: list[dict[str, Any]]) -> None:
    if value is not None and value.is_finite() and value == 0:
        violations.append({"field": "grossIncome", "issue": "must be greater than 0"})


def _raise_if_any(violations: list[dict[str, Any]], context: str) -> None:
    if violations:
        # Log only counts — never amounts
        logger.info("Input validation failed: %d violation(s) context=%s", len(violations), context)
        raise InvalidInputError("Calculation input validation failed", details=violations)


def validate_create(request: CreateCalculationRequest) -> None:
    """Validate a create/draft body. Raises InvalidInputError listing every violation."""
    violations: list[dict[str, Any]] = []

    if not request.tax_type.strip():
        violations.append({"field": "taxType", "issue": "must not be blank"})
    if not request.period.strip():
        violations.append({"field": "period", "issue": "must not be blank"})
    if not MIN_YEAR <= request.year <= MAX_YEAR:
        violations.append({"field": "year", "issue": f"must be between {MIN_YEAR} and {MAX_YEAR}"})

    amounts = {name: getattr(request, name) for name in INPUT_FIELDS}
    _check_amounts(amounts, violations)
    _check_gross_income(request.gross_income, violations)

    _raise_if_any(violations, "create")


def validate_update(request: UpdateCalculationRequest) -> None:
    """Validate only the amounts a patch actually supplies."""
    violations: list[dict[str, Any]] = []
    changes = request.input_changes()
    _check_amounts(changes, violations)
    _check_gross_income(changes.get("gross_income"), violations)
    _raise_if_any(violations, "update")


def validate_preview(request: PreviewRequest) -> None:
    violations: list[dict[str, Any]] = []
    if not request.tax_type.strip():
        violations.append({"field": "taxType", "issue": "must not be blank"})
    amounts = {name: getattr(request, name) for name in INPUT_FIELDS}
    _check_amounts(amounts, violations)
    _check_gross_income(request.gross_income, violations)
    _raise_if_any(violations, "preview")
