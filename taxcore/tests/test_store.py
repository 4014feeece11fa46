"""
store.py tests that need no database: ORM ⇄ record mapping, amount column types
and the SQLAlchemyError → PersistenceError translation.
The PostgreSQL-backed statements are covered in test_store_postgres.py.
"""
from __future__ import annotations

import importlib.util
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from taxcore.calculations.breakdown import serialize_breakdown
from taxcore.calculations.schemas import CalculationStatus, CalculationType
from taxcore.calculations.tax_engine import compute
from taxcore.errors import PersistenceError
from taxcore.models.tax_calculation import TaxCalculationORM
from taxcore.store import SqlCalculationStore, _to_columns, _to_record

D = Decimal
NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _orm(**overrides) -> TaxCalculationORM:
    result = compute("PPN", {"gross_income": D("1000")})
    fields = dict(
        id="c-1",
        user_id="wp-001",
        tax_type="PPN",
        calculation_type="MONTHLY",
        period="2024-01",
        year=2024,
        gross_income=D("1000"),
        deductible_expenses=D("0"),
        tax_deductions=D("0"),
        tax_credits=D("0"),
        previous_tax_paid=D("0"),
        taxable_income=result.taxable_income,
        tax_rate=result.tax_rate,
        calculated_tax=result.calculated_tax,
        final_tax_amount=result.final_tax_amount,
        calculation_data=serialize_breakdown(result.breakdown),
        status="CALCULATED",
        verified_at=None,
        notes="",
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return TaxCalculationORM(**fields)


def test_to_record_maps_columns_and_breakdown() -> None:
    record = _to_record(_orm())
    assert record.status == CalculationStatus.CALCULATED
    assert record.calculation_type == CalculationType.MONTHLY
    assert record.final_tax_amount == D("110")
    assert record.calculation_data.method == "flat"


def test_to_record_draft_without_breakdown() -> None:
    record = _to_record(_orm(calculation_data=None, status="DRAFT", notes=None))
    assert record.calculation_data is None
    assert record.notes == ""


def test_to_columns_flattens_enums_and_breakdown() -> None:
    breakdown = compute("PPN", {"gross_income": D("1000")}).breakdown
    columns = _to_columns({
        "status": CalculationStatus.VERIFIED,
        "calculation_type": CalculationType.ANNUAL,
        "calculation_data": breakdown,
        "gross_income": D("1000"),
    })
    assert columns["status"] == "VERIFIED"
    assert columns["calculation_type"] == "ANNUAL"
    assert columns["calculation_data"]["grossIncome"] == "1000"
    assert columns["gross_income"] == D("1000")


class _BrokenSession:
    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


async def test_database_errors_become_persistence_errors() -> None:
    store = SqlCalculationStore(_BrokenSession())
    with pytest.raises(PersistenceError) as exc_info:
        await store.get("c-1")
    assert isinstance(exc_info.value.__cause__, OperationalError)


# ---------------------------------------------------------------------------
# Amount column precision
# ---------------------------------------------------------------------------

AMOUNT_COLUMNS = (
    "gross_income", "deductible_expenses", "tax_deductions", "tax_credits",
    "previous_tax_paid", "taxable_income", "calculated_tax", "final_tax_amount",
)


@pytest.mark.parametrize("column", AMOUNT_COLUMNS)
def test_amount_columns_have_no_precision_or_scale(column: str) -> None:
    # PPH_25 on 100,000,001 yields 21 decimal places; a scaled column would round it
    column_type = TaxCalculationORM.__table__.c[column].type
    assert column_type.precision is None
    assert column_type.scale is None


def test_migration_amount_type_matches_model() -> None:
    path = Path(__file__).parent.parent / "alembic" / "versions" / "001_tax_calculations.py"
    module_spec = importlib.util.spec_from_file_location("migration_001", path)
    migration = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(migration)
    assert migration.AMOUNT.precision is None
    assert migration.AMOUNT.scale is None


def test_to_record_keeps_unknown_breakdown_method() -> None:
    data = serialize_breakdown(compute("PPN", {"gross_income": D("1000")}).breakdown)
    data["method"] = "legacy_flat"
    record = _to_record(_orm(calculation_data=data))
    assert record.calculation_data.method == "legacy_flat"
    assert record.final_tax_amount == D("110")
