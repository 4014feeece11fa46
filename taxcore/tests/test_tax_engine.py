"""
Tax engine test suite — exact Decimal arithmetic, no tolerance.

Groups:
  1. Named rate constant verification — exact equality
  2. Parametrised category cases (every scheme, bracket boundaries)
  3. Deduction / credit / prior-payment clamping
  4. Breakdown contents
  5. Structural properties (determinism, non-negativity, monotonicity)
  6. Invalid inputs
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

import pytest

from taxcore.calculations.rate_schemes import (
    BPHTB_RATE,
    DEFAULT_RATE,
    INSTALLMENT_PERIODS,
    PBB_RATE,
    PPH_23_RATE,
    PPH_25_ANNUAL,
    PPN_RATE,
)
from taxcore.calculations.schemas import FinancialInputs, TaxCategory
from taxcore.calculations.tax_engine import compute
from taxcore.errors import InvalidInputError

D = Decimal


# ===========================================================================
# TEST GROUP 1: Named rate constants
# ===========================================================================

def test_flat_rate_constants() -> None:
    assert PPN_RATE    == D("0.11")
    assert PPH_23_RATE == D("0.02")
    assert PBB_RATE    == D("0.005")
    assert BPHTB_RATE  == D("0.05")
    assert DEFAULT_RATE == D("0.10")


def test_installment_constants() -> None:
    """PPh 25 is the annual 25% spread across twelve monthly installments."""
    assert PPH_25_ANNUAL == D("0.25")
    assert INSTALLMENT_PERIODS == 12


# ===========================================================================
# TEST GROUP 2: Parametrised category cases
# ===========================================================================

@dataclass
class TaxCase:
    """Single parametrised test case for compute()."""
    description: str
    tax_type: str
    inputs: dict
    expected_taxable: D
    expected_rate: D
    expected_calculated: D
    expected_final: D
    expected_method: str = field(default="flat")


TAX_CASES: list[TaxCase] = [

    # -------------------------------------------------------------------
    # Flat categories
    # -------------------------------------------------------------------
    TaxCase(
        description="ppn_100_juta",
        tax_type="PPN",
        inputs=dict(gross_income=D("100000000")),
        expected_taxable=D("100000000"),
        expected_rate=D("0.11"),
        expected_calculated=D("11000000"),
        expected_final=D("11000000"),
    ),
    TaxCase(
        description="pph_23_services_50_juta",
        tax_type="PPH_23",
        inputs=dict(gross_income=D("50000000")),
        expected_taxable=D("50000000"),
        expected_rate=D("0.02"),
        expected_calculated=D("1000000"),
        expected_final=D("1000000"),
    ),
    TaxCase(
        description="pbb_1_miliar",
        tax_type="PBB",
        inputs=dict(gross_income=D("1000000000")),
        expected_taxable=D("1000000000"),
        expected_rate=D("0.005"),
        expected_calculated=D("5000000"),
        expected_final=D("5000000"),
    ),
    TaxCase(
        description="bphtb_500_juta",
        tax_type="BPHTB",
        inputs=dict(gross_income=D("500000000")),
        expected_taxable=D("500000000"),
        expected_rate=D("0.05"),
        expected_calculated=D("25000000"),
        expected_final=D("25000000"),
    ),

    # -------------------------------------------------------------------
    # Installment
    # -------------------------------------------------------------------
    TaxCase(
        description="pph_25_120_juta_monthly",
        tax_type="PPH_25",
        inputs=dict(gross_income=D("120000000")),
        expected_taxable=D("120000000"),
        expected_rate=D("0.25"),
        expected_calculated=D("2500000"),
        expected_final=D("2500000"),
        expected_method="monthly_installment",
    ),

    # -------------------------------------------------------------------
    # Unknown category → default 10%
    # -------------------------------------------------------------------
    TaxCase(
        description="unknown_category_default",
        tax_type="XYZ",
        inputs=dict(gross_income=D("10000000")),
        expected_taxable=D("10000000"),
        expected_rate=D("0.10"),
        expected_calculated=D("1000000"),
        expected_final=D("1000000"),
        expected_method="default",
    ),

    # -------------------------------------------------------------------
    # PPh 21 — single rate of the containing bracket
    # -------------------------------------------------------------------
    TaxCase(
        description="pph_21_70_juta_less_10_juta_expenses",
        tax_type="PPH_21",
        inputs=dict(gross_income=D("70000000"), deductible_expenses=D("10000000")),
        expected_taxable=D("60000000"),
        expected_rate=D("0.05"),
        expected_calculated=D("3000000"),
        expected_final=D("3000000"),
        expected_method="progressive",
    ),
    TaxCase(
        description="pph_21_with_credits_and_prior_payment",
        tax_type="PPH_21",
        inputs=dict(
            gross_income=D("70000000"),
            deductible_expenses=D("10000000"),
            tax_credits=D("500000"),
            previous_tax_paid=D("1000000"),
        ),
        expected_taxable=D("60000000"),
        expected_rate=D("0.05"),
        expected_calculated=D("2500000"),
        expected_final=D("1500000"),
        expected_method="progressive",
    ),
    TaxCase(
        description="pph_21_upper_bound_inclusive",
        tax_type="PPH_21",
        inputs=dict(gross_income=D("60000000")),
        expected_taxable=D("60000000"),
        expected_rate=D("0.05"),
        expected_calculated=D("3000000"),
        expected_final=D("3000000"),
        expected_method="progressive",
    ),
    TaxCase(
        description="pph_21_one_rupiah_over_boundary",
        tax_type="PPH_21",
        inputs=dict(gross_income=D("60000001")),
        expected_taxable=D("60000001"),
        expected_rate=D("0.15"),
        expected_calculated=D("9000000.15"),
        expected_final=D("9000000.15"),
        expected_method="progressive",
    ),
    TaxCase(
        description="pph_21_500_juta",
        tax_type="PPH_21",
        inputs=dict(gross_income=D("500000000")),
        expected_taxable=D("500000000"),
        expected_rate=D("0.25"),
        expected_calculated=D("125000000"),
        expected_final=D("125000000"),
        expected_method="progressive",
    ),
    TaxCase(
        description="pph_21_top_bracket",
        tax_type="PPH_21",
        inputs=dict(gross_income=D("6000000000")),
        expected_taxable=D("6000000000"),
        expected_rate=D("0.35"),
        expected_calculated=D("2100000000"),
        expected_final=D("2100000000"),
        expected_method="progressive",
    ),

    # -------------------------------------------------------------------
    # Vehicle tax tiers
    # -------------------------------------------------------------------
    TaxCase(
        description="kendaraan_100_juta",
        tax_type="PAJAK_KENDARAAN",
        inputs=dict(gross_income=D("100000000")),
        expected_taxable=D("100000000"),
        expected_rate=D("0.01"),
        expected_calculated=D("1000000"),
        expected_final=D("1000000"),
        expected_method="progressive",
    ),
    TaxCase(
        description="kendaraan_200_juta",
        tax_type="PAJAK_KENDARAAN",
        inputs=dict(gross_income=D("200000000")),
        expected_taxable=D("200000000"),
        expected_rate=D("0.015"),
        expected_calculated=D("3000000"),
        expected_final=D("3000000"),
        expected_method="progressive",
    ),
    TaxCase(
        description="kendaraan_300_juta",
        tax_type="PAJAK_KENDARAAN",
        inputs=dict(gross_income=D("300000000")),
        expected_taxable=D("300000000"),
        expected_rate=D("0.02"),
        expected_calculated=D("6000000"),
        expected_final=D("6000000"),
        expected_method="progressive",
    ),
    TaxCase(
        description="kendaraan_600_juta",
        tax_type="PAJAK_KENDARAAN",
        inputs=dict(gross_income=D("600000000")),
        expected_taxable=D("600000000"),
        expected_rate=D("0.025"),
        expected_calculated=D("15000000"),
        expected_final=D("15000000"),
        expected_method="progressive",
    ),
]


@pytest.mark.parametrize("case", TAX_CASES, ids=[c.description for c in TAX_CASES])
def test_compute_cases(case: TaxCase) -> None:
    result = compute(case.tax_type, case.inputs)

    assert result.taxable_income == case.expected_taxable, f"{case.description}: taxable"
    assert result.tax_rate == case.expected_rate, f"{case.description}: rate"
    assert result.calculated_tax == case.expected_calculated, (
        f"{case.description}: calculated expected {case.expected_calculated}, got {result.calculated_tax}"
    )
    assert result.final_tax_amount == case.expected_final, (
        f"{case.description}: final expected {case.expected_final}, got {result.final_tax_amount}"
    )
    assert result.breakdown.method == case.expected_method


def test_enum_and_string_categories_agree() -> None:
    inputs = {"gross_income": D("80000000")}
    assert compute(TaxCategory.PPH_21, inputs) == compute("PPH_21", inputs)


def test_category_match_is_case_sensitive() -> None:
    """Lowercase 'ppn' is not a known category → default 10%."""
    result = compute("ppn", {"gross_income": D("1000")})
    assert result.tax_rate == D("0.10")
    assert result.breakdown.method == "default"


# ===========================================================================
# TEST GROUP 3: Clamping
# ===========================================================================

def test_deductions_exceeding_tax_clamp_to_zero() -> None:
    result = compute("PPN", {"gross_income": D("10000000"), "tax_deductions": D("2000000")})
    assert result.calculated_tax == D("0")
    assert result.final_tax_amount == D("0")


def test_credits_applied_after_deductions() -> None:
    result = compute("PPN", {
        "gross_income": D("10000000"),       # 1,100,000 tax
        "tax_deductions": D("100000"),
        "tax_credits": D("200000"),
    })
    assert result.calculated_tax == D("800000")
    assert result.breakdown.calculated_tax_before_deductions == D("1100000")


def test_prior_payment_exceeding_liability_gives_zero_final() -> None:
    result = compute("PPN", {"gross_income": D("10000000"), "previous_tax_paid": D("5000000")})
    assert result.calculated_tax == D("1100000")
    assert result.final_tax_amount == D("0")


def test_expenses_exceeding_income_are_not_floored() -> None:
    """Negative taxable income is reported as is; the clamps keep the tax at zero."""
    result = compute("PPN", {"gross_income": D("5000000"), "deductible_expenses": D("10000000")})
    assert result.taxable_income == D("-5000000")
    assert result.calculated_tax == D("0")
    assert result.final_tax_amount == D("0")


def test_negative_taxable_income_uses_first_bracket() -> None:
    result = compute("PPH_21", {"gross_income": D("1"), "deductible_expenses": D("100")})
    assert result.tax_rate == D("0.05")


# ===========================================================================
# TEST GROUP 4: Breakdown contents
# ===========================================================================

def test_flat_breakdown_records_rate_and_description() -> None:
    breakdown = compute("PPN", {"gross_income": D("100000000")}).breakdown
    assert breakdown.method == "flat"
    assert breakdown.rate == D("0.11")
    assert breakdown.description == "PPN 11%"
    assert breakdown.brackets is None
    assert breakdown.gross_income == D("100000000")


def test_progressive_breakdown_lists_full_table() -> None:
    breakdown = compute("PPH_21", {"gross_income": D("100000000")}).breakdown
    assert breakdown.method == "progressive"
    assert breakdown.rate is None
    assert [b.max for b in breakdown.brackets[:-1]] == [
        D("60000000"), D("250000000"), D("500000000"), D("5000000000"),
    ]
    top = breakdown.brackets[-1]
    assert top.max is None
    assert top.above == D("5000000000")
    assert top.rate == D("0.35")


def test_installment_breakdown_records_annual_rate() -> None:
    breakdown = compute("PPH_25", {"gross_income": D("120000000")}).breakdown
    assert breakdown.method == "monthly_installment"
    assert breakdown.annual_rate == D("0.25")
    assert breakdown.description == "PPh Pasal 25 - Angsuran bulanan"


def test_default_breakdown_description() -> None:
    breakdown = compute("XYZ", {"gross_income": D("1000")}).breakdown
    assert breakdown.description == "Default tax rate 10%"
    assert breakdown.rate == D("0.10")


def test_breakdown_echoes_every_input() -> None:
    inputs = {
        "gross_income": D("70000000"),
        "deductible_expenses": D("10000000"),
        "tax_deductions": D("100000"),
        "tax_credits": D("500000"),
        "previous_tax_paid": D("1000000"),
    }
    breakdown = compute("PPH_21", inputs).breakdown
    for name, value in inputs.items():
        assert getattr(breakdown, name) == value, name
    assert breakdown.final_tax_amount == D("1400000")


# ===========================================================================
# TEST GROUP 5: Structural properties
# ===========================================================================

def test_compute_is_deterministic() -> None:
    inputs = {"gross_income": D("123456789.12"), "deductible_expenses": D("3456789")}
    assert compute("PPH_21", inputs) == compute("PPH_21", inputs)


@pytest.mark.parametrize("tax_type", [c.value for c in TaxCategory] + ["XYZ"])
@pytest.mark.parametrize("gross", ["0", "1", "59999999.99", "250000001", "1e10"])
def test_outputs_are_never_negative_and_offsets_only_reduce(tax_type: str, gross: str) -> None:
    result = compute(tax_type, {
        "gross_income": D(gross),
        "tax_deductions": D("1000"),
        "tax_credits": D("1000"),
        "previous_tax_paid": D("1000"),
    })
    assert result.calculated_tax >= 0
    assert result.final_tax_amount >= 0
    assert result.final_tax_amount <= result.calculated_tax
    assert result.calculated_tax <= result.breakdown.calculated_tax_before_deductions


@pytest.mark.parametrize("tax_type", ["PPH_21", "PAJAK_KENDARAAN"])
def test_progressive_tax_non_decreasing_in_gross(tax_type: str) -> None:
    grid = [D(v) for v in (
        "0", "50000000", "60000000", "60000001", "100000000", "100000001",
        "250000000", "250000001", "500000000", "500000001", "5000000000", "5000000001",
    )]
    taxes = [compute(tax_type, {"gross_income": g}).final_tax_amount for g in grid]
    assert taxes == sorted(taxes)


def test_mapping_inputs_accept_camel_case_keys() -> None:
    snake = compute("PPN", {"gross_income": D("1000"), "previous_tax_paid": D("10")})
    camel = compute("PPN", {"grossIncome": D("1000"), "previousTaxPaid": D("10")})
    assert snake == camel


def test_snake_case_none_does_not_hide_camel_case_value() -> None:
    result = compute("PPN", {
        "gross_income": None,
        "grossIncome": D("1000"),
        "previous_tax_paid": None,
        "previousTaxPaid": D("10"),
    })
    assert result.taxable_income == D("1000")
    assert result.final_tax_amount == D("100")


def test_financial_inputs_model_accepted() -> None:
    result = compute("PPN", FinancialInputs(gross_income=D("1000")))
    assert result.final_tax_amount == D("110")


def test_float_inputs_keep_their_decimal_text() -> None:
    result = compute("PPN", {"gross_income": 100.1})
    assert result.taxable_income == D("100.1")


def test_missing_optional_amounts_default_to_zero() -> None:
    result = compute("PPN", {"gross_income": 1000, "tax_credits": None})
    assert result.breakdown.tax_credits == D("0")
    assert result.final_tax_amount == D("110")


# ===========================================================================
# TEST GROUP 6: Invalid inputs
# ===========================================================================

@pytest.mark.parametrize("bad", ["abc", "1000", True, float("nan"), float("inf"), [1], D("NaN")])
def test_non_numeric_gross_income_rejected(bad) -> None:
    with pytest.raises(InvalidInputError) as exc_info:
        compute("PPN", {"gross_income": bad})
    assert exc_info.value.details[0]["field"] == "grossIncome"


def test_non_numeric_optional_amount_rejected() -> None:
    with pytest.raises(InvalidInputError) as exc_info:
        compute("PPN", {"gross_income": 1000, "tax_credits": "lots"})
    assert exc_info.value.details[0]["field"] == "taxCredits"


def test_missing_gross_income_rejected() -> None:
    with pytest.raises(InvalidInputError):
        compute("PPN", {"deductible_expenses": 10})


def test_non_mapping_inputs_rejected() -> None:
    with pytest.raises(InvalidInputError):
        compute("PPN", [1000])
