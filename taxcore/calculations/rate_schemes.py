"""
Rate scheme resolver — which computation method applies to a tax category.

A closed lookup table maps each known category to one tagged scheme:

  progressive          → ProgressiveScheme  (bracket table, single marginal rate)
  flat                 → FlatScheme         (one fixed rate)
  installment          → InstallmentScheme  (annual rate spread over 12 periods)
  default              → DefaultScheme      (flat 10% for anything unrecognised)

resolve_scheme() is total: an unknown category never raises, it falls through to
DEFAULT_SCHEME. Adding a category is a single edit to RATE_SCHEMES.

PROGRESSIVE POLICY: the ONE rate of the bracket containing the taxable base is
applied to the whole base. This is not a stacked/marginal calculation — stored
breakdowns and displayed rates depend on it, so keep it as is.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Literal, Optional, Union

from pydantic.alias_generators import to_camel

from taxcore.calculations.schemas import TaxCategory

# ===========================================================================
# RATE CONSTANTS
# ===========================================================================

PPN_RATE         = Decimal("0.11")
PPH_23_RATE      = Decimal("0.02")     # services
PPH_25_ANNUAL    = Decimal("0.25")
PBB_RATE         = Decimal("0.005")
BPHTB_RATE       = Decimal("0.05")
DEFAULT_RATE     = Decimal("0.10")

INSTALLMENT_PERIODS = 12


# ===========================================================================
# SCHEME VARIANTS
# ===========================================================================

@dataclass(frozen=True)
class Bracket:
    """One (upper bound, rate) tier. upper=None marks the unbounded top tier."""
    upper: Optional[Decimal]
    rate: Decimal


@dataclass(frozen=True)
class ProgressiveScheme:
    brackets: tuple[Bracket, ...]
    description: str
    kind: Literal["progressive"] = field(default="progressive", init=False)
    method: str = field(default="progressive", init=False)

    def __post_init__(self) -> None:
        if not self.brackets or self.brackets[-1].upper is not None:
            raise ValueError("progressive table must end with an unbounded bracket")
        bounds = [b.upper for b in self.brackets[:-1]]
        if any(b is None for b in bounds):
            raise ValueError("only the last bracket may be unbounded")
        if any(lo >= hi for lo, hi in zip(bounds, bounds[1:])):
            raise ValueError("bracket upper bounds must be strictly ascending")

    def rate_for(self, taxable_income: Decimal) -> Decimal:
        """Rate of the first bracket whose upper bound is >= taxable_income."""
        for bracket in self.brackets:
            if bracket.upper is None or taxable_income <= bracket.upper:
                return bracket.rate
        raise AssertionError("unreachable: top bracket is unbounded")

    def apply(self, taxable_income: Decimal) -> tuple[Decimal, Decimal]:
        rate = self.rate_for(taxable_income)
        return rate, taxable_income * rate

    def breakdown_fields(self) -> dict[str, Any]:
        table: list[dict[str, Decimal]] = []
        highest = Decimal("0")
        for bracket in self.brackets:
            if bracket.upper is None:
                table.append({"above": highest, "rate": bracket.rate})
            else:
                table.append({"max": bracket.upper, "rate": bracket.rate})
                highest = bracket.upper
        return {"method": self.method, "brackets": table, "description": self.description}


@dataclass(frozen=True)
class FlatScheme:
    rate: Decimal
    description: str
    kind: Literal["flat"] = field(default="flat", init=False)
    method: str = field(default="flat", init=False)

    def apply(self, taxable_income: Decimal) -> tuple[Decimal, Decimal]:
        return self.rate, taxable_income * self.rate

    def breakdown_fields(self) -> dict[str, Any]:
        return {"method": self.method, "rate": self.rate, "description": self.description}


@dataclass(frozen=True)
class InstallmentScheme:
    """Annual rate applied to the base, then divided into equal periodic installments."""
    annual_rate: Decimal
    description: str
    periods: int = INSTALLMENT_PERIODS
    kind: Literal["installment"] = field(default="installment", init=False)
    method: str = field(default="monthly_installment", init=False)

    def apply(self, taxable_income: Decimal) -> tuple[Decimal, Decimal]:
        return self.annual_rate, taxable_income * self.annual_rate / self.periods

    def breakdown_fields(self) -> dict[str, Any]:
        return {"method": self.method, "annual_rate": self.annual_rate, "description": self.description}


@dataclass(frozen=True)
class DefaultScheme:
    rate: Decimal = DEFAULT_RATE
    description: str = "Default tax rate 10%"
    kind: Literal["default"] = field(default="default", init=False)
    method: str = field(default="default", init=False)

    def apply(self, taxable_income: Decimal) -> tuple[Decimal, Decimal]:
        return self.rate, taxable_income * self.rate

    def breakdown_fields(self) -> dict[str, Any]:
        return {"method": self.method, "rate": self.rate, "description": self.description}


RateScheme = Union[ProgressiveScheme, FlatScheme, InstallmentScheme, DefaultScheme]


# ===========================================================================
# BRACKET TABLES — upper bound inclusive, ascending
# ===========================================================================

PPH_21_BRACKETS: tuple[Bracket, ...] = (
    Bracket(Decimal("60000000"),   Decimal("0.05")),   # <= 60 juta: 5%
    Bracket(Decimal("250000000"),  Decimal("0.15")),   # <= 250 juta: 15%
    Bracket(Decimal("500000000"),  Decimal("0.25")),   # <= 500 juta: 25%
    Bracket(Decimal("5000000000"), Decimal("0.30")),   # <= 5 miliar: 30%
    Bracket(None,                  Decimal("0.35")),   # > 5 miliar: 35%
)

PAJAK_KENDARAAN_BRACKETS: tuple[Bracket, ...] = (
    Bracket(Decimal("100000000"), Decimal("0.01")),    # <= 100 juta: 1%
    Bracket(Decimal("250000000"), Decimal("0.015")),   # <= 250 juta: 1.5%
    Bracket(Decimal("500000000"), Decimal("0.02")),    # <= 500 juta: 2%
    Bracket(None,                 Decimal("0.025")),   # > 500 juta: 2.5%
)


# ===========================================================================
# CATEGORY → SCHEME TABLE
# ===========================================================================

DEFAULT_SCHEME = DefaultScheme()

RATE_SCHEMES: dict[str, RateScheme] = {
    TaxCategory.PPH_21.value: ProgressiveScheme(PPH_21_BRACKETS, "PPh Pasal 21 - tarif progresif"),
    TaxCategory.PPN.value: FlatScheme(PPN_RATE, "PPN 11%"),
    TaxCategory.PPH_23.value: FlatScheme(PPH_23_RATE, "PPh Pasal 23 2% (jasa)"),
    TaxCategory.PPH_25.value: InstallmentScheme(PPH_25_ANNUAL, "PPh Pasal 25 - Angsuran bulanan"),
    TaxCategory.PBB.value: FlatScheme(PBB_RATE, "PBB 0.5%"),
    TaxCategory.BPHTB.value: FlatScheme(BPHTB_RATE, "BPHTB 5%"),
    TaxCategory.PAJAK_KENDARAAN.value: ProgressiveScheme(
        PAJAK_KENDARAAN_BRACKETS, "Pajak Kendaraan - tarif progresif"
    ),
}


def resolve_scheme(tax_category: Union[str, TaxCategory, None]) -> RateScheme:
    """Return the scheme for tax_category; unknown or empty categories get DEFAULT_SCHEME."""
    key = tax_category.value if isinstance(tax_category, TaxCategory) else tax_category
    return RATE_SCHEMES.get(key, DEFAULT_SCHEME) if isinstance(key, str) else DEFAULT_SCHEME


def _jsonable(value: Any) -> Any:
    """Decimals → strings, snake_case keys → camelCase (same shape as stored breakdowns)."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {to_camel(k): _jsonable(v) for k, v in value.items()}
    return value


def describe_schemes() -> list[dict[str, Any]]:
    """Every known category with its scheme parameters, plus the default arm (taxType=None)."""
    rows = [
        {"taxType": category, "kind": scheme.kind, **_jsonable(scheme.breakdown_fields())}
        for category, scheme in RATE_SCHEMES.items()
    ]
    rows.append({"taxType": None, "kind": DEFAULT_SCHEME.kind, **_jsonable(DEFAULT_SCHEME.breakdown_fields())})
    return rows
