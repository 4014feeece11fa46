"""
Breakdown serializer — engine Breakdown ⇄ storable JSON value.

  serialize_breakdown(b)      → JSON-safe dict (camelCase keys, decimals as strings,
                                absent parameters omitted). Stored in JSONB.
  deserialize_breakdown(raw)  → Breakdown, from that dict or its JSON text.
  dumps_breakdown / loads     → the same, as JSON text.
  replay_breakdown(b)         → re-derive calculated/final tax from stored values.

Round trip: deserialize_breakdown(serialize_breakdown(b)) == b.
Unknown keys are ignored on load, so records written under older or newer rate
tables stay readable even after RATE_SCHEMES changes.
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Mapping, Union

from pydantic import ValidationError

from taxcore.calculations.schemas import Breakdown
from taxcore.errors import InvalidInputError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def serialize_breakdown(breakdown: Breakdown) -> dict[str, Any]:
    return breakdown.model_dump(mode="json", by_alias=True, exclude_none=True)


def dumps_breakdown(breakdown: Breakdown) -> str:
    return json.dumps(serialize_breakdown(breakdown), sort_keys=True)


def deserialize_breakdown(raw: Union[Mapping[str, Any], str, bytes]) -> Breakdown:
    """
    Load a stored breakdown. Accepts the dict written by serialize_breakdown()
    or its JSON text.

    Raises:
        InvalidInputError: raw is not valid JSON, or lacks a required field.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidInputError(f"Stored breakdown is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, Mapping):
        raise InvalidInputError(f"Stored breakdown must be an object, got {type(raw).__name__}")

    try:
        return Breakdown.model_validate(dict(raw))
    except ValidationError as exc:
        details = [
            {"field": ".".join(str(loc) for loc in err["loc"]) or None, "issue": err["msg"]}
            for err in exc.errors()
        ]
        logger.warning("Rejected stored breakdown: %d issue(s)", len(details))
        raise InvalidInputError("Stored breakdown is malformed", details=details) from exc


def loads_breakdown(text: Union[str, bytes]) -> Breakdown:
    return deserialize_breakdown(text)


def replay_breakdown(breakdown: Breakdown) -> tuple[Decimal, Decimal]:
    """
    Re-apply the deduction/credit/prior-payment clamps to the stored
    calculated_tax_before_deductions.

    Returns (calculated_tax, final_tax_amount). For any breakdown produced by the
    engine these equal the values stored on the record.
    """
    calculated_tax = max(ZERO, breakdown.calculated_tax_before_deductions - breakdown.tax_deductions)
    calculated_tax = max(ZERO, calculated_tax - breakdown.tax_credits)
    final_tax_amount = max(ZERO, calculated_tax - breakdown.previous_tax_paid)
    return calculated_tax, final_tax_amount


def is_consistent(breakdown: Breakdown) -> bool:
    """True when replaying the stored totals reproduces the stored final amount."""
    _, final_tax_amount = replay_breakdown(breakdown)
    return final_tax_amount == breakdown.final_tax_amount


__all__ = [
    "serialize_breakdown",
    "dumps_breakdown",
    "deserialize_breakdown",
    "loads_breakdown",
    "replay_breakdown",
    "is_consistent",
]
