"""
store.py — Data access facade for tax calculation records.

Provides a consistent, high-level API for persisting and retrieving records.
The lifecycle never touches SQLAlchemy directly; it talks to SqlCalculationStore,
which binds the module functions below to one request session.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - No raw SQL: ORM-only statements
  - Every mutation is a single statement (INSERT, UPDATE … RETURNING, DELETE),
    so derived fields, breakdown and status always land together
  - Logs only ids, tax types and statuses — never amounts or notes
  - Returns TaxCalculationRecord (not ORM instances) so callers are persistence-agnostic
  - SQLAlchemyError is re-raised as PersistenceError, chained to the original
"""
import functools
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taxcore.calculations.breakdown import deserialize_breakdown, serialize_breakdown
from taxcore.calculations.schemas import (
    Breakdown,
    CalculationQuery,
    TaxCalculationRecord,
)
from taxcore.errors import NotFoundError, PersistenceError
from taxcore.models.tax_calculation import TaxCalculationORM

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _db_errors(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Translate backend failures into PersistenceError (original kept as __cause__)."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("Store operation %s failed: %s", fn.__name__, type(exc).__name__)
            raise PersistenceError(f"Record store failed during {fn.__name__}") from exc

    return wrapper


# ---------------------------------------------------------------------------
# ORM ⇄ domain mapping
# ---------------------------------------------------------------------------

def _to_record(orm: TaxCalculationORM) -> TaxCalculationRecord:
    return TaxCalculationRecord(
        id=str(orm.id),
        user_id=orm.user_id,
        tax_type=orm.tax_type,
        calculation_type=orm.calculation_type,
        period=orm.period,
        year=orm.year,
        gross_income=orm.gross_income,
        deductible_expenses=orm.deductible_expenses,
        tax_deductions=orm.tax_deductions,
        tax_credits=orm.tax_credits,
        previous_tax_paid=orm.previous_tax_paid,
        taxable_income=orm.taxable_income,
        tax_rate=orm.tax_rate,
        calculated_tax=orm.calculated_tax,
        final_tax_amount=orm.final_tax_amount,
        calculation_data=(
            deserialize_breakdown(orm.calculation_data) if orm.calculation_data is not None else None
        ),
        status=orm.status,
        verified_at=orm.verified_at,
        notes=orm.notes or "",
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


def _to_columns(changes: dict[str, Any]) -> dict[str, Any]:
    """Domain field changes → column values (enums to str, Breakdown to JSON dict)."""
    values: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, Breakdown):
            value = serialize_breakdown(value)
        elif hasattr(value, "value") and key in ("status", "calculation_type"):
            value = value.value
        values[key] = value
    return values


# ---------------------------------------------------------------------------
# Record operations
# ---------------------------------------------------------------------------

@_db_errors
async def save_calculation(db: AsyncSession, record: TaxCalculationRecord) -> TaxCalculationRecord:
    """
    INSERT a new record. Uses flush() (not commit()) — get_db() handles commit.
    """
    columns = _to_columns({
        name: getattr(record, name)
        for name in TaxCalculationRecord.model_fields
    })
    orm = TaxCalculationORM(**columns)
    db.add(orm)
    await db.flush()
    logger.info(
        "Saved calculation calculation_id=%s tax_type=%s status=%s",
        record.id, record.tax_type, record.status.value,
    )
    return _to_record(orm)


@_db_errors
async def get_calculation(db: AsyncSession, calculation_id: str) -> Optional[TaxCalculationRecord]:
    """Returns None if no record has this id (caller raises NotFoundError)."""
    result = await db.execute(
        select(TaxCalculationORM).where(TaxCalculationORM.id == calculation_id)
    )
    orm = result.scalar_one_or_none()
    return _to_record(orm) if orm is not None else None


@_db_errors
async def get_calculations(db: AsyncSession, calculation_ids: Sequence[str]) -> list[TaxCalculationRecord]:
    if not calculation_ids:
        return []
    result = await db.execute(
        select(TaxCalculationORM).where(TaxCalculationORM.id.in_(list(calculation_ids)))
    )
    return [_to_record(orm) for orm in result.scalars().all()]


@_db_errors
async def update_calculation(
    db: AsyncSession,
    calculation_id: str,
    changes: dict[str, Any],
) -> TaxCalculationRecord:
    """
    Write every key of `changes` in ONE UPDATE … RETURNING statement.
    Readers never observe a new status next to an old breakdown, or vice versa.
    """
    result = await db.execute(
        update(TaxCalculationORM)
        .where(TaxCalculationORM.id == calculation_id)
        .values(**_to_columns(changes))
        .returning(TaxCalculationORM)
        .execution_options(synchronize_session="fetch", populate_existing=True)
    )
    orm = result.scalar_one_or_none()
    if orm is None:
        raise NotFoundError(f"Tax calculation '{calculation_id}' not found")
    logger.info(
        "Updated calculation calculation_id=%s fields=%s",
        calculation_id, ",".join(sorted(changes)),
    )
    return _to_record(orm)


@_db_errors
async def delete_calculation(db: AsyncSession, calculation_id: str) -> None:
    result = await db.execute(
        delete(TaxCalculationORM).where(TaxCalculationORM.id == calculation_id)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Tax calculation '{calculation_id}' not found")
    logger.info("Deleted calculation calculation_id=%s", calculation_id)


@_db_errors
async def delete_calculations(db: AsyncSession, calculation_ids: Sequence[str]) -> int:
    result = await db.execute(
        delete(TaxCalculationORM).where(TaxCalculationORM.id.in_(list(calculation_ids)))
    )
    logger.info("Deleted %d calculation(s)", result.rowcount)
    return result.rowcount


@_db_errors
async def list_calculations(
    db: AsyncSession,
    query: CalculationQuery,
) -> tuple[list[TaxCalculationRecord], int]:
    """
    Filtered page of records ordered by created_at descending, plus the total
    number of matching rows.
    search matches notes case-insensitively.
    """
    conditions = []
    if query.user_id:
        conditions.append(TaxCalculationORM.user_id == query.user_id)
    if query.tax_type:
        conditions.append(TaxCalculationORM.tax_type == query.tax_type)
    if query.status:
        conditions.append(TaxCalculationORM.status == query.status.value)
    if query.year:
        conditions.append(TaxCalculationORM.year == query.year)
    if query.calculation_type:
        conditions.append(TaxCalculationORM.calculation_type == query.calculation_type.value)
    if query.search:
        conditions.append(TaxCalculationORM.notes.ilike(f"%{query.search}%"))

    total = await db.scalar(
        select(func.count()).select_from(TaxCalculationORM).where(*conditions)
    )
    result = await db.execute(
        select(TaxCalculationORM)
        .where(*conditions)
        .order_by(TaxCalculationORM.created_at.desc())
        .offset(query.offset)
        .limit(query.limit)
    )
    records = [_to_record(orm) for orm in result.scalars().all()]
    return records, int(total or 0)


# ---------------------------------------------------------------------------
# CalculationStore implementation bound to one request session
# ---------------------------------------------------------------------------

class SqlCalculationStore:
    """CalculationStore backed by PostgreSQL through the request's AsyncSession."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, record: TaxCalculationRecord) -> TaxCalculationRecord:
        return await save_calculation(self.db, record)

    async def get(self, calculation_id: str) -> Optional[TaxCalculationRecord]:
        return await get_calculation(self.db, calculation_id)

    async def get_many(self, calculation_ids: Sequence[str]) -> list[TaxCalculationRecord]:
        return await get_calculations(self.db, calculation_ids)

    async def update(self, calculation_id: str, changes: dict[str, Any]) -> TaxCalculationRecord:
        return await update_calculation(self.db, calculation_id, changes)

    async def delete(self, calculation_id: str) -> None:
        await delete_calculation(self.db, calculation_id)

    async def delete_many(self, calculation_ids: Sequence[str]) -> int:
        return await delete_calculations(self.db, calculation_ids)

    async def list(self, query: CalculationQuery) -> tuple[list[TaxCalculationRecord], int]:
        return await list_calculations(self.db, query)
