"""
Tax calculation HTTP routes — /api/tax-calculations

  GET    /api/tax-calculations                list (filtered, paginated, cached)
  POST   /api/tax-calculations                compute + persist (CALCULATED)
  POST   /api/tax-calculations/drafts         persist inputs only (DRAFT)
  POST   /api/tax-calculations/preview        compute, persist nothing
  GET    /api/tax-calculations/rate-schemes   rate table per tax category
  POST   /api/tax-calculations/bulk           DELETE | UPDATE_STATUS | EXPORT
  GET    /api/tax-calculations/{id}
  PATCH  /api/tax-calculations/{id}           amounts → recompute, status → transition
  DELETE /api/tax-calculations/{id}

Routes stay thin: validation → CalculationLifecycle → JSON. Domain errors
(TaxCoreError subclasses) propagate to the handlers registered in main.py.
Every successful mutation drops the cached listings once its transaction has
committed, so a concurrent listing cannot re-cache the pre-commit rows.
"""
from __future__ import annotations

import functools
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from taxcore.auth import Actor, can_elevate_status, get_current_actor
from taxcore.cache import (
    get_cached_page,
    invalidate_calculations,
    make_list_key,
    set_cached_page,
)
from taxcore.calculations.export import generate_csv_export
from taxcore.calculations.lifecycle import CalculationLifecycle
from taxcore.calculations.rate_schemes import describe_schemes
from taxcore.calculations.schemas import (
    BulkActionRequest,
    CalculationQuery,
    CalculationStatus,
    CalculationType,
    CreateCalculationRequest,
    PreviewRequest,
    UpdateCalculationRequest,
)
from taxcore.calculations.validator import validate_create, validate_preview, validate_update
from taxcore.config import settings
from taxcore.database import call_after_commit, get_db
from taxcore.store import SqlCalculationStore

router = APIRouter(prefix="/api/tax-calculations", tags=["tax_calculations"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_lifecycle(db: AsyncSession = Depends(get_db)) -> CalculationLifecycle:
    """One lifecycle per request, bound to the request's DB session."""
    return CalculationLifecycle(SqlCalculationStore(db), can_elevate_status)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _json(model, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(mode="json", by_alias=True))


def _redis(request: Request):
    """The app's Redis client, or None when caching is disabled."""
    return getattr(request.app.state, "redis", None)


async def _drop_listings(client) -> None:
    try:
        await invalidate_calculations(client)
    except RedisError as exc:
        logger.warning("List cache invalidation failed: %s", type(exc).__name__)


def _invalidate_listings(request: Request, db: AsyncSession) -> None:
    """Drop cached listings after the request transaction commits."""
    client = _redis(request)
    if client is None:
        return
    call_after_commit(db, functools.partial(_drop_listings, client))


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

@router.get("")
async def list_calculations(
    request: Request,
    tax_type: Optional[str] = Query(default=None, alias="taxType"),
    status: Optional[CalculationStatus] = Query(default=None),
    year: Optional[int] = Query(default=None),
    calculation_type: Optional[CalculationType] = Query(default=None, alias="calculationType"),
    search: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.default_page_size, ge=1, le=settings.max_page_size),
    actor: Actor = Depends(get_current_actor),
    lifecycle: CalculationLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    """
    Filtered, paginated listing, newest first.
    Taxpayers only ever see (and cache) their own records.
    """
    query = CalculationQuery(
        tax_type=tax_type,
        status=status,
        year=year,
        calculation_type=calculation_type,
        search=search or None,
        page=page,
        limit=limit,
    )

    client = _redis(request)
    cache_key = None
    if client is not None:
        scope = "all" if can_elevate_status(actor.role) else actor.user_id
        cache_key = make_list_key(scope, query.model_dump(mode="json"))
        try:
            cached = await get_cached_page(client, cache_key)
        except RedisError as exc:
            logger.warning("List cache read failed: %s", type(exc).__name__)
            cached = None
        if cached is not None:
            return JSONResponse(status_code=200, content=cached)

    result = await lifecycle.list(query, actor)
    content = result.model_dump(mode="json", by_alias=True)

    if cache_key is not None:
        try:
            await set_cached_page(client, cache_key, content)
        except RedisError as exc:
            logger.warning("List cache write failed: %s", type(exc).__name__)

    return JSONResponse(status_code=200, content=content)


# ---------------------------------------------------------------------------
# Create / draft / preview
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
async def create_calculation(
    request: Request,
    body: CreateCalculationRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: CalculationLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Compute and persist a new calculation in CALCULATED status."""
    validate_create(body)
    record = await lifecycle.create(body, actor)
    _invalidate_listings(request, db)
    return _json(record, status_code=201)


@router.post("/drafts", status_code=201)
async def create_draft(
    request: Request,
    body: CreateCalculationRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: CalculationLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Persist inputs without computing. PATCH status=CALCULATED later runs the engine."""
    validate_create(body)
    record = await lifecycle.save_draft(body, actor)
    _invalidate_listings(request, db)
    return _json(record, status_code=201)


@router.post("/preview")
async def preview_calculation(
    body: PreviewRequest,
    actor: Actor = Depends(get_current_actor),
) -> JSONResponse:
    """Run the engine on the given amounts. Nothing is stored."""
    validate_preview(body)
    result = CalculationLifecycle.preview(body)
    logger.info("Preview computed tax_type=%s method=%s role=%s", body.tax_type, result.breakdown.method, actor.role.value)
    return JSONResponse(
        status_code=200,
        content=result.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.get("/rate-schemes")
async def list_rate_schemes(actor: Actor = Depends(get_current_actor)) -> JSONResponse:
    """Every supported tax category with its scheme, plus the fallback default."""
    return JSONResponse(status_code=200, content={"schemes": describe_schemes()})


# ---------------------------------------------------------------------------
# Bulk actions
# ---------------------------------------------------------------------------

@router.post("/bulk")
async def bulk_action(
    request: Request,
    body: BulkActionRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: CalculationLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """
    DELETE and UPDATE_STATUS are limited to elevated roles and report per-id
    skips. EXPORT streams a CSV of the records the actor may see.
    """
    ids = body.calculation_ids

    if body.action == "EXPORT":
        records = await lifecycle.export(ids, actor)
        buffer = generate_csv_export(records)
        filename = f"tax-calculations-{datetime.now(timezone.utc).strftime('%Y%m%d')}.csv"
        return StreamingResponse(
            buffer,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    if body.action == "DELETE":
        result = await lifecycle.bulk_delete(ids, actor)
    else:
        target = body.data.status if body.data is not None else None
        result = await lifecycle.bulk_update_status(ids, target, actor)

    if result.affected:
        _invalidate_listings(request, db)
    return _json(result)


# ---------------------------------------------------------------------------
# Single record
# ---------------------------------------------------------------------------

@router.get("/{calculation_id}")
async def get_calculation(
    calculation_id: str,
    actor: Actor = Depends(get_current_actor),
    lifecycle: CalculationLifecycle = Depends(get_lifecycle),
) -> JSONResponse:
    record = await lifecycle.get(calculation_id, actor)
    return _json(record)


@router.patch("/{calculation_id}")
async def update_calculation(
    request: Request,
    calculation_id: str,
    body: UpdateCalculationRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: CalculationLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """
    Changing any amount recomputes and returns the record to CALCULATED.
    Otherwise a supplied status is applied as a guarded transition.
    """
    validate_update(body)
    record = await lifecycle.update(calculation_id, body, actor)
    _invalidate_listings(request, db)
    return _json(record)


@router.delete("/{calculation_id}")
async def delete_calculation(
    request: Request,
    calculation_id: str,
    actor: Actor = Depends(get_current_actor),
    lifecycle: CalculationLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    await lifecycle.delete(calculation_id, actor)
    _invalidate_listings(request, db)
    return JSONResponse(status_code=200, content={"message": "Tax calculation deleted", "id": calculation_id})
