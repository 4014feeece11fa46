"""
Calculation record lifecycle — the approval state machine.

    DRAFT ──► CALCULATED ──► VERIFIED ──► APPROVED
      │           │              │
      └───────────┴──────────────┴──────► REJECTED

APPROVED and REJECTED accept no further status change. Two rules sit outside the
graph above:

  RECOMPUTE  Any change to the five input amounts recomputes via the engine and
             forces status back to CALCULATED, from ANY status (including
             APPROVED). This is the only way a status moves backwards.
  GATE       Moving to VERIFIED or APPROVED requires can_elevate_status(role).
             A denied request raises before anything is written.

The pure planning functions (check_transition, plan_recompute, plan_status_change)
return the exact field changes for one atomic store.update(); the
CalculationLifecycle class wires them to an injected store and permission
predicate so both can be swapped out in tests.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol, Sequence

from taxcore.auth import Actor, Role
from taxcore.calculations.schemas import (
    BulkResult,
    BulkSkip,
    CalculationPage,
    CalculationQuery,
    CalculationStatus,
    CreateCalculationRequest,
    Pagination,
    PreviewRequest,
    TaxCalculationRecord,
    TaxComputation,
    UpdateCalculationRequest,
)
from taxcore.calculations.tax_engine import compute
from taxcore.errors import (
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

Status = CalculationStatus


# ===========================================================================
# TRANSITION TABLE
# ===========================================================================

ALLOWED_TRANSITIONS: dict[CalculationStatus, frozenset[CalculationStatus]] = {
    Status.DRAFT:      frozenset({Status.CALCULATED, Status.REJECTED}),
    Status.CALCULATED: frozenset({Status.VERIFIED, Status.REJECTED}),
    Status.VERIFIED:   frozenset({Status.APPROVED, Status.REJECTED}),
    Status.APPROVED:   frozenset(),
    Status.REJECTED:   frozenset(),
}

TERMINAL_STATUSES = frozenset({Status.APPROVED, Status.REJECTED})
ELEVATED_TARGETS = frozenset({Status.VERIFIED, Status.APPROVED})


# ===========================================================================
# COLLABORATOR INTERFACES
# ===========================================================================

class CalculationStore(Protocol):
    """
    Persistence collaborator. update() must write every key of `changes` in one
    atomic statement and return the record as stored afterwards.
    Implementations raise NotFoundError for unknown ids and PersistenceError for
    backend failures.
    """

    async def create(self, record: TaxCalculationRecord) -> TaxCalculationRecord: ...

    async def get(self, calculation_id: str) -> Optional[TaxCalculationRecord]: ...

    async def get_many(self, calculation_ids: Sequence[str]) -> list[TaxCalculationRecord]: ...

    async def update(self, calculation_id: str, changes: dict[str, Any]) -> TaxCalculationRecord: ...

    async def delete(self, calculation_id: str) -> None: ...

    async def delete_many(self, calculation_ids: Sequence[str]) -> int: ...

    async def list(self, query: CalculationQuery) -> tuple[list[TaxCalculationRecord], int]: ...


PermissionPredicate = Callable[[Role], bool]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===========================================================================
# PURE TRANSITION PLANNING
# ===========================================================================

def check_transition(current: CalculationStatus, target: CalculationStatus) -> None:
    """
    Raise InvalidTransitionError unless `target` is reachable from `current` in
    one step. Re-requesting the current status is allowed and changes nothing.
    """
    if target == current:
        return
    if target not in ALLOWED_TRANSITIONS[current]:
        if current in TERMINAL_STATUSES:
            reason = f"{current.value} is terminal"
        else:
            allowed = ", ".join(sorted(s.value for s in ALLOWED_TRANSITIONS[current]))
            reason = f"allowed from {current.value}: {allowed}"
        raise InvalidTransitionError(
            f"Cannot move calculation from {current.value} to {target.value} ({reason})",
            details=[{"field": "status", "issue": reason}],
        )


def computation_fields(result: TaxComputation) -> dict[str, Any]:
    """Derived fields + breakdown of one engine run, as record changes."""
    return {
        "taxable_income": result.taxable_income,
        "tax_rate": result.tax_rate,
        "calculated_tax": result.calculated_tax,
        "final_tax_amount": result.final_tax_amount,
        "calculation_data": result.breakdown,
    }


def plan_recompute(
    record: TaxCalculationRecord,
    input_changes: dict[str, Any],
    now: datetime,
) -> dict[str, Any]:
    """
    RECOMPUTE transition: merge the new amounts over the stored ones, run the
    engine, and force CALCULATED regardless of the current status.
    """
    merged = {**record.inputs(), **input_changes}
    result = compute(record.tax_type, merged)
    return {
        **merged,
        **computation_fields(result),
        "status": Status.CALCULATED,
        "updated_at": now,
    }


def plan_status_change(
    record: TaxCalculationRecord,
    target: CalculationStatus,
    now: datetime,
) -> dict[str, Any]:
    """
    Status-only transition. Assumes the permission gate has already passed.
    DRAFT → CALCULATED runs the engine for the first time; → VERIFIED stamps
    verified_at. Requesting the current status returns no changes.
    """
    check_transition(record.status, target)
    if target == record.status:
        return {}

    changes: dict[str, Any] = {"status": target, "updated_at": now}
    if record.status == Status.DRAFT and target == Status.CALCULATED:
        changes.update(computation_fields(compute(record.tax_type, record.inputs())))
    if target == Status.VERIFIED:
        changes["verified_at"] = now
    return changes


# ===========================================================================
# LIFECYCLE SERVICE
# ===========================================================================

class CalculationLifecycle:
    """
    Entry point for every calculation operation the API exposes.

    Args:
        store: CalculationStore implementation (SQL in production, in-memory in tests).
        can_elevate_status: predicate deciding who may verify/approve/delete.
        clock: source of timestamps; injectable for deterministic tests.
    """

    def __init__(
        self,
        store: CalculationStore,
        can_elevate_status: PermissionPredicate,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.can_elevate_status = can_elevate_status
        self.clock = clock

    # ------------------------------------------------------------------
    # Access helpers
    # ------------------------------------------------------------------

    def _is_elevated(self, actor: Actor) -> bool:
        return self.can_elevate_status(actor.role)

    def _ensure_access(self, record: TaxCalculationRecord, actor: Actor) -> None:
        """Non-elevated actors may only touch their own records."""
        if not self._is_elevated(actor) and record.user_id != actor.user_id:
            logger.info(
                "Ownership check failed calculation_id=%s actor=%s role=%s",
                record.id, actor.user_id, actor.role.value,
            )
            raise PermissionDeniedError("You do not have access to this tax calculation")

    def _ensure_elevated(self, actor: Actor, action: str) -> None:
        if not self._is_elevated(actor):
            logger.info("Permission denied action=%s actor=%s role=%s", action, actor.user_id, actor.role.value)
            raise PermissionDeniedError(f"Role {actor.role.value} is not allowed to {action}")

    async def _load(self, calculation_id: str) -> TaxCalculationRecord:
        record = await self.store.get(calculation_id)
        if record is None:
            raise NotFoundError(f"Tax calculation '{calculation_id}' not found")
        return record

    def _new_record(self, request: CreateCalculationRequest, actor: Actor, status: CalculationStatus) -> TaxCalculationRecord:
        now = self.clock()
        return TaxCalculationRecord(
            id=str(uuid.uuid4()),
            user_id=actor.user_id,
            tax_type=request.tax_type,
            calculation_type=request.calculation_type,
            period=request.period,
            year=request.year,
            gross_income=request.gross_income,
            deductible_expenses=request.deductible_expenses or 0,
            tax_deductions=request.tax_deductions or 0,
            tax_credits=request.tax_credits or 0,
            previous_tax_paid=request.previous_tax_paid or 0,
            status=status,
            notes=request.notes or "",
            created_at=now,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, request: CreateCalculationRequest, actor: Actor) -> TaxCalculationRecord:
        """Compute immediately and persist in CALCULATED."""
        record = self._new_record(request, actor, Status.CALCULATED)
        result = compute(record.tax_type, record.inputs())
        record = record.model_copy(update=computation_fields(result))
        saved = await self.store.create(record)
        logger.info(
            "Created calculation calculation_id=%s tax_type=%s method=%s user_id=%s",
            saved.id, saved.tax_type, result.breakdown.method, saved.user_id,
        )
        return saved

    async def save_draft(self, request: CreateCalculationRequest, actor: Actor) -> TaxCalculationRecord:
        """Persist inputs without computing. Derived fields stay zero until CALCULATED."""
        record = self._new_record(request, actor, Status.DRAFT)
        saved = await self.store.create(record)
        logger.info("Saved draft calculation_id=%s tax_type=%s user_id=%s", saved.id, saved.tax_type, saved.user_id)
        return saved

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, calculation_id: str, actor: Actor) -> TaxCalculationRecord:
        record = await self._load(calculation_id)
        self._ensure_access(record, actor)
        return record

    async def list(self, query: CalculationQuery, actor: Actor) -> CalculationPage:
        """Filtered, paginated listing, newest first. Taxpayers only see their own records."""
        if not self._is_elevated(actor):
            query = query.model_copy(update={"user_id": actor.user_id})
        records, total = await self.store.list(query)
        total_pages = -(-total // query.limit) if query.limit else 0
        return CalculationPage(
            calculations=records,
            pagination=Pagination(total=total, page=query.page, limit=query.limit, total_pages=total_pages),
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(
        self,
        calculation_id: str,
        request: UpdateCalculationRequest,
        actor: Actor,
    ) -> TaxCalculationRecord:
        """
        Apply a patch as one atomic write.

        Order: ownership → permission gate on the requested status → plan.
        If any amount changed the RECOMPUTE transition wins and a requested
        status is not applied (the record lands in CALCULATED).
        """
        record = await self._load(calculation_id)
        self._ensure_access(record, actor)

        target = request.status
        if target in ELEVATED_TARGETS:
            self._ensure_elevated(actor, f"set status {target.value}")

        now = self.clock()
        input_changes = request.input_changes()
        changes: dict[str, Any] = {}

        if input_changes:
            changes = plan_recompute(record, input_changes, now)
            if target is not None and target != Status.CALCULATED:
                logger.warning(
                    "Requested status ignored on recompute calculation_id=%s requested=%s",
                    calculation_id, target.value,
                )
        elif target is not None:
            changes = plan_status_change(record, target, now)

        if request.notes is not None and request.notes != record.notes:
            changes["notes"] = request.notes
            changes["updated_at"] = now

        if not changes:
            return record

        updated = await self.store.update(calculation_id, changes)
        logger.info(
            "Updated calculation calculation_id=%s status=%s->%s recomputed=%s actor_role=%s",
            calculation_id, record.status.value, updated.status.value, bool(input_changes), actor.role.value,
        )
        return updated

    async def change_status(
        self,
        calculation_id: str,
        target: CalculationStatus,
        actor: Actor,
    ) -> TaxCalculationRecord:
        return await self.update(calculation_id, UpdateCalculationRequest(status=target), actor)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, calculation_id: str, actor: Actor) -> None:
        record = await self._load(calculation_id)
        self._ensure_access(record, actor)
        self._ensure_elevated(actor, "delete calculations")
        await self.store.delete(calculation_id)
        logger.info("Deleted calculation calculation_id=%s actor_role=%s", calculation_id, actor.role.value)

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def bulk_update_status(
        self,
        calculation_ids: Sequence[str],
        target: Optional[CalculationStatus],
        actor: Actor,
    ) -> BulkResult:
        """
        Each id goes through the normal guarded update, one atomic write per
        record. Unknown ids, illegal transitions and records already at the
        target status are reported as skipped, not raised.
        """
        self._ensure_elevated(actor, "bulk update status")
        if target is None:
            raise InvalidInputError(
                "Status is required for bulk update",
                details=[{"field": "data.status", "issue": "is required"}],
            )

        result = BulkResult(action="UPDATE_STATUS", requested=len(calculation_ids), affected=0)
        for calculation_id in dict.fromkeys(calculation_ids):
            try:
                record = await self._load(calculation_id)
                if record.status == target:
                    result.skipped.append(BulkSkip(id=calculation_id, reason=f"already {target.value}"))
                    continue
                await self.change_status(calculation_id, target, actor)
            except (NotFoundError, InvalidTransitionError) as exc:
                result.skipped.append(BulkSkip(id=calculation_id, reason=exc.message))
                continue
            result.affected_ids.append(calculation_id)
        result.affected = len(result.affected_ids)
        logger.info(
            "Bulk status update target=%s affected=%d skipped=%d",
            target.value, result.affected, len(result.skipped),
        )
        return result

    async def bulk_delete(self, calculation_ids: Sequence[str], actor: Actor) -> BulkResult:
        self._ensure_elevated(actor, "bulk delete calculations")
        unique_ids = list(dict.fromkeys(calculation_ids))
        existing = {record.id for record in await self.store.get_many(unique_ids)}
        found = [cid for cid in unique_ids if cid in existing]
        affected = await self.store.delete_many(found) if found else 0
        result = BulkResult(
            action="DELETE",
            requested=len(calculation_ids),
            affected=affected,
            affected_ids=found,
            skipped=[BulkSkip(id=cid, reason="not found") for cid in unique_ids if cid not in existing],
        )
        logger.info("Bulk delete affected=%d skipped=%d", result.affected, len(result.skipped))
        return result

    async def export(self, calculation_ids: Sequence[str], actor: Actor) -> list[TaxCalculationRecord]:
        """Records the actor may see, in request order. Inaccessible or unknown ids are dropped."""
        records = {record.id: record for record in await self.store.get_many(list(dict.fromkeys(calculation_ids)))}
        visible = [
            records[cid] for cid in dict.fromkeys(calculation_ids)
            if cid in records and (self._is_elevated(actor) or records[cid].user_id == actor.user_id)
        ]
        logger.info("Export requested=%d exported=%d actor_role=%s", len(calculation_ids), len(visible), actor.role.value)
        return visible

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    @staticmethod
    def preview(request: PreviewRequest) -> TaxComputation:
        """Run the engine without touching the store."""
        return compute(request.tax_type, request.model_dump(exclude={"tax_type"}))
