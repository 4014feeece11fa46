"""
auth.py — actor identity and the permission predicates consumed by the lifecycle.

Session handling is owned by the portal's auth service, which forwards the
authenticated user as two headers:

    X-User-Id:   opaque user id
    X-User-Role: WAJIB_PAJAK | TAX_OFFICER | ADMIN

Roles:
  WAJIB_PAJAK  taxpayer — sees and edits only their own calculations
  TAX_OFFICER  elevated — may verify/approve and act on any record
  ADMIN        elevated
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from fastapi import Header, HTTPException
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class Role(str, Enum):
    WAJIB_PAJAK = "WAJIB_PAJAK"
    TAX_OFFICER = "TAX_OFFICER"
    ADMIN = "ADMIN"


ELEVATED_ROLES: frozenset[Role] = frozenset({Role.TAX_OFFICER, Role.ADMIN})


class Actor(BaseModel):
    """The authenticated caller of a lifecycle operation."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role


def can_elevate_status(role: Role) -> bool:
    """Whether `role` may move a record into VERIFIED or APPROVED (and delete it)."""
    return role in ELEVATED_ROLES


async def get_current_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """
    FastAPI dependency — build the Actor from the forwarded identity headers.
    Missing or unknown values → 401.
    """
    user_id = (x_user_id or "").strip()
    if not user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing X-User-Id or X-User-Role header")
    try:
        role = Role(x_user_role.strip().upper())
    except ValueError:
        logger.info("Rejected unknown role header role=%s", x_user_role)
        raise HTTPException(status_code=401, detail=f"Unknown role '{x_user_role}'") from None
    return Actor(user_id=user_id, role=role)
