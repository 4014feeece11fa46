"""
Test configuration for taxcore tests.

No database or Redis is needed: the lifecycle runs against InMemoryCalculationStore,
and API tests swap it in through app.dependency_overrides[get_lifecycle]. get_db
still runs for the mutating routes, on a RecordingSession that logs to db_events.

Actors:
  taxpayer        WAJIB_PAJAK  wp-001
  other_taxpayer  WAJIB_PAJAK  wp-002
  officer         TAX_OFFICER  officer-001
  admin           ADMIN        admin-001
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from taxcore.auth import Actor, Role, can_elevate_status
from taxcore.calculations.lifecycle import CalculationLifecycle
from taxcore.tests.factories import InMemoryCalculationStore, RecordingSession, TickingClock


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemoryCalculationStore:
    return InMemoryCalculationStore()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def lifecycle(store: InMemoryCalculationStore, clock: TickingClock) -> CalculationLifecycle:
    return CalculationLifecycle(store, can_elevate_status, clock=clock)


@pytest.fixture
def taxpayer() -> Actor:
    return Actor(user_id="wp-001", role=Role.WAJIB_PAJAK)


@pytest.fixture
def other_taxpayer() -> Actor:
    return Actor(user_id="wp-002", role=Role.WAJIB_PAJAK)


@pytest.fixture
def officer() -> Actor:
    return Actor(user_id="officer-001", role=Role.TAX_OFFICER)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-001", role=Role.ADMIN)


@pytest.fixture
def db_events() -> list[str]:
    return []


@pytest_asyncio.fixture
async def client(lifecycle: CalculationLifecycle, db_events: list[str], monkeypatch):
    """Async httpx client using ASGI transport with the in-memory lifecycle injected."""
    from taxcore import database
    from taxcore.calculations.routes import get_lifecycle
    from taxcore.main import app

    monkeypatch.setattr(database, "AsyncSessionLocal", lambda: RecordingSession(db_events))
    app.dependency_overrides[get_lifecycle] = lambda: lifecycle
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
