"""Shared test fixtures for the compliance engine tests."""

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from src.domains.compliance.models import (  # noqa: E402
    Customer,
    OCDDSchedule,
    Tenant,
    Transaction,
    VerificationStatus,
)
from src.domains.compliance.ports import SafeNotifier  # noqa: E402
from src.domains.compliance.regions import resolve_tenant_config  # noqa: E402
from src.domains.compliance.store import InMemoryComplianceStore  # noqa: E402

TENANT_ID = "tenant-au"

# Wednesday; no AU holiday nearby
NOW = datetime(2026, 3, 11, 9, 0, tzinfo=UTC)


def make_customer(**kwargs) -> Customer:
    defaults = {
        "customer_id": "cust-001",
        "tenant_id": TENANT_ID,
        "first_name": "Jane",
        "last_name": "Citizen",
        "date_of_birth": "1985-04-12",
        "country": "AU",
        "verification_status": VerificationStatus.VERIFIED,
        "created_at": NOW - timedelta(days=400),
    }
    defaults.update(kwargs)
    return Customer(**defaults)


def make_tx(**kwargs) -> Transaction:
    defaults = {
        "transaction_id": "tx-001",
        "tenant_id": TENANT_ID,
        "customer_id": "cust-001",
        "amount": 1_000.0,
        "currency": "AUD",
        "created_at": NOW - timedelta(days=1),
    }
    defaults.update(kwargs)
    return Transaction(**defaults)


def make_schedule(**kwargs) -> OCDDSchedule:
    defaults = {
        "schedule_id": "sched-001",
        "tenant_id": TENANT_ID,
        "customer_id": "cust-001",
        "next_scheduled_at": NOW - timedelta(hours=1),
    }
    defaults.update(kwargs)
    return OCDDSchedule(**defaults)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def au_config():
    return resolve_tenant_config("AU", {})


@pytest.fixture
def store() -> InMemoryComplianceStore:
    store = InMemoryComplianceStore()
    store.tenants[TENANT_ID] = Tenant(tenant_id=TENANT_ID, name="Test AU", region="AU")
    return store


@pytest.fixture
def notification_sink() -> AsyncMock:
    sink = AsyncMock()
    sink.notify = AsyncMock(return_value=None)
    return sink


@pytest.fixture
def notifier(notification_sink) -> SafeNotifier:
    return SafeNotifier(notification_sink)


@pytest.fixture
def audit() -> AsyncMock:
    sink = AsyncMock()
    sink.record = AsyncMock(return_value=None)
    return sink


def sent_events(sink: AsyncMock) -> list[str]:
    """Event types passed to a mocked notification sink, in call order."""
    return [c.args[1] for c in sink.notify.await_args_list]
