"""
Shared fixtures: engine wired to in-memory collaborators.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from loyalty_engine.commission import CommissionCalculator, SaleCommissionService, SettingsVersionStore
from loyalty_engine.config import Settings
from loyalty_engine.models import (
    RecordKind,
    ReferenceRecord,
    ReferenceSource,
    UnverifiedRecord,
)
from loyalty_engine.reconciliation import (
    CandidateFinder,
    EventDispatcher,
    LedgerSideEffects,
    ManualReviewService,
    MatchScorer,
    ReconciliationOrchestrator,
)
from loyalty_engine.storage import (
    InMemoryLedger,
    InMemoryNotificationSink,
    InMemoryReferenceSource,
    InMemorySaleRepository,
    InMemorySettingsBackend,
    InMemoryUnverifiedRecordRepository,
    UnverifiedRecordReferenceSource,
)
from loyalty_engine.utils.audit_logger import AuditLogger

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class StaticSource:
    """Reference source that ignores the query and returns fixed records."""

    def __init__(self, source_type: ReferenceSource, records: List[ReferenceRecord], models_store=True):
        self.source_type = source_type
        self.models_store = models_store
        self.records = records
        self.calls = 0

    async def find_candidates(self, query):
        self.calls += 1
        return list(self.records)


class SlowSource:
    """Reference source that never answers in time."""

    def __init__(self, source_type: ReferenceSource, delay: float = 1.0):
        self.source_type = source_type
        self.models_store = True
        self.delay = delay
        self.calls = 0

    async def find_candidates(self, query):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return []


class FailingSource:
    def __init__(self, source_type: ReferenceSource, error: Exception):
        self.source_type = source_type
        self.models_store = True
        self.error = error

    async def find_candidates(self, query):
        raise self.error


class FlakyCashbackLedger(InMemoryLedger):
    """Ledger whose cashback writes hang while `stuck` is set."""

    def __init__(self):
        super().__init__()
        self.stuck = True

    async def record_cashback_earned(self, user_id, amount, source, reference_id):
        if self.stuck:
            await asyncio.sleep(5)
        await super().record_cashback_earned(user_id, amount, source, reference_id)


def make_record(
    record_id: str = "scan_1",
    kind: RecordKind = RecordKind.SCAN_UPLOAD,
    amount: float = 100.0,
    occurred_at: datetime = T0,
    user_id: str = "user_1",
    store_id: str = "store_1",
    **kwargs,
) -> UnverifiedRecord:
    return UnverifiedRecord(
        id=record_id,
        kind=kind,
        user_id=user_id,
        store_id=store_id,
        invoice_number=f"INV-{record_id}",
        amount=amount,
        occurred_at=occurred_at,
        created_at=kwargs.pop("created_at", occurred_at + timedelta(minutes=5)),
        **kwargs,
    )


def make_reference(
    reference_id: str = "purchase_1",
    source: ReferenceSource = ReferenceSource.PURCHASE_ENTRY,
    amount: float = 100.0,
    occurred_at: datetime = T0,
    user_id: str = "user_1",
    store_id: str = "store_1",
) -> ReferenceRecord:
    return ReferenceRecord(
        id=reference_id,
        source=source,
        user_id=user_id,
        store_id=store_id,
        amount=amount,
        occurred_at=occurred_at,
    )


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        lookup_timeout_seconds=0.05,
        lookup_retry_attempts=2,
        lookup_retry_wait_seconds=0,
        side_effect_timeout_seconds=0.5,
        max_concurrent_records=4,
    )


@pytest.fixture
def records():
    return InMemoryUnverifiedRecordRepository()


@pytest.fixture
def purchases():
    return InMemoryReferenceSource(ReferenceSource.PURCHASE_ENTRY)


@pytest.fixture
def online_orders():
    return InMemoryReferenceSource(ReferenceSource.ONLINE_PURCHASE, models_store=False)


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def settings_store(settings, audit):
    return SettingsVersionStore(InMemorySettingsBackend(), settings=settings, audit_sink=audit)


@pytest.fixture
def audit(settings):
    return AuditLogger("test_job", settings=settings)


@pytest.fixture
def notifications():
    return InMemoryNotificationSink()


@pytest.fixture
def events(audit, notifications, settings):
    return EventDispatcher(audit, notifications, settings=settings)


@pytest.fixture
def ledger_effects(records, ledger, settings_store, events, settings):
    return LedgerSideEffects(
        records,
        ledger,
        settings_store,
        events=events,
        calculator=CommissionCalculator(),
        settings=settings,
        clock=lambda: T0 + timedelta(days=1),
    )


@pytest.fixture
def finder(records, purchases, online_orders, settings):
    return CandidateFinder(
        [
            purchases,
            online_orders,
            UnverifiedRecordReferenceSource(records, RecordKind.BILLING_INVOICE),
            UnverifiedRecordReferenceSource(records, RecordKind.SCAN_UPLOAD),
        ],
        settings=settings,
    )


@pytest.fixture
def orchestrator(records, finder, ledger_effects, settings):
    return ReconciliationOrchestrator(
        records, finder, ledger_effects, scorer=MatchScorer(settings), settings=settings
    )


@pytest.fixture
def review(records, ledger_effects, settings):
    return ManualReviewService(
        records, ledger_effects, settings=settings, clock=lambda: T0 + timedelta(days=2)
    )


@pytest.fixture
def sales_service(settings_store, ledger_effects):
    return SaleCommissionService(
        InMemorySaleRepository(), settings_store, ledger_effects=ledger_effects
    )
