"""
In-memory implementations of the collaborator interfaces.

Documents are deep-copied on the way in and out so callers observe the same
isolation a document store gives them.
"""

import asyncio
import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from ..models import (
    CommissionSettings,
    NotificationMessage,
    RecordKind,
    RecordStatus,
    ReferenceRecord,
    ReferenceSource,
    Sale,
    UnverifiedRecord,
)
from ..utils.dates import ensure_utc, utc_now
from .base import ReferenceQuery

logger = structlog.get_logger()


class InMemoryReferenceSource:
    """Reference source backed by a list, in insertion order."""

    def __init__(
        self,
        source_type: ReferenceSource,
        records: Optional[Iterable[ReferenceRecord]] = None,
        models_store: bool = True,
    ):
        self.source_type = source_type
        self.models_store = models_store
        self._records: List[ReferenceRecord] = list(records or [])

    def add(self, record: ReferenceRecord) -> None:
        self._records.append(record)

    async def find_candidates(self, query: ReferenceQuery) -> List[ReferenceRecord]:
        return [r for r in self._records if query.matches(r)]


class InMemoryUnverifiedRecordRepository:
    """Scan uploads and billing invoices, with an atomic processing claim."""

    def __init__(self, records: Optional[Iterable[UnverifiedRecord]] = None):
        self._records: Dict[str, UnverifiedRecord] = {}
        self._claimed: Set[str] = set()
        self._lock = asyncio.Lock()
        for record in records or []:
            self.add(record)

    def add(self, record: UnverifiedRecord) -> None:
        self._records[record.id] = copy.deepcopy(record)

    def all(self, kind: Optional[RecordKind] = None) -> List[UnverifiedRecord]:
        return [
            copy.deepcopy(r) for r in self._records.values()
            if kind is None or r.kind == kind
        ]

    async def get(self, record_id: str) -> Optional[UnverifiedRecord]:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record else None

    async def save(self, record: UnverifiedRecord) -> None:
        self._records[record.id] = copy.deepcopy(record)

    async def list_pending(self, kind: RecordKind) -> List[UnverifiedRecord]:
        pending = [
            r for r in self._records.values()
            if r.kind == kind
            and r.status == RecordStatus.PROVISIONAL
            and not r.reconciliation.is_linked
        ]
        pending.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in pending]

    async def count_by_status(self, kind: RecordKind) -> Dict[RecordStatus, int]:
        counts = {status: 0 for status in RecordStatus}
        for record in self._records.values():
            if record.kind == kind:
                counts[record.status] += 1
        return counts

    async def try_claim(self, record_id: str) -> bool:
        async with self._lock:
            record = self._records.get(record_id)
            if record is None or record.status != RecordStatus.PROVISIONAL:
                return False
            if record_id in self._claimed:
                return False
            self._claimed.add(record_id)
            return True

    async def release(self, record_id: str) -> None:
        async with self._lock:
            self._claimed.discard(record_id)

    def is_claimed(self, record_id: str) -> bool:
        return record_id in self._claimed


class UnverifiedRecordReferenceSource:
    """
    Exposes stored scan uploads (or billing invoices) as a reference source,
    for symmetric reconciliation between the two kinds. Rejected records
    never qualify.
    """

    def __init__(
        self,
        repository: InMemoryUnverifiedRecordRepository,
        kind: RecordKind,
    ):
        self.repository = repository
        self.kind = kind
        self.source_type = ReferenceSource(kind.value)
        self.models_store = True

    async def find_candidates(self, query: ReferenceQuery) -> List[ReferenceRecord]:
        found = []
        for record in self.repository.all(self.kind):
            if record.status == RecordStatus.REJECTED:
                continue
            reference = ReferenceRecord(
                id=record.id,
                source=self.source_type,
                user_id=record.user_id,
                store_id=record.store_id,
                amount=record.amount,
                occurred_at=record.occurred_at,
            )
            if query.matches(reference):
                found.append(reference)
        return found


@dataclass
class LedgerEntry:
    """One append-only points or cashback ledger line."""
    user_id: str
    value: float
    source: str
    reference_id: str
    type: str = "earned"
    created_at: datetime = field(default_factory=utc_now)


class InMemoryLedger:
    """Points and cashback ledgers."""

    def __init__(self):
        self.points: List[LedgerEntry] = []
        self.cashback: List[LedgerEntry] = []

    async def record_points_earned(
        self, user_id: str, points: int, source: str, reference_id: str
    ) -> None:
        self.points.append(LedgerEntry(user_id, points, source, reference_id))

    async def record_cashback_earned(
        self, user_id: str, amount: float, source: str, reference_id: str
    ) -> None:
        self.cashback.append(LedgerEntry(user_id, amount, source, reference_id))

    def points_balance(self, user_id: str) -> int:
        return int(sum(e.value for e in self.points if e.user_id == user_id))

    def cashback_balance(self, user_id: str) -> float:
        return round(sum(e.value for e in self.cashback if e.user_id == user_id), 2)


class InMemorySettingsBackend:
    """Append-only commission settings history with a single active snapshot."""

    def __init__(self):
        self._snapshots: List[CommissionSettings] = []
        self._lock = asyncio.Lock()

    async def activate(self, settings: CommissionSettings) -> CommissionSettings:
        async with self._lock:
            self._snapshots = [
                replace(s, is_active=False) if s.is_active else s
                for s in self._snapshots
            ]
            created_at = ensure_utc(settings.created_at) if settings.created_at else utc_now()
            stored = replace(settings, is_active=True, created_at=created_at)
            self._snapshots.append(stored)
            return stored

    async def latest_active(self) -> Optional[CommissionSettings]:
        active = [s for s in self._snapshots if s.is_active]
        return active[-1] if active else None

    async def latest_at(self, timestamp: datetime) -> Optional[CommissionSettings]:
        timestamp = ensure_utc(timestamp)
        eligible = [s for s in self._snapshots if s.created_at <= timestamp]
        if not eligible:
            return None
        # max() keeps the first maximum; later appends win equal timestamps
        return max(reversed(eligible), key=lambda s: s.created_at)

    async def history(self, limit: Optional[int] = None) -> List[CommissionSettings]:
        ordered = sorted(
            reversed(self._snapshots), key=lambda s: s.created_at, reverse=True
        )
        return ordered[:limit] if limit is not None else ordered


class InMemorySaleRepository:
    def __init__(self):
        self._sales: Dict[str, Sale] = {}
        self._lock = asyncio.Lock()

    async def get(self, sale_id: str) -> Optional[Sale]:
        sale = self._sales.get(sale_id)
        return copy.deepcopy(sale) if sale else None

    async def add_if_absent(self, sale: Sale) -> bool:
        async with self._lock:
            if sale.id in self._sales:
                return False
            self._sales[sale.id] = copy.deepcopy(sale)
            return True


class InMemoryNotificationSink:
    """Collects notifications instead of delivering them."""

    def __init__(self):
        self.messages: List[NotificationMessage] = []

    async def notify(self, user_id: str, template: str, payload: Dict[str, Any]) -> None:
        self.messages.append(NotificationMessage(user_id, template, dict(payload)))
        logger.debug("Notification queued", user_id=user_id, template=template)
