"""
Collaborator interfaces consumed by the engine.

The persistence engine, ledgers, audit storage and notification delivery
live outside the engine; these protocols are the narrow query primitives it
relies on.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..models import (
    CommissionSettings,
    RecordKind,
    RecordStatus,
    ReferenceRecord,
    ReferenceSource,
    Sale,
    UnverifiedRecord,
)


@dataclass(frozen=True)
class ReferenceQuery:
    """Filter predicate sent to a reference source."""
    user_id: str
    store_id: Optional[str]  # None when the source does not model stores
    min_amount: float
    max_amount: float
    start: datetime
    end: datetime

    def matches(self, record: ReferenceRecord) -> bool:
        """Reference predicate, for sources that filter in process."""
        if record.user_id != self.user_id:
            return False
        if self.store_id is not None and record.store_id != self.store_id:
            return False
        if not (self.min_amount - 1e-9 <= record.amount <= self.max_amount + 1e-9):
            return False
        return self.start <= record.occurred_at <= self.end


@runtime_checkable
class ReferenceRecordSource(Protocol):
    """One source of ground-truth records (purchase entries, online orders...)."""
    source_type: ReferenceSource
    models_store: bool

    async def find_candidates(self, query: ReferenceQuery) -> List[ReferenceRecord]:
        ...


class UnverifiedRecordRepository(Protocol):
    async def get(self, record_id: str) -> Optional[UnverifiedRecord]:
        ...

    async def save(self, record: UnverifiedRecord) -> None:
        ...

    async def list_pending(self, kind: RecordKind) -> List[UnverifiedRecord]:
        ...

    async def count_by_status(self, kind: RecordKind) -> Dict[RecordStatus, int]:
        ...

    async def try_claim(self, record_id: str) -> bool:
        """Atomically claim a provisional, unclaimed record for processing."""
        ...

    async def release(self, record_id: str) -> None:
        ...


class LoyaltyLedger(Protocol):
    """Append-only points and cashback ledgers."""

    async def record_points_earned(
        self, user_id: str, points: int, source: str, reference_id: str
    ) -> None:
        ...

    async def record_cashback_earned(
        self, user_id: str, amount: float, source: str, reference_id: str
    ) -> None:
        ...


class AuditSink(Protocol):
    async def record(self, action: str, entity_ref: str, metadata: Dict[str, Any]) -> None:
        ...


class NotificationSink(Protocol):
    async def notify(self, user_id: str, template: str, payload: Dict[str, Any]) -> None:
        ...


class SettingsBackend(Protocol):
    """Append-only storage of commission settings snapshots."""

    async def activate(self, settings: CommissionSettings) -> CommissionSettings:
        """Store a snapshot as the only active one, deactivating the previous."""
        ...

    async def latest_active(self) -> Optional[CommissionSettings]:
        ...

    async def latest_at(self, timestamp: datetime) -> Optional[CommissionSettings]:
        """Most recent snapshot with created_at <= timestamp."""
        ...

    async def history(self, limit: Optional[int] = None) -> List[CommissionSettings]:
        ...


class SaleRepository(Protocol):
    async def get(self, sale_id: str) -> Optional[Sale]:
        ...

    async def add_if_absent(self, sale: Sale) -> bool:
        """Atomically store a sale unless its id exists; True when stored."""
        ...
