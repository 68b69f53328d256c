"""Reconciliation result models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from ..utils.dates import utc_now
from .enums import AuditAction, OutcomeStatus, RecordKind, ReferenceSource


@dataclass
class LedgerOutcome:
    """Rewards attached to a finalized record."""
    points_awarded: int = 0
    cashback_awarded: float = 0.0
    commission_awarded: float = 0.0
    credited: bool = False  # False when an earlier call already credited


@dataclass
class RecordResult:
    """Outcome of reconciling a single unverified record."""
    record_id: str
    kind: RecordKind
    status: OutcomeStatus
    confidence: float = 0.0

    # Match (RECONCILED only)
    match_type: Optional[ReferenceSource] = None
    match_id: Optional[str] = None
    points_awarded: int = 0
    cashback_awarded: float = 0.0

    # NO_MATCH / SKIPPED / ERROR
    message: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "confidence": self.confidence,
            "match_type": self.match_type.value if self.match_type else None,
            "match_id": self.match_id,
            "points_awarded": self.points_awarded,
            "cashback_awarded": self.cashback_awarded,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class BatchResult:
    """Complete result of a reconciliation batch."""
    batch_id: str = field(default_factory=lambda: str(uuid4()))
    results: List[RecordResult] = field(default_factory=list)

    # Timing
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def processed(self) -> int:
        return len(self.results)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def reconciled(self) -> int:
        return self._count(OutcomeStatus.RECONCILED)

    @property
    def no_match(self) -> int:
        return self._count(OutcomeStatus.NO_MATCH)

    @property
    def errors(self) -> int:
        return self._count(OutcomeStatus.ERROR)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    def by_record(self) -> Dict[str, RecordResult]:
        return {r.record_id: r for r in self.results}

    def extend(self, other: "BatchResult") -> None:
        self.results.extend(other.results)

    def summary(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "processed": self.processed,
            "reconciled": self.reconciled,
            "no_match": self.no_match,
            "errors": self.errors,
            "skipped": self.skipped,
        }


@dataclass
class ReconciliationStats:
    """Counts of records per reconciliation state."""
    pending_scan_uploads: int = 0
    reconciled_scan_uploads: int = 0
    rejected_scan_uploads: int = 0
    unreconciled_billing_invoices: int = 0


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)

    action: str = AuditAction.AUTOMATIC_RECONCILIATION.value
    entity_ref: str = ""  # "<kind>:<id>"
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationMessage:
    """A notification handed to the notification sink."""
    user_id: str
    template: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
