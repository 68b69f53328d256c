"""Record models for reconciliation: unverified records, reference records, candidates."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any
from uuid import uuid4

from ..exceptions import ValidationError
from ..utils.dates import ensure_utc, utc_now
from ..utils.money import is_number
from .enums import RecordKind, RecordStatus, ReferenceSource


@dataclass
class ReconciliationData:
    """Link between an unverified record and the reference record it matched."""
    matched_reference_id: Optional[str] = None
    matched_reference_type: Optional[ReferenceSource] = None
    matched_at: Optional[datetime] = None
    confidence: Optional[float] = None

    @property
    def is_linked(self) -> bool:
        return self.matched_reference_id is not None


@dataclass
class UnverifiedRecord:
    """
    Proof-of-purchase not yet linked to an internal transaction.

    Either a scanned receipt (OCR upload) or a third-party billing invoice.
    Status only moves provisional -> final or provisional -> rejected.
    """
    # Identity
    id: str = field(default_factory=lambda: str(uuid4()))
    kind: RecordKind = RecordKind.SCAN_UPLOAD

    # Ownership
    user_id: str = ""
    store_id: Optional[str] = None
    invoice_number: str = ""

    # Financial data
    amount: float = 0.0
    occurred_at: datetime = field(default_factory=utc_now)

    # Reconciliation state
    status: RecordStatus = RecordStatus.PROVISIONAL
    reconciliation: ReconciliationData = field(default_factory=ReconciliationData)

    # Rewards
    points_awarded: int = 0
    cashback_awarded: float = 0.0
    commission_awarded: float = 0.0
    # Ledger lines already written for the awards above
    points_posted: bool = False
    cashback_posted: bool = False

    # Manual review
    rejection_reason: str = ""
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None

    # Audit
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if isinstance(self.occurred_at, datetime):
            self.occurred_at = ensure_utc(self.occurred_at)
        if isinstance(self.created_at, datetime):
            self.created_at = ensure_utc(self.created_at)

    @property
    def is_provisional(self) -> bool:
        return self.status == RecordStatus.PROVISIONAL

    @property
    def has_rewards(self) -> bool:
        """Rewards computed and stored on the record."""
        return self.points_awarded != 0 or self.cashback_awarded != 0

    @property
    def is_fully_credited(self) -> bool:
        """Every ledger line for the awards has been written."""
        return self.points_posted and self.cashback_posted

    def validate(self) -> None:
        """Raise ValidationError when the record cannot be matched."""
        if not self.user_id:
            raise ValidationError("Record has no user", {"record_id": self.id})
        if not is_number(self.amount) or self.amount < 0:
            raise ValidationError(
                f"Invalid amount: {self.amount!r}",
                {"record_id": self.id},
            )
        if not isinstance(self.occurred_at, datetime):
            raise ValidationError(
                f"Invalid date: {self.occurred_at!r}",
                {"record_id": self.id},
            )

    def mark_final(
        self,
        reference_id: Optional[str],
        reference_type: Optional[ReferenceSource],
        confidence: float,
        matched_at: datetime,
    ) -> None:
        """Link the record to its reference and move it to FINAL."""
        if self.status == RecordStatus.REJECTED:
            raise ValidationError(
                "Rejected records cannot be finalized",
                {"record_id": self.id},
            )
        self.status = RecordStatus.FINAL
        self.reconciliation = ReconciliationData(
            matched_reference_id=reference_id,
            matched_reference_type=reference_type,
            matched_at=matched_at,
            confidence=confidence,
        )
        self.processed_at = matched_at

    def mark_rejected(self, reason: str, processed_by: Optional[str], at: datetime) -> None:
        if self.status != RecordStatus.PROVISIONAL:
            raise ValidationError(
                f"Only provisional records can be rejected (status={self.status.value})",
                {"record_id": self.id},
            )
        self.status = RecordStatus.REJECTED
        self.rejection_reason = reason
        self.processed_by = processed_by
        self.processed_at = at

    def award(self, points: int, cashback: float, commission: float = 0.0) -> None:
        self.points_awarded = points
        self.cashback_awarded = cashback
        self.commission_awarded = commission

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        rec = self.reconciliation
        return {
            "id": self.id,
            "kind": self.kind.value,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "invoice_number": self.invoice_number,
            "amount": self.amount,
            "occurred_at": self.occurred_at.isoformat(),
            "status": self.status.value,
            "reconciliation": {
                "matched_reference_id": rec.matched_reference_id,
                "matched_reference_type": (
                    rec.matched_reference_type.value if rec.matched_reference_type else None
                ),
                "matched_at": rec.matched_at.isoformat() if rec.matched_at else None,
                "confidence": rec.confidence,
            },
            "points_awarded": self.points_awarded,
            "cashback_awarded": self.cashback_awarded,
            "commission_awarded": self.commission_awarded,
            "points_posted": self.points_posted,
            "cashback_posted": self.cashback_posted,
            "rejection_reason": self.rejection_reason,
        }


@dataclass(frozen=True)
class ReferenceRecord:
    """
    Ground-truth purchase record (internal purchase entry, online order, or
    another proof-of-purchase when reconciling symmetrically). Read-only.
    """
    id: str
    source: ReferenceSource
    user_id: str
    amount: float
    occurred_at: datetime
    store_id: Optional[str] = None

    def __post_init__(self):
        # frozen: bypass __setattr__ to normalize the timezone
        object.__setattr__(self, "occurred_at", ensure_utc(self.occurred_at))


@dataclass
class MatchCandidate:
    """
    A scored (reference, unverified record) pair.
    Produced and discarded within one reconciliation pass.
    """
    reference_type: ReferenceSource
    reference_id: str
    amount_delta: float  # reference.amount - record.amount
    time_delta: float    # milliseconds, reference - record
    confidence: float
    reference: Optional[ReferenceRecord] = None
