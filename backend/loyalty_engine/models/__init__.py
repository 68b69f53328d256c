"""Data models for the reconciliation and commission engine."""

from .enums import (
    RecordKind,
    RecordStatus,
    ReferenceSource,
    OutcomeStatus,
    LoyaltyTier,
    PayoutFrequency,
    LedgerSource,
    AuditAction,
    NotificationTemplate,
)
from .records import (
    ReconciliationData,
    UnverifiedRecord,
    ReferenceRecord,
    MatchCandidate,
)
from .commission import (
    TierMultipliers,
    CommissionSettings,
    CommissionResult,
    CommissionSnapshot,
    Sale,
    DEFAULT_COMMISSION_SETTINGS,
    DEFAULT_SETTINGS_ID,
)
from .results import (
    LedgerOutcome,
    RecordResult,
    BatchResult,
    ReconciliationStats,
    AuditEntry,
    NotificationMessage,
)

__all__ = [
    # Enums
    "RecordKind",
    "RecordStatus",
    "ReferenceSource",
    "OutcomeStatus",
    "LoyaltyTier",
    "PayoutFrequency",
    "LedgerSource",
    "AuditAction",
    "NotificationTemplate",
    # Records
    "ReconciliationData",
    "UnverifiedRecord",
    "ReferenceRecord",
    "MatchCandidate",
    # Commission
    "TierMultipliers",
    "CommissionSettings",
    "CommissionResult",
    "CommissionSnapshot",
    "Sale",
    "DEFAULT_COMMISSION_SETTINGS",
    "DEFAULT_SETTINGS_ID",
    # Results
    "LedgerOutcome",
    "RecordResult",
    "BatchResult",
    "ReconciliationStats",
    "AuditEntry",
    "NotificationMessage",
]
