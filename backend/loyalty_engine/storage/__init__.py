"""Collaborator interfaces and their in-memory implementations."""

from .base import (
    ReferenceQuery,
    ReferenceRecordSource,
    UnverifiedRecordRepository,
    LoyaltyLedger,
    AuditSink,
    NotificationSink,
    SettingsBackend,
    SaleRepository,
)
from .memory import (
    InMemoryReferenceSource,
    InMemoryUnverifiedRecordRepository,
    UnverifiedRecordReferenceSource,
    InMemoryLedger,
    InMemorySettingsBackend,
    InMemorySaleRepository,
    InMemoryNotificationSink,
    LedgerEntry,
)

__all__ = [
    "ReferenceQuery",
    "ReferenceRecordSource",
    "UnverifiedRecordRepository",
    "LoyaltyLedger",
    "AuditSink",
    "NotificationSink",
    "SettingsBackend",
    "SaleRepository",
    "InMemoryReferenceSource",
    "InMemoryUnverifiedRecordRepository",
    "UnverifiedRecordReferenceSource",
    "InMemoryLedger",
    "InMemorySettingsBackend",
    "InMemorySaleRepository",
    "InMemoryNotificationSink",
    "LedgerEntry",
]
