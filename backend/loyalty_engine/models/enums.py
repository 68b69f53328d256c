"""Enumerations for the reconciliation and commission engine."""

from enum import Enum
from typing import Optional, Union


class RecordKind(str, Enum):
    """Kind of unverified proof-of-purchase."""
    SCAN_UPLOAD = "scan_upload"          # Receipt scanned by the customer (OCR)
    BILLING_INVOICE = "billing_invoice"  # Invoice synced from the billing company


class RecordStatus(str, Enum):
    """
    Lifecycle status of an unverified record.

    PROVISIONAL: Awaiting reconciliation or manual review
    FINAL: Matched (automatically or manually) and credited
    REJECTED: Rejected by a manager, never credited
    """
    PROVISIONAL = "provisional"
    FINAL = "final"
    REJECTED = "rejected"


class ReferenceSource(str, Enum):
    """Source of the records an unverified record is matched against."""
    PURCHASE_ENTRY = "purchase_entry"    # Internal purchase entry
    ONLINE_PURCHASE = "online_purchase"  # Online order
    SCAN_UPLOAD = "scan_upload"          # Scan upload, when reconciling an invoice
    BILLING_INVOICE = "billing_invoice"  # Billing invoice, when reconciling a scan


class OutcomeStatus(str, Enum):
    """Outcome reported for one record of a reconciliation batch."""
    RECONCILED = "reconciled"
    NO_MATCH = "no_match"
    ERROR = "error"
    SKIPPED = "skipped"


class LoyaltyTier(str, Enum):
    """Loyalty level used to scale commission and cashback."""
    LEAD = "lead"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"

    @classmethod
    def parse(cls, value: Union["LoyaltyTier", str, None]) -> Optional["LoyaltyTier"]:
        """Return the tier for a value, or None when it names no known tier."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class PayoutFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class LedgerSource(str, Enum):
    """Source tag written on points/cashback ledger entries."""
    RECEIPT_SCAN_RECONCILED = "receipt_scan_reconciled"
    BILLING_INVOICE_RECONCILED = "billing_invoice_reconciled"
    RECEIPT_SCAN = "receipt_scan"  # Manual approval
    SALE = "sale"


class AuditAction(str, Enum):
    """Type of audit action."""
    AUTOMATIC_RECONCILIATION = "automatic_reconciliation"
    RECONCILIATION_RUN = "reconciliation_run"
    SCAN_UPLOAD_APPROVE = "scan_upload_approve"
    SCAN_UPLOAD_REJECT = "scan_upload_reject"
    SALE_CREATED = "sale_created"
    SETTINGS_CREATED = "commission_settings_created"


class NotificationTemplate(str, Enum):
    RECEIPT_RECONCILED = "receipt_reconciled"
    RECEIPT_APPROVED = "receipt_approved"
    RECEIPT_REJECTED = "receipt_rejected"
