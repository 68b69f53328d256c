"""Manual review of unverified records: approve, reject, statistics."""

from typing import Callable, Optional

import structlog

from ..config import Settings, get_settings
from ..exceptions import NotFoundError, ValidationError
from ..models import (
    AuditAction,
    LedgerOutcome,
    NotificationTemplate,
    RecordKind,
    RecordStatus,
    ReconciliationStats,
    ReferenceSource,
    UnverifiedRecord,
)
from ..storage.base import UnverifiedRecordRepository
from ..utils.dates import utc_now
from .ledger import LedgerSideEffects, entity_ref

logger = structlog.get_logger()

DEFAULT_REJECTION_REASON = "Rejected by manager"


class ManualReviewService:
    """Manager actions on provisional records."""

    def __init__(
        self,
        records: UnverifiedRecordRepository,
        ledger: LedgerSideEffects,
        settings: Optional[Settings] = None,
        clock: Callable = utc_now,
    ):
        self.records = records
        self.ledger = ledger
        self.settings = settings or get_settings()
        self.clock = clock

    async def approve(
        self,
        record_id: str,
        actor: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[ReferenceSource] = None,
    ) -> LedgerOutcome:
        """Approve a provisional record and credit it."""
        record = await self._load_provisional(record_id)
        if not await self.records.try_claim(record_id):
            raise ValidationError(
                "Record is being reconciled, retry later",
                {"record_id": record_id},
            )
        try:
            outcome = await self.ledger.finalize(
                record,
                None,
                self.settings.manual_approval_confidence,
                approved_by=actor,
                reference_id=reference_id,
                reference_type=reference_type,
            )
        finally:
            await self.records.release(record_id)

        logger.info("Record approved", record_id=record_id, actor=actor)
        return outcome

    async def reject(
        self,
        record_id: str,
        actor: str,
        reason: Optional[str] = None,
    ) -> UnverifiedRecord:
        """Reject a provisional record; it is never credited."""
        record = await self._load_provisional(record_id)
        if record.has_rewards:
            raise ValidationError(
                "Crediting already started for this record; approve it to complete",
                {"record_id": record_id},
            )
        if not await self.records.try_claim(record_id):
            raise ValidationError(
                "Record is being reconciled, retry later",
                {"record_id": record_id},
            )
        reason = reason or DEFAULT_REJECTION_REASON
        try:
            record.mark_rejected(reason, actor, self.clock())
            await self.records.save(record)
        finally:
            await self.records.release(record_id)

        events = self.ledger.events
        events.audit(
            AuditAction.SCAN_UPLOAD_REJECT,
            entity_ref(record),
            {"actor": actor, "reason": reason, "user_id": record.user_id},
        )
        if record.kind == RecordKind.SCAN_UPLOAD:
            events.notify(
                record.user_id,
                NotificationTemplate.RECEIPT_REJECTED,
                {"record_id": record.id, "reason": reason, "amount": record.amount},
            )

        logger.info("Record rejected", record_id=record_id, actor=actor, reason=reason)
        return record

    async def stats(self) -> ReconciliationStats:
        scans = await self.records.count_by_status(RecordKind.SCAN_UPLOAD)
        invoices = await self.records.count_by_status(RecordKind.BILLING_INVOICE)
        return ReconciliationStats(
            pending_scan_uploads=scans.get(RecordStatus.PROVISIONAL, 0),
            reconciled_scan_uploads=scans.get(RecordStatus.FINAL, 0),
            rejected_scan_uploads=scans.get(RecordStatus.REJECTED, 0),
            unreconciled_billing_invoices=invoices.get(RecordStatus.PROVISIONAL, 0),
        )

    async def _load_provisional(self, record_id: str) -> UnverifiedRecord:
        record = await self.records.get(record_id)
        if record is None:
            raise NotFoundError(f"Record {record_id} not found", {"record_id": record_id})
        if not record.is_provisional:
            raise ValidationError(
                f"Only provisional records can be reviewed (status={record.status.value})",
                {"record_id": record_id},
            )
        return record
