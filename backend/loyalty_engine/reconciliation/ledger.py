"""
Ledger Side Effects.

Idempotent writer for everything a confirmed transaction triggers:
status transition of the unverified record, points and cashback ledger
entries, and the audit/notification events.

Reconciliation-path rewards use fixed constants (1 point per 10 currency
units, 2% cashback) rather than the tiered calculator: a reconciled
external record carries no loyalty tier context when it is matched.
"""

import asyncio
from typing import Callable, Optional

import structlog

from ..commission.calculator import CommissionCalculator
from ..commission.settings_store import SettingsVersionStore
from ..config import Settings, get_settings
from ..exceptions import TransientError, ValidationError
from ..models import (
    AuditAction,
    LedgerOutcome,
    LedgerSource,
    LoyaltyTier,
    NotificationTemplate,
    RecordKind,
    RecordStatus,
    ReferenceRecord,
    ReferenceSource,
    Sale,
    UnverifiedRecord,
)
from ..storage.base import LoyaltyLedger, UnverifiedRecordRepository
from ..utils.dates import utc_now
from ..utils.money import floor_points, round_money
from .events import EventDispatcher

logger = structlog.get_logger()


def entity_ref(record: UnverifiedRecord) -> str:
    return f"{record.kind.value}:{record.id}"


class LedgerSideEffects:
    """Finalizes matched records and credits rewards exactly once."""

    def __init__(
        self,
        records: UnverifiedRecordRepository,
        ledger: LoyaltyLedger,
        settings_store: SettingsVersionStore,
        events: Optional[EventDispatcher] = None,
        calculator: Optional[CommissionCalculator] = None,
        settings: Optional[Settings] = None,
        clock: Callable = utc_now,
    ):
        self.records = records
        self.ledger = ledger
        self.settings_store = settings_store
        self.settings = settings or get_settings()
        self.events = events or EventDispatcher(settings=self.settings)
        self.calculator = calculator or CommissionCalculator()
        self.clock = clock

    async def finalize(
        self,
        record: UnverifiedRecord,
        reference: Optional[ReferenceRecord],
        confidence: float,
        approved_by: Optional[str] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[ReferenceSource] = None,
    ) -> LedgerOutcome:
        """
        Mark a record FINAL and credit its points and cashback.

        Args:
            record: The unverified record being confirmed
            reference: Matched reference record (None for a manual approval
                without a linked purchase)
            confidence: Match confidence stored on the record
            approved_by: Manager id for manual approvals
            reference_id: Linked reference id when no reference record is given
            reference_type: Linked reference source when no reference record is given

        Returns:
            LedgerOutcome; credited is False when rewards were already granted
        """
        if record.status == RecordStatus.REJECTED:
            raise ValidationError(
                "Rejected records cannot be finalized",
                {"record_id": record.id},
            )

        if reference is not None:
            reference_id = reference.id
            reference_type = reference.source

        matched_at = self.clock()

        if record.is_fully_credited:
            # Already credited: only correct status/link, never re-credit
            if record.status != RecordStatus.FINAL or not record.reconciliation.is_linked:
                record.mark_final(reference_id, reference_type, confidence, matched_at)
                await self.records.save(record)
                logger.info(
                    "Status corrected on already credited record",
                    record_id=record.id,
                )
            return LedgerOutcome(
                points_awarded=record.points_awarded,
                cashback_awarded=record.cashback_awarded,
                commission_awarded=record.commission_awarded,
                credited=False,
            )

        if record.has_rewards:
            # An earlier attempt stopped before every ledger line was written
            points = record.points_awarded
            cashback = record.cashback_awarded
            commission = record.commission_awarded
            logger.info(
                "Resuming interrupted crediting",
                record_id=record.id,
                points_posted=record.points_posted,
                cashback_posted=record.cashback_posted,
            )
        else:
            points = floor_points(record.amount, self.settings.points_per_currency_unit)
            cashback = round_money(record.amount * self.settings.reconciliation_cashback_rate)
            commission = 0.0
            if record.kind == RecordKind.BILLING_INVOICE:
                commission = await self._invoice_commission(record)
            record.award(points, cashback, commission)
            await self.records.save(record)

        # The record stays provisional until every line is written, so a
        # failed write is picked up again by the next reconciliation run
        source = self._ledger_source(record, manual=approved_by is not None)
        await self._post_ledger(record, source)

        record.mark_final(reference_id, reference_type, confidence, matched_at)
        if approved_by:
            record.processed_by = approved_by
        await self.records.save(record)

        self._emit(record, reference_id, reference_type, confidence, approved_by)

        logger.info(
            "Record finalized",
            record_id=record.id,
            kind=record.kind.value,
            reference_id=reference_id,
            confidence=confidence,
            points=points,
            cashback=cashback,
        )

        return LedgerOutcome(
            points_awarded=points,
            cashback_awarded=cashback,
            commission_awarded=commission,
            credited=True,
        )

    async def credit_sale(self, sale: Sale) -> None:
        """Ledger side effects of a newly created sale."""
        if sale.cashback_earned > 0:
            await self._bounded(
                self.ledger.record_cashback_earned(
                    sale.user_id, sale.cashback_earned, LedgerSource.SALE.value, sale.id
                ),
                "cashback",
            )

        commission = sale.commission
        self.events.audit(
            AuditAction.SALE_CREATED,
            f"sale:{sale.id}",
            {
                "user_id": sale.user_id,
                "amount": sale.amount,
                "liters": sale.liters,
                "tier": sale.tier,
                "commission": commission.amount if commission else 0.0,
                "commission_rate": commission.rate if commission else 0.0,
                "settings_snapshot_id": commission.settings_snapshot_id if commission else None,
                "cashback_earned": sale.cashback_earned,
            },
        )

    async def _invoice_commission(self, record: UnverifiedRecord) -> float:
        """Commission on a billing invoice, lead tier, settings at invoice creation."""
        snapshot = await self.settings_store.at_time(record.created_at)
        result = self.calculator.calculate(record.amount, 0, LoyaltyTier.LEAD, snapshot)
        return result.commission_amount

    def _ledger_source(self, record: UnverifiedRecord, manual: bool) -> LedgerSource:
        if record.kind == RecordKind.BILLING_INVOICE:
            return LedgerSource.BILLING_INVOICE_RECONCILED
        if manual:
            return LedgerSource.RECEIPT_SCAN
        return LedgerSource.RECEIPT_SCAN_RECONCILED

    async def _post_ledger(self, record: UnverifiedRecord, source: LedgerSource) -> None:
        """Write the ledger lines not yet written, saving progress after each."""
        if not record.points_posted:
            if record.points_awarded > 0:
                await self._bounded(
                    self.ledger.record_points_earned(
                        record.user_id, record.points_awarded, source.value, record.id
                    ),
                    "points",
                )
            record.points_posted = True
            await self.records.save(record)

        if not record.cashback_posted:
            if record.cashback_awarded > 0:
                await self._bounded(
                    self.ledger.record_cashback_earned(
                        record.user_id, record.cashback_awarded, source.value, record.id
                    ),
                    "cashback",
                )
            record.cashback_posted = True
            await self.records.save(record)

    async def _bounded(self, awaitable, ledger_name: str) -> None:
        try:
            await asyncio.wait_for(
                awaitable, timeout=self.settings.side_effect_timeout_seconds
            )
        except asyncio.TimeoutError:
            raise TransientError(
                f"{ledger_name} ledger write timed out",
                {"ledger": ledger_name},
            )

    def _emit(
        self,
        record: UnverifiedRecord,
        reference_id: Optional[str],
        reference_type: Optional[ReferenceSource],
        confidence: float,
        approved_by: Optional[str],
    ) -> None:
        metadata = {
            "user_id": record.user_id,
            "match_type": reference_type.value if reference_type else None,
            "match_id": reference_id,
            "confidence": confidence,
            "points_awarded": record.points_awarded,
            "cashback_awarded": record.cashback_awarded,
        }
        if approved_by:
            metadata["actor"] = approved_by
            action = AuditAction.SCAN_UPLOAD_APPROVE
            template = NotificationTemplate.RECEIPT_APPROVED
        else:
            action = AuditAction.AUTOMATIC_RECONCILIATION
            template = NotificationTemplate.RECEIPT_RECONCILED

        self.events.audit(action, entity_ref(record), metadata)

        if record.kind == RecordKind.SCAN_UPLOAD:
            self.events.notify(
                record.user_id,
                template,
                {
                    "record_id": record.id,
                    "invoice_number": record.invoice_number,
                    "amount": record.amount,
                    "points": record.points_awarded,
                    "cashback": record.cashback_awarded,
                },
            )
