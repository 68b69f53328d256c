"""
Reconciliation Orchestrator - Main per-record workflow coordinator.

For every pending unverified record:
1. Claim the record (atomic, so concurrent workers never double-process)
2. Query candidates from every configured reference source
3. Score candidates, keep the best per source, then the global best
   (confidence first, explicit source priority on ties)
4. Finalize through the ledger when confidence clears the threshold,
   otherwise leave the record provisional and report no_match
5. Capture any failure as a per-record error; the batch continues
"""

import asyncio
from typing import Iterable, List, Optional

import structlog

from ..config import Settings, get_settings
from ..exceptions import ConfigurationError, EngineError
from ..models import (
    AuditAction,
    BatchResult,
    MatchCandidate,
    OutcomeStatus,
    RecordKind,
    RecordResult,
    ReferenceSource,
    UnverifiedRecord,
)
from ..storage.base import UnverifiedRecordRepository
from ..utils.dates import utc_now
from .candidate_finder import CandidateFinder
from .ledger import LedgerSideEffects
from .scorer import MatchScorer

logger = structlog.get_logger()


class ReconciliationOrchestrator:
    """
    Drives reconciliation of unverified records.

    Records are processed concurrently (bounded by max_concurrent_records);
    each record is processed sequentially internally.
    """

    def __init__(
        self,
        records: UnverifiedRecordRepository,
        finder: CandidateFinder,
        ledger: LedgerSideEffects,
        scorer: Optional[MatchScorer] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.records = records
        self.finder = finder
        self.ledger = ledger
        self.scorer = scorer or MatchScorer(self.settings)
        self.threshold = self.settings.match_threshold
        self.source_rank = self.settings.source_rank()

    async def reconcile_all(self) -> BatchResult:
        """Reconcile pending scan uploads, then pending billing invoices."""
        result = await self.reconcile_pending(RecordKind.SCAN_UPLOAD)
        invoices = await self.reconcile_pending(RecordKind.BILLING_INVOICE)
        result.extend(invoices)
        result.completed_at = invoices.completed_at
        return result

    async def reconcile_pending(self, kind: RecordKind) -> BatchResult:
        """Reconcile every pending record of one kind."""
        pending = await self.records.list_pending(kind)
        logger.info("Pending records loaded", kind=kind.value, count=len(pending))
        return await self.reconcile_batch(pending)

    async def reconcile_batch(self, records: Iterable[UnverifiedRecord]) -> BatchResult:
        """
        Reconcile a batch of records concurrently.

        Results keep the input order. Cancelling the batch leaves untouched
        records unchanged; records already finalized stay finalized.
        """
        records = list(records)
        batch = BatchResult()
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_records))

        logger.info("Starting reconciliation batch", batch_id=batch.batch_id, records=len(records))

        async def worker(record: UnverifiedRecord) -> RecordResult:
            async with semaphore:
                return await self.reconcile_record(record)

        batch.results = list(await asyncio.gather(*(worker(r) for r in records)))
        batch.completed_at = utc_now()

        self.ledger.events.audit(
            AuditAction.RECONCILIATION_RUN,
            f"batch:{batch.batch_id}",
            batch.summary(),
        )
        logger.info("Reconciliation batch complete", **batch.summary())
        return batch

    async def reconcile_record(self, record: UnverifiedRecord) -> RecordResult:
        """
        Reconcile one record. Never raises for data or collaborator
        failures; they are reported as an ERROR result.
        """
        if not record.is_provisional:
            return self._skipped(record, f"Record is {record.status.value}")

        claimed = False
        try:
            claimed = await self.records.try_claim(record.id)
            # Re-read: another worker may have finished or still hold it
            current = await self.records.get(record.id)
            if current is None or not current.is_provisional:
                status = current.status.value if current else "missing"
                return self._skipped(record, f"Record is {status}")
            if not claimed:
                return self._skipped(record, "Record is being processed elsewhere")
            return await self._process(current)

        except ConfigurationError as e:
            logger.critical(
                "Commission configuration error during reconciliation",
                record_id=record.id,
                error=e.message,
            )
            return self._error(record, e.message)
        except EngineError as e:
            logger.error(
                "Reconciliation failed for record",
                record_id=record.id,
                error_type=type(e).__name__,
                error=e.message,
            )
            return self._error(record, e.message)
        except Exception as e:
            logger.exception("Unexpected reconciliation error", record_id=record.id)
            return self._error(record, str(e) or type(e).__name__)
        finally:
            if claimed:
                await self.records.release(record.id)

    async def _process(self, record: UnverifiedRecord) -> RecordResult:
        record.validate()

        per_source = await self.finder.find_all(record)
        best = self.select_best(
            [
                self.scorer.best_candidate(references, record)
                for references in per_source.values()
            ]
        )
        confidence = best.confidence if best else 0.0

        if best is None or confidence < self.threshold:
            logger.info(
                "No confident match",
                record_id=record.id,
                confidence=confidence,
                threshold=self.threshold,
            )
            return RecordResult(
                record_id=record.id,
                kind=record.kind,
                status=OutcomeStatus.NO_MATCH,
                confidence=confidence,
                message="No confident match found",
            )

        # Once crediting starts it runs to completion, even if the batch is cancelled
        finalize = asyncio.ensure_future(
            self.ledger.finalize(record, best.reference, confidence)
        )
        try:
            outcome = await asyncio.shield(finalize)
        except asyncio.CancelledError:
            await finalize
            raise

        return RecordResult(
            record_id=record.id,
            kind=record.kind,
            status=OutcomeStatus.RECONCILED,
            confidence=confidence,
            match_type=best.reference_type,
            match_id=best.reference_id,
            points_awarded=outcome.points_awarded,
            cashback_awarded=outcome.cashback_awarded,
        )

    def select_best(
        self,
        candidates: List[Optional[MatchCandidate]],
    ) -> Optional[MatchCandidate]:
        """Global best: highest confidence, then lowest source rank."""
        valid = [c for c in candidates if c is not None]
        if not valid:
            return None
        return min(
            valid,
            key=lambda c: (-c.confidence, self._rank(c.reference_type)),
        )

    def _rank(self, source: ReferenceSource) -> int:
        return self.source_rank.get(source.value, len(self.source_rank))

    def _skipped(self, record: UnverifiedRecord, message: str) -> RecordResult:
        logger.debug("Record skipped", record_id=record.id, reason=message)
        return RecordResult(
            record_id=record.id,
            kind=record.kind,
            status=OutcomeStatus.SKIPPED,
            message=message,
        )

    def _error(self, record: UnverifiedRecord, message: str) -> RecordResult:
        return RecordResult(
            record_id=record.id,
            kind=record.kind,
            status=OutcomeStatus.ERROR,
            error=message,
        )
