"""
Tests for the reconciliation orchestrator.
"""

import asyncio
from datetime import timedelta

import pytest

from loyalty_engine.models import (
    MatchCandidate,
    OutcomeStatus,
    RecordKind,
    RecordStatus,
    ReferenceSource,
)
from loyalty_engine.reconciliation import (
    CandidateFinder,
    LedgerSideEffects,
    ReconciliationOrchestrator,
)
from loyalty_engine.storage import InMemoryLedger, InMemoryReferenceSource

from conftest import (
    T0,
    FailingSource,
    FlakyCashbackLedger,
    SlowSource,
    StaticSource,
    make_record,
    make_reference,
)


def build_orchestrator(records, ledger_effects, settings, sources):
    finder = CandidateFinder(sources, settings=settings)
    return ReconciliationOrchestrator(records, finder, ledger_effects, settings=settings)


class SlowLedger(InMemoryLedger):
    """Ledger whose points write takes a while, to cancel mid-finalize."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def record_points_earned(self, user_id, points, source, reference_id):
        self.started.set()
        await asyncio.sleep(0.05)
        await super().record_points_earned(user_id, points, source, reference_id)


class TestMatching:
    """Candidate selection and the confidence threshold."""

    @pytest.mark.asyncio
    async def test_qualifying_purchase_entry_beats_online_purchase(
        self, records, ledger, ledger_effects, settings
    ):
        """Purchase entry at ~0.81 is finalized; online purchase at 0.5 is ignored."""
        purchase = make_reference("purchase_1", occurred_at=T0 + timedelta(hours=15))
        online = make_reference(
            "web_1",
            source=ReferenceSource.ONLINE_PURCHASE,
            amount=105.0,
            occurred_at=T0 + timedelta(hours=12),
        )
        orchestrator = build_orchestrator(records, ledger_effects, settings, [
            StaticSource(ReferenceSource.PURCHASE_ENTRY, [purchase]),
            StaticSource(ReferenceSource.ONLINE_PURCHASE, [online], models_store=False),
            StaticSource(ReferenceSource.BILLING_INVOICE, []),
        ])
        record = make_record()
        records.add(record)

        result = await orchestrator.reconcile_record(record)

        assert result.status == OutcomeStatus.RECONCILED
        assert result.match_type == ReferenceSource.PURCHASE_ENTRY
        assert result.match_id == "purchase_1"
        assert result.confidence == pytest.approx(0.8125)
        assert result.points_awarded == 10
        assert result.cashback_awarded == 2.0

        stored = await records.get(record.id)
        assert stored.status == RecordStatus.FINAL
        assert stored.reconciliation.matched_reference_id == "purchase_1"
        assert stored.reconciliation.matched_reference_type == ReferenceSource.PURCHASE_ENTRY
        assert stored.reconciliation.confidence == pytest.approx(0.8125)
        assert [e.source for e in ledger.points] == ["receipt_scan_reconciled"]

    @pytest.mark.asyncio
    async def test_below_threshold_stays_provisional(
        self, records, ledger, orchestrator, online_orders
    ):
        online_orders.add(make_reference(
            "web_1",
            source=ReferenceSource.ONLINE_PURCHASE,
            occurred_at=T0 + timedelta(hours=23),
        ))
        record = make_record()
        records.add(record)

        result = await orchestrator.reconcile_record(record)

        assert result.status == OutcomeStatus.NO_MATCH
        assert result.confidence == pytest.approx(0.7 + 0.3 / 24)
        assert result.error is None
        assert (await records.get(record.id)).status == RecordStatus.PROVISIONAL
        assert ledger.points == []
        assert ledger.cashback == []

    @pytest.mark.asyncio
    async def test_no_candidates_is_no_match_with_zero_confidence(self, records, orchestrator):
        record = make_record()
        records.add(record)

        result = await orchestrator.reconcile_record(record)

        assert result.status == OutcomeStatus.NO_MATCH
        assert result.confidence == 0.0

    def test_confidence_tie_broken_by_source_priority(self, orchestrator):
        def candidate(source):
            return MatchCandidate(source, f"{source.value}_1", 0.0, 0.0, 0.9)

        best = orchestrator.select_best([
            candidate(ReferenceSource.BILLING_INVOICE),
            None,
            candidate(ReferenceSource.ONLINE_PURCHASE),
            candidate(ReferenceSource.PURCHASE_ENTRY),
        ])
        assert best.reference_type == ReferenceSource.PURCHASE_ENTRY

    def test_higher_confidence_beats_priority(self, orchestrator):
        best = orchestrator.select_best([
            MatchCandidate(ReferenceSource.PURCHASE_ENTRY, "p1", 0.0, 0.0, 0.85),
            MatchCandidate(ReferenceSource.ONLINE_PURCHASE, "o1", 0.0, 0.0, 0.95),
        ])
        assert best.reference_id == "o1"

    @pytest.mark.asyncio
    async def test_billing_invoice_is_credited_with_commission(
        self, records, ledger, orchestrator, purchases
    ):
        purchases.add(make_reference("purchase_1"))
        invoice = make_record("invoice_1", kind=RecordKind.BILLING_INVOICE)
        records.add(invoice)

        result = await orchestrator.reconcile_record(invoice)

        assert result.status == OutcomeStatus.RECONCILED
        stored = await records.get("invoice_1")
        # Lead tier, default 5% rate
        assert stored.commission_awarded == 5.0
        assert [e.source for e in ledger.cashback] == ["billing_invoice_reconciled"]


class TestIdempotency:
    """Reconciling twice never credits twice."""

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, records, ledger, orchestrator, purchases):
        purchases.add(make_reference())
        record = make_record()
        records.add(record)

        first = await orchestrator.reconcile_record(record)
        # Stale copy of the record, still provisional
        second = await orchestrator.reconcile_record(record)

        assert first.status == OutcomeStatus.RECONCILED
        assert second.status == OutcomeStatus.SKIPPED
        assert len(ledger.points) == 1
        assert len(ledger.cashback) == 1
        assert (await records.get(record.id)).points_awarded == 10

    @pytest.mark.asyncio
    async def test_final_record_is_skipped_without_lookup(self, records, ledger_effects, settings):
        source = StaticSource(ReferenceSource.PURCHASE_ENTRY, [make_reference()])
        orchestrator = build_orchestrator(records, ledger_effects, settings, [source])
        record = make_record(status=RecordStatus.FINAL)

        result = await orchestrator.reconcile_record(record)

        assert result.status == OutcomeStatus.SKIPPED
        assert source.calls == 0

    @pytest.mark.asyncio
    async def test_same_record_twice_in_a_batch(self, records, ledger, orchestrator, purchases):
        purchases.add(make_reference())
        record = make_record()
        records.add(record)

        batch = await orchestrator.reconcile_batch([record, record])

        assert batch.reconciled == 1
        assert batch.skipped == 1
        assert len(ledger.points) == 1

    @pytest.mark.asyncio
    async def test_concurrent_orchestrators_credit_once(
        self, records, ledger, ledger_effects, finder, settings, purchases
    ):
        purchases.add(make_reference())
        record = make_record()
        records.add(record)
        first = ReconciliationOrchestrator(records, finder, ledger_effects, settings=settings)
        second = ReconciliationOrchestrator(records, finder, ledger_effects, settings=settings)

        results = await asyncio.gather(
            first.reconcile_record(record), second.reconcile_record(record)
        )

        statuses = sorted(r.status.value for r in results)
        assert statuses == ["reconciled", "skipped"]
        assert len(ledger.points) == 1
        assert not records.is_claimed(record.id)


class TestFailures:
    """Per-record failures are captured, never propagated."""

    @pytest.mark.asyncio
    async def test_error_does_not_abort_batch(self, records, ledger, orchestrator, purchases):
        purchases.add(make_reference())
        records.add(make_record("scan_good", created_at=T0))
        records.add(make_record("scan_bad", amount=-5.0, created_at=T0 + timedelta(hours=1)))

        batch = await orchestrator.reconcile_pending(RecordKind.SCAN_UPLOAD)

        results = batch.by_record()
        assert results["scan_good"].status == OutcomeStatus.RECONCILED
        assert results["scan_bad"].status == OutcomeStatus.ERROR
        assert "Invalid amount" in results["scan_bad"].error
        assert batch.processed == 2
        assert batch.errors == 1
        assert (await records.get("scan_bad")).status == RecordStatus.PROVISIONAL

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error(self, records, ledger_effects, settings):
        orchestrator = build_orchestrator(records, ledger_effects, settings, [
            FailingSource(ReferenceSource.PURCHASE_ENTRY, RuntimeError("connection reset")),
        ])
        record = make_record()
        records.add(record)

        result = await orchestrator.reconcile_record(record)

        assert result.status == OutcomeStatus.ERROR
        assert result.error == "connection reset"
        assert not records.is_claimed(record.id)

    @pytest.mark.asyncio
    async def test_stuck_lookup_becomes_error(self, records, ledger, ledger_effects, settings):
        orchestrator = build_orchestrator(records, ledger_effects, settings, [
            SlowSource(ReferenceSource.PURCHASE_ENTRY),
        ])
        record = make_record()
        records.add(record)

        result = await orchestrator.reconcile_record(record)

        assert result.status == OutcomeStatus.ERROR
        assert "timed out" in result.error
        assert (await records.get(record.id)).status == RecordStatus.PROVISIONAL
        assert not records.is_claimed(record.id)
        assert ledger.points == []

    @pytest.mark.asyncio
    async def test_failed_ledger_write_is_completed_by_next_run(
        self, records, settings_store, events, settings
    ):
        flaky = FlakyCashbackLedger()
        effects = LedgerSideEffects(
            records, flaky, settings_store, events=events, settings=settings
        )
        orchestrator = build_orchestrator(records, effects, settings, [
            StaticSource(ReferenceSource.PURCHASE_ENTRY, [make_reference()]),
        ])
        records.add(make_record())

        first = await orchestrator.reconcile_pending(RecordKind.SCAN_UPLOAD)
        assert first.by_record()["scan_1"].status == OutcomeStatus.ERROR
        assert (await records.get("scan_1")).status == RecordStatus.PROVISIONAL

        flaky.stuck = False
        second = await orchestrator.reconcile_pending(RecordKind.SCAN_UPLOAD)

        assert second.by_record()["scan_1"].status == OutcomeStatus.RECONCILED
        assert len(flaky.points) == 1
        assert len(flaky.cashback) == 1
        assert flaky.cashback_balance("user_1") == 2.0
        assert (await records.get("scan_1")).status == RecordStatus.FINAL


class TestBatches:
    """Batch entry points."""

    @pytest.mark.asyncio
    async def test_results_keep_input_order(self, records, orchestrator, purchases):
        purchases.add(make_reference(amount=30.0))
        batch_records = [make_record(f"scan_{i}", amount=10.0 * (i + 1)) for i in range(5)]
        for record in batch_records:
            records.add(record)

        batch = await orchestrator.reconcile_batch(batch_records)

        assert [r.record_id for r in batch.results] == [r.id for r in batch_records]
        assert batch.reconciled == 1
        assert batch.no_match == 4
        assert batch.completed_at is not None

    @pytest.mark.asyncio
    async def test_run_is_audited(self, records, orchestrator, events, audit):
        records.add(make_record())

        batch = await orchestrator.reconcile_pending(RecordKind.SCAN_UPLOAD)
        await events.drain()

        runs = audit.get_entries("reconciliation_run")
        assert len(runs) == 1
        assert runs[0].entity_ref == f"batch:{batch.batch_id}"
        assert runs[0].metadata["processed"] == 1

    @pytest.mark.asyncio
    async def test_reconcile_all_matches_scan_and_invoice(self, records, orchestrator):
        records.add(make_record("scan_1"))
        records.add(make_record("invoice_1", kind=RecordKind.BILLING_INVOICE))

        batch = await orchestrator.reconcile_all()

        results = batch.by_record()
        assert results["scan_1"].match_type == ReferenceSource.BILLING_INVOICE
        assert results["invoice_1"].match_type == ReferenceSource.SCAN_UPLOAD
        assert batch.reconciled == 2
        assert (await records.get("invoice_1")).commission_awarded == 5.0

    @pytest.mark.asyncio
    async def test_pending_excludes_rejected_and_linked(self, records, orchestrator):
        records.add(make_record("scan_pending"))
        records.add(make_record("scan_rejected", status=RecordStatus.REJECTED))
        linked = make_record("scan_linked")
        linked.reconciliation.matched_reference_id = "purchase_9"
        records.add(linked)

        batch = await orchestrator.reconcile_pending(RecordKind.SCAN_UPLOAD)

        assert [r.record_id for r in batch.results] == ["scan_pending"]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_finalize_completes_when_cancelled(
        self, records, settings_store, events, finder, settings, purchases
    ):
        slow_ledger = SlowLedger()
        ledger_effects = LedgerSideEffects(
            records, slow_ledger, settings_store, events=events, settings=settings
        )
        orchestrator = ReconciliationOrchestrator(records, finder, ledger_effects, settings=settings)
        purchases.add(make_reference())
        record = make_record()
        records.add(record)

        task = asyncio.ensure_future(orchestrator.reconcile_record(record))
        await slow_ledger.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        stored = await records.get(record.id)
        assert stored.status == RecordStatus.FINAL
        assert len(slow_ledger.points) == 1
        assert len(slow_ledger.cashback) == 1
        assert not records.is_claimed(record.id)

    @pytest.mark.asyncio
    async def test_untouched_records_stay_provisional(self, records, ledger_effects, settings):
        source = SlowSource(ReferenceSource.PURCHASE_ENTRY, delay=0.02)
        orchestrator = build_orchestrator(records, ledger_effects, settings, [
            InMemoryReferenceSource(ReferenceSource.ONLINE_PURCHASE),
            source,
        ])
        batch_records = [make_record(f"scan_{i}") for i in range(3)]
        for record in batch_records:
            records.add(record)

        task = asyncio.ensure_future(orchestrator.reconcile_batch(batch_records))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        for record in batch_records:
            stored = await records.get(record.id)
            assert stored.status == RecordStatus.PROVISIONAL
            assert not records.is_claimed(record.id)
