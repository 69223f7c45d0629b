"""
Tests for the automatic refund processor.
"""
import asyncio
from datetime import timedelta

import pytest

from flightclaims.core import utcnow
from flightclaims.core.exceptions import ConfigurationError, ValidationError
from flightclaims.db.models import RefundRecord
from flightclaims.services.lifecycle import ClaimStateMachine
from flightclaims.services.refunds import RefundProcessor
from flightclaims.services.store import SqlClaimStore

from conftest import FakePaymentClient, TestingSessionLocal


@pytest.fixture
def processor(store, state_machine, payment_client, queue) -> RefundProcessor:
    return RefundProcessor(store, state_machine, payment_client, queue, concurrency=2, timeout=5, eligibility_days=2)


def three_days_ago():
    return utcnow() - timedelta(days=3)


class TestRefundClassification:
    """Test getClaimsNeedingAutomaticRefunds bucketing."""

    def test_buckets_are_disjoint(self, processor, make_claim):
        overdue = make_claim(submitted_at=three_days_ago())
        undocumented = make_claim(status="validated", submitted_at=three_days_ago(), boarding_pass_url=None)
        ineligible = make_claim(
            status="submitted", submitted_at=three_days_ago(), estimated_compensation=0, delay_proof_url=None
        )
        rejected = make_claim(status="rejected")
        make_claim()  # recent ready claim
        make_claim(status="filed", submitted_at=three_days_ago())

        candidates = processor.get_claims_needing_automatic_refunds()

        assert [c.claim_id for c in candidates.overdue_claims] == [overdue.claim_id]
        assert [c.claim_id for c in candidates.insufficient_doc_claims] == [undocumented.claim_id]
        assert [c.claim_id for c in candidates.ineligible_claims] == [ineligible.claim_id]
        assert [c.claim_id for c in candidates.rejected_claims] == [rejected.claim_id]


class TestRefundBatch:
    """Test processBatchAutomaticRefunds."""

    @pytest.mark.asyncio
    async def test_scenario_overdue_claim_is_refunded(self, processor, make_claim, make_payment, store, queue, db):
        claim = make_claim("CLM001", status="ready_to_file", submitted_at=three_days_ago())
        make_payment(claim, amount=4900)

        batch = await processor.process_batch_automatic_refunds(["CLM001"], "claim_not_filed_deadline", "cron")

        assert batch.summary["successful"] == 1
        assert batch.summary["total_amount"] == 4900
        fresh = store.get_by_id("CLM001")
        assert fresh.status == "refunded"
        assert fresh.refund_reason == "claim_not_filed_deadline"
        assert fresh.refunded_at is not None
        record = db.query(RefundRecord).filter(RefundRecord.claim_id == "CLM001").one()
        assert record.idempotency_key == "refund-CLM001-claim_not_filed_deadline"
        assert record.processed_by == "cron"
        assert queue.get_next_batch()[0].template == "refund_notification"

    @pytest.mark.asyncio
    async def test_second_run_skips_without_external_call(self, processor, make_claim, make_payment, payment_client):
        claim = make_claim(submitted_at=three_days_ago())
        make_payment(claim)

        await processor.process_batch_automatic_refunds([claim.claim_id], "claim_not_filed_deadline")
        second = await processor.process_batch_automatic_refunds([claim.claim_id], "claim_not_filed_deadline")

        assert len(payment_client.calls) == 1
        assert second.summary["successful"] == 0
        assert second.summary["skipped"] == 1
        result = second.per_claim[0]
        assert result.success is False
        assert result.error == "Already refunded"

    @pytest.mark.asyncio
    async def test_payment_failure_leaves_status(self, processor, make_claim, make_payment, payment_client, store):
        failing = make_claim(submitted_at=three_days_ago())
        ok = make_claim(submitted_at=three_days_ago())
        payment_client.failing_transactions.add(make_payment(failing).transaction_id)
        make_payment(ok)

        batch = await processor.process_batch_automatic_refunds(
            [failing.claim_id, ok.claim_id], "claim_not_filed_deadline"
        )

        assert batch.summary == {"total": 2, "successful": 1, "failed": 1, "skipped": 0, "total_amount": 4900}
        assert store.get_by_id(failing.claim_id).status == "ready_to_file"
        assert store.get_by_id(ok.claim_id).status == "refunded"

    @pytest.mark.asyncio
    async def test_unreachable_status_makes_no_external_call(self, processor, make_claim, make_payment, payment_client):
        claim = make_claim(status="approved")
        make_payment(claim)

        batch = await processor.process_batch_automatic_refunds([claim.claim_id], "customer_request", "operator")

        assert batch.summary["failed"] == 1
        assert payment_client.calls == []

    @pytest.mark.asyncio
    async def test_missing_payment_is_a_failure(self, processor, make_claim, payment_client):
        claim = make_claim(submitted_at=three_days_ago())

        batch = await processor.process_batch_automatic_refunds([claim.claim_id], "claim_not_filed_deadline")

        assert batch.per_claim[0].error == "Payment record not found"
        assert payment_client.calls == []

    @pytest.mark.asyncio
    async def test_unknown_claim_and_duplicate_ids(self, processor):
        batch = await processor.process_batch_automatic_refunds(["NOPE", "NOPE"], "system_error")

        assert batch.summary["total"] == 1
        assert batch.summary["failed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_trigger_rejected(self, processor):
        with pytest.raises(ValidationError):
            await processor.process_batch_automatic_refunds(["CLM001"], "because")

    @pytest.mark.asyncio
    async def test_missing_payment_client_aborts(self, store, state_machine, queue):
        processor = RefundProcessor(store, state_machine, None, queue)

        with pytest.raises(ConfigurationError):
            await processor.process_batch_automatic_refunds(["CLM001"], "system_error")

    @pytest.mark.asyncio
    async def test_overlapping_runs_refund_once(self, store, state_machine, queue, make_claim, make_payment, db):
        class SlowPaymentClient(FakePaymentClient):
            async def refund(self, transaction_id, amount, idempotency_key, metadata=None):
                await asyncio.sleep(0.05)
                return await super().refund(transaction_id, amount, idempotency_key, metadata)

        claim = make_claim("CLM900", submitted_at=three_days_ago())
        make_payment(claim)
        payment_client = SlowPaymentClient()

        other_db = TestingSessionLocal()
        try:
            other_store = SqlClaimStore(other_db)
            first = RefundProcessor(store, state_machine, payment_client, queue, timeout=5)
            second = RefundProcessor(other_store, ClaimStateMachine(other_store), payment_client, queue, timeout=5)

            batches = await asyncio.gather(
                first.process_batch_automatic_refunds(["CLM900"], "claim_not_filed_deadline"),
                second.process_batch_automatic_refunds(["CLM900"], "claim_not_filed_deadline"),
            )
        finally:
            other_db.close()

        assert sorted(b.summary["successful"] for b in batches) == [0, 1]
        assert sorted(b.summary["skipped"] for b in batches) == [0, 1]
        assert len(payment_client.refunds) == 1
        assert db.query(RefundRecord).filter(RefundRecord.claim_id == "CLM900").count() == 1
        assert [e.template for e in queue.get_next_batch()] == ["refund_notification"]
        timeline = store.get_by_id("CLM900").timeline
        assert [entry["status"] for entry in timeline] == ["refunded"]

    @pytest.mark.asyncio
    async def test_existing_refund_record_is_not_duplicated(self, processor, make_claim, make_payment, store, queue, db):
        claim = make_claim(submitted_at=three_days_ago())
        payment = make_payment(claim)
        store.add_refund(RefundRecord(
            claim_id=claim.claim_id,
            payment_id=payment.payment_id,
            external_refund_id="re_existing",
            amount=payment.amount,
            currency="eur",
            trigger="claim_not_filed_deadline",
            reason="Claim was not filed within the deadline",
            status="succeeded",
            processed_by="cron",
            idempotency_key=f"refund-{claim.claim_id}-claim_not_filed_deadline",
        ))

        batch = await processor.process_batch_automatic_refunds([claim.claim_id], "claim_not_filed_deadline")

        assert batch.summary["skipped"] == 1
        assert batch.per_claim[0].error == "Already refunded"
        assert db.query(RefundRecord).filter(RefundRecord.claim_id == claim.claim_id).count() == 1
        assert queue.get_queue_status()["total"] == 0

    @pytest.mark.asyncio
    async def test_hanging_payment_call_times_out(self, store, state_machine, queue, make_claim, make_payment):
        class HangingPaymentClient(FakePaymentClient):
            def __init__(self, hanging_transaction_id):
                super().__init__()
                self.hanging_transaction_id = hanging_transaction_id

            async def refund(self, transaction_id, amount, idempotency_key, metadata=None):
                if transaction_id == self.hanging_transaction_id:
                    await asyncio.sleep(10)
                return await super().refund(transaction_id, amount, idempotency_key, metadata)

        stuck = make_claim(submitted_at=three_days_ago())
        ok = make_claim(submitted_at=three_days_ago())
        stuck_payment = make_payment(stuck)
        make_payment(ok)
        processor = RefundProcessor(
            store, state_machine, HangingPaymentClient(stuck_payment.transaction_id), queue,
            concurrency=2, timeout=0.05,
        )

        batch = await processor.process_batch_automatic_refunds(
            [stuck.claim_id, ok.claim_id], "claim_not_filed_deadline"
        )

        results = {r.claim_id: r for r in batch.per_claim}
        assert results[stuck.claim_id].error_code == "timeout"
        assert store.get_by_id(stuck.claim_id).status == "ready_to_file"
        assert results[ok.claim_id].success is True
        assert store.get_by_id(ok.claim_id).status == "refunded"


class TestAutomaticRefundRun:
    """Test the full classification plus refund run."""

    @pytest.mark.asyncio
    async def test_runs_one_batch_per_bucket(self, processor, make_claim, make_payment, store):
        overdue = make_claim(submitted_at=three_days_ago())
        rejected = make_claim(status="rejected")
        make_payment(overdue)
        make_payment(rejected)

        run = await processor.run_automatic_refunds()

        assert set(run["batches"]) == {"claim_not_filed_deadline", "claim_rejected_by_airline"}
        assert run["summary"]["successful"] == 2
        assert store.get_by_id(rejected.claim_id).refund_reason == "claim_rejected_by_airline"
