"""
Tests for the claim lifecycle state machine.
"""
import pytest

from flightclaims.core.exceptions import IllegalTransition
from flightclaims.db.models import ClaimStatus
from flightclaims.services.airlines import get_airline_config
from flightclaims.services.lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    allowed_targets,
    can_transition,
    parse_delay_hours,
    validate_claim_for_filing,
)


class TestTransitionGraph:
    """Test the status graph itself."""

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {ClaimStatus.COMPLETED, ClaimStatus.REFUNDED}

    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(ClaimStatus)

    def test_cannot_skip_to_filed(self):
        assert not can_transition("submitted", "filed")
        assert not can_transition("validated", "filed")

    def test_refund_reachable_only_from_listed_statuses(self):
        sources = {s for s, targets in ALLOWED_TRANSITIONS.items() if ClaimStatus.REFUNDED in targets}
        assert sources == {
            ClaimStatus.SUBMITTED,
            ClaimStatus.VALIDATED,
            ClaimStatus.READY_TO_FILE,
            ClaimStatus.FILED,
            ClaimStatus.MONITORING,
            ClaimStatus.REJECTED,
        }

    def test_allowed_targets_sorted(self):
        assert allowed_targets("airline_responded") == ["approved", "rejected"]
        assert allowed_targets("completed") == []


class TestTransition:
    """Test applying transitions through the store."""

    def test_successor_transition_sets_timestamp_and_timeline(self, make_claim, state_machine, store):
        claim = make_claim(status="ready_to_file")

        state_machine.transition(claim, "filed", "auto", updates={"airline_reference": "FR-1"})

        fresh = store.get_by_id(claim.claim_id)
        assert fresh.status == "filed"
        assert fresh.filed_at is not None
        assert fresh.airline_reference == "FR-1"
        assert len(fresh.timeline) == 1
        entry = fresh.timeline[0]
        assert entry["status"] == "filed"
        assert entry["previous_status"] == "ready_to_file"
        assert entry["actor"] == "auto"

    @pytest.mark.parametrize("target", ["filed", "approved", "completed", "monitoring"])
    def test_non_successor_raises(self, make_claim, state_machine, store, target):
        claim = make_claim(status="submitted")

        with pytest.raises(IllegalTransition):
            state_machine.transition(claim, target, "operator")

        assert store.get_by_id(claim.claim_id).status == "submitted"

    def test_transition_to_current_status_is_noop(self, make_claim, state_machine, store):
        claim = make_claim(status="ready_to_file")
        state_machine.transition(claim, "filed", "auto")
        first_filed_at = store.get_by_id(claim.claim_id).filed_at

        state_machine.transition(claim, "filed", "auto")

        fresh = store.get_by_id(claim.claim_id)
        assert fresh.filed_at == first_filed_at
        assert len(fresh.timeline) == 1

    def test_refund_requires_refund_trigger(self, make_claim, state_machine):
        claim = make_claim(status="ready_to_file")

        with pytest.raises(IllegalTransition):
            state_machine.transition(claim, "refunded", "operator")

    def test_refund_with_trigger(self, make_claim, state_machine, store):
        claim = make_claim(status="ready_to_file")

        state_machine.transition(claim, "refunded", "claim_not_filed_deadline")

        fresh = store.get_by_id(claim.claim_id)
        assert fresh.status == "refunded"
        assert fresh.refunded_at is not None

    def test_protected_fields_are_ignored_in_updates(self, make_claim, state_machine, store):
        claim = make_claim(status="ready_to_file")

        state_machine.transition(
            claim, "filed", "auto", updates={"status": "completed", "refunded_at": None, "filing_method": "email"}
        )

        fresh = store.get_by_id(claim.claim_id)
        assert fresh.status == "filed"
        assert fresh.filing_method == "email"

    def test_schedule_follow_up_keeps_status(self, make_claim, state_machine, store):
        claim = make_claim(status="monitoring")
        next_date = claim.submitted_at

        state_machine.schedule_follow_up(claim, next_date, note="Follow-up sent: reminder")

        fresh = store.get_by_id(claim.claim_id)
        assert fresh.status == "monitoring"
        assert fresh.next_follow_up_date == next_date
        assert "Follow-up sent: reminder" in fresh.internal_notes


class TestFilingValidation:
    """Test validation before submission."""

    def test_complete_claim_is_valid(self, make_claim):
        report = validate_claim_for_filing(make_claim(), get_airline_config("FR"))
        assert report.is_valid
        assert report.errors == []

    def test_missing_documents(self, make_claim):
        claim = make_claim(boarding_pass_url=None, delay_proof_url=None)

        report = validate_claim_for_filing(claim)

        assert not report.is_valid
        assert report.missing_documents == ["boarding_pass", "delay_proof"]

    def test_airline_specific_field(self, make_claim):
        claim = make_claim(booking_reference=None)

        assert validate_claim_for_filing(claim).is_valid
        report = validate_claim_for_filing(claim, get_airline_config("FR"))
        assert not report.is_valid
        assert "booking_reference" in report.missing_fields

    def test_short_delay_is_a_warning(self, make_claim):
        report = validate_claim_for_filing(make_claim(delay_duration="2 hours"))
        assert report.is_valid
        assert report.warnings

    def test_missing_payment(self, make_claim):
        report = validate_claim_for_filing(make_claim(payment_id=None))
        assert "Payment not confirmed" in report.errors

    @pytest.mark.parametrize(
        "value,expected",
        [("3.5 hours", 3.5), ("90 minutes", 1.5), ("unknown", 0.0), (None, 0.0)],
    )
    def test_parse_delay_hours(self, value, expected):
        assert parse_delay_hours(value) == expected
