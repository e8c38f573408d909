"""
test_events.py - Unit tests for audit ledger entries

Tests:
- Deterministic descriptions for each event type
- Event builders
- Immutability of recorded metadata
- Metadata and changes restricted to values that survive JSON storage
"""

import pytest
from datetime import datetime
from decimal import Decimal

from loanstate import (
    EventType, LoanStatus, describe_event, format_status, record_event,
    status_change_event, loan_created_event, payment_received_event, loan_edited_event,
    payment_removed_event,
)

S = LoanStatus
T = datetime(2025, 1, 1, 12, 0)


class TestDescribeEvent:
    """Formatting contract for event descriptions."""

    def test_status_change_both_known(self):
        assert describe_event(EventType.STATUS_CHANGE, S.DRAFT, S.SUBMITTED) == \
            "Status changed from Draft to Submitted"

    def test_status_change_multiword_labels(self):
        assert describe_event(EventType.STATUS_CHANGE, S.UNDER_REVIEW, S.INFO_REQUESTED) == \
            "Status changed from Under Review to Info Requested"

    def test_status_set(self):
        assert describe_event(EventType.STATUS_CHANGE, None, S.ACTIVE) == "Status set to Active"

    def test_status_changed_without_statuses(self):
        assert describe_event(EventType.STATUS_CHANGE) == "Status changed"

    def test_loan_created(self):
        assert describe_event(EventType.LOAN_CREATED, to_status=S.DRAFT) == "Loan created"

    def test_loan_edited(self):
        assert describe_event(EventType.LOAN_EDITED) == "Loan updated"
        assert describe_event(EventType.LOAN_EDITED, changes={"term_months": (60, 72)}) == "Updated term"
        assert describe_event(EventType.LOAN_EDITED, changes={
            "principal_amount_micros": (1, 2),
            "interest_rate_bps": (500, 550),
        }) == "Updated principal amount, interest rate"

    def test_unknown_field_name(self):
        assert describe_event(EventType.LOAN_EDITED, changes={"payoff_note": ("a", "b")}) == \
            "Updated payoff note"

    def test_payment_received(self):
        assert describe_event(EventType.PAYMENT_RECEIVED, payment_amount_micros=12_345_600) == \
            "Payment of $1,234.56 received"
        assert describe_event(EventType.PAYMENT_RECEIVED) == "Payment received"

    def test_payment_removed(self):
        assert describe_event(EventType.PAYMENT_REMOVED, payment_amount_micros=500_000) == \
            "Payment of $50.00 removed"
        assert describe_event(EventType.PAYMENT_REMOVED) == "Payment removed"

    def test_deterministic(self):
        args = (EventType.STATUS_CHANGE, S.ACTIVE, S.DELINQUENT)
        assert describe_event(*args) == describe_event(*args)

    def test_format_status(self):
        assert format_status(S.CHARGED_OFF) == "Charged Off"


class TestEventBuilders:
    """Builders produce complete immutable records."""

    def test_status_change_event(self):
        event = status_change_event("loan-1", S.DRAFT, S.SUBMITTED, T,
                                    actor_id="officer-1", reason="complete",
                                    metadata={"channel": "branch"})
        assert event.event_type is EventType.STATUS_CHANGE
        assert event.from_status is S.DRAFT
        assert event.to_status is S.SUBMITTED
        assert event.actor_id == "officer-1"
        assert event.reason == "complete"
        assert event.metadata == {"channel": "branch"}
        assert event.occurred_at == T
        assert event.description == "Status changed from Draft to Submitted"
        assert event.event_id.startswith("evt_")

    def test_event_is_frozen(self):
        event = status_change_event("loan-1", S.DRAFT, S.SUBMITTED, T)
        with pytest.raises(AttributeError):
            event.description = "tampered"

    def test_metadata_is_copied(self):
        metadata = {"k": "v"}
        event = status_change_event("loan-1", S.DRAFT, S.SUBMITTED, T, metadata=metadata)
        metadata["k"] = "changed"
        assert event.metadata == {"k": "v"}

    def test_default_actor(self):
        assert status_change_event("loan-1", S.DRAFT, S.SUBMITTED, T).actor_id == "system"
        assert record_event("loan-1", EventType.LOAN_CREATED, T, actor_id="").actor_id == "system"

    def test_loan_created_event_has_no_from_status(self):
        event = loan_created_event("loan-1", S.DRAFT, T, actor_id="officer-1")
        assert event.from_status is None
        assert event.to_status is S.DRAFT
        assert event.description == "Loan created with status Draft"

    def test_payment_received_event(self):
        event = payment_received_event("loan-1", "pmt-1", 12_345_600, T)
        assert event.payment_id == "pmt-1"
        assert event.payment_amount_micros == 12_345_600
        assert event.description == "Payment of $1,234.56 received"

    def test_loan_edited_event_skips_noop(self):
        assert loan_edited_event("loan-1", {}, T) is None
        event = loan_edited_event("loan-1", {"term_months": (60, 72)}, T)
        assert event.changes == {"term_months": (60, 72)}

    def test_explicit_description_wins(self):
        event = record_event("loan-1", EventType.STATUS_CHANGE, T, description="custom")
        assert event.description == "custom"

    def test_event_ids_unique(self):
        ids = {status_change_event("loan-1", S.DRAFT, S.SUBMITTED, T).event_id for _ in range(50)}
        assert len(ids) == 50

    def test_payment_removed_event(self):
        event = payment_removed_event("loan-1", "pmt-1", 500_000, T, reason="Duplicate entry")
        assert event.event_type is EventType.PAYMENT_REMOVED
        assert event.payment_id == "pmt-1"
        assert event.reason == "Duplicate entry"
        assert event.description == "Payment of $50.00 removed"


class TestJsonSafety:
    """Recorded metadata and changes must read back unchanged from any store."""

    def test_plain_values_accepted(self):
        metadata = {"channel": "web", "attempt": 2, "ok": True, "note": None,
                    "tags": ["a", "b"], "nested": {"x": 1}}
        assert status_change_event("loan-1", S.DRAFT, S.SUBMITTED, T, metadata=metadata).metadata == metadata

    @pytest.mark.parametrize("metadata", [
        {"rate": Decimal("5.5")},
        {"when": datetime(2025, 1, 1)},
        {"ids": ("a", "b")},
        {1: "int key"},
        {"ratio": float("nan")},
    ])
    def test_lossy_metadata_rejected(self, metadata):
        with pytest.raises(ValueError, match="JSON"):
            status_change_event("loan-1", S.DRAFT, S.SUBMITTED, T, metadata=metadata)

    def test_lossy_changes_rejected(self):
        with pytest.raises(ValueError, match="JSON"):
            loan_edited_event("loan-1", {"principal_amount_micros": (Decimal("1"), Decimal("2"))}, T)

    def test_change_pairs_accepted(self):
        event = loan_edited_event("loan-1", {"borrower_id": (None, "b-2")}, T)
        assert event.changes == {"borrower_id": (None, "b-2")}
