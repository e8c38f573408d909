"""
events.py - Audit Ledger Entries

Builders for the immutable LoanEvent records and the deterministic
human-readable descriptions attached to them.

The engine only ever appends: every accepted transition produces exactly one
STATUS_CHANGE event inside the same store transaction as the loan update.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
import json
import uuid

from .core import EventType, LoanEvent, LoanStatus, DEFAULT_ACTOR
from .money import format_amount

Changes = Mapping[str, Tuple[Any, Any]]

FIELD_LABELS: Dict[str, str] = {
    "principal_amount_micros": "principal amount",
    "interest_rate_bps": "interest rate",
    "term_months": "term",
    "borrower_id": "borrower",
    "status": "status",
}


def new_event_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


def format_status(status: LoanStatus) -> str:
    """UNDER_REVIEW -> "Under Review"."""
    return status.label


def format_field_name(name: str) -> str:
    """principal_amount_micros -> "principal amount"; unknown fields lose underscores."""
    return FIELD_LABELS.get(name, name.replace("_", " ").strip())


def describe_event(
    event_type: EventType,
    from_status: Optional[LoanStatus] = None,
    to_status: Optional[LoanStatus] = None,
    changes: Optional[Changes] = None,
    payment_amount_micros: Optional[int] = None,
) -> str:
    """
    Human-readable description of an event.

    Examples:
        describe_event(EventType.STATUS_CHANGE, LoanStatus.DRAFT, LoanStatus.SUBMITTED)
            -> "Status changed from Draft to Submitted"
        describe_event(EventType.PAYMENT_RECEIVED, payment_amount_micros=12_345_600)
            -> "Payment of $1,234.56 received"
    """
    if event_type is EventType.LOAN_CREATED:
        return "Loan created"

    if event_type is EventType.STATUS_CHANGE:
        if from_status is not None and to_status is not None:
            return f"Status changed from {format_status(from_status)} to {format_status(to_status)}"
        if to_status is not None:
            return f"Status set to {format_status(to_status)}"
        return "Status changed"

    if event_type is EventType.LOAN_EDITED:
        if not changes:
            return "Loan updated"
        return "Updated " + ", ".join(format_field_name(name) for name in changes)

    if event_type is EventType.PAYMENT_RECEIVED:
        if payment_amount_micros:
            return f"Payment of {format_amount(payment_amount_micros)} received"
        return "Payment received"

    if event_type is EventType.PAYMENT_REMOVED:
        if payment_amount_micros:
            return f"Payment of {format_amount(payment_amount_micros)} removed"
        return "Payment removed"

    return "Event occurred"


def _require_json(name: str, value: Any) -> None:
    """Raise ValueError unless value reads back from JSON unchanged."""
    try:
        encoded = json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Event {name} must be JSON-serializable: {exc}") from exc
    if json.loads(encoded) != value:
        raise ValueError(f"Event {name} does not survive a JSON round trip: {value!r}")


def record_event(
    loan_id: str,
    event_type: EventType,
    occurred_at: datetime,
    actor_id: str = DEFAULT_ACTOR,
    from_status: Optional[LoanStatus] = None,
    to_status: Optional[LoanStatus] = None,
    reason: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    changes: Optional[Changes] = None,
    payment_id: Optional[str] = None,
    payment_amount_micros: Optional[int] = None,
    description: Optional[str] = None,
    id_factory: Callable[[], str] = new_event_id,
) -> LoanEvent:
    """
    Build a LoanEvent, generating its description when none is given.

    metadata and changes are copied so later mutation by the caller cannot
    alter the record. Both must be JSON-serializable (str keys; str, int,
    bool, None, lists and dicts of those) so every store reads back the
    same values; anything else raises ValueError.
    """
    if metadata is not None:
        _require_json("metadata", dict(metadata))
    if changes is not None:
        _require_json("changes", {name: list(pair) for name, pair in changes.items()})
    if description is None:
        description = describe_event(
            event_type, from_status, to_status, changes, payment_amount_micros
        )
    return LoanEvent(
        event_id=id_factory(),
        loan_id=loan_id,
        event_type=event_type,
        actor_id=actor_id or DEFAULT_ACTOR,
        occurred_at=occurred_at,
        description=description,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        metadata=dict(metadata) if metadata is not None else None,
        changes=dict(changes) if changes is not None else None,
        payment_id=payment_id,
        payment_amount_micros=payment_amount_micros,
    )


def status_change_event(
    loan_id: str,
    from_status: LoanStatus,
    to_status: LoanStatus,
    occurred_at: datetime,
    actor_id: str = DEFAULT_ACTOR,
    reason: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> LoanEvent:
    return record_event(
        loan_id, EventType.STATUS_CHANGE, occurred_at, actor_id,
        from_status=from_status, to_status=to_status,
        reason=reason, metadata=metadata,
    )


def loan_created_event(
    loan_id: str,
    initial_status: LoanStatus,
    occurred_at: datetime,
    actor_id: str = DEFAULT_ACTOR,
) -> LoanEvent:
    return record_event(
        loan_id, EventType.LOAN_CREATED, occurred_at, actor_id,
        to_status=initial_status,
        reason="Loan created",
        description=f"Loan created with status {format_status(initial_status)}",
    )


def payment_received_event(
    loan_id: str,
    payment_id: str,
    amount_micros: int,
    occurred_at: datetime,
    actor_id: str = DEFAULT_ACTOR,
) -> LoanEvent:
    return record_event(
        loan_id, EventType.PAYMENT_RECEIVED, occurred_at, actor_id,
        payment_id=payment_id, payment_amount_micros=amount_micros,
    )


def loan_edited_event(
    loan_id: str,
    changes: Changes,
    occurred_at: datetime,
    actor_id: str = DEFAULT_ACTOR,
) -> Optional[LoanEvent]:
    """Return None when nothing changed; no event is recorded for a no-op edit."""
    if not changes:
        return None
    return record_event(
        loan_id, EventType.LOAN_EDITED, occurred_at, actor_id, changes=changes,
    )


def payment_removed_event(
    loan_id: str,
    payment_id: str,
    amount_micros: int,
    occurred_at: datetime,
    actor_id: str = DEFAULT_ACTOR,
    reason: Optional[str] = None,
) -> LoanEvent:
    return record_event(
        loan_id, EventType.PAYMENT_REMOVED, occurred_at, actor_id,
        reason=reason, payment_id=payment_id, payment_amount_micros=amount_micros,
    )
