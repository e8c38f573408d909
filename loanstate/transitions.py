"""
transitions.py - Loan Status Transition Graph

The fixed directed graph of permitted status changes. This is domain
knowledge, not configuration: the table below is the complete set of edges.

Origination:
    DRAFT -> SUBMITTED -> UNDER_REVIEW -> APPROVED -> ACTIVE
                              |   ^
                              v   |
                          INFO_REQUESTED
Servicing:
    ACTIVE <-> DELINQUENT -> DEFAULT -> CHARGED_OFF -> PAID_OFF
    ACTIVE -> PAID_OFF | REFINANCED

Terminal statuses (DENIED, WITHDRAWN, EXPIRED, PAID_OFF, REFINANCED) have no
outgoing edges.
"""

from __future__ import annotations
from types import MappingProxyType
from typing import FrozenSet, Mapping, Tuple

from .core import (
    LoanStatus,
    ORIGINATION_STATUSES, SERVICING_STATUSES, REQUIRES_ACTION_STATUSES,
)

S = LoanStatus

# Next statuses in declaration order; order is what callers display.
_EDGES: Mapping[LoanStatus, Tuple[LoanStatus, ...]] = MappingProxyType({
    # Origination
    S.DRAFT: (S.SUBMITTED, S.WITHDRAWN),
    S.SUBMITTED: (S.UNDER_REVIEW, S.WITHDRAWN),
    S.UNDER_REVIEW: (S.APPROVED, S.DENIED, S.INFO_REQUESTED),
    S.INFO_REQUESTED: (S.UNDER_REVIEW, S.WITHDRAWN),
    S.APPROVED: (S.ACTIVE, S.EXPIRED, S.WITHDRAWN),
    S.DENIED: (),
    S.WITHDRAWN: (),
    S.EXPIRED: (),
    # Servicing
    S.ACTIVE: (S.DELINQUENT, S.PAID_OFF, S.REFINANCED),
    S.DELINQUENT: (S.ACTIVE, S.DEFAULT),
    S.DEFAULT: (S.ACTIVE, S.CHARGED_OFF),
    S.CHARGED_OFF: (S.PAID_OFF,),  # recovery after charge-off
    S.PAID_OFF: (),
    S.REFINANCED: (),
})

# Immutable status -> set view of the graph.
TRANSITION_GRAPH: Mapping[LoanStatus, FrozenSet[LoanStatus]] = MappingProxyType({
    status: frozenset(targets) for status, targets in _EDGES.items()
})

TERMINAL_STATUSES: FrozenSet[LoanStatus] = frozenset(
    status for status, targets in _EDGES.items() if not targets
)

if set(_EDGES) != set(LoanStatus):
    raise RuntimeError("Transition graph must have exactly one entry per LoanStatus")


def is_valid_transition(from_status: LoanStatus, to_status: LoanStatus) -> bool:
    """Return True if the graph has an edge from_status -> to_status."""
    return to_status in TRANSITION_GRAPH[from_status]


def next_statuses(status: LoanStatus) -> Tuple[LoanStatus, ...]:
    """Return the statuses reachable in one step, in display order."""
    return _EDGES[status]


def is_terminal(status: LoanStatus) -> bool:
    """Return True if no transition leaves this status."""
    return not _EDGES[status]


def status_category(status: LoanStatus) -> str:
    """Return "ORIGINATION" or "SERVICING"."""
    if status in ORIGINATION_STATUSES:
        return "ORIGINATION"
    if status in SERVICING_STATUSES:
        return "SERVICING"
    raise ValueError(f"Unknown status: {status!r}")


def requires_action(status: LoanStatus) -> bool:
    """Return True for statuses waiting on a reviewer, the borrower, or collections."""
    return status in REQUIRES_ACTION_STATUSES
