"""
Transition Graph Conformance Tests

INVARIANT: A loan only moves along edges of the transition graph.

    ∀ loan L, status T:
        transition(L, T) succeeds ⟹ T ∈ graph[L.status]
        T ∉ graph[L.status] ⟹ InvalidTransition and L unchanged

Terminal statuses are exactly those with no outgoing edges.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from loanstate import (
    InvalidTransition, GuardRejected, LoanStatus, TRANSITION_GRAPH, TERMINAL_STATUSES,
    is_terminal, is_valid_transition, next_statuses,
)
from tests.fake_store import new_engine, open_loan

statuses = st.sampled_from(list(LoanStatus))


class TestGraphProperties:
    """Property-based graph tests."""

    @given(statuses, statuses)
    @settings(max_examples=200)
    def test_only_graph_edges_apply(self, from_status, to_status):
        """
        PROPERTY: the engine applies a transition only if the graph has the edge.
        """
        engine = new_engine()
        loan = open_loan(engine, status=from_status)

        try:
            updated = engine.transition(loan.loan_id, to_status)
        except InvalidTransition:
            assert not is_valid_transition(from_status, to_status)
            assert engine.get_loan(loan.loan_id) == loan
        except GuardRejected:
            assert is_valid_transition(from_status, to_status)
            assert engine.get_loan(loan.loan_id) == loan
        else:
            assert is_valid_transition(from_status, to_status)
            assert updated.status is to_status

    @given(statuses)
    def test_terminal_iff_no_successors(self, status):
        """
        PROPERTY: is_terminal(s) ⟺ next_statuses(s) is empty.
        """
        assert is_terminal(status) == (next_statuses(status) == ())
        assert (status in TERMINAL_STATUSES) == is_terminal(status)

    @given(statuses)
    def test_no_self_loops(self, status):
        assert not is_valid_transition(status, status)


class TestGraphExamples:
    """The graph's fixed shape."""

    def test_every_status_has_an_entry(self):
        assert set(TRANSITION_GRAPH) == set(LoanStatus)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {
            LoanStatus.DENIED, LoanStatus.WITHDRAWN, LoanStatus.EXPIRED,
            LoanStatus.PAID_OFF, LoanStatus.REFINANCED,
        }

    def test_charged_off_can_recover(self):
        assert next_statuses(LoanStatus.CHARGED_OFF) == (LoanStatus.PAID_OFF,)

    def test_edge_count(self):
        assert sum(len(v) for v in TRANSITION_GRAPH.values()) == 20
