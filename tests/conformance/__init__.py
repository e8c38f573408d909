"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the loan lifecycle engine.
Any compliant LoanStore or engine implementation MUST pass these tests.

The tests are organized by invariant:
1. graph.py - Only graph edges are ever applied
2. guard_agreement.py - Preview and transition give the same answer
3. atomicity.py - Loan update and audit event are all-or-nothing
4. concurrency.py - Transitions on one loan are serialized

These tests use hypothesis for property-based testing.
"""
