"""
conftest.py - Shared pytest fixtures for loanstate tests

Provides common fixtures used across unit, conformance and functional tests:
- Deterministic clocks
- Stores (in-memory and SQLite) seeded with standard borrowers
- Engines wired to those stores
"""

import pytest

from loanstate import (
    InMemoryLoanStore, SQLiteLoanStore, TransitionEngine, UnderwritingPolicy,
)

from tests.fake_store import SteppingClock, seed_borrowers


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def store():
    s = InMemoryLoanStore()
    seed_borrowers(s)
    return s


@pytest.fixture
def sqlite_store():
    s = SQLiteLoanStore(":memory:")
    seed_borrowers(s)
    yield s
    s.close()


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request):
    """Run the test once against each LoanStore implementation."""
    if request.param == "memory":
        yield request.getfixturevalue("store")
    else:
        yield request.getfixturevalue("sqlite_store")


@pytest.fixture
def engine(store, clock):
    return TransitionEngine(store, clock=clock)


@pytest.fixture
def any_engine(any_store, clock):
    return TransitionEngine(any_store, clock=clock)


@pytest.fixture
def strict_policy():
    return UnderwritingPolicy(min_credit_score=700, max_dti_ratio="0.36")
