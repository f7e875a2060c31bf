"""Shared test fixtures for the safestage test suite."""

from __future__ import annotations

import pytest

from safestage.core.staging import ProposalStore, StagingService
from safestage.models.transaction import SafeAccount, parse_account
from tests.helpers import SAFE_ADDRESS, FakeOracle


@pytest.fixture
def oracle() -> FakeOracle:
    """In-memory oracle with on-chain nonce 0 and seven owners."""
    return FakeOracle()


@pytest.fixture
def store() -> ProposalStore:
    return ProposalStore()


@pytest.fixture
def service(oracle: FakeOracle, store: ProposalStore) -> StagingService:
    return StagingService(oracle, store, oracle_timeout=1.0)


@pytest.fixture
def account() -> SafeAccount:
    return parse_account(1, SAFE_ADDRESS)
