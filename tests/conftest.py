# tests/conftest.py

"""
Shared fixtures: an in-memory store seeded with a small roster.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from payrec.core import (
    BatchImporter,
    DuplicateCaseDetector,
    DuplicateResolutionEngine,
    MatchPolicy,
    ReviewWorkflow,
)
from payrec.models import Account, Payment
from payrec.repositories import InMemoryStore

SCHOOL = "school_1"
OTHER_SCHOOL = "school_2"
OPERATOR = "user_1"


def make_account(id: str, name: str, school_id: str = SCHOOL, target_type: str = "account") -> Account:
    return Account(id=id, school_id=school_id, display_name=name, target_type=target_type)


def make_payment(
    id: str,
    account_id: str = "p123",
    period: str = "2024-05",
    amount: str = "1500",
    status: str = "approved",
    match_status: str = "auto",
    school_id: str = SCHOOL,
    currency: str = "ARS",
) -> Payment:
    return Payment(
        id=id,
        school_id=school_id,
        account_id=account_id if match_status == "auto" else None,
        amount=Decimal(amount),
        currency=currency,
        period=period,
        provider="mercadopago",
        provider_payment_id=f"mp_{id}",
        idempotency_key=f"mercadopago_mp_{id}",
        payer_raw="Juan Perez",
        payer_key="juan perez",
        status=status,
        match_status=match_status,
        match_confidence=0.9 if match_status == "auto" else 0.0,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def policy() -> MatchPolicy:
    return MatchPolicy()


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_account(make_account("p123", "Juan Pérez"))
    store.add_account(make_account("p200", "Maria Gonzalez"))
    store.add_account(make_account("p300", "Carlos Alberto Ruiz"))
    store.add_account(make_account("j500", "Sofia Ruiz", target_type="player"))
    store.add_account(make_account("x900", "Pedro Gomez", school_id=OTHER_SCHOOL))
    store.add_member(SCHOOL, OPERATOR)
    return store


@pytest.fixture
def importer(store, policy) -> BatchImporter:
    return BatchImporter(store.roster, store.aliases, store.payments, policy, default_currency="ARS")


@pytest.fixture
def review(store, policy) -> ReviewWorkflow:
    return ReviewWorkflow(store.roster, store.aliases, store.pending_aliases, store.payments, store.audit, policy)


@pytest.fixture
def detector(store) -> DuplicateCaseDetector:
    return DuplicateCaseDetector(store.payments, store.cases)


@pytest.fixture
def engine(store) -> DuplicateResolutionEngine:
    return DuplicateResolutionEngine(store.cases, store.payments)
