"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from spendguard.api.dependencies import get_merchant_directory
from spendguard.api.main import create_app
from spendguard.domain.intents import build_intent
from spendguard.domain.models import Intent, Policy, TransactionContext
from spendguard.domain.reference import SEED_MERCHANTS
from spendguard.infrastructure.clients.merchants import StaticMerchantDirectory
from spendguard.infrastructure.database.models import Base
from spendguard.infrastructure.database.session import get_db
from spendguard.infrastructure.memory.repositories import (
    InMemoryEscrowRepository,
    InMemoryIntentRepository,
    InMemoryReputationRepository,
    InMemoryTransactionRepository,
    InMemoryWalletRepository,
)
from spendguard.services.escrow_service import EscrowService
from spendguard.services.intent_service import IntentService
from spendguard.services.reputation_service import ReputationService
from spendguard.services.transaction_orchestrator import TransactionOrchestrator


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Extra sessions on the test database, one per worker thread"""
    return TestingSessionLocal


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database and the seeded merchant catalog"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_merchant_directory] = lambda: StaticMerchantDirectory()
    return TestClient(app)


@pytest.fixture
def merchants() -> dict:
    """Seeded merchants by id"""
    return {m.merchant_id: m for m in SEED_MERCHANTS}


@pytest.fixture
def books_intent() -> Intent:
    """Active 500 INR books intent created at NOW"""
    policy = Policy(amount_limit=Decimal("500"), allowed_categories=frozenset({"books"}), enforcement_tier=1)
    return build_intent("user_books", "Spend 500 only on books", policy, NOW)


@pytest.fixture
def context() -> TransactionContext:
    """Request made one hour after NOW"""
    return TransactionContext(request_id="req-fixed", requested_at=NOW + timedelta(hours=1))


@pytest.fixture
def wallets() -> InMemoryWalletRepository:
    return InMemoryWalletRepository({"user_books": Decimal("2000"), "user_poor": Decimal("100")})


@pytest.fixture
def reputation() -> ReputationService:
    return ReputationService(InMemoryReputationRepository())


@pytest.fixture
def intent_service(wallets: InMemoryWalletRepository, reputation: ReputationService) -> IntentService:
    return IntentService(InMemoryIntentRepository(), wallets, reputation, clock=lambda: NOW)


@pytest.fixture
def escrow_service(reputation: ReputationService) -> EscrowService:
    return EscrowService(InMemoryEscrowRepository(), reputation, clock=lambda: NOW)


@pytest.fixture
def orchestrator(intent_service: IntentService, wallets, reputation) -> TransactionOrchestrator:
    """Orchestrator sharing the intent store with intent_service"""
    return TransactionOrchestrator(
        intents=intent_service.intents,
        merchants=StaticMerchantDirectory(),
        transactions=InMemoryTransactionRepository(),
        wallets=wallets,
        reputation=reputation,
    )
