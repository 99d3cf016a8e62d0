"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from spendguard.config import settings
from spendguard.domain.exceptions import (
    DomainException,
    EscrowNotFoundError,
    IntentNotFoundError,
    InvalidAmountError,
    InvalidClawbackError,
    InvalidPolicyError,
    MerchantDirectoryError,
    MerchantNotFoundError,
    MilestoneNotFoundError,
    WalletNotFoundError,
)
from spendguard.domain.ports import MerchantDirectory
from spendguard.infrastructure.clients.merchants import MerchantRegistryClient, StaticMerchantDirectory
from spendguard.infrastructure.database.repositories import (
    EscrowRepository,
    IntentRepository,
    ReputationRepository,
    TransactionRepository,
    WalletRepository,
)
from spendguard.infrastructure.database.session import get_db
from spendguard.services.escrow_service import EscrowService
from spendguard.services.intent_service import IntentService
from spendguard.services.reputation_service import ReputationService
from spendguard.services.transaction_orchestrator import TransactionOrchestrator

_static_directory = StaticMerchantDirectory()

NOT_FOUND_ERRORS = (
    IntentNotFoundError,
    EscrowNotFoundError,
    MilestoneNotFoundError,
    MerchantNotFoundError,
    WalletNotFoundError,
)


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_merchant_directory() -> MerchantDirectory:
    """Seeded catalog by default; the registry service when MERCHANT_DIRECTORY=http"""
    if settings.merchant_directory == "http":
        return MerchantRegistryClient()
    return _static_directory


def get_reputation_service(db: Session = Depends(get_db)) -> ReputationService:
    return ReputationService(ReputationRepository(db, baseline_score=settings.reputation_baseline_score))


def get_intent_service(
    db: Session = Depends(get_db),
    reputation: ReputationService = Depends(get_reputation_service),
) -> IntentService:
    return IntentService(IntentRepository(db), WalletRepository(db), reputation)


def get_escrow_service(
    db: Session = Depends(get_db),
    reputation: ReputationService = Depends(get_reputation_service),
) -> EscrowService:
    return EscrowService(EscrowRepository(db), reputation)


def get_wallet_repository(db: Session = Depends(get_db)) -> WalletRepository:
    return WalletRepository(db)


def get_transaction_repository(db: Session = Depends(get_db)) -> TransactionRepository:
    return TransactionRepository(db)


def get_orchestrator(
    db: Session = Depends(get_db),
    merchants: MerchantDirectory = Depends(get_merchant_directory),
    reputation: ReputationService = Depends(get_reputation_service),
) -> TransactionOrchestrator:
    return TransactionOrchestrator(
        intents=IntentRepository(db),
        merchants=merchants,
        transactions=TransactionRepository(db),
        wallets=WalletRepository(db),
        reputation=reputation,
    )


def to_http_error(exc: DomainException) -> HTTPException:
    """
    Map a domain failure to its HTTP status.

    - 404: unknown intent, escrow, milestone, merchant or wallet
    - 422: malformed policy, amount or clawback amount
    - 503: merchant directory unreachable
    - 409: every other precondition or state conflict (balance, lifecycle, duplicate wallet)
    """
    if isinstance(exc, NOT_FOUND_ERRORS):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidPolicyError, InvalidAmountError, InvalidClawbackError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, MerchantDirectoryError):
        return HTTPException(status_code=503, detail="Merchant directory unavailable")
    return HTTPException(status_code=409, detail=str(exc))
