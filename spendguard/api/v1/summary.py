"""Spending summary endpoint - a user's payment outcomes and open commitments"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from spendguard.api.dependencies import get_escrow_service, get_intent_service, get_transaction_repository
from spendguard.api.v1.schemas import SpendingSummaryResponse
from spendguard.domain.summary import summarize_spending
from spendguard.infrastructure.database.repositories import TransactionRepository
from spendguard.services.escrow_service import EscrowService
from spendguard.services.intent_service import IntentService

router = APIRouter()


@router.get("/users/{user_id}/summary", response_model=SpendingSummaryResponse)
def get_spending_summary(
    user_id: str,
    intents: IntentService = Depends(get_intent_service),
    escrows: EscrowService = Depends(get_escrow_service),
    transactions: TransactionRepository = Depends(get_transaction_repository),
):
    """Users with no history get an all-zero summary and a 100% compliance rate"""
    summary = summarize_spending(
        user_id,
        transactions.list_by_user(user_id, limit=None),
        intents.list_intents(user_id),
        escrows.list_escrows(user_id),
    )
    return SpendingSummaryResponse(**asdict(summary))
