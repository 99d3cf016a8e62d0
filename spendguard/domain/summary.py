"""Spending summary - roll up a user's payment log and open commitments"""

from decimal import Decimal
from typing import Dict, Sequence

from spendguard.domain.models import (
    ZERO,
    Escrow,
    EscrowStatus,
    Intent,
    IntentStatus,
    SpendingSummary,
    TransactionRecord,
)

OPEN_ESCROW_STATUSES = (EscrowStatus.LOCKED, EscrowStatus.PARTIALLY_RELEASED)


def summarize_spending(
    user_id: str,
    transactions: Sequence[TransactionRecord],
    intents: Sequence[Intent],
    escrows: Sequence[Escrow],
) -> SpendingSummary:
    """
    Aggregate a user's history into headline numbers.

    - Spent: approved payments, emergency overrides included
    - Blocked: amounts of rejected payments (leakage the engine prevented)
    - Category spend groups approved payments by merchant category
    - Compliance rate is approved / total as a percentage, 100.0 with no history
    - Active intents report their remaining locked balance, open escrows their pending amount
    """
    approved = [t for t in transactions if t.approved]
    rejected = [t for t in transactions if not t.approved]

    category_spend: Dict[str, Decimal] = {}
    for txn in approved:
        category = txn.merchant_category or "unknown"
        category_spend[category] = category_spend.get(category, ZERO) + txn.amount

    total = len(transactions)
    compliance_rate = round(len(approved) / total * 100, 1) if total > 0 else 100.0

    active_intents = [i for i in intents if i.status == IntentStatus.ACTIVE]
    open_escrows = [e for e in escrows if e.status in OPEN_ESCROW_STATUSES]

    return SpendingSummary(
        user_id=user_id,
        total_transactions=total,
        approved_transactions=len(approved),
        rejected_transactions=len(rejected),
        compliance_rate=compliance_rate,
        total_spent=sum((t.amount for t in approved), ZERO),
        total_blocked=sum((t.amount for t in rejected), ZERO),
        category_spend=dict(sorted(category_spend.items())),
        active_intents=len(active_intents),
        locked_in_intents=sum((i.amount_remaining for i in active_intents), ZERO),
        active_escrows=len(open_escrows),
        pending_in_escrows=sum((e.pending_amount for e in open_escrows), ZERO),
    )
