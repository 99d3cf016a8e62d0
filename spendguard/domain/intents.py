"""Intent lifecycle - pure state transitions on Intent records

Storage-independent: callers run these inside the repository's atomic update so each
transition sees the latest committed copy of the intent.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Optional, Sequence

from spendguard.domain.exceptions import IntentNotActiveError, UsageInvariantError
from spendguard.domain.models import Intent, IntentStatus, Policy, ZERO, new_id
from spendguard.utils.date_utils import add_days
from spendguard.utils.money_utils import to_amount

IntentSelector = Callable[[Sequence[Intent], Decimal, datetime], Optional[Intent]]


def build_intent(user_id: str, source_text: str, policy: Policy, now: datetime) -> Intent:
    """New active intent; its time window opens now and lasts policy.validity_days"""
    return Intent(
        intent_id=new_id("INT"),
        user_id=user_id,
        source_text=source_text,
        policy=policy,
        created_at=now,
        expires_at=add_days(now, policy.validity_days),
    )


def apply_usage(intent: Intent, amount) -> Intent:
    """
    Commit an approved spend against the intent.

    Raises:
        IntentNotActiveError: intent is no longer active
        UsageInvariantError: amount is not positive or exceeds the remaining balance
    """
    amount = to_amount(amount)
    if intent.status != IntentStatus.ACTIVE:
        raise IntentNotActiveError(f"Intent {intent.intent_id} is {intent.status.value}")
    if amount <= 0:
        raise UsageInvariantError(f"Usage amount must be positive (got {amount})")
    if amount > intent.amount_remaining:
        raise UsageInvariantError(
            f"Usage of {amount} would overdraw intent {intent.intent_id} "
            f"(remaining {intent.amount_remaining})"
        )

    intent.amount_used += amount
    intent.approved_count += 1
    if intent.amount_remaining == ZERO:
        intent.status = IntentStatus.EXHAUSTED
    return intent


def record_violation(intent: Intent) -> Intent:
    """Count a blocked attempt; balances are untouched"""
    intent.violation_count += 1
    return intent


def cancel_intent(intent: Intent) -> Decimal:
    """
    Cancel an active intent.

    Returns:
        The remaining balance, to be unlocked back to the owner

    Raises:
        IntentNotActiveError: intent is exhausted, expired or already cancelled
    """
    if intent.status != IntentStatus.ACTIVE:
        raise IntentNotActiveError(f"Intent {intent.intent_id} is {intent.status.value}, not active")
    intent.status = IntentStatus.CANCELLED
    return intent.amount_remaining


def expire_intent(intent: Intent, now: datetime) -> Decimal:
    """
    Lazily move an active intent past its expiry to expired.

    Returns the remaining balance to unlock, or zero when no transition happened.
    """
    if intent.status != IntentStatus.ACTIVE or not intent.is_expired(now):
        return ZERO
    intent.status = IntentStatus.EXPIRED
    return intent.amount_remaining


def _candidates(intents: Sequence[Intent], amount: Decimal, now: datetime):
    return [
        i
        for i in intents
        if i.status == IntentStatus.ACTIVE and not i.is_expired(now) and i.amount_remaining >= amount
    ]


def select_soonest_expiring(intents: Sequence[Intent], amount, now: datetime) -> Optional[Intent]:
    """
    Default selection for an unaddressed payment.

    Among active, unexpired intents that can cover the amount, pick the one that expires
    first. Ties fall back to the oldest intent, then to the id, so the choice is stable.
    """
    candidates = _candidates(intents, to_amount(amount), now)
    if not candidates:
        return None
    return min(candidates, key=lambda i: (i.expires_at, i.created_at, i.intent_id))


def select_first_created(intents: Sequence[Intent], amount, now: datetime) -> Optional[Intent]:
    """Oldest intent that can cover the amount"""
    candidates = _candidates(intents, to_amount(amount), now)
    if not candidates:
        return None
    return min(candidates, key=lambda i: (i.created_at, i.intent_id))


SELECTION_STRATEGIES: Dict[str, IntentSelector] = {
    "soonest_expiring": select_soonest_expiring,
    "first_created": select_first_created,
}


def get_selector(name: str) -> IntentSelector:
    try:
        return SELECTION_STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown intent selection strategy: {name}") from None
