"""Reputation scoring - compliance history to a bounded trust score and credit tier"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Sequence

from spendguard.domain.models import (
    CreditTier,
    ReputationEvent,
    ReputationEventKind,
    ReputationSnapshot,
    new_id,
)

MIN_SCORE = 0
MAX_SCORE = 1000
RECENT_EVENT_LIMIT = 10

SCORE_DELTAS: Dict[ReputationEventKind, int] = {
    ReputationEventKind.INTENT_COMPLIANCE: 10,
    ReputationEventKind.INTENT_VIOLATION_ATTEMPT: -15,
    ReputationEventKind.ESCROW_RELEASED: 20,
    ReputationEventKind.ESCROW_CLAWBACK_MISUSE: -30,
    ReputationEventKind.PROOF_SUBMITTED: 5,
    ReputationEventKind.EMERGENCY_OVERRIDE: -5,
    ReputationEventKind.INTENT_CREATED: 2,
    ReputationEventKind.SAVINGS_MILESTONE: 15,
}


def clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, score))


def build_event(
    user_id: str,
    kind: ReputationEventKind,
    description: str,
    prior_score: int,
    now: datetime,
) -> ReputationEvent:
    """Apply the kind's fixed delta to the prior score, clamped into [0, 1000]"""
    delta = SCORE_DELTAS[kind]
    return ReputationEvent(
        event_id=new_id("REP"),
        user_id=user_id,
        kind=kind,
        delta=delta,
        description=description,
        timestamp=now,
        score_after=clamp_score(prior_score + delta),
    )


def credit_tier_for(score: int) -> CreditTier:
    """
    Map score to credit tier. Always derived, never stored.

    Score bands:
    - 800+:    premium    (high eligibility, largest line, lowest rate)
    - 600-799: standard   (medium)
    - 400-599: basic      (low)
    - <400:    restricted (no credit line)
    """
    if score >= 800:
        return CreditTier("high", "premium", Decimal("100000"), 8.5)
    elif score >= 600:
        return CreditTier("medium", "standard", Decimal("25000"), 12.0)
    elif score >= 400:
        return CreditTier("low", "basic", Decimal("5000"), 18.0)
    else:
        return CreditTier("none", "restricted", Decimal("0"), None)


def level_label_for(score: int) -> str:
    if score >= 800:
        return "Excellent"
    elif score >= 600:
        return "Good"
    elif score >= 400:
        return "Fair"
    return "Poor"


def build_snapshot(user_id: str, score: int, events: Sequence[ReputationEvent]) -> ReputationSnapshot:
    """Score view plus compliance statistics; events are expected oldest first"""
    compliant = sum(1 for e in events if e.kind == ReputationEventKind.INTENT_COMPLIANCE)
    violations = sum(1 for e in events if e.kind == ReputationEventKind.INTENT_VIOLATION_ATTEMPT)
    total = compliant + violations
    compliance_rate = round(compliant / total * 100, 1) if total > 0 else 100.0

    return ReputationSnapshot(
        user_id=user_id,
        score=score,
        credit_tier=credit_tier_for(score),
        level_label=level_label_for(score),
        compliant_count=compliant,
        violation_count=violations,
        total_transactions=total,
        compliance_rate=compliance_rate,
        recent_events=tuple(reversed(events[-RECENT_EVENT_LIMIT:])),
    )
