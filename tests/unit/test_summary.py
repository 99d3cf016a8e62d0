"""Tests for the per-user spending summary"""

from datetime import datetime, timezone
from decimal import Decimal

from spendguard.domain.escrow import build_escrow, initiate_clawback, release_milestone
from spendguard.domain.intents import apply_usage, build_intent
from spendguard.domain.models import (
    ClawbackReason,
    IntentStatus,
    MilestoneSpec,
    Policy,
    TransactionRecord,
)
from spendguard.domain.summary import summarize_spending

NOW = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


def _txn(amount, approved, category):
    return TransactionRecord(
        transaction_id=f"TXN-{amount}-{category}",
        user_id="user_books",
        merchant_id="MRC001",
        amount=Decimal(amount),
        approved=approved,
        created_at=NOW,
        merchant_category=category,
    )


def test_summary_of_empty_history():
    summary = summarize_spending("user_new", [], [], [])

    assert summary.total_transactions == 0
    assert summary.compliance_rate == 100.0
    assert summary.total_spent == Decimal("0")
    assert summary.category_spend == {}
    assert summary.active_intents == 0


def test_summary_rolls_up_outcomes_and_categories():
    """Spent and blocked amounts split by outcome; category spend counts approvals only"""
    transactions = [
        _txn("320", True, "books"),
        _txn("80", True, "books"),
        _txn("50", True, "medical"),
        _txn("180", False, "food"),
    ]

    summary = summarize_spending("user_books", transactions, [], [])

    assert summary.approved_transactions == 3
    assert summary.rejected_transactions == 1
    assert summary.compliance_rate == 75.0
    assert summary.total_spent == Decimal("450.00")
    assert summary.total_blocked == Decimal("180.00")
    assert summary.category_spend == {"books": Decimal("400.00"), "medical": Decimal("50.00")}


def test_summary_counts_only_open_commitments():
    """Cancelled intents and closed escrows drop out of the locked and pending totals"""
    policy = Policy(amount_limit=Decimal("500"), allowed_categories=frozenset({"books"}))
    active = apply_usage(build_intent("user_books", "Spend 500 on books", policy, NOW), Decimal("320"))
    cancelled = build_intent("user_books", "Spend 500 on books", policy, NOW)
    cancelled.status = IntentStatus.CANCELLED

    open_escrow = build_escrow(
        "user_books", [MilestoneSpec("Term 1", Decimal("300")), MilestoneSpec("Term 2", Decimal("700"))], NOW
    )
    release_milestone(open_escrow, open_escrow.milestones[0].milestone_id, None, NOW)
    closed_escrow = build_escrow("user_books", [MilestoneSpec("Stage 1", Decimal("1000"))], NOW)
    initiate_clawback(closed_escrow, ClawbackReason.UNUSED, NOW)

    summary = summarize_spending("user_books", [], [active, cancelled], [open_escrow, closed_escrow])

    assert summary.active_intents == 1
    assert summary.locked_in_intents == Decimal("180.00")
    assert summary.active_escrows == 1
    assert summary.pending_in_escrows == Decimal("700.00")
