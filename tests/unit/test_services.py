"""Service tests over the in-memory repositories"""

import pytest
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from spendguard.domain.exceptions import (
    EscrowTerminalError,
    FundLockError,
    InsufficientFundsError,
    IntentNotActiveError,
    IntentNotFoundError,
    InvalidAmountError,
    MerchantNotFoundError,
    MilestoneAlreadyCompletedError,
    WalletNotFoundError,
)
from spendguard.domain.intents import select_first_created
from spendguard.domain.models import (
    CheckName,
    ClawbackReason,
    EscrowStatus,
    IntentStatus,
    MilestoneSpec,
    PaymentRequest,
    Policy,
    ReputationEventKind,
    TransactionContext,
)
from spendguard.infrastructure.clients.merchants import StaticMerchantDirectory
from spendguard.infrastructure.memory.repositories import (
    InMemoryIntentRepository,
    InMemoryTransactionRepository,
)
from spendguard.services.intent_service import IntentService
from spendguard.services.reputation_service import ReputationService
from spendguard.services.transaction_orchestrator import TransactionOrchestrator

NOW = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
BOOKS_POLICY = Policy(amount_limit=Decimal("500"), allowed_categories=frozenset({"books"}))


def _pay(merchant_id, amount, intent_id=None, user_id="user_books", **context):
    ctx = TransactionContext(requested_at=NOW + timedelta(hours=1), **context)
    return PaymentRequest(user_id=user_id, merchant_id=merchant_id, amount=Decimal(amount), intent_id=intent_id, context=ctx)


def _kinds(reputation, user_id="user_books"):
    return [e.kind for e in reputation.repository.list_by_user(user_id)]


class _FailingReputationRepository:
    def record(self, user_id, build):
        raise RuntimeError("reputation store down")

    def current_score(self, user_id):
        return 500

    def list_by_user(self, user_id):
        return []


def test_create_intent_locks_funds(intent_service, wallets, reputation):
    """Creating an intent moves its limit from available to locked"""
    intent = intent_service.create_intent("user_books", "Spend 500 only on books", BOOKS_POLICY)

    assert wallets.available_balance("user_books") == Decimal("1500.00")
    assert wallets.locked_balance("user_books") == Decimal("500.00")
    assert intent_service.get_intent(intent.intent_id).amount_remaining == Decimal("500.00")
    assert _kinds(reputation) == [ReputationEventKind.INTENT_CREATED]


def test_create_intent_insufficient_funds(intent_service, wallets):
    """Short balance fails before any record is written"""
    with pytest.raises(InsufficientFundsError):
        intent_service.create_intent("user_poor", "Spend 500 on books", BOOKS_POLICY)

    assert intent_service.list_intents("user_poor") == []
    assert wallets.locked_balance("user_poor") == Decimal("0")


def test_create_intent_without_wallet(intent_service):
    with pytest.raises(WalletNotFoundError):
        intent_service.create_intent("user_ghost", "Spend 500 on books", BOOKS_POLICY)


def test_create_intent_write_failure_takes_no_lock(wallets, reputation):
    """If the intent record cannot be stored the funds stay unlocked"""

    class BrokenIntentRepository(InMemoryIntentRepository):
        def add(self, intent):
            raise RuntimeError("disk full")

    service = IntentService(BrokenIntentRepository(), wallets, reputation, clock=lambda: NOW)
    with pytest.raises(FundLockError):
        service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)

    assert wallets.locked_balance("user_books") == Decimal("0")
    assert wallets.available_balance("user_books") == Decimal("2000.00")


def test_cancel_intent_unlocks_remaining(intent_service, wallets):
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)
    intent_service.apply_usage(intent.intent_id, Decimal("120"))

    released = intent_service.cancel_intent(intent.intent_id)

    assert released == Decimal("380.00")
    assert wallets.locked_balance("user_books") == Decimal("120.00")
    assert intent_service.get_intent(intent.intent_id).status == IntentStatus.CANCELLED
    with pytest.raises(IntentNotActiveError):
        intent_service.cancel_intent(intent.intent_id)


def test_unknown_intent(intent_service):
    with pytest.raises(IntentNotFoundError):
        intent_service.get_intent("INT-missing")
    with pytest.raises(IntentNotFoundError):
        intent_service.record_violation("INT-missing")


def test_repository_returns_snapshots(intent_service):
    """Mutating a fetched intent does not change storage"""
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)
    fetched = intent_service.get_intent(intent.intent_id)
    fetched.amount_used = Decimal("499")

    assert intent_service.get_intent(intent.intent_id).amount_used == Decimal("0")


def test_approved_payment_commits_usage(intent_service, orchestrator, reputation):
    """Compliant bookstore payment spends the intent down to 180"""
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)

    outcome = orchestrator.process_payment(_pay("MRC001", "320", intent.intent_id))

    assert outcome.result.approved is True
    assert outcome.intent.amount_remaining == Decimal("180.00")
    stored = intent_service.get_intent(intent.intent_id)
    assert stored.amount_remaining == Decimal("180.00")
    assert stored.amount_used + stored.amount_remaining == stored.amount_limit
    assert outcome.transaction.settlement_reference == outcome.result.settlement_reference
    assert outcome.transaction.merchant_category == "books"
    assert _kinds(reputation)[-1] == ReputationEventKind.INTENT_COMPLIANCE


def test_repeated_request_id_gets_fresh_settlement_references(intent_service, orchestrator):
    """Two payments under one trace id are two transactions with two references"""
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)
    payment = _pay("MRC001", "100", intent.intent_id, request_id="trace-1")

    first = orchestrator.process_payment(payment)
    second = orchestrator.process_payment(payment)

    assert first.result.approved and second.result.approved
    assert first.transaction.transaction_id != second.transaction.transaction_id
    assert first.result.settlement_reference != second.result.settlement_reference
    assert intent_service.get_intent(intent.intent_id).amount_used == Decimal("200.00")


def test_unrepresentable_amount_is_rejected_before_any_commit(intent_service, orchestrator):
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)

    with pytest.raises(InvalidAmountError):
        orchestrator.process_payment(_pay("MRC001", "1e30", intent.intent_id))

    assert intent_service.get_intent(intent.intent_id).amount_used == Decimal("0")
    assert orchestrator.transactions.list_by_user("user_books") == []


def test_rejected_payment_records_violation(intent_service, orchestrator, reputation):
    """Restaurant payment against a books intent counts a violation and spends nothing"""
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)

    outcome = orchestrator.process_payment(_pay("MRC002", "180", intent.intent_id))

    assert outcome.result.approved is False
    assert outcome.result.failed_at_check == CheckName.MERCHANT_CATEGORY
    stored = intent_service.get_intent(intent.intent_id)
    assert stored.violation_count == 1
    assert stored.amount_used == Decimal("0")
    assert _kinds(reputation)[-1] == ReputationEventKind.INTENT_VIOLATION_ATTEMPT
    assert reputation.get_snapshot("user_books").score == 500 + 2 - 15


def test_proof_payment_earns_proof_event(intent_service, orchestrator, reputation):
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)

    orchestrator.process_payment(_pay("MRC001", "100", intent.intent_id, proof_provided=True))

    assert _kinds(reputation)[-2:] == [ReputationEventKind.INTENT_COMPLIANCE, ReputationEventKind.PROOF_SUBMITTED]


def test_auto_selects_intent(intent_service, orchestrator):
    """Unaddressed payment goes to the soonest-expiring sufficient intent"""
    monthly = intent_service.create_intent("user_books", "Books this month", BOOKS_POLICY)
    weekly = intent_service.create_intent(
        "user_books",
        "Books this week",
        Policy(amount_limit=Decimal("300"), allowed_categories=frozenset({"books"}), validity_days=7),
    )

    outcome = orchestrator.process_payment(_pay("MRC001", "100"))

    assert outcome.transaction.intent_id == weekly.intent_id
    assert intent_service.get_intent(monthly.intent_id).amount_used == Decimal("0")


def test_selector_is_swappable(intent_service, wallets, reputation):
    """first_created strategy prefers the older intent even when another expires sooner"""
    monthly = intent_service.create_intent("user_books", "Books this month", BOOKS_POLICY)
    later = IntentService(intent_service.intents, wallets, reputation, clock=lambda: NOW + timedelta(minutes=30))
    later.create_intent(
        "user_books",
        "Books this week",
        Policy(amount_limit=Decimal("300"), allowed_categories=frozenset({"books"}), validity_days=7),
    )
    orchestrator = TransactionOrchestrator(
        intent_service.intents,
        StaticMerchantDirectory(),
        InMemoryTransactionRepository(),
        wallets,
        reputation,
        selector=select_first_created,
    )

    assert orchestrator.process_payment(_pay("MRC001", "100")).transaction.intent_id == monthly.intent_id


def test_no_intent_rejected_with_violation_event(orchestrator, reputation):
    """Payment with no intent at all is rejected and still counts against reputation"""
    outcome = orchestrator.process_payment(_pay("MRC001", "100"))

    assert outcome.result.failed_at_check == CheckName.INTENT_STATUS
    assert outcome.intent is None
    assert _kinds(reputation) == [ReputationEventKind.INTENT_VIOLATION_ATTEMPT]


def test_explicit_intent_must_belong_to_payer(intent_service, orchestrator):
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)

    with pytest.raises(IntentNotFoundError):
        orchestrator.process_payment(_pay("MRC001", "100", intent.intent_id, user_id="user_poor"))


def test_unknown_merchant(orchestrator):
    with pytest.raises(MerchantNotFoundError):
        orchestrator.process_payment(_pay("MRC999", "100"))


def test_emergency_override_leaves_intent_untouched(intent_service, orchestrator, reputation):
    """Override approves at a mixed merchant without spending the intent"""
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)

    outcome = orchestrator.process_payment(_pay("MRC006", "200", intent.intent_id, emergency_override=True))

    assert outcome.result.approved is True
    assert outcome.result.emergency_bypass is True
    assert outcome.transaction.emergency_bypass is True
    stored = intent_service.get_intent(intent.intent_id)
    assert stored.amount_used == Decimal("0")
    assert stored.violation_count == 0
    assert _kinds(reputation)[-1] == ReputationEventKind.EMERGENCY_OVERRIDE


def test_lazy_expiry_unlocks_funds(intent_service, orchestrator, wallets):
    """First payment after expiry marks the intent expired and unlocks its balance"""
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)
    late = PaymentRequest(
        user_id="user_books",
        merchant_id="MRC001",
        amount=Decimal("100"),
        intent_id=intent.intent_id,
        context=TransactionContext(requested_at=intent.expires_at + timedelta(minutes=1)),
    )

    outcome = orchestrator.process_payment(late)

    assert outcome.result.failed_at_check == CheckName.INTENT_STATUS
    assert intent_service.get_intent(intent.intent_id).status == IntentStatus.EXPIRED
    assert wallets.locked_balance("user_books") == Decimal("0")


def test_transaction_log(intent_service, orchestrator):
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)
    orchestrator.process_payment(_pay("MRC001", "100", intent.intent_id))
    orchestrator.process_payment(_pay("MRC002", "50", intent.intent_id))

    history = orchestrator.transactions.list_by_user("user_books")

    assert [r.approved for r in history] == [False, True]
    assert history[0].failed_at_check == CheckName.MERCHANT_CATEGORY
    assert history[1].transaction_id.startswith("TXN-")


def test_reputation_failure_does_not_roll_back_spend(intent_service, wallets):
    """Committed usage survives a failing reputation write"""
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)
    orchestrator = TransactionOrchestrator(
        intent_service.intents,
        StaticMerchantDirectory(),
        InMemoryTransactionRepository(),
        wallets,
        ReputationService(_FailingReputationRepository()),
    )

    outcome = orchestrator.process_payment(_pay("MRC001", "320", intent.intent_id))

    assert outcome.result.approved is True
    assert intent_service.get_intent(intent.intent_id).amount_remaining == Decimal("180.00")


def test_concurrent_payments_never_overdraw(intent_service, orchestrator):
    """Parallel payments against one intent approve exactly what the balance covers"""
    intent = intent_service.create_intent("user_books", "Spend 500 on books", BOOKS_POLICY)
    results = []
    results_lock = threading.Lock()
    start = threading.Barrier(10)

    def pay():
        start.wait()
        outcome = orchestrator.process_payment(_pay("MRC001", "100", intent.intent_id))
        with results_lock:
            results.append(outcome.result)

    threads = [threading.Thread(target=pay) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    approved = [r for r in results if r.approved]
    rejected = [r for r in results if not r.approved]
    stored = intent_service.get_intent(intent.intent_id)

    assert len(approved) == 5
    assert all(r.failed_at_check in (CheckName.AMOUNT_CAP, CheckName.INTENT_STATUS) for r in rejected)
    assert stored.amount_used == Decimal("500.00")
    assert stored.amount_remaining == Decimal("0")
    assert stored.status == IntentStatus.EXHAUSTED


def test_escrow_release_and_reputation(escrow_service, reputation):
    escrow = escrow_service.create_escrow(
        "user_books",
        [MilestoneSpec("Term 1", Decimal("300")), MilestoneSpec("Term 2", Decimal("700"), "invoice")],
        title="Tuition",
    )

    receipt = escrow_service.release_milestone(escrow.escrow_id, escrow.milestones[0].milestone_id)

    assert receipt.amount_released == Decimal("300.00")
    assert receipt.pending_amount == Decimal("700.00")
    assert receipt.escrow_status == EscrowStatus.PARTIALLY_RELEASED
    assert escrow_service.get_escrow(escrow.escrow_id).released_amount == Decimal("300.00")
    assert _kinds(reputation) == [ReputationEventKind.ESCROW_RELEASED]


def test_concurrent_releases_pay_a_milestone_once(escrow_service):
    """Parallel releases of one milestone settle it exactly once"""
    escrow = escrow_service.create_escrow(
        "user_books", [MilestoneSpec("Term 1", Decimal("300")), MilestoneSpec("Term 2", Decimal("700"))]
    )
    milestone = escrow.milestones[0]
    receipts, errors = [], []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(8)

    def release():
        start.wait()
        try:
            receipt = escrow_service.release_milestone(escrow.escrow_id, milestone.milestone_id)
        except MilestoneAlreadyCompletedError as e:
            with outcomes_lock:
                errors.append(e)
        else:
            with outcomes_lock:
                receipts.append(receipt)

    threads = [threading.Thread(target=release) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stored = escrow_service.get_escrow(escrow.escrow_id)
    assert len(receipts) == 1
    assert len(errors) == 7
    assert stored.released_amount == milestone.amount
    assert stored.pending_amount == Decimal("700.00")
    assert stored.status == EscrowStatus.PARTIALLY_RELEASED


def test_release_racing_clawback_conserves_funds(escrow_service):
    """Whichever of release and clawback lands first, every rupee is accounted for once"""
    for _ in range(20):
        escrow = escrow_service.create_escrow(
            "user_books", [MilestoneSpec("Term 1", Decimal("300")), MilestoneSpec("Term 2", Decimal("700"))]
        )
        start = threading.Barrier(2)
        outcome = {}

        def release():
            start.wait()
            try:
                outcome["release"] = escrow_service.release_milestone(
                    escrow.escrow_id, escrow.milestones[0].milestone_id
                )
            except EscrowTerminalError as e:
                outcome["release"] = e

        def clawback():
            start.wait()
            outcome["clawback"] = escrow_service.initiate_clawback(escrow.escrow_id, ClawbackReason.UNUSED)

        threads = [threading.Thread(target=release), threading.Thread(target=clawback)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stored = escrow_service.get_escrow(escrow.escrow_id)
        clawed = outcome["clawback"].clawback_amount
        assert stored.status == EscrowStatus.CLAWBACK
        assert stored.released_amount + clawed == Decimal("1000.00")
        if isinstance(outcome["release"], EscrowTerminalError):
            assert stored.released_amount == Decimal("0")
        else:
            assert clawed == Decimal("700.00")


def test_misuse_clawback_penalizes_reputation(escrow_service, reputation):
    escrow = escrow_service.create_escrow("user_books", [MilestoneSpec("Stage 1", Decimal("1000"))])

    receipt = escrow_service.initiate_clawback(escrow.escrow_id, "misuse")

    assert receipt.reason == ClawbackReason.MISUSE
    assert receipt.savings_allocation == Decimal("294.00")
    assert escrow_service.get_escrow(escrow.escrow_id).status == EscrowStatus.CLAWBACK
    assert _kinds(reputation) == [ReputationEventKind.ESCROW_CLAWBACK_MISUSE]
    assert reputation.get_snapshot("user_books").score == 470


def test_unused_clawback_leaves_reputation(escrow_service, reputation):
    escrow = escrow_service.create_escrow("user_books", [MilestoneSpec("Stage 1", Decimal("1000"))])
    escrow_service.initiate_clawback(escrow.escrow_id, ClawbackReason.UNUSED)

    assert _kinds(reputation) == []


def test_record_event_accepts_kind_string(reputation):
    event = reputation.record_event("user_saver", "savings_milestone", "Saved 10000")

    assert event.kind == ReputationEventKind.SAVINGS_MILESTONE
    assert reputation.get_snapshot("user_saver").score == 515
