"""Concurrency tests over the SQLAlchemy repositories"""

import threading
from decimal import Decimal

from spendguard.domain.exceptions import MilestoneAlreadyCompletedError
from spendguard.domain.models import IntentStatus, MilestoneSpec, PaymentRequest, Policy
from spendguard.infrastructure.clients.merchants import StaticMerchantDirectory
from spendguard.infrastructure.database.repositories import (
    EscrowRepository,
    IntentRepository,
    ReputationRepository,
    TransactionRepository,
    WalletRepository,
)
from spendguard.services.escrow_service import EscrowService
from spendguard.services.intent_service import IntentService
from spendguard.services.reputation_service import ReputationService
from spendguard.services.transaction_orchestrator import TransactionOrchestrator

BOOKS_POLICY = Policy(amount_limit=Decimal("500"), allowed_categories=frozenset({"books"}))


def _orchestrator(session) -> TransactionOrchestrator:
    return TransactionOrchestrator(
        intents=IntentRepository(session),
        merchants=StaticMerchantDirectory(),
        transactions=TransactionRepository(session),
        wallets=WalletRepository(session),
        reputation=ReputationService(ReputationRepository(session)),
    )


def _run_in_threads(count, session_factory, work):
    """Run work(session) on count threads at once, each with its own session"""
    results = []
    results_lock = threading.Lock()
    start = threading.Barrier(count)

    def run():
        session = session_factory()
        try:
            start.wait()
            outcome = work(session)
        except Exception as e:
            outcome = e
        finally:
            session.close()
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=run) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_payments_never_overdraw_stored_intent(db, session_factory):
    """Parallel payments on separate sessions approve exactly what the stored balance covers"""
    WalletRepository(db).open_wallet("user_books", Decimal("2000"))
    intent = IntentService(IntentRepository(db), WalletRepository(db)).create_intent(
        "user_books", "Spend 500 on books", BOOKS_POLICY
    )

    def pay(session):
        payment = PaymentRequest(
            user_id="user_books", merchant_id="MRC001", amount=Decimal("100"), intent_id=intent.intent_id
        )
        return _orchestrator(session).process_payment(payment).result

    results = _run_in_threads(8, session_factory, pay)

    assert not [r for r in results if isinstance(r, Exception)]
    assert len([r for r in results if r.approved]) == 5

    check = session_factory()
    try:
        stored = IntentRepository(check).get(intent.intent_id)
        assert stored.amount_used == Decimal("500.00")
        assert stored.status == IntentStatus.EXHAUSTED
        references = [t.settlement_reference for t in TransactionRepository(check).list_by_user("user_books")]
        approved_references = [r for r in references if r is not None]
        assert len(approved_references) == len(set(approved_references)) == 5
    finally:
        check.close()


def test_concurrent_releases_pay_stored_milestone_once(db, session_factory):
    escrow = EscrowService(EscrowRepository(db)).create_escrow(
        "user_books", [MilestoneSpec("Term 1", Decimal("300")), MilestoneSpec("Term 2", Decimal("700"))]
    )
    milestone_id = escrow.milestones[0].milestone_id

    def release(session):
        return EscrowService(EscrowRepository(session)).release_milestone(escrow.escrow_id, milestone_id)

    results = _run_in_threads(6, session_factory, release)

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 5
    assert all(isinstance(e, MilestoneAlreadyCompletedError) for e in errors)

    check = session_factory()
    try:
        stored = EscrowRepository(check).get(escrow.escrow_id)
        assert stored.released_amount == Decimal("300.00")
        assert stored.pending_amount == Decimal("700.00")
    finally:
        check.close()
