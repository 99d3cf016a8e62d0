"""Intent lifecycle service: create (with fund lock), usage, violations, cancellation"""

import logging
from decimal import Decimal
from typing import Callable, List, Optional

from spendguard.domain.exceptions import DomainException, FundLockError, IntentNotFoundError
from spendguard.domain.intents import apply_usage, build_intent, cancel_intent, record_violation
from spendguard.domain.models import Intent, Policy, ReputationEventKind
from spendguard.domain.ports import IntentRepository, WalletRepository
from spendguard.services.reputation_service import ReputationService
from spendguard.utils.date_utils import utc_now


class IntentService:
    """Owns every mutation of Intent records outside the payment pipeline"""

    def __init__(
        self,
        intents: IntentRepository,
        wallets: WalletRepository,
        reputation: Optional[ReputationService] = None,
        clock: Callable = utc_now,
    ):
        self.intents = intents
        self.wallets = wallets
        self.reputation = reputation
        self.clock = clock

    def create_intent(self, user_id: str, source_text: str, policy: Policy) -> Intent:
        """
        Create an intent and lock its amount from the user's spendable balance.

        Locking and record creation happen as one step: if the record cannot be written
        the lock is not taken, and if funds are short no record is written.

        Raises:
            WalletNotFoundError: user has no wallet
            InsufficientFundsError: spendable balance below policy.amount_limit
            FundLockError: the intent record could not be persisted
        """
        intent = build_intent(user_id, source_text, policy, self.clock())

        def create() -> Intent:
            self.intents.add(intent)
            return intent

        try:
            created = self.wallets.lock_funds(user_id, policy.amount_limit, create)
        except DomainException:
            raise
        except Exception as e:
            raise FundLockError(f"Intent creation rejected; funds were not locked: {e}") from e

        logging.info(
            "Intent created",
            extra={"intent_id": created.intent_id, "user_id": user_id, "amount_locked": str(policy.amount_limit)},
        )
        if self.reputation is not None:
            self.reputation.record_event_safely(
                user_id, ReputationEventKind.INTENT_CREATED, f'Created intent: "{source_text[:50]}"'
            )
        return created

    def get_intent(self, intent_id: str) -> Intent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise IntentNotFoundError(f"Intent {intent_id} not found")
        return intent

    def list_intents(self, user_id: str) -> List[Intent]:
        return self.intents.list_by_user(user_id)

    def apply_usage(self, intent_id: str, amount) -> Intent:
        return self.intents.update(intent_id, lambda intent: apply_usage(intent, amount))

    def record_violation(self, intent_id: str) -> Intent:
        return self.intents.update(intent_id, record_violation)

    def cancel_intent(self, intent_id: str) -> Decimal:
        """
        Cancel an active intent and unlock its remaining balance.

        Returns:
            Amount returned to the owner's spendable balance
        """

        def cancel(intent: Intent) -> Decimal:
            released = cancel_intent(intent)
            if released > 0:
                self.wallets.release_funds(intent.user_id, released)
            return released

        released = self.intents.update(intent_id, cancel)
        logging.info("Intent cancelled", extra={"intent_id": intent_id, "released_amount": str(released)})
        return released
