"""Payment orchestration: resolve intent, validate, commit the outcome"""

import dataclasses
import logging
import time
from decimal import Decimal
from typing import Optional, Tuple

from spendguard.config import settings
from spendguard.domain.exceptions import IntentNotFoundError
from spendguard.domain.intents import IntentSelector, apply_usage, expire_intent, get_selector, record_violation
from spendguard.domain.models import (
    Intent,
    Merchant,
    PaymentOutcome,
    PaymentRequest,
    ReputationEventKind,
    TransactionContext,
    TransactionRecord,
    ValidationResult,
    new_id,
)
from spendguard.domain.ports import IntentRepository, MerchantDirectory, TransactionRepository, WalletRepository
from spendguard.domain.rule_engine import validate_transaction
from spendguard.infrastructure.observability.logging import log_emergency_override, log_validation
from spendguard.infrastructure.observability.metrics import record_validation
from spendguard.services.reputation_service import ReputationService
from spendguard.utils.date_utils import utc_now
from spendguard.utils.money_utils import to_amount


class TransactionOrchestrator:
    """
    Sequences one payment through the enforcement layer.

    Flow:
    1. Look up the merchant
    2. Resolve the intent (explicit id, or the configured selection strategy)
    3. Under the intent's lock: validate, then apply usage or record the violation
    4. Append the transaction log entry
    5. Emit reputation events (failures logged, never rolled back)
    """

    def __init__(
        self,
        intents: IntentRepository,
        merchants: MerchantDirectory,
        transactions: TransactionRepository,
        wallets: WalletRepository,
        reputation: ReputationService,
        selector: Optional[IntentSelector] = None,
        risk_threshold: float | None = None,
        high_value_threshold: Decimal | None = None,
    ):
        self.intents = intents
        self.merchants = merchants
        self.transactions = transactions
        self.wallets = wallets
        self.reputation = reputation
        self.selector = selector or get_selector(settings.intent_selection_strategy)
        self.risk_threshold = settings.merchant_risk_threshold if risk_threshold is None else risk_threshold
        self.high_value_threshold = (
            settings.high_value_threshold if high_value_threshold is None else high_value_threshold
        )

    def _validate(self, intent: Optional[Intent], merchant: Merchant, amount: Decimal, context: TransactionContext):
        return validate_transaction(
            intent,
            merchant,
            amount,
            context,
            risk_threshold=self.risk_threshold,
            high_value_threshold=self.high_value_threshold,
        )

    def resolve_intent_id(self, request: PaymentRequest, amount: Decimal) -> Optional[str]:
        """Explicit intent (must belong to the payer) or the selector's pick; None if nothing fits"""
        if request.intent_id is not None:
            intent = self.intents.get(request.intent_id)
            if intent is None or intent.user_id != request.user_id:
                raise IntentNotFoundError(f"Intent {request.intent_id} not found for user {request.user_id}")
            return intent.intent_id

        if request.context.emergency_override:
            return None

        chosen = self.selector(self.intents.list_by_user(request.user_id), amount, request.context.requested_at)
        return chosen.intent_id if chosen else None

    def _validate_and_commit(
        self, intent: Intent, merchant: Merchant, amount: Decimal, context: TransactionContext
    ) -> Tuple[ValidationResult, Intent]:
        """Runs inside the intent's atomic update, so the check and the mutation see the same balance"""
        result = self._validate(intent, merchant, amount, context)
        if result.emergency_bypass:
            return result, intent

        if result.approved:
            apply_usage(intent, amount)
        else:
            record_violation(intent)
            released = expire_intent(intent, context.requested_at)
            if released > 0:
                self.wallets.release_funds(intent.user_id, released)
        return result, intent

    def process_payment(self, request: PaymentRequest) -> PaymentOutcome:
        """
        Validate a payment and commit its outcome.

        Raises:
            MerchantNotFoundError / MerchantDirectoryError: merchant lookup failed
            IntentNotFoundError: explicit intent id unknown or owned by another user
            InvalidAmountError: amount cannot be carried to the cent
        """
        start_time = time.time()
        context = dataclasses.replace(request.context, transaction_id=new_id("TXN"))
        amount = to_amount(request.amount)
        merchant = self.merchants.get(request.merchant_id)

        intent_id = self.resolve_intent_id(request, amount)
        committed_intent = None
        if intent_id is None:
            result = self._validate(None, merchant, amount, context)
        else:
            result, committed_intent = self.intents.update(
                intent_id, lambda intent: self._validate_and_commit(intent, merchant, amount, context)
            )

        record = TransactionRecord(
            transaction_id=context.transaction_id,
            user_id=request.user_id,
            merchant_id=merchant.merchant_id,
            amount=amount,
            approved=result.approved,
            created_at=utc_now(),
            intent_id=intent_id,
            failed_at_check=result.failed_at_check,
            violation_reason=result.violation_reason,
            settlement_reference=result.settlement_reference,
            risk_level=result.risk_assessment.level if result.risk_assessment else None,
            emergency_bypass=result.emergency_bypass,
            merchant_category=merchant.category.value,
        )
        try:
            self.transactions.add(record)
        except Exception:
            logging.exception("Transaction log write failed", extra={"transaction_id": record.transaction_id})

        duration_ms = (time.time() - start_time) * 1000
        failed_check = result.failed_at_check.value if result.failed_at_check else None
        record_validation(result.approved, result.emergency_bypass, failed_check, result.processing_latency_ms)
        log_validation(
            record.transaction_id,
            request.user_id,
            intent_id,
            merchant.merchant_id,
            result.approved,
            failed_check,
            duration_ms,
        )

        self._emit_reputation(record.transaction_id, request, merchant, amount, result)
        return PaymentOutcome(transaction=record, result=result, intent=committed_intent)

    def _emit_reputation(
        self,
        transaction_id: str,
        request: PaymentRequest,
        merchant: Merchant,
        amount: Decimal,
        result: ValidationResult,
    ) -> None:
        user_id = request.user_id
        if result.emergency_bypass:
            log_emergency_override(transaction_id, user_id, merchant.merchant_id, str(amount))
            self.reputation.record_event_safely(
                user_id, ReputationEventKind.EMERGENCY_OVERRIDE, f"Emergency override at {merchant.name}"
            )
        elif result.approved:
            self.reputation.record_event_safely(
                user_id,
                ReputationEventKind.INTENT_COMPLIANCE,
                f"Compliant transaction of {amount} at {merchant.name}",
            )
            if request.context.proof_provided:
                self.reputation.record_event_safely(
                    user_id, ReputationEventKind.PROOF_SUBMITTED, f"Proof submitted for payment at {merchant.name}"
                )
        else:
            reason = (result.violation_reason or "")[:80]
            self.reputation.record_event_safely(
                user_id,
                ReputationEventKind.INTENT_VIOLATION_ATTEMPT,
                f"Blocked transaction at {merchant.name}: {reason}",
            )
