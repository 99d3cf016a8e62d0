"""Escrow service: create, release milestones, claw back"""

import logging
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from spendguard.config import settings
from spendguard.domain.escrow import build_escrow, initiate_clawback, release_milestone, release_reference
from spendguard.domain.exceptions import EscrowNotFoundError
from spendguard.domain.models import (
    ClawbackReason,
    ClawbackReceipt,
    Escrow,
    MilestoneSpec,
    ReleaseReceipt,
    ReputationEventKind,
)
from spendguard.domain.ports import EscrowRepository
from spendguard.infrastructure.observability.metrics import clawback_counter, milestone_release_counter
from spendguard.services.reputation_service import ReputationService
from spendguard.utils.date_utils import utc_now


class EscrowService:
    """Milestone escrow ledger; each mutation is atomic per escrow"""

    def __init__(
        self,
        escrows: EscrowRepository,
        reputation: Optional[ReputationService] = None,
        misuse_penalty_rate: Decimal | None = None,
        savings_allocation_rate: Decimal | None = None,
        expiry_days: int | None = None,
        clock: Callable = utc_now,
    ):
        self.escrows = escrows
        self.reputation = reputation
        self.misuse_penalty_rate = (
            settings.misuse_penalty_rate if misuse_penalty_rate is None else misuse_penalty_rate
        )
        self.savings_allocation_rate = (
            settings.savings_allocation_rate if savings_allocation_rate is None else savings_allocation_rate
        )
        self.expiry_days = expiry_days or settings.escrow_default_expiry_days
        self.clock = clock

    def create_escrow(
        self,
        user_id: str,
        milestones: Sequence[MilestoneSpec],
        title: str = "",
        intent_id: Optional[str] = None,
    ) -> Escrow:
        escrow = build_escrow(
            user_id,
            milestones,
            self.clock(),
            intent_id=intent_id,
            title=title,
            expiry_days=self.expiry_days,
        )
        self.escrows.add(escrow)
        logging.info(
            "Escrow created",
            extra={"escrow_id": escrow.escrow_id, "user_id": user_id, "total_amount": str(escrow.total_amount)},
        )
        return escrow

    def get_escrow(self, escrow_id: str) -> Escrow:
        escrow = self.escrows.get(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(f"Escrow {escrow_id} not found")
        return escrow

    def list_escrows(self, user_id: str) -> List[Escrow]:
        return self.escrows.list_by_user(user_id)

    def release_milestone(
        self,
        escrow_id: str,
        milestone_id: str,
        proof: Optional[str] = None,
        merchant_id: Optional[str] = None,
    ) -> ReleaseReceipt:
        now = self.clock()

        def release(escrow: Escrow):
            milestone = release_milestone(escrow, milestone_id, proof, now, merchant_id)
            receipt = ReleaseReceipt(
                escrow_id=escrow.escrow_id,
                milestone_id=milestone.milestone_id,
                amount_released=milestone.amount,
                total_released=escrow.released_amount,
                pending_amount=escrow.pending_amount,
                escrow_status=escrow.status,
                settlement_reference=release_reference(escrow.escrow_id, milestone.milestone_id),
                released_at=now,
            )
            return receipt, escrow.user_id

        receipt, user_id = self.escrows.update(escrow_id, release)
        milestone_release_counter.inc()
        logging.info(
            "Milestone released",
            extra={
                "escrow_id": escrow_id,
                "milestone_id": milestone_id,
                "amount_released": str(receipt.amount_released),
                "escrow_status": receipt.escrow_status.value,
            },
        )
        if self.reputation is not None:
            self.reputation.record_event_safely(
                user_id,
                ReputationEventKind.ESCROW_RELEASED,
                f"Milestone released: {receipt.amount_released} from escrow {escrow_id}",
            )
        return receipt

    def initiate_clawback(self, escrow_id: str, reason, partial_amount=None) -> ClawbackReceipt:
        reason = ClawbackReason(reason)
        now = self.clock()

        def clawback(escrow: Escrow):
            receipt = initiate_clawback(
                escrow,
                reason,
                now,
                partial_amount=partial_amount,
                misuse_penalty_rate=self.misuse_penalty_rate,
                savings_allocation_rate=self.savings_allocation_rate,
            )
            return receipt, escrow.user_id

        receipt, user_id = self.escrows.update(escrow_id, clawback)
        clawback_counter.labels(reason=reason.value).inc()
        logging.info(
            "Escrow clawed back",
            extra={
                "escrow_id": escrow_id,
                "reason": reason.value,
                "clawback_amount": str(receipt.clawback_amount),
                "penalty_amount": str(receipt.penalty_amount),
            },
        )
        if reason == ClawbackReason.MISUSE and self.reputation is not None:
            self.reputation.record_event_safely(
                user_id,
                ReputationEventKind.ESCROW_CLAWBACK_MISUSE,
                f"Clawback initiated for misuse: {receipt.clawback_amount}",
            )
        return receipt
