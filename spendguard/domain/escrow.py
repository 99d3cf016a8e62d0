"""Escrow lifecycle - milestone releases and clawback

State machine:
    locked -> partially_released -> released     (milestone releases)
    locked | partially_released -> clawback      (terminal)

Status is never stored; Escrow.status derives it from completed milestones and the
clawback receipt, so released + pending == total by construction.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from spendguard.domain.exceptions import (
    EscrowTerminalError,
    InvalidClawbackError,
    InvalidPolicyError,
    MilestoneAlreadyCompletedError,
    MilestoneNotFoundError,
    ProofRequiredError,
)
from spendguard.domain.models import (
    ClawbackReason,
    ClawbackReceipt,
    Escrow,
    EscrowStatus,
    Milestone,
    MilestoneSpec,
    MilestoneStatus,
    ZERO,
    new_id,
)
from spendguard.utils.date_utils import add_days
from spendguard.utils.money_utils import apply_rate, to_amount


def build_escrow(
    user_id: str,
    milestones: Sequence[MilestoneSpec],
    now: datetime,
    intent_id: Optional[str] = None,
    title: str = "",
    expiry_days: int = 30,
) -> Escrow:
    """
    New locked escrow; its total is the sum of the milestone amounts.

    Raises:
        InvalidPolicyError: no milestones, or a milestone amount that is not positive
        InvalidAmountError: a milestone amount that cannot be carried to the cent
    """
    if not milestones:
        raise InvalidPolicyError("Escrow needs at least one milestone")

    built = []
    for spec in milestones:
        amount = to_amount(spec.amount)
        if amount <= 0:
            raise InvalidPolicyError(f"Milestone amount must be positive (got {amount})")
        built.append(
            Milestone(
                milestone_id=new_id("MST"),
                description=spec.description,
                amount=amount,
                required_proof_kind=spec.required_proof_kind,
            )
        )

    return Escrow(
        escrow_id=new_id("ESC"),
        user_id=user_id,
        milestones=built,
        created_at=now,
        expires_at=add_days(now, expiry_days),
        intent_id=intent_id,
        title=title,
    )


def release_milestone(
    escrow: Escrow,
    milestone_id: str,
    proof: Optional[str],
    now: datetime,
    merchant_id: Optional[str] = None,
) -> Milestone:
    """
    Complete one milestone, moving its amount from pending to released.

    Raises:
        EscrowTerminalError: escrow was clawed back
        MilestoneNotFoundError: no such milestone on this escrow
        MilestoneAlreadyCompletedError: milestone already released
        ProofRequiredError: milestone requires proof and none was supplied
    """
    if escrow.status == EscrowStatus.CLAWBACK:
        raise EscrowTerminalError(f"Escrow {escrow.escrow_id} was clawed back; no further releases")

    milestone = escrow.find_milestone(milestone_id)
    if milestone is None:
        raise MilestoneNotFoundError(f"Milestone {milestone_id} not found on escrow {escrow.escrow_id}")
    if milestone.is_completed:
        raise MilestoneAlreadyCompletedError(f"Milestone {milestone_id} already completed")
    if milestone.required_proof_kind and not proof:
        raise ProofRequiredError(f"Proof required: {milestone.required_proof_kind}")

    milestone.status = MilestoneStatus.COMPLETED
    milestone.completed_at = now
    milestone.settled_merchant_id = merchant_id
    milestone.proof_reference = proof
    return milestone


def release_reference(escrow_id: str, milestone_id: str) -> str:
    digest = uuid.uuid5(uuid.NAMESPACE_URL, f"escrow:{escrow_id}:{milestone_id}")
    return f"SETL-ESC-{digest.hex[:16].upper()}"


def initiate_clawback(
    escrow: Escrow,
    reason: ClawbackReason,
    now: datetime,
    partial_amount=None,
    misuse_penalty_rate: Decimal = Decimal("0.02"),
    savings_allocation_rate: Decimal = Decimal("0.30"),
) -> ClawbackReceipt:
    """
    Recover unreleased funds and close the escrow.

    - Default amount is everything pending; a partial amount must be within (0, pending]
    - Misuse withholds misuse_penalty_rate of the recovered amount as a penalty
    - savings_allocation_rate of the net (post-penalty) amount is routed to savings
    - Whatever pending balance a partial clawback leaves behind is reported as unrecovered

    Example (misuse, pending 1000): penalty 20, net 980, savings 294

    Raises:
        EscrowTerminalError: escrow already fully released or clawed back
        InvalidClawbackError: partial amount out of range
    """
    status = escrow.status
    if status in (EscrowStatus.RELEASED, EscrowStatus.CLAWBACK):
        raise EscrowTerminalError(f"Escrow {escrow.escrow_id} is {status.value}; clawback not allowed")

    pending = escrow.pending_amount
    amount = pending if partial_amount is None else to_amount(partial_amount)
    if amount <= 0 or amount > pending:
        raise InvalidClawbackError(f"Clawback amount {amount} must be within (0, {pending}]")

    penalty_rate = misuse_penalty_rate if reason == ClawbackReason.MISUSE else ZERO
    penalty = apply_rate(amount, penalty_rate)
    net = amount - penalty

    receipt = ClawbackReceipt(
        escrow_id=escrow.escrow_id,
        reason=reason,
        clawback_amount=amount,
        penalty_amount=penalty,
        net_returned=net,
        savings_allocation=apply_rate(net, savings_allocation_rate),
        unrecovered_amount=pending - amount,
        clawed_back_at=now,
    )
    escrow.clawback = receipt
    return receipt
