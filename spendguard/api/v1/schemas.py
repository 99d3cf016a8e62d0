"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from spendguard.domain.models import (
    CheckStatus,
    ClawbackReason,
    ClawbackReceipt,
    Escrow,
    GeoRestriction,
    Intent,
    Policy,
    ReputationEventKind,
    SplitRule,
)

# Money travels as at most 12 whole digits plus cents
MONEY_DIGITS = 14


class GeoRestrictionSchema(BaseModel):
    city: Optional[str] = None
    region: Optional[str] = None
    radius_km: Optional[float] = Field(None, gt=0)


class SplitRuleSchema(BaseModel):
    spend: Decimal = Field(..., ge=0, le=1)
    save: Decimal = Field(..., ge=0, le=1)


class PolicySchema(BaseModel):
    """Structured policy as produced by the intent parser"""

    amount_limit: Decimal = Field(
        ..., gt=0, max_digits=MONEY_DIGITS, decimal_places=2, description="Amount to lock for this intent"
    )
    allowed_categories: List[str] = Field(default_factory=list)
    allowed_merchant_codes: List[str] = Field(default_factory=list)
    validity_days: int = Field(30, gt=0)
    geo_restriction: Optional[GeoRestrictionSchema] = None
    proof_required: bool = False
    enforcement_tier: int = Field(1, ge=1, le=3)
    split_rule: Optional[SplitRuleSchema] = None
    escrow_enabled: bool = False
    currency: str = "INR"

    def to_domain(self) -> Policy:
        """Raises InvalidPolicyError for combinations field validation cannot catch"""
        geo = self.geo_restriction
        split = self.split_rule
        return Policy(
            amount_limit=self.amount_limit,
            allowed_categories=frozenset(self.allowed_categories),
            allowed_merchant_codes=frozenset(self.allowed_merchant_codes),
            validity_days=self.validity_days,
            geo_restriction=GeoRestriction(geo.city, geo.region, geo.radius_km) if geo else None,
            proof_required=self.proof_required,
            enforcement_tier=self.enforcement_tier,
            split_rule=SplitRule(split.spend, split.save) if split else None,
            escrow_enabled=self.escrow_enabled,
            currency=self.currency,
        )


class CreateIntentRequest(BaseModel):
    """Request body for POST /v1/intents"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    source_text: str = Field(..., min_length=5, description="Original natural-language intent")
    policy: PolicySchema


class IntentResponse(BaseModel):
    intent_id: str
    user_id: str
    source_text: str
    status: str
    amount_limit: Decimal
    amount_used: Decimal
    amount_remaining: Decimal
    violation_count: int
    approved_count: int
    enforcement_tier: int
    proof_required: bool
    allowed_categories: List[str]
    allowed_merchant_codes: List[str]
    geo_restriction: Optional[GeoRestrictionSchema] = None
    created_at: datetime
    expires_at: datetime


class IntentListResponse(BaseModel):
    user_id: str
    intents: List[IntentResponse]


class CancelIntentResponse(BaseModel):
    intent_id: str
    status: str
    released_amount: Decimal


class ValidateTransactionRequest(BaseModel):
    """Request body for POST /v1/transactions/validate"""

    user_id: str = Field(..., min_length=1)
    merchant_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., max_digits=MONEY_DIGITS, decimal_places=2)
    intent_id: Optional[str] = None
    proof_provided: bool = False
    emergency_override: bool = False


class CheckSchema(BaseModel):
    name: str
    status: CheckStatus
    passed: Optional[bool] = None
    detail: Optional[str] = None


class RiskAssessmentSchema(BaseModel):
    level: str
    factors: List[str]
    merchant_risk_score: float


class ValidationResponse(BaseModel):
    transaction_id: str
    approved: bool
    forwarded_to_settlement: bool
    failed_at_check: Optional[str] = None
    violation_reason: Optional[str] = None
    settlement_reference: Optional[str] = None
    emergency_bypass: bool
    requires_escalation: bool
    checks: List[CheckSchema]
    risk_assessment: Optional[RiskAssessmentSchema] = None
    processing_latency_ms: float
    intent: Optional[IntentResponse] = None


class TransactionItem(BaseModel):
    transaction_id: str
    intent_id: Optional[str] = None
    merchant_id: str
    merchant_category: Optional[str] = None
    amount: Decimal
    approved: bool
    failed_at_check: Optional[str] = None
    violation_reason: Optional[str] = None
    settlement_reference: Optional[str] = None
    risk_level: Optional[str] = None
    emergency_bypass: bool
    created_at: datetime


class TransactionHistoryResponse(BaseModel):
    user_id: str
    transactions: List[TransactionItem]


class MilestoneRequest(BaseModel):
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, max_digits=MONEY_DIGITS, decimal_places=2)
    required_proof_kind: Optional[str] = None


class CreateEscrowRequest(BaseModel):
    """Request body for POST /v1/escrows"""

    user_id: str = Field(..., min_length=1)
    title: str = ""
    intent_id: Optional[str] = None
    milestones: List[MilestoneRequest] = Field(..., min_length=1)


class MilestoneResponse(BaseModel):
    milestone_id: str
    description: str
    amount: Decimal
    required_proof_kind: Optional[str] = None
    status: str
    completed_at: Optional[datetime] = None
    settled_merchant_id: Optional[str] = None


class ClawbackResponse(BaseModel):
    escrow_id: str
    reason: str
    clawback_amount: Decimal
    penalty_amount: Decimal
    net_returned: Decimal
    savings_allocation: Decimal
    returned_to_spendable: Decimal
    unrecovered_amount: Decimal
    clawed_back_at: datetime


class EscrowResponse(BaseModel):
    escrow_id: str
    user_id: str
    intent_id: Optional[str] = None
    title: str
    status: str
    total_amount: Decimal
    released_amount: Decimal
    pending_amount: Decimal
    milestones: List[MilestoneResponse]
    clawback: Optional[ClawbackResponse] = None
    created_at: datetime
    expires_at: datetime


class EscrowListResponse(BaseModel):
    user_id: str
    escrows: List[EscrowResponse]


class ReleaseMilestoneRequest(BaseModel):
    proof: Optional[str] = None
    merchant_id: Optional[str] = None


class ReleaseResponse(BaseModel):
    escrow_id: str
    milestone_id: str
    amount_released: Decimal
    total_released: Decimal
    pending_amount: Decimal
    escrow_status: str
    settlement_reference: str
    released_at: datetime


class ClawbackRequest(BaseModel):
    reason: ClawbackReason = ClawbackReason.UNUSED
    partial_amount: Optional[Decimal] = Field(None, gt=0, max_digits=MONEY_DIGITS, decimal_places=2)


class OpenWalletRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    balance: Decimal = Field(..., ge=0, max_digits=MONEY_DIGITS, decimal_places=2)


class WalletResponse(BaseModel):
    user_id: str
    available_balance: Decimal
    locked_balance: Decimal


class ReputationEventRequest(BaseModel):
    kind: ReputationEventKind
    description: str = Field(..., min_length=1)


class ReputationEventResponse(BaseModel):
    event_id: str
    user_id: str
    kind: str
    delta: int
    description: str
    timestamp: datetime
    score_after: int


class CreditTierSchema(BaseModel):
    eligibility: str
    label: str
    max_credit_line: Decimal
    interest_rate: Optional[float] = None


class ReputationResponse(BaseModel):
    """Response for GET /v1/reputation/{user_id}"""

    user_id: str
    score: int
    level_label: str
    credit_tier: CreditTierSchema
    compliant_count: int
    violation_count: int
    total_transactions: int
    compliance_rate: float
    recent_events: List[ReputationEventResponse]


class SpendingSummaryResponse(BaseModel):
    """Response for GET /v1/users/{user_id}/summary"""

    user_id: str
    total_transactions: int
    approved_transactions: int
    rejected_transactions: int
    compliance_rate: float
    total_spent: Decimal
    total_blocked: Decimal
    category_spend: Dict[str, Decimal]
    active_intents: int
    locked_in_intents: Decimal
    active_escrows: int
    pending_in_escrows: Decimal


def intent_to_response(intent: Intent) -> IntentResponse:
    geo = intent.policy.geo_restriction
    return IntentResponse(
        intent_id=intent.intent_id,
        user_id=intent.user_id,
        source_text=intent.source_text,
        status=intent.status.value,
        amount_limit=intent.amount_limit,
        amount_used=intent.amount_used,
        amount_remaining=intent.amount_remaining,
        violation_count=intent.violation_count,
        approved_count=intent.approved_count,
        enforcement_tier=intent.policy.enforcement_tier,
        proof_required=intent.policy.proof_required,
        allowed_categories=sorted(intent.policy.allowed_categories),
        allowed_merchant_codes=sorted(intent.policy.allowed_merchant_codes),
        geo_restriction=(
            GeoRestrictionSchema(city=geo.city, region=geo.region, radius_km=geo.radius_km) if geo else None
        ),
        created_at=intent.created_at,
        expires_at=intent.expires_at,
    )


def clawback_to_response(receipt: ClawbackReceipt) -> ClawbackResponse:
    return ClawbackResponse(
        escrow_id=receipt.escrow_id,
        reason=receipt.reason.value,
        clawback_amount=receipt.clawback_amount,
        penalty_amount=receipt.penalty_amount,
        net_returned=receipt.net_returned,
        savings_allocation=receipt.savings_allocation,
        returned_to_spendable=receipt.returned_to_spendable,
        unrecovered_amount=receipt.unrecovered_amount,
        clawed_back_at=receipt.clawed_back_at,
    )


def escrow_to_response(escrow: Escrow) -> EscrowResponse:
    return EscrowResponse(
        escrow_id=escrow.escrow_id,
        user_id=escrow.user_id,
        intent_id=escrow.intent_id,
        title=escrow.title,
        status=escrow.status.value,
        total_amount=escrow.total_amount,
        released_amount=escrow.released_amount,
        pending_amount=escrow.pending_amount,
        milestones=[
            MilestoneResponse(
                milestone_id=m.milestone_id,
                description=m.description,
                amount=m.amount,
                required_proof_kind=m.required_proof_kind,
                status=m.status.value,
                completed_at=m.completed_at,
                settled_merchant_id=m.settled_merchant_id,
            )
            for m in escrow.milestones
        ],
        clawback=clawback_to_response(escrow.clawback) if escrow.clawback else None,
        created_at=escrow.created_at,
        expires_at=escrow.expires_at,
    )
