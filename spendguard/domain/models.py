"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from spendguard.domain.exceptions import InvalidPolicyError
from spendguard.utils.date_utils import utc_now
from spendguard.utils.money_utils import to_amount

ZERO = Decimal("0.00")


class IntentStatus(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class EscrowStatus(str, Enum):
    LOCKED = "locked"
    PARTIALLY_RELEASED = "partially_released"
    RELEASED = "released"
    CLAWBACK = "clawback"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class MerchantCategory(str, Enum):
    BOOKS = "books"
    FOOD = "food"
    GROCERY = "grocery"
    ELECTRONICS = "electronics"
    MEDICAL = "medical"
    EDUCATION = "education"
    TRAVEL = "travel"
    ENTERTAINMENT = "entertainment"
    GENERAL = "general"
    MIXED = "mixed"  # unclassified multi-category retail, always escalated


class CheckName(str, Enum):
    """Rule pipeline stages, declared in evaluation order"""

    EMERGENCY_OVERRIDE = "emergency_override"
    INTENT_STATUS = "intent_status"
    AMOUNT_CAP = "amount_cap"
    TIME_WINDOW = "time_window"
    GEO_FENCE = "geo_fence"
    MERCHANT_CATEGORY = "merchant_category"
    MERCHANT_TIER = "merchant_tier"
    PROOF_REQUIREMENT = "proof_requirement"


PIPELINE_ORDER: Tuple[CheckName, ...] = tuple(CheckName)


class CheckStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    NOT_EVALUATED = "not_evaluated"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReputationEventKind(str, Enum):
    INTENT_COMPLIANCE = "intent_compliance"
    INTENT_VIOLATION_ATTEMPT = "intent_violation_attempt"
    ESCROW_RELEASED = "escrow_released"
    ESCROW_CLAWBACK_MISUSE = "escrow_clawback_misuse"
    PROOF_SUBMITTED = "proof_submitted"
    EMERGENCY_OVERRIDE = "emergency_override"
    INTENT_CREATED = "intent_created"
    SAVINGS_MILESTONE = "savings_milestone"


class ClawbackReason(str, Enum):
    UNUSED = "unused"
    MISUSE = "misuse"
    EXPIRED = "expired"


def new_id(prefix: str) -> str:
    """Short prefixed identifier, e.g. INT-3f9c1a2b7d4e"""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def normalize_tags(tags: Iterable[str]) -> Tuple[str, ...]:
    return tuple(t.strip().lower() for t in tags if t and t.strip())


@dataclass(frozen=True)
class GeoRestriction:
    """City or region fence, optionally narrowed to a radius around the city centre"""

    city: Optional[str] = None
    region: Optional[str] = None
    radius_km: Optional[float] = None

    def __post_init__(self):
        if not self.city and not self.region:
            raise InvalidPolicyError("Geo restriction needs a city or a region")
        if self.radius_km is not None and self.radius_km <= 0:
            raise InvalidPolicyError("Geo radius must be positive")


@dataclass(frozen=True)
class SplitRule:
    """Spend/save fractions of each approved payment; must sum to exactly 1"""

    spend: Decimal
    save: Decimal

    def __post_init__(self):
        spend = Decimal(str(self.spend))
        save = Decimal(str(self.save))
        if spend < 0 or save < 0 or spend + save != Decimal("1"):
            raise InvalidPolicyError(f"Split rule fractions must sum to 1.0 (got {spend} + {save})")
        object.__setattr__(self, "spend", spend)
        object.__setattr__(self, "save", save)


@dataclass(frozen=True)
class Policy:
    """Structured spending policy compiled from a user's intent text"""

    amount_limit: Decimal
    allowed_categories: FrozenSet[str] = frozenset()
    allowed_merchant_codes: FrozenSet[str] = frozenset()
    validity_days: int = 30
    geo_restriction: Optional[GeoRestriction] = None
    proof_required: bool = False
    enforcement_tier: int = 1
    split_rule: Optional[SplitRule] = None
    escrow_enabled: bool = False
    currency: str = "INR"

    def __post_init__(self):
        amount = to_amount(self.amount_limit)
        if amount <= 0:
            raise InvalidPolicyError("Policy amount limit must be positive")
        if self.enforcement_tier not in (1, 2, 3):
            raise InvalidPolicyError(f"Enforcement tier must be 1-3 (got {self.enforcement_tier})")
        if self.validity_days <= 0:
            raise InvalidPolicyError("Policy validity must be at least one day")
        object.__setattr__(self, "amount_limit", amount)
        object.__setattr__(
            self, "allowed_categories", frozenset(c.strip().lower() for c in self.allowed_categories)
        )
        object.__setattr__(
            self, "allowed_merchant_codes", frozenset(str(c) for c in self.allowed_merchant_codes)
        )


@dataclass
class Intent:
    """A user's spending policy together with its locked-fund ledger"""

    intent_id: str
    user_id: str
    source_text: str
    policy: Policy
    created_at: datetime
    expires_at: datetime
    status: IntentStatus = IntentStatus.ACTIVE
    amount_used: Decimal = ZERO
    violation_count: int = 0
    approved_count: int = 0

    @property
    def amount_limit(self) -> Decimal:
        return self.policy.amount_limit

    @property
    def amount_remaining(self) -> Decimal:
        # Derived, so used + remaining == limit holds after every mutation
        return self.policy.amount_limit - self.amount_used

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class Merchant:
    """Merchant registry entry (read-only reference data)"""

    merchant_id: str
    name: str
    classification_code: str  # ISO 18245 merchant category code
    category: MerchantCategory
    category_label: str
    city: str
    region: str
    latitude: float
    longitude: float
    certification_tier: int
    certified: bool
    risk_score: float
    product_tags: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "product_tags", normalize_tags(self.product_tags))

    @property
    def is_mixed(self) -> bool:
        return self.category == MerchantCategory.MIXED


@dataclass(frozen=True)
class TransactionContext:
    """
    Per-request inputs to validation; the same context always validates the same way.

    request_id is the caller-facing trace id and may repeat. transaction_id keys the
    settlement reference and is minted server-side for every payment.
    """

    proof_provided: bool = False
    emergency_override: bool = False
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    requested_at: datetime = field(default_factory=utc_now)
    transaction_id: str = field(default_factory=lambda: new_id("TXN"))


@dataclass(frozen=True)
class CheckOutcome:
    """Result of a single pipeline stage"""

    name: CheckName
    status: CheckStatus
    detail: Optional[str] = None

    @property
    def passed(self) -> Optional[bool]:
        """True/False for evaluated stages, None when the stage never ran"""
        if self.status == CheckStatus.NOT_EVALUATED:
            return None
        return self.status == CheckStatus.PASSED


@dataclass(frozen=True)
class RiskAssessment:
    """Advisory risk heuristics attached to approved payments"""

    level: RiskLevel
    factors: Tuple[str, ...]
    merchant_risk_score: float


@dataclass
class ValidationResult:
    """Output of the rule pipeline"""

    approved: bool
    checks: List[CheckOutcome]
    merchant_id: str
    amount: Decimal
    intent_id: Optional[str] = None
    failed_at_check: Optional[CheckName] = None
    violation_reason: Optional[str] = None
    settlement_reference: Optional[str] = None
    risk_assessment: Optional[RiskAssessment] = None
    emergency_bypass: bool = False
    requires_escalation: bool = False
    processing_latency_ms: float = field(default=0.0, compare=False)

    @property
    def forwarded_to_settlement(self) -> bool:
        return self.approved and self.settlement_reference is not None


@dataclass
class Milestone:
    """Proof-gated tranche of an escrow"""

    milestone_id: str
    description: str
    amount: Decimal
    required_proof_kind: Optional[str] = None
    status: MilestoneStatus = MilestoneStatus.PENDING
    completed_at: Optional[datetime] = None
    settled_merchant_id: Optional[str] = None
    proof_reference: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == MilestoneStatus.COMPLETED


@dataclass(frozen=True)
class ClawbackReceipt:
    """Outcome of recovering unreleased escrow funds"""

    escrow_id: str
    reason: ClawbackReason
    clawback_amount: Decimal
    penalty_amount: Decimal
    net_returned: Decimal
    savings_allocation: Decimal
    unrecovered_amount: Decimal
    clawed_back_at: datetime

    @property
    def returned_to_spendable(self) -> Decimal:
        return self.net_returned - self.savings_allocation


@dataclass
class Escrow:
    """Fund sub-ledger released milestone by milestone"""

    escrow_id: str
    user_id: str
    milestones: List[Milestone]
    created_at: datetime
    expires_at: datetime
    intent_id: Optional[str] = None
    title: str = ""
    clawback: Optional[ClawbackReceipt] = None

    @property
    def total_amount(self) -> Decimal:
        return sum((m.amount for m in self.milestones), ZERO)

    @property
    def released_amount(self) -> Decimal:
        return sum((m.amount for m in self.milestones if m.is_completed), ZERO)

    @property
    def pending_amount(self) -> Decimal:
        return self.total_amount - self.released_amount

    @property
    def status(self) -> EscrowStatus:
        """Derived from the released/pending split; clawback is the only recorded state"""
        if self.clawback is not None:
            return EscrowStatus.CLAWBACK
        if self.pending_amount <= 0:
            return EscrowStatus.RELEASED
        if self.released_amount > 0:
            return EscrowStatus.PARTIALLY_RELEASED
        return EscrowStatus.LOCKED

    def find_milestone(self, milestone_id: str) -> Optional[Milestone]:
        return next((m for m in self.milestones if m.milestone_id == milestone_id), None)


@dataclass(frozen=True)
class MilestoneSpec:
    """Milestone definition supplied when an escrow is created"""

    description: str
    amount: Decimal
    required_proof_kind: Optional[str] = None


@dataclass(frozen=True)
class ReleaseReceipt:
    """Outcome of releasing one milestone"""

    escrow_id: str
    milestone_id: str
    amount_released: Decimal
    total_released: Decimal
    pending_amount: Decimal
    escrow_status: EscrowStatus
    settlement_reference: str
    released_at: datetime


@dataclass(frozen=True)
class ReputationEvent:
    """Append-only reputation log entry with the score it produced"""

    event_id: str
    user_id: str
    kind: ReputationEventKind
    delta: int
    description: str
    timestamp: datetime
    score_after: int


@dataclass(frozen=True)
class CreditTier:
    """Credit eligibility derived from a reputation score"""

    eligibility: str  # high | medium | low | none
    label: str  # premium | standard | basic | restricted
    max_credit_line: Decimal
    interest_rate: Optional[float]


@dataclass(frozen=True)
class ReputationSnapshot:
    """Current reputation view for a user"""

    user_id: str
    score: int
    credit_tier: CreditTier
    level_label: str
    compliant_count: int
    violation_count: int
    total_transactions: int
    compliance_rate: float
    recent_events: Tuple[ReputationEvent, ...]


@dataclass(frozen=True)
class SpendingSummary:
    """Per-user roll-up of payment outcomes and open commitments"""

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


@dataclass(frozen=True)
class TransactionRecord:
    """Audit entry for one orchestrated payment attempt"""

    transaction_id: str
    user_id: str
    merchant_id: str
    amount: Decimal
    approved: bool
    created_at: datetime
    intent_id: Optional[str] = None
    failed_at_check: Optional[CheckName] = None
    violation_reason: Optional[str] = None
    settlement_reference: Optional[str] = None
    risk_level: Optional[RiskLevel] = None
    emergency_bypass: bool = False
    merchant_category: Optional[str] = None


@dataclass(frozen=True)
class PaymentRequest:
    """Outbound payment entering the enforcement layer"""

    user_id: str
    merchant_id: str
    amount: Decimal
    intent_id: Optional[str] = None
    context: TransactionContext = field(default_factory=TransactionContext)


@dataclass(frozen=True)
class PaymentOutcome:
    """What the orchestrator committed for a payment"""

    transaction: TransactionRecord
    result: ValidationResult
    intent: Optional[Intent] = None
