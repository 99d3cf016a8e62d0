"""Data access layer: SQLAlchemy implementations of the domain repositories"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session

from spendguard.domain.exceptions import (
    EscrowNotFoundError,
    FundLockError,
    InsufficientFundsError,
    IntentNotFoundError,
    WalletExistsError,
    WalletNotFoundError,
)
from spendguard.domain.models import (
    CheckName,
    ClawbackReason,
    ClawbackReceipt,
    Escrow,
    GeoRestriction,
    Intent,
    IntentStatus,
    Milestone,
    MilestoneStatus,
    Policy,
    ReputationEvent,
    ReputationEventKind,
    RiskLevel,
    SplitRule,
    TransactionRecord,
)
from spendguard.infrastructure.database.models import (
    EscrowRecord,
    IntentRecord,
    MilestoneRecord,
    ReputationAccount,
    ReputationEventRecord,
    TransactionLogRecord,
    WalletRecord,
)
from spendguard.infrastructure.database.session import atomic
from spendguard.infrastructure.locks import EntityLocks
from spendguard.utils.date_utils import ensure_aware
from spendguard.utils.money_utils import to_amount

T = TypeVar("T")

# Process-local locks back up SELECT ... FOR UPDATE on engines that ignore it (SQLite)
_intent_locks = EntityLocks()
_escrow_locks = EntityLocks()
_user_locks = EntityLocks()


def _optional_aware(value):
    return ensure_aware(value) if value is not None else None


class IntentRepository:
    """Repository for intents"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_domain(row: IntentRecord) -> Intent:
        geo = GeoRestriction(**row.geo_restriction) if row.geo_restriction else None
        split = SplitRule(**row.split_rule) if row.split_rule else None
        policy = Policy(
            amount_limit=row.amount_limit,
            allowed_categories=frozenset(row.allowed_categories or ()),
            allowed_merchant_codes=frozenset(row.allowed_merchant_codes or ()),
            validity_days=row.validity_days,
            geo_restriction=geo,
            proof_required=row.proof_required,
            enforcement_tier=row.enforcement_tier,
            split_rule=split,
            escrow_enabled=row.escrow_enabled,
            currency=row.currency,
        )
        return Intent(
            intent_id=row.id,
            user_id=row.user_id,
            source_text=row.source_text,
            policy=policy,
            created_at=ensure_aware(row.created_at),
            expires_at=ensure_aware(row.expires_at),
            status=IntentStatus(row.status),
            amount_used=to_amount(row.amount_used),
            violation_count=row.violation_count,
            approved_count=row.approved_count,
        )

    @staticmethod
    def _apply(row: IntentRecord, intent: Intent) -> None:
        """Copy the mutable ledger fields back; policy fields never change after creation"""
        row.status = intent.status.value
        row.amount_used = intent.amount_used
        row.violation_count = intent.violation_count
        row.approved_count = intent.approved_count

    def add(self, intent: Intent) -> None:
        """Persist a new intent; joins the caller's transaction when nested"""
        policy = intent.policy
        geo = policy.geo_restriction
        split = policy.split_rule
        with atomic(self.db):
            self.db.add(
                IntentRecord(
                    id=intent.intent_id,
                    user_id=intent.user_id,
                    source_text=intent.source_text,
                    amount_limit=policy.amount_limit,
                    amount_used=intent.amount_used,
                    allowed_categories=sorted(policy.allowed_categories),
                    allowed_merchant_codes=sorted(policy.allowed_merchant_codes),
                    validity_days=policy.validity_days,
                    geo_restriction=(
                        {"city": geo.city, "region": geo.region, "radius_km": geo.radius_km} if geo else None
                    ),
                    proof_required=policy.proof_required,
                    enforcement_tier=policy.enforcement_tier,
                    split_rule={"spend": str(split.spend), "save": str(split.save)} if split else None,
                    escrow_enabled=policy.escrow_enabled,
                    currency=policy.currency,
                    status=intent.status.value,
                    violation_count=intent.violation_count,
                    approved_count=intent.approved_count,
                    created_at=intent.created_at,
                    expires_at=intent.expires_at,
                )
            )
            self.db.flush()

    def get(self, intent_id: str) -> Optional[Intent]:
        row = self.db.get(IntentRecord, intent_id)
        return self._to_domain(row) if row else None

    def list_by_user(self, user_id: str) -> List[Intent]:
        rows = (
            self.db.query(IntentRecord)
            .filter(IntentRecord.user_id == user_id)
            .order_by(IntentRecord.created_at)
            .all()
        )
        return [self._to_domain(r) for r in rows]

    def update(self, intent_id: str, mutator: Callable[[Intent], T]) -> T:
        with _intent_locks.for_key(intent_id), atomic(self.db):
            row = (
                self.db.query(IntentRecord)
                .filter(IntentRecord.id == intent_id)
                .with_for_update()
                .populate_existing()
                .one_or_none()
            )
            if row is None:
                raise IntentNotFoundError(f"Intent {intent_id} not found")
            intent = self._to_domain(row)
            result = mutator(intent)
            self._apply(row, intent)
            self.db.flush()
            return result


def _receipt_to_json(receipt: ClawbackReceipt) -> dict:
    return {
        "reason": receipt.reason.value,
        "clawback_amount": str(receipt.clawback_amount),
        "penalty_amount": str(receipt.penalty_amount),
        "net_returned": str(receipt.net_returned),
        "savings_allocation": str(receipt.savings_allocation),
        "unrecovered_amount": str(receipt.unrecovered_amount),
        "clawed_back_at": receipt.clawed_back_at.isoformat(),
    }


def _receipt_from_json(escrow_id: str, data: dict) -> ClawbackReceipt:
    return ClawbackReceipt(
        escrow_id=escrow_id,
        reason=ClawbackReason(data["reason"]),
        clawback_amount=Decimal(data["clawback_amount"]),
        penalty_amount=Decimal(data["penalty_amount"]),
        net_returned=Decimal(data["net_returned"]),
        savings_allocation=Decimal(data["savings_allocation"]),
        unrecovered_amount=Decimal(data["unrecovered_amount"]),
        clawed_back_at=ensure_aware(datetime.fromisoformat(data["clawed_back_at"])),
    )


class EscrowRepository:
    """Repository for escrows and their milestones"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_domain(row: EscrowRecord) -> Escrow:
        milestones = [
            Milestone(
                milestone_id=m.id,
                description=m.description,
                amount=to_amount(m.amount),
                required_proof_kind=m.required_proof_kind,
                status=MilestoneStatus(m.status),
                completed_at=_optional_aware(m.completed_at),
                settled_merchant_id=m.settled_merchant_id,
                proof_reference=m.proof_reference,
            )
            for m in row.milestones
        ]
        return Escrow(
            escrow_id=row.id,
            user_id=row.user_id,
            milestones=milestones,
            created_at=ensure_aware(row.created_at),
            expires_at=ensure_aware(row.expires_at),
            intent_id=row.intent_id,
            title=row.title,
            clawback=_receipt_from_json(row.id, row.clawback) if row.clawback else None,
        )

    @staticmethod
    def _apply(row: EscrowRecord, escrow: Escrow) -> None:
        by_id = {m.milestone_id: m for m in escrow.milestones}
        for m_row in row.milestones:
            milestone = by_id[m_row.id]
            m_row.status = milestone.status.value
            m_row.completed_at = milestone.completed_at
            m_row.settled_merchant_id = milestone.settled_merchant_id
            m_row.proof_reference = milestone.proof_reference
        row.clawback = _receipt_to_json(escrow.clawback) if escrow.clawback else None

    def add(self, escrow: Escrow) -> None:
        with atomic(self.db):
            row = EscrowRecord(
                id=escrow.escrow_id,
                user_id=escrow.user_id,
                intent_id=escrow.intent_id,
                title=escrow.title,
                created_at=escrow.created_at,
                expires_at=escrow.expires_at,
            )
            for position, m in enumerate(escrow.milestones):
                row.milestones.append(
                    MilestoneRecord(
                        id=m.milestone_id,
                        position=position,
                        description=m.description,
                        amount=m.amount,
                        required_proof_kind=m.required_proof_kind,
                        status=m.status.value,
                    )
                )
            self.db.add(row)
            self.db.flush()

    def get(self, escrow_id: str) -> Optional[Escrow]:
        row = self.db.get(EscrowRecord, escrow_id)
        return self._to_domain(row) if row else None

    def list_by_user(self, user_id: str) -> List[Escrow]:
        rows = (
            self.db.query(EscrowRecord)
            .filter(EscrowRecord.user_id == user_id)
            .order_by(EscrowRecord.created_at)
            .all()
        )
        return [self._to_domain(r) for r in rows]

    def update(self, escrow_id: str, mutator: Callable[[Escrow], T]) -> T:
        with _escrow_locks.for_key(escrow_id), atomic(self.db):
            row = (
                self.db.query(EscrowRecord)
                .filter(EscrowRecord.id == escrow_id)
                .with_for_update()
                .populate_existing()
                .one_or_none()
            )
            if row is None:
                raise EscrowNotFoundError(f"Escrow {escrow_id} not found")
            escrow = self._to_domain(row)
            result = mutator(escrow)
            self._apply(row, escrow)
            self.db.flush()
            return result


class ReputationRepository:
    """Append-only reputation events plus a locked running score per user"""

    def __init__(self, db: Session, baseline_score: int = 500):
        self.db = db
        self.baseline_score = baseline_score

    @staticmethod
    def _to_domain(row: ReputationEventRecord) -> ReputationEvent:
        return ReputationEvent(
            event_id=row.id,
            user_id=row.user_id,
            kind=ReputationEventKind(row.kind),
            delta=row.delta,
            description=row.description,
            timestamp=ensure_aware(row.timestamp),
            score_after=row.score_after,
        )

    def record(self, user_id: str, build: Callable[[int], ReputationEvent]) -> ReputationEvent:
        with _user_locks.for_key(f"reputation:{user_id}"), atomic(self.db):
            account = (
                self.db.query(ReputationAccount)
                .filter(ReputationAccount.user_id == user_id)
                .with_for_update()
                .populate_existing()
                .one_or_none()
            )
            if account is None:
                account = ReputationAccount(user_id=user_id, score=self.baseline_score)
                self.db.add(account)

            event = build(account.score)
            sequence = (
                self.db.query(func.count(ReputationEventRecord.id))
                .filter(ReputationEventRecord.user_id == user_id)
                .scalar()
            )
            self.db.add(
                ReputationEventRecord(
                    id=event.event_id,
                    user_id=user_id,
                    sequence=sequence + 1,
                    kind=event.kind.value,
                    delta=event.delta,
                    description=event.description,
                    score_after=event.score_after,
                    timestamp=event.timestamp,
                )
            )
            account.score = event.score_after
            self.db.flush()
            return event

    def current_score(self, user_id: str) -> int:
        account = self.db.get(ReputationAccount, user_id)
        return account.score if account else self.baseline_score

    def list_by_user(self, user_id: str) -> List[ReputationEvent]:
        rows = (
            self.db.query(ReputationEventRecord)
            .filter(ReputationEventRecord.user_id == user_id)
            .order_by(ReputationEventRecord.sequence)
            .all()
        )
        return [self._to_domain(r) for r in rows]


class TransactionRepository:
    """Repository for the payment audit log"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, record: TransactionRecord) -> None:
        with atomic(self.db):
            self.db.add(
                TransactionLogRecord(
                    id=record.transaction_id,
                    user_id=record.user_id,
                    intent_id=record.intent_id,
                    merchant_id=record.merchant_id,
                    merchant_category=record.merchant_category,
                    amount=record.amount,
                    approved=record.approved,
                    failed_at_check=record.failed_at_check.value if record.failed_at_check else None,
                    violation_reason=record.violation_reason,
                    settlement_reference=record.settlement_reference,
                    risk_level=record.risk_level.value if record.risk_level else None,
                    emergency_bypass=record.emergency_bypass,
                    created_at=record.created_at,
                )
            )
            self.db.flush()

    def list_by_user(self, user_id: str, limit: Optional[int] = 50) -> List[TransactionRecord]:
        """Newest first; limit=None returns the whole history"""
        rows = (
            self.db.query(TransactionLogRecord)
            .filter(TransactionLogRecord.user_id == user_id)
            .order_by(TransactionLogRecord.created_at.desc())
            .limit(limit)
            .all()
        )
        return [
            TransactionRecord(
                transaction_id=r.id,
                user_id=r.user_id,
                merchant_id=r.merchant_id,
                amount=to_amount(r.amount),
                approved=r.approved,
                created_at=ensure_aware(r.created_at),
                intent_id=r.intent_id,
                failed_at_check=CheckName(r.failed_at_check) if r.failed_at_check else None,
                violation_reason=r.violation_reason,
                settlement_reference=r.settlement_reference,
                risk_level=RiskLevel(r.risk_level) if r.risk_level else None,
                emergency_bypass=r.emergency_bypass,
                merchant_category=r.merchant_category,
            )
            for r in rows
        ]


class WalletRepository:
    """User balance accessor backed by the wallet table"""

    def __init__(self, db: Session):
        self.db = db

    def _locked_row(self, user_id: str) -> WalletRecord:
        row = (
            self.db.query(WalletRecord)
            .filter(WalletRecord.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if row is None:
            raise WalletNotFoundError(f"No wallet for user {user_id}")
        return row

    def open_wallet(self, user_id: str, balance) -> None:
        with _user_locks.for_key(f"wallet:{user_id}"), atomic(self.db):
            if self.db.get(WalletRecord, user_id) is not None:
                raise WalletExistsError(f"Wallet already open for user {user_id}")
            self.db.add(WalletRecord(user_id=user_id, balance=to_amount(balance), locked_balance=0))
            self.db.flush()

    def available_balance(self, user_id: str) -> Decimal:
        row = self.db.get(WalletRecord, user_id)
        if row is None:
            raise WalletNotFoundError(f"No wallet for user {user_id}")
        return to_amount(row.balance) - to_amount(row.locked_balance)

    def locked_balance(self, user_id: str) -> Decimal:
        row = self.db.get(WalletRecord, user_id)
        if row is None:
            raise WalletNotFoundError(f"No wallet for user {user_id}")
        return to_amount(row.locked_balance)

    def lock_funds(self, user_id: str, amount: Decimal, create: Callable[[], T]) -> T:
        amount = to_amount(amount)
        with _user_locks.for_key(f"wallet:{user_id}"), atomic(self.db):
            row = self._locked_row(user_id)
            available = to_amount(row.balance) - to_amount(row.locked_balance)
            if amount > available:
                raise InsufficientFundsError(f"Insufficient balance. Available: {available}, required: {amount}")
            result = create()
            row.locked_balance = to_amount(row.locked_balance) + amount
            self.db.flush()
            return result

    def release_funds(self, user_id: str, amount: Decimal) -> None:
        amount = to_amount(amount)
        with _user_locks.for_key(f"wallet:{user_id}"), atomic(self.db):
            row = self._locked_row(user_id)
            locked = to_amount(row.locked_balance)
            if amount > locked:
                raise FundLockError(f"Cannot release {amount}; only {locked} locked for {user_id}")
            row.locked_balance = locked - amount
            self.db.flush()
