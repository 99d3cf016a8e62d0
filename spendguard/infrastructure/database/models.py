"""SQLAlchemy ORM models for intents, escrows, reputation and the transaction log"""

from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey, Numeric, Text, JSON
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MONEY = Numeric(14, 2)


class IntentRecord(Base):
    """Compiled spending policy with its usage ledger"""

    __tablename__ = "intent"

    id = Column(String(32), primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    source_text = Column(Text, nullable=False)
    amount_limit = Column(MONEY, nullable=False)
    amount_used = Column(MONEY, nullable=False, default=0)
    allowed_categories = Column(JSON, nullable=False, default=list)
    allowed_merchant_codes = Column(JSON, nullable=False, default=list)
    validity_days = Column(Integer, nullable=False)
    geo_restriction = Column(JSON, nullable=True)
    proof_required = Column(Boolean, nullable=False, default=False)
    enforcement_tier = Column(Integer, nullable=False, default=1)
    split_rule = Column(JSON, nullable=True)
    escrow_enabled = Column(Boolean, nullable=False, default=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(Text, nullable=False, default="active")
    violation_count = Column(Integer, nullable=False, default=0)
    approved_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)


class EscrowRecord(Base):
    """Milestone escrow; status is derived from its milestones and clawback"""

    __tablename__ = "escrow"

    id = Column(String(32), primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    intent_id = Column(String(32), nullable=True)
    title = Column(Text, nullable=False, default="")
    clawback = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    milestones = relationship(
        "MilestoneRecord",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="MilestoneRecord.position",
    )


class MilestoneRecord(Base):
    """Individual milestone within an escrow"""

    __tablename__ = "escrow_milestone"

    id = Column(String(32), primary_key=True)
    escrow_id = Column(String(32), ForeignKey("escrow.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    required_proof_kind = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="pending")
    completed_at = Column(DateTime(timezone=True), nullable=True)
    settled_merchant_id = Column(Text, nullable=True)
    proof_reference = Column(Text, nullable=True)

    escrow = relationship("EscrowRecord", back_populates="milestones")


class ReputationAccount(Base):
    """Running score per user; rows are locked while an event is appended"""

    __tablename__ = "reputation_account"

    user_id = Column(Text, primary_key=True)
    score = Column(Integer, nullable=False)


class ReputationEventRecord(Base):
    """Append-only reputation log"""

    __tablename__ = "reputation_event"

    id = Column(String(32), primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    kind = Column(Text, nullable=False)
    delta = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    score_after = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)


class TransactionLogRecord(Base):
    """Audit trail of every orchestrated payment attempt"""

    __tablename__ = "transaction_log"

    id = Column(String(32), primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    intent_id = Column(String(32), nullable=True)
    merchant_id = Column(Text, nullable=False)
    merchant_category = Column(Text, nullable=True)
    amount = Column(MONEY, nullable=False)
    approved = Column(Boolean, nullable=False)
    failed_at_check = Column(Text, nullable=True)
    violation_reason = Column(Text, nullable=True)
    settlement_reference = Column(Text, nullable=True)
    risk_level = Column(Text, nullable=True)
    emergency_bypass = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class WalletRecord(Base):
    """User balance; available = balance - locked_balance"""

    __tablename__ = "wallet"

    user_id = Column(Text, primary_key=True)
    balance = Column(MONEY, nullable=False)
    locked_balance = Column(MONEY, nullable=False, default=0)
