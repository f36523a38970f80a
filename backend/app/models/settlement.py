"""Monthly commission settlement - one active per salesperson per month."""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class SettlementStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class Settlement(Base):
    __tablename__ = "commission_settlements"

    id = Column(Integer, primary_key=True, index=True)
    settlement_no = Column(String, unique=True, nullable=False)  # CS2026010001

    # Period
    settlement_month = Column(String, nullable=False, index=True)  # "2026-01"
    salesperson_id = Column(Integer, nullable=False, index=True)
    salesperson_name = Column(String, nullable=True)

    # Status
    status = Column(String, default=SettlementStatus.DRAFT.value, nullable=False, index=True)
    submit_time = Column(DateTime(timezone=True), nullable=True)

    # Totals snapshot
    reward_record_count = Column(Integer, default=0)
    total_base_amount = Column(Numeric(12, 2), default=0)
    total_reward = Column(Numeric(12, 2), default=0)
    penalty_record_count = Column(Integer, default=0)  # includes trial-flagged records
    trial_penalty_count = Column(Integer, default=0)
    total_penalty = Column(Numeric(12, 2), default=0)  # trial records contribute 0
    net_amount = Column(Numeric(12, 2), default=0)

    # Review
    reviewer_id = Column(Integer, nullable=True)
    reviewer_name = Column(String, nullable=True)
    review_time = Column(DateTime(timezone=True), nullable=True)
    review_comment = Column(Text, nullable=True)

    # Payment / finance linkage
    paid_time = Column(DateTime(timezone=True), nullable=True)
    financial_voucher_id = Column(String, nullable=True)
    financial_voucher_no = Column(String, nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    commission_records = relationship("CommissionRecord", back_populates="settlement")
    penalty_records = relationship("PenaltyRecord", back_populates="settlement")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # At most one non-rejected settlement per salesperson per month
        Index(
            "uq_active_settlement_per_period",
            "salesperson_id",
            "settlement_month",
            unique=True,
            sqlite_where=text("status != 'rejected'"),
            postgresql_where=text("status != 'rejected'"),
        ),
    )
