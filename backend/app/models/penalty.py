"""Penalty rule and penalty record models."""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, ForeignKey, Boolean, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class PenaltyType(str, enum.Enum):
    INSPECTION = "inspection"  # customs inspection caused by our error
    MISTAKE = "mistake"        # work mistake
    LOSS = "loss"              # economic loss, percentage of actual loss


class PenaltyRecordStatus(str, enum.Enum):
    PENDING = "pending"
    COMMUNICATED = "communicated"  # trial period: discussed, not deducted
    CONFIRMED = "confirmed"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class PenaltyRule(Base):
    __tablename__ = "commission_penalty_rules"

    id = Column(Integer, primary_key=True, index=True)
    penalty_name = Column(String, nullable=False)
    penalty_type = Column(String, nullable=False, index=True)  # PenaltyType

    # inspection / mistake: fixed role amounts
    supervisor_penalty = Column(Numeric(12, 2), nullable=True)
    sales_penalty = Column(Numeric(12, 2), nullable=True)
    document_penalty = Column(Numeric(12, 2), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=True)  # declared total, informational

    # loss: percentage of the loss amount
    loss_percentage = Column(Numeric(5, 2), nullable=True)

    # Cap as percent of the salesperson's monthly reward (all types)
    max_penalty_rate = Column(Numeric(5, 2), default=100, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PenaltyRecord(Base):
    """Result of one penalty evaluation against one incident"""
    __tablename__ = "commission_penalty_records"

    id = Column(Integer, primary_key=True, index=True)
    record_no = Column(String, unique=True, nullable=False, index=True)  # PR202601150001

    penalty_rule_id = Column(Integer, ForeignKey("commission_penalty_rules.id", ondelete="SET NULL"), nullable=True)
    penalty_name = Column(String, nullable=True)
    penalty_type = Column(String, nullable=False)

    # Salesperson whose settlement absorbs the deduction
    salesperson_id = Column(Integer, nullable=False, index=True)
    salesperson_name = Column(String, nullable=True)

    # Role split
    supervisor_id = Column(Integer, nullable=True)
    supervisor_name = Column(String, nullable=True)
    supervisor_penalty = Column(Numeric(12, 2), default=0)
    sales_id = Column(Integer, nullable=True)
    sales_name = Column(String, nullable=True)
    sales_penalty = Column(Numeric(12, 2), default=0)
    document_id = Column(Integer, nullable=True)
    document_name = Column(String, nullable=True)
    document_penalty = Column(Numeric(12, 2), default=0)

    total_penalty = Column(Numeric(12, 2), nullable=False)      # computed, before cap
    effective_penalty = Column(Numeric(12, 2), nullable=False)  # after cap (or = total when deferred)
    max_penalty_rate = Column(Numeric(5, 2), nullable=True)
    cap_deferred = Column(Boolean, default=False, nullable=False)

    loss_amount = Column(Numeric(12, 2), default=0)
    related_order_id = Column(String, nullable=True)
    related_order_no = Column(String, nullable=True)

    is_trial_period = Column(Boolean, default=False, nullable=False)
    incident_date = Column(Date, nullable=False)
    incident_description = Column(Text, nullable=True)

    settlement_month = Column(String, nullable=False, index=True)
    settlement_id = Column(Integer, ForeignKey("commission_settlements.id"), nullable=True, index=True)
    status = Column(String, default=PenaltyRecordStatus.PENDING.value, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    settlement = relationship("Settlement", back_populates="penalty_records")
