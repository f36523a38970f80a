from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class RuleType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    TIERED = "tiered"


class CommissionBase(str, enum.Enum):
    CONTRACT_AMOUNT = "contract_amount"
    ORDER_AMOUNT = "order_amount"
    PROFIT = "profit"
    RECEIVABLE = "receivable"
    ALL = "all"


class CustomerLevel(str, enum.Enum):
    VIP = "vip"
    IMPORTANT = "important"
    NORMAL = "normal"
    POTENTIAL = "potential"
    ALL = "all"


class SourceType(str, enum.Enum):
    CONTRACT = "contract"
    ORDER = "order"
    PAYMENT = "payment"
    ALL = "all"


class RecordStatus(str, enum.Enum):
    PENDING = "pending"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class CommissionRule(Base):
    """Reward rule: percentage of a monetary base, fixed per unit, or tiered by unit count"""
    __tablename__ = "commission_rules"

    id = Column(Integer, primary_key=True, index=True)
    rule_name = Column(String, nullable=False)
    rule_type = Column(String, nullable=False, index=True)  # RuleType
    customer_level = Column(String, default=CustomerLevel.ALL.value, nullable=False)
    apply_to = Column(String, default=SourceType.ALL.value, nullable=False)  # source type

    # Percentage type
    commission_base = Column(String, nullable=True)  # CommissionBase
    commission_rate = Column(Numeric(7, 4), nullable=True)  # e.g. 5 for 5%

    # Fixed type - role split paid once per qualifying unit
    fixed_supervisor_amount = Column(Numeric(12, 2), nullable=True)
    fixed_sales_amount = Column(Numeric(12, 2), nullable=True)
    fixed_document_amount = Column(Numeric(12, 2), nullable=True)

    min_base_amount = Column(Numeric(12, 2), default=0)
    max_commission = Column(Numeric(12, 2), nullable=True)  # null = no cap

    is_stackable = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    notes = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    tiers = relationship(
        "CommissionTier",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="CommissionTier.tier_level",
    )


class CommissionTier(Base):
    """Unit-count range within a tiered rule"""
    __tablename__ = "commission_tiers"

    id = Column(Integer, primary_key=True, index=True)
    rule_id = Column(Integer, ForeignKey("commission_rules.id", ondelete="CASCADE"), nullable=False, index=True)

    tier_level = Column(Integer, nullable=False)  # 1-based, dense
    min_count = Column(Integer, nullable=False)
    max_count = Column(Integer, nullable=True)  # null = no limit

    supervisor_bonus = Column(Numeric(12, 2), default=0)
    sales_bonus = Column(Numeric(12, 2), default=0)
    document_bonus = Column(Numeric(12, 2), default=0)
    bonus_amount = Column(Numeric(12, 2), nullable=True)  # legacy undivided total

    rule = relationship("CommissionRule", back_populates="tiers")


class CommissionRecord(Base):
    """Result of one rule evaluation against one business event"""
    __tablename__ = "commission_records"

    id = Column(Integer, primary_key=True, index=True)
    record_no = Column(String, unique=True, nullable=False, index=True)  # CR202601150001

    salesperson_id = Column(Integer, nullable=False, index=True)
    salesperson_name = Column(String, nullable=True)
    customer_id = Column(String, nullable=True, index=True)
    customer_name = Column(String, nullable=True)
    customer_level = Column(String, nullable=True)

    # Rule snapshot at time of calculation
    rule_id = Column(Integer, ForeignKey("commission_rules.id", ondelete="SET NULL"), nullable=True)
    rule_name = Column(String, nullable=True)
    rule_type = Column(String, nullable=True)
    commission_base = Column(String, nullable=True)
    commission_rate = Column(Numeric(7, 4), nullable=True)
    tier_level = Column(Integer, nullable=True)

    base_amount = Column(Numeric(12, 2), default=0)
    unit_count = Column(Integer, nullable=True)

    # Role split; commission_amount is their sum
    supervisor_amount = Column(Numeric(12, 2), default=0)
    sales_amount = Column(Numeric(12, 2), default=0)
    document_amount = Column(Numeric(12, 2), default=0)
    commission_amount = Column(Numeric(12, 2), nullable=False)

    # Source business document
    source_type = Column(String, nullable=False)
    source_id = Column(String, nullable=True)
    source_no = Column(String, nullable=True)

    settlement_month = Column(String, nullable=False, index=True)  # "2026-01"
    settlement_id = Column(Integer, ForeignKey("commission_settlements.id"), nullable=True, index=True)
    status = Column(String, default=RecordStatus.PENDING.value, nullable=False, index=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    settlement = relationship("Settlement", back_populates="commission_records")
