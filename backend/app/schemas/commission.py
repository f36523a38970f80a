from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from app.models.commission import RuleType, CommissionBase, CustomerLevel, SourceType


class CommissionTierBase(BaseModel):
    tier_level: Optional[int] = Field(None, ge=1)  # re-sequenced on save
    min_count: int = Field(..., ge=0)
    max_count: Optional[int] = Field(None, ge=0)  # None = unbounded
    supervisor_bonus: Decimal = Field(Decimal("0"), ge=0)
    sales_bonus: Decimal = Field(Decimal("0"), ge=0)
    document_bonus: Decimal = Field(Decimal("0"), ge=0)
    bonus_amount: Optional[Decimal] = Field(None, ge=0)  # legacy undivided total


class CommissionTierCreate(CommissionTierBase):
    pass


class CommissionTierInDB(CommissionTierBase):
    id: int
    rule_id: int
    tier_level: int

    class Config:
        from_attributes = True


class CommissionRuleBase(BaseModel):
    rule_name: str
    rule_type: RuleType
    customer_level: CustomerLevel = CustomerLevel.ALL
    apply_to: SourceType = SourceType.ALL
    commission_base: Optional[CommissionBase] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    fixed_supervisor_amount: Optional[Decimal] = Field(None, ge=0)
    fixed_sales_amount: Optional[Decimal] = Field(None, ge=0)
    fixed_document_amount: Optional[Decimal] = Field(None, ge=0)
    min_base_amount: Decimal = Field(Decimal("0"), ge=0)
    max_commission: Optional[Decimal] = Field(None, ge=0)
    is_stackable: bool = True
    priority: int = 0
    is_active: bool = True
    notes: Optional[str] = None


class CommissionRuleCreate(CommissionRuleBase):
    tiers: List[CommissionTierCreate] = []


class CommissionRuleUpdate(BaseModel):
    rule_name: Optional[str] = None
    rule_type: Optional[RuleType] = None
    customer_level: Optional[CustomerLevel] = None
    apply_to: Optional[SourceType] = None
    commission_base: Optional[CommissionBase] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    fixed_supervisor_amount: Optional[Decimal] = Field(None, ge=0)
    fixed_sales_amount: Optional[Decimal] = Field(None, ge=0)
    fixed_document_amount: Optional[Decimal] = Field(None, ge=0)
    min_base_amount: Optional[Decimal] = Field(None, ge=0)
    max_commission: Optional[Decimal] = Field(None, ge=0)
    is_stackable: Optional[bool] = None
    priority: Optional[int] = None
    notes: Optional[str] = None
    tiers: Optional[List[CommissionTierCreate]] = None  # replaces all tiers when given


class CommissionRuleInDB(CommissionRuleBase):
    id: int
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tiers: List[CommissionTierInDB] = []

    class Config:
        from_attributes = True


class CommissionRuleWriteResult(BaseModel):
    rule: CommissionRuleInDB
    warnings: List[str] = []


class BusinessEvent(BaseModel):
    """Qualifying business event (order, contract, payment) to evaluate rules against."""
    salesperson_id: int
    salesperson_name: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_level: CustomerLevel = CustomerLevel.NORMAL
    source_type: SourceType
    source_id: Optional[str] = None
    source_no: Optional[str] = None
    base_amount: Decimal = Field(Decimal("0"), ge=0)
    commission_base: CommissionBase = CommissionBase.CONTRACT_AMOUNT
    unit_count: Optional[int] = Field(None, ge=0)  # None = derived from monthly record count
    settlement_month: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$")


class CommissionRecordInDB(BaseModel):
    id: int
    record_no: str
    salesperson_id: int
    salesperson_name: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_level: Optional[str] = None
    rule_id: Optional[int] = None
    rule_name: Optional[str] = None
    rule_type: Optional[str] = None
    commission_base: Optional[str] = None
    commission_rate: Optional[Decimal] = None
    tier_level: Optional[int] = None
    base_amount: Decimal
    unit_count: Optional[int] = None
    supervisor_amount: Decimal
    sales_amount: Decimal
    document_amount: Decimal
    commission_amount: Decimal
    source_type: str
    source_id: Optional[str] = None
    source_no: Optional[str] = None
    settlement_month: str
    settlement_id: Optional[int] = None
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommissionCalculationResult(BaseModel):
    records: List[CommissionRecordInDB]
    total_commission: Decimal
    skipped_rules: List[int] = []


class RecordCancel(BaseModel):
    reason: Optional[str] = None


class CommissionRulePage(BaseModel):
    items: List[CommissionRuleInDB]
    total: int
    page: int
    page_size: int


class CommissionRecordPage(BaseModel):
    items: List[CommissionRecordInDB]
    total: int
    page: int
    page_size: int
