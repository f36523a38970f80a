from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal
from app.models.penalty import PenaltyType, PenaltyRecordStatus


class PenaltyRuleBase(BaseModel):
    penalty_name: str
    penalty_type: PenaltyType
    supervisor_penalty: Optional[Decimal] = Field(None, ge=0)
    sales_penalty: Optional[Decimal] = Field(None, ge=0)
    document_penalty: Optional[Decimal] = Field(None, ge=0)
    total_amount: Optional[Decimal] = Field(None, ge=0)
    loss_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    max_penalty_rate: Decimal = Field(Decimal("100"), ge=0, le=100)
    is_active: bool = True
    notes: Optional[str] = None


class PenaltyRuleCreate(PenaltyRuleBase):
    pass


class PenaltyRuleUpdate(BaseModel):
    penalty_name: Optional[str] = None
    penalty_type: Optional[PenaltyType] = None
    supervisor_penalty: Optional[Decimal] = Field(None, ge=0)
    sales_penalty: Optional[Decimal] = Field(None, ge=0)
    document_penalty: Optional[Decimal] = Field(None, ge=0)
    total_amount: Optional[Decimal] = Field(None, ge=0)
    loss_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    max_penalty_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    notes: Optional[str] = None


class PenaltyRuleInDB(PenaltyRuleBase):
    id: int
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Incident(BaseModel):
    """Incident that triggers a penalty rule."""
    penalty_rule_id: int
    salesperson_id: int
    salesperson_name: Optional[str] = None
    supervisor_id: Optional[int] = None
    supervisor_name: Optional[str] = None
    sales_id: Optional[int] = None
    sales_name: Optional[str] = None
    document_id: Optional[int] = None
    document_name: Optional[str] = None
    loss_amount: Decimal = Field(Decimal("0"), ge=0)
    related_order_id: Optional[str] = None
    related_order_no: Optional[str] = None
    incident_date: Optional[date] = None  # defaults to today
    incident_description: Optional[str] = None
    settlement_month: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$")
    notes: Optional[str] = None


class PenaltyRecordInDB(BaseModel):
    id: int
    record_no: str
    penalty_rule_id: Optional[int] = None
    penalty_name: Optional[str] = None
    penalty_type: str
    salesperson_id: int
    salesperson_name: Optional[str] = None
    supervisor_id: Optional[int] = None
    supervisor_name: Optional[str] = None
    supervisor_penalty: Decimal
    sales_id: Optional[int] = None
    sales_name: Optional[str] = None
    sales_penalty: Decimal
    document_id: Optional[int] = None
    document_name: Optional[str] = None
    document_penalty: Decimal
    total_penalty: Decimal
    effective_penalty: Decimal
    max_penalty_rate: Optional[Decimal] = None
    cap_deferred: bool
    loss_amount: Decimal
    related_order_id: Optional[str] = None
    related_order_no: Optional[str] = None
    is_trial_period: bool
    incident_date: date
    incident_description: Optional[str] = None
    settlement_month: str
    settlement_id: Optional[int] = None
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PenaltyStatusUpdate(BaseModel):
    status: PenaltyRecordStatus
    notes: Optional[str] = None


class PenaltyRecordPage(BaseModel):
    items: List[PenaltyRecordInDB]
    total: int
    page: int
    page_size: int
