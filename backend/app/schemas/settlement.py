from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from app.models.settlement import SettlementStatus
from app.schemas.commission import CommissionRecordInDB
from app.schemas.penalty import PenaltyRecordInDB

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class SettlementGenerate(BaseModel):
    salesperson_id: Optional[int] = None  # required, validated in the service
    salesperson_name: Optional[str] = None
    month: str = Field(..., pattern=MONTH_PATTERN)


class SettlementAutoGenerate(BaseModel):
    month: str = Field(..., pattern=MONTH_PATTERN)
    include_all: bool = False  # also salespeople with only penalty records


class SettlementReview(BaseModel):
    comment: Optional[str] = None


class BatchSubmit(BaseModel):
    ids: List[int] = []


class BatchItemResult(BaseModel):
    id: Optional[int] = None
    salesperson_id: Optional[int] = None
    settlement_no: Optional[str] = None
    success: bool
    error: Optional[str] = None


class BatchResult(BaseModel):
    count: int  # succeeded
    failed: int = 0
    skipped: int = 0
    results: List[BatchItemResult] = []


class SettlementInDB(BaseModel):
    id: int
    settlement_no: str
    settlement_month: str
    salesperson_id: int
    salesperson_name: Optional[str] = None
    status: SettlementStatus
    submit_time: Optional[datetime] = None
    reward_record_count: int
    total_base_amount: Decimal
    total_reward: Decimal
    penalty_record_count: int
    trial_penalty_count: int
    total_penalty: Decimal
    net_amount: Decimal
    reviewer_id: Optional[int] = None
    reviewer_name: Optional[str] = None
    review_time: Optional[datetime] = None
    review_comment: Optional[str] = None
    paid_time: Optional[datetime] = None
    financial_voucher_id: Optional[str] = None
    financial_voucher_no: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SettlementDetail(SettlementInDB):
    commission_records: List[CommissionRecordInDB] = []
    penalty_records: List[PenaltyRecordInDB] = []


class SettlementSummary(BaseModel):
    total_reward: Decimal
    total_penalty: Decimal
    net_amount: Decimal
    draft_count: int
    pending_count: int
    approved_count: int
    rejected_count: int
    paid_count: int


class SettlementPage(BaseModel):
    items: List[SettlementInDB]
    total: int
    page: int
    page_size: int
