from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user, require_reviewer
from app.schemas.settlement import (
    BatchResult,
    BatchSubmit,
    SettlementAutoGenerate,
    SettlementDetail,
    SettlementGenerate,
    SettlementInDB,
    SettlementPage,
    SettlementReview,
    SettlementSummary,
)
from app.services.settlement import SettlementAggregator
from app.services.settlement_workflow import SettlementStateMachine
from app.services.voucher import VoucherLinker, get_voucher_linker

router = APIRouter(prefix="/api/commission/settlements", tags=["settlements"])


@router.get("", response_model=SettlementPage)
def list_settlements(
    salesperson_id: Optional[int] = None,
    settlement_month: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    if not current_user.is_reviewer:
        salesperson_id = current_user.id
    return SettlementAggregator(db).list_settlements(
        salesperson_id=salesperson_id,
        settlement_month=settlement_month,
        status=status,
        page=page,
        page_size=page_size,
    )


@router.get("/summary", response_model=SettlementSummary)
def settlement_summary(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Reward/penalty/net totals (rejected excluded) and counts by status"""
    salesperson_id = None if current_user.is_reviewer else current_user.id
    return SettlementAggregator(db).summary(salesperson_id)


@router.put("/batch-submit", response_model=BatchResult)
def batch_submit(
    data: BatchSubmit,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    voucher_linker: VoucherLinker = Depends(get_voucher_linker),
):
    return SettlementStateMachine(db, voucher_linker).batch_submit(data.ids)


@router.post("/generate", response_model=SettlementInDB)
def generate_settlement(
    data: SettlementGenerate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Generate a draft settlement for one salesperson and month"""
    return SettlementAggregator(db).generate(data.salesperson_id, data.month, data.salesperson_name)


@router.post("/auto-generate", response_model=BatchResult)
def auto_generate_settlements(
    data: SettlementAutoGenerate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Generate settlements for everyone with unsettled records; existing ones are skipped"""
    return SettlementAggregator(db, require_records=True).auto_generate(data.month, data.include_all)


@router.get("/{settlement_id}", response_model=SettlementDetail)
def get_settlement(
    settlement_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    settlement = SettlementAggregator(db).get_settlement(settlement_id)

    # Salespeople can only view their own settlements
    if not current_user.is_reviewer and settlement.salesperson_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view this settlement",
        )
    return settlement


@router.put("/{settlement_id}/submit", response_model=SettlementInDB)
def submit_settlement(
    settlement_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    voucher_linker: VoucherLinker = Depends(get_voucher_linker),
):
    return SettlementStateMachine(db, voucher_linker).submit(settlement_id)


@router.put("/{settlement_id}/approve", response_model=SettlementInDB)
def approve_settlement(
    settlement_id: int,
    data: SettlementReview,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
    voucher_linker: VoucherLinker = Depends(get_voucher_linker),
):
    """Approve a pending settlement and issue its payable voucher"""
    machine = SettlementStateMachine(db, voucher_linker)
    return machine.approve(settlement_id, current_user.id, current_user.name, data.comment)


@router.put("/{settlement_id}/reject", response_model=SettlementInDB)
def reject_settlement(
    settlement_id: int,
    data: SettlementReview,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
    voucher_linker: VoucherLinker = Depends(get_voucher_linker),
):
    machine = SettlementStateMachine(db, voucher_linker)
    return machine.reject(settlement_id, current_user.id, current_user.name, data.comment)


@router.put("/{settlement_id}/paid", response_model=SettlementInDB)
def mark_settlement_paid(
    settlement_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
    voucher_linker: VoucherLinker = Depends(get_voucher_linker),
):
    return SettlementStateMachine(db, voucher_linker).mark_paid(settlement_id)
