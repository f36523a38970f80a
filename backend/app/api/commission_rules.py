from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user, require_reviewer
from app.schemas.commission import (
    BusinessEvent,
    CommissionCalculationResult,
    CommissionRecordInDB,
    CommissionRecordPage,
    CommissionRuleCreate,
    CommissionRuleInDB,
    CommissionRulePage,
    CommissionRuleUpdate,
    CommissionRuleWriteResult,
    RecordCancel,
)
from app.services.commission import CommissionCalculationService, current_month

router = APIRouter(prefix="/api/commission", tags=["commission"])


# ── Rules ──


@router.get("/rules", response_model=CommissionRulePage)
def list_rules(
    rule_type: Optional[str] = None,
    customer_level: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List commission rules, highest priority first"""
    service = CommissionCalculationService(db)
    return service.list_rules(rule_type, customer_level, is_active, page, page_size)


@router.get("/rules/{rule_id}", response_model=CommissionRuleInDB)
def get_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return CommissionCalculationService(db).get_rule(rule_id)


@router.post("/rules", response_model=CommissionRuleWriteResult)
def create_rule(
    rule_data: CommissionRuleCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    """Create a commission rule (admin only).

    Configuration problems that don't block saving come back as warnings.
    """
    rule, warnings = CommissionCalculationService(db).create_rule(rule_data, created_by=current_user.id)
    return {"rule": rule, "warnings": warnings}


@router.put("/rules/{rule_id}", response_model=CommissionRuleWriteResult)
def update_rule(
    rule_id: int,
    rule_data: CommissionRuleUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    rule, warnings = CommissionCalculationService(db).update_rule(rule_id, rule_data)
    return {"rule": rule, "warnings": warnings}


@router.delete("/rules/{rule_id}")
def delete_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    CommissionCalculationService(db).delete_rule(rule_id)
    return {"message": "Rule deleted", "id": rule_id}


@router.put("/rules/{rule_id}/activate", response_model=CommissionRuleInDB)
def activate_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return CommissionCalculationService(db).set_rule_active(rule_id, True)


@router.put("/rules/{rule_id}/deactivate", response_model=CommissionRuleInDB)
def deactivate_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return CommissionCalculationService(db).set_rule_active(rule_id, False)


@router.delete("/rules/{rule_id}/tiers/{tier_level}", response_model=CommissionRuleInDB)
def delete_tier(
    rule_id: int,
    tier_level: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    """Remove one tier; remaining tiers are renumbered 1..n"""
    return CommissionCalculationService(db).remove_tier(rule_id, tier_level)


# ── Records ──


@router.post("/records/calculate", response_model=CommissionCalculationResult)
def calculate_commission(
    event: BusinessEvent,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Evaluate the applicable rules for a business event and record the commission"""
    return CommissionCalculationService(db).calculate(event)


@router.get("/records", response_model=CommissionRecordPage)
def list_records(
    salesperson_id: Optional[int] = None,
    customer_id: Optional[str] = None,
    settlement_month: Optional[str] = None,
    status: Optional[str] = None,
    source_type: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    # Sales staff only see their own records
    if not current_user.is_reviewer:
        salesperson_id = current_user.id

    service = CommissionCalculationService(db)
    return service.list_records(
        salesperson_id=salesperson_id,
        customer_id=customer_id,
        settlement_month=settlement_month,
        status=status,
        source_type=source_type,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.get("/records/stats")
def record_stats(
    salesperson_id: Optional[int] = None,
    start_month: Optional[str] = None,
    end_month: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Totals, pending vs settled, last 12 months and breakdown by rule type"""
    if not current_user.is_reviewer:
        salesperson_id = current_user.id
    return CommissionCalculationService(db).stats(salesperson_id, start_month, end_month)


@router.get("/records/ranking")
def record_ranking(
    month: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    month = month or current_month()
    return {"month": month, "ranking": CommissionCalculationService(db).ranking(month, limit)}


@router.get("/records/{record_id}", response_model=CommissionRecordInDB)
def get_record(
    record_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    record = CommissionCalculationService(db).get_record(record_id)

    # Salespeople can only view their own records
    if not current_user.is_reviewer and record.salesperson_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view this record",
        )
    return record


@router.put("/records/{record_id}/cancel", response_model=CommissionRecordInDB)
def cancel_record(
    record_id: int,
    data: RecordCancel,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return CommissionCalculationService(db).cancel_record(record_id, data.reason)
