from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user, require_reviewer
from app.schemas.penalty import (
    Incident,
    PenaltyRecordInDB,
    PenaltyRecordPage,
    PenaltyRuleCreate,
    PenaltyRuleInDB,
    PenaltyRuleUpdate,
    PenaltyStatusUpdate,
)
from app.schemas.scheme import SchemeConfig, SchemeConfigUpdate, TrialStatus
from app.services.penalty import PenaltyService
from app.services.trial_period import TrialPeriodCalculator, load_scheme_config, update_scheme_config

router = APIRouter(prefix="/api/commission", tags=["penalties"])


# ── Penalty rules ──


@router.get("/penalty-rules", response_model=List[PenaltyRuleInDB])
def list_penalty_rules(
    penalty_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return PenaltyService(db).list_rules(penalty_type, is_active)


@router.get("/penalty-rules/{rule_id}", response_model=PenaltyRuleInDB)
def get_penalty_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return PenaltyService(db).get_rule(rule_id)


@router.post("/penalty-rules", response_model=PenaltyRuleInDB)
def create_penalty_rule(
    rule_data: PenaltyRuleCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return PenaltyService(db).create_rule(rule_data, created_by=current_user.id)


@router.put("/penalty-rules/{rule_id}", response_model=PenaltyRuleInDB)
def update_penalty_rule(
    rule_id: int,
    rule_data: PenaltyRuleUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return PenaltyService(db).update_rule(rule_id, rule_data)


@router.delete("/penalty-rules/{rule_id}")
def delete_penalty_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    PenaltyService(db).delete_rule(rule_id)
    return {"message": "Penalty rule deleted", "id": rule_id}


@router.put("/penalty-rules/{rule_id}/activate", response_model=PenaltyRuleInDB)
def activate_penalty_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return PenaltyService(db).set_rule_active(rule_id, True)


@router.put("/penalty-rules/{rule_id}/deactivate", response_model=PenaltyRuleInDB)
def deactivate_penalty_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return PenaltyService(db).set_rule_active(rule_id, False)


# ── Penalty records ──


@router.post("/penalty-records", response_model=PenaltyRecordInDB)
def create_penalty_record(
    incident: Incident,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Record an incident against a penalty rule.

    Inside the penalty trial period the record is kept at full amount but
    flagged, and it deducts nothing at settlement.
    """
    return PenaltyService(db).create_record(incident, created_by=current_user.id)


@router.get("/penalty-records", response_model=PenaltyRecordPage)
def list_penalty_records(
    salesperson_id: Optional[int] = None,
    penalty_type: Optional[str] = None,
    status: Optional[str] = None,
    settlement_month: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    if not current_user.is_reviewer:
        salesperson_id = current_user.id
    return PenaltyService(db).list_records(
        salesperson_id=salesperson_id,
        penalty_type=penalty_type,
        status=status,
        settlement_month=settlement_month,
        page=page,
        page_size=page_size,
    )


@router.get("/penalty-records/{record_id}", response_model=PenaltyRecordInDB)
def get_penalty_record(
    record_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    record = PenaltyService(db).get_record(record_id)

    # Salespeople can only view their own penalties
    if not current_user.is_reviewer and record.salesperson_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view this penalty record",
        )
    return record


@router.put("/penalty-records/{record_id}/status", response_model=PenaltyRecordInDB)
def update_penalty_record_status(
    record_id: int,
    data: PenaltyStatusUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return PenaltyService(db).update_record_status(record_id, data.status.value, data.notes)


@router.delete("/penalty-records/{record_id}")
def delete_penalty_record(
    record_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    PenaltyService(db).delete_record(record_id)
    return {"message": "Penalty record deleted", "id": record_id}


# ── Scheme configuration ──


@router.get("/scheme-config", response_model=SchemeConfig)
def get_scheme_config(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return load_scheme_config(db)


@router.put("/scheme-config", response_model=SchemeConfig)
def put_scheme_config(
    changes: SchemeConfigUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
):
    return update_scheme_config(db, changes.model_dump(exclude_unset=True), updated_by=current_user.id)


@router.get("/scheme-config/status", response_model=TrialStatus)
def get_scheme_status(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Current scheme phase and whether penalties are still in trial"""
    return TrialPeriodCalculator(load_scheme_config(db)).status()
