"""Penalty rule evaluation and penalty record bookkeeping.

- inspection / mistake: fixed supervisor/sales/document amounts from the rule
- loss: loss_percentage% of the incident's loss amount, one undivided bucket
- every type is capped at max_penalty_rate% of the salesperson's monthly
  reward; when the reward is not known yet the cap is applied at settlement
- incidents inside the penalty trial period are recorded in full and flagged,
  settlement generation counts them but deducts nothing
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.orm import Session
from sqlalchemy import func

from app.core.config import settings
from app.core.exceptions import InvalidRuleConfig, NotFoundError, ValidationError
from app.models.commission import CommissionRecord, RecordStatus
from app.models.penalty import PenaltyRule, PenaltyRecord, PenaltyType, PenaltyRecordStatus
from app.schemas.penalty import Incident, PenaltyRuleCreate, PenaltyRuleUpdate
from app.services.commission import money, ZERO
from app.services.numbering import next_document_no, daily_prefix
from app.services.trial_period import TrialPeriodCalculator, load_scheme_config

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

# Manual status changes; settled is reserved for settlement approval
ALLOWED_STATUS_CHANGES = {
    PenaltyRecordStatus.PENDING.value: {PenaltyRecordStatus.CONFIRMED.value, PenaltyRecordStatus.CANCELLED.value},
    PenaltyRecordStatus.COMMUNICATED.value: {PenaltyRecordStatus.CONFIRMED.value, PenaltyRecordStatus.CANCELLED.value},
    PenaltyRecordStatus.CONFIRMED.value: {PenaltyRecordStatus.CANCELLED.value},
}


def apply_penalty_cap(total: Decimal, monthly_reward: Decimal, max_penalty_rate) -> Decimal:
    rate = Decimal(str(max_penalty_rate)) if max_penalty_rate is not None else HUNDRED
    cap = money(money(monthly_reward) * rate / HUNDRED)
    return min(money(total), cap)


class PenaltyEvaluator:
    """Computes the penalty amount and role split for one rule and one incident."""

    def __init__(self, calculator: TrialPeriodCalculator):
        self.calculator = calculator

    def evaluate(
        self,
        rule: PenaltyRule,
        incident: Incident,
        monthly_reward_so_far: Optional[Decimal] = None,
    ) -> PenaltyRecord:
        if not rule.is_active:
            raise InvalidRuleConfig(f"Penalty rule '{rule.penalty_name}' is not active", penalty_rule_id=rule.id)

        supervisor = sales = document = ZERO
        loss_amount = money(incident.loss_amount)

        if rule.penalty_type in (PenaltyType.INSPECTION.value, PenaltyType.MISTAKE.value):
            amounts = (rule.supervisor_penalty, rule.sales_penalty, rule.document_penalty)
            if all(a is None for a in amounts):
                raise InvalidRuleConfig(
                    f"Penalty rule '{rule.penalty_name}' has no role amounts", penalty_rule_id=rule.id
                )
            supervisor, sales, document = (money(a) for a in amounts)
        elif rule.penalty_type == PenaltyType.LOSS.value:
            if rule.loss_percentage is None:
                raise InvalidRuleConfig(
                    f"Loss penalty rule '{rule.penalty_name}' has no loss percentage", penalty_rule_id=rule.id
                )
            # No role split is defined for loss penalties
            sales = money(loss_amount * Decimal(str(rule.loss_percentage)) / HUNDRED)
        else:
            raise InvalidRuleConfig(f"Unknown penalty type '{rule.penalty_type}'", penalty_rule_id=rule.id)

        total = supervisor + sales + document

        cap_deferred = not monthly_reward_so_far
        if cap_deferred:
            effective = total
        else:
            effective = apply_penalty_cap(total, monthly_reward_so_far, rule.max_penalty_rate)

        incident_date = incident.incident_date or date.today()
        in_trial = self.calculator.in_penalty_trial(incident_date)

        return PenaltyRecord(
            penalty_rule_id=rule.id,
            penalty_name=rule.penalty_name,
            penalty_type=rule.penalty_type,
            salesperson_id=incident.salesperson_id,
            salesperson_name=incident.salesperson_name or "",
            supervisor_id=incident.supervisor_id,
            supervisor_name=incident.supervisor_name or "",
            supervisor_penalty=supervisor,
            sales_id=incident.sales_id,
            sales_name=incident.sales_name or "",
            sales_penalty=sales,
            document_id=incident.document_id,
            document_name=incident.document_name or "",
            document_penalty=document,
            total_penalty=total,
            effective_penalty=effective,
            max_penalty_rate=rule.max_penalty_rate,
            cap_deferred=cap_deferred,
            loss_amount=loss_amount,
            related_order_id=incident.related_order_id,
            related_order_no=incident.related_order_no,
            is_trial_period=in_trial,
            incident_date=incident_date,
            incident_description=incident.incident_description or "",
            status=(PenaltyRecordStatus.COMMUNICATED.value if in_trial else PenaltyRecordStatus.PENDING.value),
            notes=incident.notes or "",
        )


REQUIRED_RULE_FIELDS = ("penalty_name", "penalty_type", "max_penalty_rate")
RULE_CONFIG_FIELDS = ("penalty_type", "loss_percentage", "supervisor_penalty", "sales_penalty", "document_penalty")


def check_penalty_rule(fields: Dict) -> None:
    """Loss rules need a loss percentage, inspection/mistake rules at least one role amount."""
    if fields.get("penalty_type") == PenaltyType.LOSS.value:
        if fields.get("loss_percentage") is None:
            raise InvalidRuleConfig("Loss penalty rules require a loss percentage")
    elif all(fields.get(f) is None for f in ("supervisor_penalty", "sales_penalty", "document_penalty")):
        raise InvalidRuleConfig("Inspection and mistake penalty rules require role amounts")


class PenaltyService:
    def __init__(self, db: Session, calculator: Optional[TrialPeriodCalculator] = None):
        self.db = db
        self.calculator = calculator or TrialPeriodCalculator(load_scheme_config(db))
        self.evaluator = PenaltyEvaluator(self.calculator)

    # ── Rules ──

    def list_rules(self, penalty_type: Optional[str] = None, is_active: Optional[bool] = None):
        query = self.db.query(PenaltyRule)
        if penalty_type:
            query = query.filter(PenaltyRule.penalty_type == penalty_type)
        if is_active is not None:
            query = query.filter(PenaltyRule.is_active == is_active)
        return query.order_by(PenaltyRule.id.desc()).all()

    def get_rule(self, rule_id: int) -> PenaltyRule:
        rule = self.db.query(PenaltyRule).filter(PenaltyRule.id == rule_id).first()
        if not rule:
            raise NotFoundError("Penalty rule not found", penalty_rule_id=rule_id)
        return rule

    def create_rule(self, data: PenaltyRuleCreate, created_by: Optional[int] = None) -> PenaltyRule:
        fields = data.model_dump()
        fields["penalty_type"] = data.penalty_type.value
        check_penalty_rule(fields)
        rule = PenaltyRule(**fields, created_by=created_by)
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)

        split = sum((money(v) for v in (rule.supervisor_penalty, rule.sales_penalty, rule.document_penalty)), ZERO)
        if rule.total_amount is not None and split != ZERO and split != money(rule.total_amount):
            logger.warning(
                f"Penalty rule {rule.id}: role amounts sum to {split}, declared total is {money(rule.total_amount)}"
            )
        logger.info(f"Penalty rule {rule.id} '{rule.penalty_name}' created ({rule.penalty_type})")
        return rule

    def update_rule(self, rule_id: int, data: PenaltyRuleUpdate) -> PenaltyRule:
        rule = self.get_rule(rule_id)
        changes = {
            field: value.value if hasattr(value, "value") else value
            for field, value in data.model_dump(exclude_unset=True).items()
        }
        cleared = sorted(f for f in REQUIRED_RULE_FIELDS if f in changes and changes[f] is None)
        if cleared:
            raise ValidationError(f"Penalty rule fields cannot be cleared: {', '.join(cleared)}", fields=cleared)

        merged = {c: getattr(rule, c) for c in RULE_CONFIG_FIELDS}
        merged.update((k, v) for k, v in changes.items() if k in RULE_CONFIG_FIELDS)
        check_penalty_rule(merged)

        for field, value in changes.items():
            setattr(rule, field, value)
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Penalty rule {rule.id} updated: {sorted(changes)}")
        return rule

    def delete_rule(self, rule_id: int) -> None:
        rule = self.get_rule(rule_id)
        self.db.delete(rule)
        self.db.commit()

    def set_rule_active(self, rule_id: int, active: bool) -> PenaltyRule:
        rule = self.get_rule(rule_id)
        rule.is_active = active
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Penalty rule {rule_id} {'activated' if active else 'deactivated'}")
        return rule

    # ── Records ──

    def monthly_reward(self, salesperson_id: int, month: str) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(CommissionRecord.commission_amount), 0))
            .filter(
                CommissionRecord.salesperson_id == salesperson_id,
                CommissionRecord.settlement_month == month,
                CommissionRecord.status != RecordStatus.CANCELLED.value,
            )
            .scalar()
        )
        return money(total)

    def create_record(self, incident: Incident, created_by: Optional[int] = None) -> PenaltyRecord:
        if not incident.salesperson_id:
            raise ValidationError("Salesperson is required")

        rule = self.get_rule(incident.penalty_rule_id)
        incident_date = incident.incident_date or date.today()
        month = incident.settlement_month or incident_date.strftime("%Y-%m")

        record = self.evaluator.evaluate(
            rule, incident, monthly_reward_so_far=self.monthly_reward(incident.salesperson_id, month)
        )
        record.settlement_month = month
        record.created_by = created_by
        record.record_no = next_document_no(self.db, PenaltyRecord.record_no, daily_prefix("PR"))

        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)

        if record.is_trial_period:
            logger.info(
                f"Penalty {record.record_no} for salesperson {record.salesperson_id} recorded in trial period "
                f"({record.total_penalty}), communicated only"
            )
        else:
            logger.info(f"Penalty {record.record_no} for salesperson {record.salesperson_id}: {record.effective_penalty}")
        return record

    def list_records(
        self,
        salesperson_id: Optional[int] = None,
        penalty_type: Optional[str] = None,
        status: Optional[str] = None,
        settlement_month: Optional[str] = None,
        page: int = 1,
        page_size: int = settings.DEFAULT_PAGE_SIZE,
    ) -> Dict:
        query = self.db.query(PenaltyRecord)
        if salesperson_id:
            query = query.filter(PenaltyRecord.salesperson_id == salesperson_id)
        if penalty_type:
            query = query.filter(PenaltyRecord.penalty_type == penalty_type)
        if status:
            query = query.filter(PenaltyRecord.status == status)
        if settlement_month:
            query = query.filter(PenaltyRecord.settlement_month == settlement_month)

        total = query.count()
        records = (
            query.order_by(PenaltyRecord.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {"items": records, "total": total, "page": page, "page_size": page_size}

    def get_record(self, record_id: int) -> PenaltyRecord:
        record = self.db.query(PenaltyRecord).filter(PenaltyRecord.id == record_id).first()
        if not record:
            raise NotFoundError("Penalty record not found", record_id=record_id)
        return record

    def update_record_status(self, record_id: int, status: str, notes: Optional[str] = None) -> PenaltyRecord:
        record = self.get_record(record_id)
        if record.settlement_id is not None:
            raise ValidationError("Penalty record is attached to a settlement", record_id=record_id)
        if status not in ALLOWED_STATUS_CHANGES.get(record.status, set()):
            raise ValidationError(
                f"Cannot change penalty record from '{record.status}' to '{status}'",
                record_id=record_id,
                current=record.status,
                requested=status,
            )

        record.status = status
        if notes:
            record.notes = f"{record.notes or ''} [{date.today().isoformat()}] {notes}".strip()
        self.db.commit()
        self.db.refresh(record)
        return record

    def delete_record(self, record_id: int) -> None:
        record = self.get_record(record_id)
        if record.settlement_id is not None or record.status not in (
            PenaltyRecordStatus.PENDING.value, PenaltyRecordStatus.COMMUNICATED.value
        ):
            raise ValidationError(
                "Only pending or communicated penalty records can be deleted",
                record_id=record_id,
                status=record.status,
            )
        self.db.delete(record)
        self.db.commit()
