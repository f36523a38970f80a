"""Commission rule evaluation and commission record bookkeeping.

Rule types:
1. percentage - rate% of (base amount - min base amount), optionally capped
2. fixed      - supervisor + sales + document amounts, once per qualifying unit
3. tiered     - bonus split of the first tier (ascending min_count) whose
                [min_count, max_count] range contains the unit count

Stacking: every matching stackable rule contributes; among non-stackable
matches only the highest priority one does (ties go to the earlier rule).
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple
from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import func, or_

from app.core.config import settings
from app.core.exceptions import InvalidRuleConfig, NotFoundError, ValidationError
from app.models.commission import (
    CommissionRule, CommissionTier, CommissionRecord,
    RuleType, CommissionBase, CustomerLevel, SourceType, RecordStatus,
)
from app.schemas.commission import BusinessEvent, CommissionRuleCreate, CommissionRuleUpdate
from app.services.numbering import next_document_no, daily_prefix

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def current_month() -> str:
    return datetime.now().strftime("%Y-%m")


# ── Evaluation ──


def sorted_tiers(tiers) -> List:
    return sorted(tiers, key=lambda t: (t.min_count, t.tier_level or 0))


def find_tier(tiers, unit_count: int):
    """First tier, in ascending min_count order, whose range contains unit_count."""
    for tier in sorted_tiers(tiers):
        if unit_count < tier.min_count:
            continue
        if tier.max_count is None or unit_count <= tier.max_count:
            return tier
    return None


def tier_split(tier) -> Tuple[Decimal, Decimal, Decimal]:
    supervisor = money(tier.supervisor_bonus)
    sales = money(tier.sales_bonus)
    document = money(tier.document_bonus)
    if supervisor == ZERO and sales == ZERO and document == ZERO and tier.bonus_amount:
        # Legacy tiers only carry an undivided total
        sales = money(tier.bonus_amount)
    return supervisor, sales, document


def is_applicable(rule: CommissionRule, event: BusinessEvent) -> bool:
    """Whether a rule targets this event's customer level, source type and base."""
    level = _value(event.customer_level)
    if rule.customer_level not in (CustomerLevel.ALL.value, level):
        return False
    if rule.apply_to not in (SourceType.ALL.value, _value(event.source_type)):
        return False
    if rule.rule_type == RuleType.PERCENTAGE.value and rule.commission_base:
        if rule.commission_base not in (CommissionBase.ALL.value, _value(event.commission_base)):
            return False
    return True


def _value(v) -> Optional[str]:
    return v.value if hasattr(v, "value") else v


class RuleEvaluator:
    """Computes a commission amount and role split for one rule and one event."""

    def evaluate(
        self,
        rule: CommissionRule,
        event: BusinessEvent,
        unit_count: Optional[int] = None,
    ) -> CommissionRecord:
        """Return an unsaved CommissionRecord; record_no and month are assigned on persist."""
        if not rule.is_active:
            raise InvalidRuleConfig(f"Rule '{rule.rule_name}' is not active", rule_id=rule.id)

        rule_type = rule.rule_type
        supervisor = sales = document = ZERO
        tier_level = None

        if rule_type == RuleType.PERCENTAGE.value:
            if rule.commission_rate is None:
                raise InvalidRuleConfig(
                    f"Percentage rule '{rule.rule_name}' has no commission rate", rule_id=rule.id
                )
            base = money(event.base_amount) - money(rule.min_base_amount)
            if base < ZERO:
                base = ZERO
            amount = Decimal(str(rule.commission_rate)) / Decimal("100") * base
            if rule.max_commission is not None and amount > Decimal(str(rule.max_commission)):
                amount = Decimal(str(rule.max_commission))
            sales = money(amount)  # no role split defined for percentage rules

        elif rule_type == RuleType.FIXED.value:
            amounts = (rule.fixed_supervisor_amount, rule.fixed_sales_amount, rule.fixed_document_amount)
            if all(a is None for a in amounts):
                raise InvalidRuleConfig(
                    f"Fixed rule '{rule.rule_name}' has no fixed amounts", rule_id=rule.id
                )
            supervisor, sales, document = (money(a) for a in amounts)

        elif rule_type == RuleType.TIERED.value:
            if not rule.tiers:
                raise InvalidRuleConfig(f"Tiered rule '{rule.rule_name}' has no tiers", rule_id=rule.id)
            count = unit_count if unit_count is not None else event.unit_count
            if count is None:
                raise ValidationError("Unit count is required to evaluate a tiered rule", rule_id=rule.id)
            unit_count = count
            tier = find_tier(rule.tiers, count)
            if tier is not None:
                tier_level = tier.tier_level
                supervisor, sales, document = tier_split(tier)

        else:
            raise InvalidRuleConfig(f"Unknown rule type '{rule_type}'", rule_id=rule.id)

        return CommissionRecord(
            salesperson_id=event.salesperson_id,
            salesperson_name=event.salesperson_name or "",
            customer_id=event.customer_id,
            customer_name=event.customer_name or "",
            customer_level=_value(event.customer_level),
            rule_id=rule.id,
            rule_name=rule.rule_name,
            rule_type=rule_type,
            commission_base=rule.commission_base or _value(event.commission_base),
            commission_rate=rule.commission_rate if rule_type == RuleType.PERCENTAGE.value else None,
            tier_level=tier_level,
            base_amount=money(event.base_amount),
            unit_count=unit_count if rule_type == RuleType.TIERED.value else event.unit_count,
            supervisor_amount=supervisor,
            sales_amount=sales,
            document_amount=document,
            commission_amount=supervisor + sales + document,
            source_type=_value(event.source_type),
            source_id=event.source_id,
            source_no=event.source_no,
            status=RecordStatus.PENDING.value,
        )


def compose(results: List[Tuple[CommissionRule, CommissionRecord]]) -> List[Tuple[CommissionRule, CommissionRecord]]:
    """Apply stacking: all stackable matches plus the best non-stackable match.

    ``results`` must be in rule definition order; zero amounts are not matches.
    """
    matches = [(r, rec) for r, rec in results if rec.commission_amount > ZERO]

    stackable = [(r, rec) for r, rec in matches if r.is_stackable]
    exclusive = None
    for r, rec in matches:
        if r.is_stackable:
            continue
        # strict > keeps the earlier-defined rule on priority ties
        if exclusive is None or (r.priority or 0) > (exclusive[0].priority or 0):
            exclusive = (r, rec)

    chosen = stackable + ([exclusive] if exclusive else [])
    return sorted(chosen, key=lambda pair: -(pair[0].priority or 0))


# ── Rule configuration checks ──


def missing_required_fields(rule_type: str, data: Dict, tiers: List) -> Optional[str]:
    if rule_type == RuleType.PERCENTAGE.value and data.get("commission_rate") is None:
        return "Percentage rules require a commission rate"
    if rule_type == RuleType.FIXED.value and all(
        data.get(f) is None for f in ("fixed_supervisor_amount", "fixed_sales_amount", "fixed_document_amount")
    ):
        return "Fixed rules require at least one fixed amount"
    if rule_type == RuleType.TIERED.value and not tiers:
        return "Tiered rules require at least one tier"
    return None


def check_rule_config(rule_type: str, data: Dict, tiers: List) -> List[str]:
    """Configuration warnings that never block saving the rule."""
    warnings = []

    if rule_type == RuleType.FIXED.value:
        total = sum(money(data.get(f)) for f in ("fixed_supervisor_amount", "fixed_sales_amount", "fixed_document_amount"))
        if total == ZERO:
            warnings.append("Fixed rule amounts are all zero")

    if rule_type == RuleType.TIERED.value and tiers:
        levels_order = sorted(tiers, key=lambda t: t.tier_level or 0)
        if [t.min_count for t in levels_order] != sorted(t.min_count for t in levels_order):
            warnings.append("Tiers are not ordered by ascending min count")

        ordered = sorted_tiers(tiers)
        for prev, nxt in zip(ordered, ordered[1:]):
            if prev.max_count is None or prev.max_count >= nxt.min_count:
                warnings.append(
                    f"Tier range {prev.min_count}-{prev.max_count if prev.max_count is not None else '∞'} "
                    f"overlaps tier starting at {nxt.min_count}"
                )

        for t in ordered:
            if t.max_count is not None and t.max_count < t.min_count:
                warnings.append(f"Tier starting at {t.min_count} has max count below min count")
            split = money(t.supervisor_bonus) + money(t.sales_bonus) + money(t.document_bonus)
            if t.bonus_amount is not None and split != ZERO and split != money(t.bonus_amount):
                warnings.append(
                    f"Tier starting at {t.min_count}: role bonuses sum to {split}, declared total is {money(t.bonus_amount)}"
                )

    for w in warnings:
        logger.warning(f"Rule config warning ({data.get('rule_name')}): {w}")
    return warnings


class CommissionCalculationService:
    """
    Commission rule management and calculation:
    1. Applicable rules are fetched by customer level / source type, priority desc
    2. Each rule is evaluated independently; broken rules are skipped and logged
    3. Stacking decides which results become commission records
    """

    def __init__(self, db: Session, evaluator: Optional[RuleEvaluator] = None):
        self.db = db
        self.evaluator = evaluator or RuleEvaluator()

    # ── Rules ──

    def list_rules(
        self,
        rule_type: Optional[str] = None,
        customer_level: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Dict:
        query = self.db.query(CommissionRule)
        if rule_type:
            query = query.filter(CommissionRule.rule_type == rule_type)
        if customer_level:
            query = query.filter(CommissionRule.customer_level.in_([customer_level, CustomerLevel.ALL.value]))
        if is_active is not None:
            query = query.filter(CommissionRule.is_active == is_active)

        total = query.count()
        rules = (
            query.order_by(CommissionRule.priority.desc(), CommissionRule.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {"items": rules, "total": total, "page": page, "page_size": page_size}

    def get_rule(self, rule_id: int) -> CommissionRule:
        rule = self.db.query(CommissionRule).filter(CommissionRule.id == rule_id).first()
        if not rule:
            raise NotFoundError("Commission rule not found", rule_id=rule_id)
        return rule

    def _build_tiers(self, tiers) -> List[CommissionTier]:
        built = [
            CommissionTier(
                tier_level=t.tier_level,
                min_count=t.min_count,
                max_count=t.max_count,
                supervisor_bonus=t.supervisor_bonus,
                sales_bonus=t.sales_bonus,
                document_bonus=t.document_bonus,
                bonus_amount=t.bonus_amount,
            )
            for t in tiers
        ]
        # Dense 1-based levels in ascending min_count order
        for level, tier in enumerate(sorted_tiers(built), start=1):
            tier.tier_level = level
        return built

    def create_rule(self, data: CommissionRuleCreate, created_by: Optional[int] = None) -> Tuple[CommissionRule, List[str]]:
        fields = data.model_dump(exclude={"tiers"})
        error = missing_required_fields(data.rule_type.value, fields, data.tiers)
        if error:
            raise InvalidRuleConfig(error)

        warnings = check_rule_config(data.rule_type.value, fields, data.tiers)

        rule = CommissionRule(**{k: _value(v) for k, v in fields.items()}, created_by=created_by)
        if data.rule_type == RuleType.TIERED:
            rule.tiers = self._build_tiers(data.tiers)

        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Commission rule {rule.id} '{rule.rule_name}' created ({rule.rule_type})")
        return rule, warnings

    def update_rule(self, rule_id: int, data: CommissionRuleUpdate) -> Tuple[CommissionRule, List[str]]:
        rule = self.get_rule(rule_id)
        changes = data.model_dump(exclude_unset=True, exclude={"tiers"})
        for field, value in changes.items():
            setattr(rule, field, _value(value))

        if data.tiers is not None:
            rule.tiers = self._build_tiers(data.tiers)

        snapshot = {
            c: getattr(rule, c)
            for c in ("rule_name", "commission_rate", "fixed_supervisor_amount",
                      "fixed_sales_amount", "fixed_document_amount")
        }
        warnings = check_rule_config(rule.rule_type, snapshot, list(rule.tiers))
        error = missing_required_fields(rule.rule_type, snapshot, list(rule.tiers))
        if error:
            warnings.append(error)

        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Commission rule {rule.id} updated: {sorted(changes)}")
        return rule, warnings

    def delete_rule(self, rule_id: int) -> None:
        rule = self.get_rule(rule_id)
        self.db.delete(rule)
        self.db.commit()
        logger.info(f"Commission rule {rule_id} deleted")

    def set_rule_active(self, rule_id: int, active: bool) -> CommissionRule:
        rule = self.get_rule(rule_id)
        rule.is_active = active
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Commission rule {rule_id} {'activated' if active else 'deactivated'}")
        return rule

    def remove_tier(self, rule_id: int, tier_level: int) -> CommissionRule:
        rule = self.get_rule(rule_id)
        tier = next((t for t in rule.tiers if t.tier_level == tier_level), None)
        if tier is None:
            raise NotFoundError("Tier not found", rule_id=rule_id, tier_level=tier_level)

        rule.tiers.remove(tier)
        for level, t in enumerate(sorted_tiers(rule.tiers), start=1):
            t.tier_level = level

        self.db.commit()
        self.db.refresh(rule)
        return rule

    def get_applicable_rules(self, customer_level: str, source_type: str) -> List[CommissionRule]:
        return (
            self.db.query(CommissionRule)
            .filter(
                CommissionRule.is_active == True,
                CommissionRule.customer_level.in_([customer_level, CustomerLevel.ALL.value]),
                CommissionRule.apply_to.in_([source_type, SourceType.ALL.value]),
            )
            .order_by(CommissionRule.priority.desc(), CommissionRule.id)
            .all()
        )

    # ── Calculation ──

    def monthly_unit_count(self, salesperson_id: int, month: str) -> int:
        # Stacked rules write several records per event; count distinct source documents
        unit_key = func.coalesce(func.nullif(CommissionRecord.source_no, ""), CommissionRecord.record_no)
        count = (
            self.db.query(func.count(func.distinct(unit_key)))
            .filter(
                CommissionRecord.salesperson_id == salesperson_id,
                CommissionRecord.settlement_month == month,
                CommissionRecord.status != RecordStatus.CANCELLED.value,
            )
            .scalar()
        )
        return count or 0

    def calculate(self, event: BusinessEvent) -> Dict:
        """Evaluate all applicable rules for one event and persist the resulting records."""
        if not event.salesperson_id:
            raise ValidationError("Salesperson is required")

        month = event.settlement_month or current_month()
        rules = [
            r for r in self.get_applicable_rules(_value(event.customer_level), _value(event.source_type))
            if is_applicable(r, event)
        ]
        if not rules:
            return {"records": [], "total_commission": ZERO, "skipped_rules": []}

        unit_count = event.unit_count
        if unit_count is None and any(r.rule_type == RuleType.TIERED.value for r in rules):
            # This event is the n-th unit of the month
            unit_count = self.monthly_unit_count(event.salesperson_id, month) + 1

        results = []
        skipped = []
        for rule in sorted(rules, key=lambda r: r.id):
            try:
                results.append((rule, self.evaluator.evaluate(rule, event, unit_count=unit_count)))
            except (InvalidRuleConfig, ValidationError) as e:
                logger.warning(f"Skipping rule {rule.id} for salesperson {event.salesperson_id}: {e.message}")
                skipped.append(rule.id)

        records = []
        total = ZERO
        for rule, record in compose(results):
            record.settlement_month = month
            record.record_no = next_document_no(self.db, CommissionRecord.record_no, daily_prefix("CR"))
            self.db.add(record)
            self.db.flush()
            records.append(record)
            total += record.commission_amount

        self.db.commit()
        for record in records:
            self.db.refresh(record)

        if records:
            logger.info(
                f"Created {len(records)} commission record(s) for salesperson {event.salesperson_id} "
                f"({month}), total {total}"
            )
        return {"records": records, "total_commission": total, "skipped_rules": skipped}

    # ── Records ──

    def list_records(
        self,
        salesperson_id: Optional[int] = None,
        customer_id: Optional[str] = None,
        settlement_month: Optional[str] = None,
        status: Optional[str] = None,
        source_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = settings.DEFAULT_PAGE_SIZE,
    ) -> Dict:
        query = self.db.query(CommissionRecord)
        if salesperson_id:
            query = query.filter(CommissionRecord.salesperson_id == salesperson_id)
        if customer_id:
            query = query.filter(CommissionRecord.customer_id == customer_id)
        if settlement_month:
            query = query.filter(CommissionRecord.settlement_month == settlement_month)
        if status:
            query = query.filter(CommissionRecord.status == status)
        if source_type:
            query = query.filter(CommissionRecord.source_type == source_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                CommissionRecord.record_no.like(pattern),
                CommissionRecord.customer_name.like(pattern),
                CommissionRecord.salesperson_name.like(pattern),
                CommissionRecord.source_no.like(pattern),
            ))

        total = query.count()
        records = (
            query.order_by(CommissionRecord.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {"items": records, "total": total, "page": page, "page_size": page_size}

    def get_record(self, record_id: int) -> CommissionRecord:
        record = self.db.query(CommissionRecord).filter(CommissionRecord.id == record_id).first()
        if not record:
            raise NotFoundError("Commission record not found", record_id=record_id)
        return record

    def cancel_record(self, record_id: int, reason: Optional[str] = None) -> CommissionRecord:
        record = self.get_record(record_id)
        if record.status != RecordStatus.PENDING.value or record.settlement_id is not None:
            raise ValidationError(
                "Only pending records not attached to a settlement can be cancelled",
                record_id=record_id,
                status=record.status,
            )
        record.status = RecordStatus.CANCELLED.value
        if reason:
            record.notes = f"{record.notes or ''} [Cancelled: {reason}]".strip()
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Commission record {record.record_no} cancelled")
        return record

    # ── Statistics ──

    def stats(
        self,
        salesperson_id: Optional[int] = None,
        start_month: Optional[str] = None,
        end_month: Optional[str] = None,
    ) -> Dict:
        filters = [CommissionRecord.status != RecordStatus.CANCELLED.value]
        if salesperson_id:
            filters.append(CommissionRecord.salesperson_id == salesperson_id)
        if start_month:
            filters.append(CommissionRecord.settlement_month >= start_month)
        if end_month:
            filters.append(CommissionRecord.settlement_month <= end_month)

        records = self.db.query(CommissionRecord).filter(*filters).all()

        total_commission = sum((money(r.commission_amount) for r in records), ZERO)
        pending = sum((money(r.commission_amount) for r in records if r.status == RecordStatus.PENDING.value), ZERO)
        settled = sum((money(r.commission_amount) for r in records if r.status == RecordStatus.SETTLED.value), ZERO)

        monthly: Dict[str, Dict] = {}
        by_rule_type: Dict[str, Dict] = {}
        for r in records:
            m = monthly.setdefault(r.settlement_month, {"month": r.settlement_month, "record_count": 0, "commission": ZERO})
            m["record_count"] += 1
            m["commission"] += money(r.commission_amount)
            key = r.rule_type or "unknown"
            t = by_rule_type.setdefault(key, {"rule_type": key, "record_count": 0, "commission": ZERO})
            t["record_count"] += 1
            t["commission"] += money(r.commission_amount)

        return {
            "total": {
                "records": len(records),
                "base_amount": sum((money(r.base_amount) for r in records), ZERO),
                "commission": total_commission,
                "pending_commission": pending,
                "settled_commission": settled,
            },
            "monthly": sorted(monthly.values(), key=lambda m: m["month"], reverse=True)[:12],
            "by_rule_type": list(by_rule_type.values()),
        }

    def ranking(self, month: str, limit: int = 10) -> List[Dict]:
        rows = (
            self.db.query(
                CommissionRecord.salesperson_id,
                func.max(CommissionRecord.salesperson_name),
                func.count(CommissionRecord.id),
                func.coalesce(func.sum(CommissionRecord.base_amount), 0),
                func.coalesce(func.sum(CommissionRecord.commission_amount), 0),
            )
            .filter(
                CommissionRecord.settlement_month == month,
                CommissionRecord.status != RecordStatus.CANCELLED.value,
            )
            .group_by(CommissionRecord.salesperson_id)
            .order_by(func.sum(CommissionRecord.commission_amount).desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "rank": index,
                "salesperson_id": sp_id,
                "salesperson_name": name,
                "record_count": count,
                "total_base_amount": money(base),
                "total_commission": money(commission),
            }
            for index, (sp_id, name, count, base, commission) in enumerate(rows, start=1)
        ]
