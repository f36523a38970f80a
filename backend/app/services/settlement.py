"""Monthly settlement generation.

Workflow:
1. Refuse (manual) / skip (batch) when an active settlement exists for the period
2. Collect the salesperson's unattached commission and penalty records for the month
3. total_reward = sum of commission amounts
4. total_penalty = sum of effective penalties, trial-period penalties count as 0
   (they are still counted in penalty_record_count)
5. net_amount = total_reward - total_penalty, negative allowed
6. Persist as draft and attach the records
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func

from app.core.config import settings
from app.core.exceptions import (
    CommissionEngineError, DocumentNumberConflict, DuplicateSettlement, NoQualifyingRecords, NotFoundError,
    ValidationError,
)
from app.models.commission import CommissionRecord, RecordStatus
from app.models.penalty import PenaltyRecord, PenaltyRecordStatus
from app.models.settlement import Settlement, SettlementStatus
from app.services.commission import money, ZERO
from app.services.numbering import next_document_no, monthly_prefix
from app.services.penalty import apply_penalty_cap

logger = logging.getLogger(__name__)

NUMBER_ATTEMPTS = 3

OPEN_PENALTY_STATUSES = (
    PenaltyRecordStatus.PENDING.value,
    PenaltyRecordStatus.COMMUNICATED.value,
    PenaltyRecordStatus.CONFIRMED.value,
)


def effective_penalty(record: PenaltyRecord, total_reward: Decimal) -> Decimal:
    """Amount a penalty record deducts from a settlement with the given reward."""
    if record.is_trial_period:
        return ZERO
    if record.cap_deferred:
        return apply_penalty_cap(record.total_penalty, total_reward, record.max_penalty_rate)
    return money(record.effective_penalty)


def summarize(rewards: List[CommissionRecord], penalties: List[PenaltyRecord]) -> Dict:
    total_reward = sum((money(r.commission_amount) for r in rewards), ZERO)
    total_penalty = sum((effective_penalty(p, total_reward) for p in penalties), ZERO)
    return {
        "reward_record_count": len(rewards),
        "total_base_amount": sum((money(r.base_amount) for r in rewards), ZERO),
        "total_reward": total_reward,
        "penalty_record_count": len(penalties),
        "trial_penalty_count": sum(1 for p in penalties if p.is_trial_period),
        "total_penalty": total_penalty,
        "net_amount": total_reward - total_penalty,
    }


class SettlementAggregator:
    def __init__(self, db: Session, require_records: bool = False):
        self.db = db
        # Manual generation is permissive: an all-zero settlement is allowed
        self.require_records = require_records

    def active_settlement(self, salesperson_id: int, month: str) -> Optional[Settlement]:
        return (
            self.db.query(Settlement)
            .filter(
                Settlement.salesperson_id == salesperson_id,
                Settlement.settlement_month == month,
                Settlement.status != SettlementStatus.REJECTED.value,
            )
            .first()
        )

    def unsettled_rewards(self, salesperson_id: int, month: str) -> List[CommissionRecord]:
        return (
            self.db.query(CommissionRecord)
            .filter(
                CommissionRecord.salesperson_id == salesperson_id,
                CommissionRecord.settlement_month == month,
                CommissionRecord.status == RecordStatus.PENDING.value,
                CommissionRecord.settlement_id.is_(None),
            )
            .order_by(CommissionRecord.id)
            .all()
        )

    def unsettled_penalties(self, salesperson_id: int, month: str) -> List[PenaltyRecord]:
        return (
            self.db.query(PenaltyRecord)
            .filter(
                PenaltyRecord.salesperson_id == salesperson_id,
                PenaltyRecord.settlement_month == month,
                PenaltyRecord.status.in_(OPEN_PENALTY_STATUSES),
                PenaltyRecord.settlement_id.is_(None),
            )
            .order_by(PenaltyRecord.id)
            .all()
        )

    def _build(self, salesperson_id: int, month: str, salesperson_name: Optional[str]) -> Settlement:
        """Draft settlement over the currently unattached records, records attached."""
        rewards = self.unsettled_rewards(salesperson_id, month)
        penalties = self.unsettled_penalties(salesperson_id, month)
        if self.require_records and not rewards and not penalties:
            raise NoQualifyingRecords(
                f"No unsettled records for {month}", salesperson_id=salesperson_id, month=month
            )

        if not salesperson_name:
            salesperson_name = next(
                (r.salesperson_name for r in [*rewards, *penalties] if r.salesperson_name), ""
            )

        settlement = Settlement(
            settlement_no=next_document_no(self.db, Settlement.settlement_no, monthly_prefix("CS", month)),
            settlement_month=month,
            salesperson_id=salesperson_id,
            salesperson_name=salesperson_name,
            status=SettlementStatus.DRAFT.value,
            **summarize(rewards, penalties),
        )
        settlement.commission_records = rewards
        settlement.penalty_records = penalties
        return settlement

    def generate(
        self,
        salesperson_id: Optional[int],
        month: str,
        salesperson_name: Optional[str] = None,
    ) -> Settlement:
        if not salesperson_id:
            raise ValidationError("Salesperson is required")
        if not month:
            raise ValidationError("Settlement month is required")

        existing = self.active_settlement(salesperson_id, month)
        if existing:
            raise DuplicateSettlement(
                f"Settlement for {month} already exists",
                salesperson_id=salesperson_id,
                month=month,
                settlement_id=existing.id,
                status=existing.status,
            )

        for attempt in range(1, NUMBER_ATTEMPTS + 1):
            settlement = self._build(salesperson_id, month, salesperson_name)
            number = settlement.settlement_no
            try:
                self.db.add(settlement)
                self.db.flush()
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                # Either a concurrent generate for the same period won, or another
                # salesperson's settlement took the same number
                existing = self.active_settlement(salesperson_id, month)
                if existing:
                    raise DuplicateSettlement(
                        f"Settlement for {month} already exists",
                        salesperson_id=salesperson_id,
                        month=month,
                        settlement_id=existing.id,
                        status=existing.status,
                    )
                logger.warning(
                    f"Settlement number {number} was taken concurrently "
                    f"(attempt {attempt}/{NUMBER_ATTEMPTS})"
                )
        else:
            raise DocumentNumberConflict(
                f"Could not allocate a settlement number for {month}",
                salesperson_id=salesperson_id,
                month=month,
            )

        self.db.refresh(settlement)

        if settlement.net_amount < 0:
            logger.warning(
                f"Settlement {settlement.settlement_no} for salesperson {salesperson_id} has negative net amount "
                f"{settlement.net_amount}"
            )
        logger.info(
            f"Generated settlement {settlement.settlement_no} for salesperson {salesperson_id} ({month}): "
            f"reward {settlement.total_reward}, penalty {settlement.total_penalty}, net {settlement.net_amount}"
        )
        return settlement

    def candidates(self, month: str, include_all: bool = False) -> Dict[int, str]:
        """Salespeople with unsettled records for the month -> name."""
        rows = (
            self.db.query(CommissionRecord.salesperson_id, func.max(CommissionRecord.salesperson_name))
            .filter(
                CommissionRecord.settlement_month == month,
                CommissionRecord.status == RecordStatus.PENDING.value,
                CommissionRecord.settlement_id.is_(None),
            )
            .group_by(CommissionRecord.salesperson_id)
            .all()
        )
        people = {sp_id: name for sp_id, name in rows}

        if include_all:
            penalty_rows = (
                self.db.query(PenaltyRecord.salesperson_id, func.max(PenaltyRecord.salesperson_name))
                .filter(
                    PenaltyRecord.settlement_month == month,
                    PenaltyRecord.status.in_(OPEN_PENALTY_STATUSES),
                    PenaltyRecord.settlement_id.is_(None),
                )
                .group_by(PenaltyRecord.salesperson_id)
                .all()
            )
            for sp_id, name in penalty_rows:
                people.setdefault(sp_id, name)

        return people

    def auto_generate(self, month: str, include_all: bool = False) -> Dict:
        """Generate settlements for every salesperson with unsettled records.

        Each salesperson is its own transaction; existing settlements are skipped.
        """
        results = []
        count = skipped = failed = 0

        for salesperson_id, name in sorted(self.candidates(month, include_all).items()):
            try:
                settlement = self.generate(salesperson_id, month, salesperson_name=name)
            except DuplicateSettlement:
                logger.info(f"Settlement for salesperson {salesperson_id} ({month}) already exists, skipping")
                skipped += 1
                continue
            except CommissionEngineError as e:
                logger.error(f"Settlement generation failed for salesperson {salesperson_id} ({month}): {e.message}")
                self.db.rollback()
                failed += 1
                results.append({"salesperson_id": salesperson_id, "success": False, "error": e.message})
                continue

            count += 1
            results.append({
                "id": settlement.id,
                "salesperson_id": salesperson_id,
                "settlement_no": settlement.settlement_no,
                "success": True,
            })

        logger.info(f"Auto-generated {count} settlement(s) for {month} ({skipped} skipped, {failed} failed)")
        return {"count": count, "skipped": skipped, "failed": failed, "results": results}

    # ── Read side ──

    def list_settlements(
        self,
        salesperson_id: Optional[int] = None,
        settlement_month: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = settings.DEFAULT_PAGE_SIZE,
    ) -> Dict:
        query = self.db.query(Settlement)
        if salesperson_id:
            query = query.filter(Settlement.salesperson_id == salesperson_id)
        if settlement_month:
            query = query.filter(Settlement.settlement_month == settlement_month)
        if status:
            query = query.filter(Settlement.status == status)

        total = query.count()
        items = (
            query.order_by(Settlement.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {"items": items, "total": total, "page": page, "page_size": page_size}

    def get_settlement(self, settlement_id: int) -> Settlement:
        settlement = self.db.query(Settlement).filter(Settlement.id == settlement_id).first()
        if not settlement:
            raise NotFoundError("Settlement not found", settlement_id=settlement_id)
        return settlement

    def summary(self, salesperson_id: Optional[int] = None) -> Dict:
        scope = []
        if salesperson_id:
            scope.append(Settlement.salesperson_id == salesperson_id)

        counts = dict(
            self.db.query(Settlement.status, func.count(Settlement.id))
            .filter(*scope)
            .group_by(Settlement.status)
            .all()
        )
        totals = (
            self.db.query(
                func.coalesce(func.sum(Settlement.total_reward), 0),
                func.coalesce(func.sum(Settlement.total_penalty), 0),
                func.coalesce(func.sum(Settlement.net_amount), 0),
            )
            .filter(Settlement.status != SettlementStatus.REJECTED.value, *scope)
            .one()
        )
        return {
            "total_reward": money(totals[0]),
            "total_penalty": money(totals[1]),
            "net_amount": money(totals[2]),
            "draft_count": counts.get(SettlementStatus.DRAFT.value, 0),
            "pending_count": counts.get(SettlementStatus.PENDING.value, 0),
            "approved_count": counts.get(SettlementStatus.APPROVED.value, 0),
            "rejected_count": counts.get(SettlementStatus.REJECTED.value, 0),
            "paid_count": counts.get(SettlementStatus.PAID.value, 0),
        }
