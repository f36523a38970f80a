"""Settlement approval lifecycle.

draft --submit--> pending --approve--> approved --mark_paid--> paid
                          --reject---> rejected

rejected and paid are terminal. Concurrent transitions are serialized by the
settlement's version column: the loser gets InvalidStateTransition.
Approval and payment only commit once the finance voucher call succeeded.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    CommissionEngineError, ExternalServiceError, InvalidStateTransition, NotFoundError, ValidationError,
)
from app.models.commission import RecordStatus
from app.models.penalty import PenaltyRecordStatus
from app.models.settlement import Settlement, SettlementStatus
from app.services.voucher import VoucherLinker

logger = logging.getLogger(__name__)

# action -> (allowed source states, target state)
TRANSITIONS = {
    "submit": ({SettlementStatus.DRAFT.value}, SettlementStatus.PENDING.value),
    "approve": ({SettlementStatus.PENDING.value}, SettlementStatus.APPROVED.value),
    "reject": ({SettlementStatus.PENDING.value}, SettlementStatus.REJECTED.value),
    "mark_paid": ({SettlementStatus.APPROVED.value}, SettlementStatus.PAID.value),
}


class SettlementStateMachine:
    def __init__(self, db: Session, voucher_linker: Optional[VoucherLinker] = None):
        self.db = db
        self.voucher_linker = voucher_linker or VoucherLinker()

    def _load(self, settlement_id: int) -> Settlement:
        settlement = self.db.query(Settlement).filter(Settlement.id == settlement_id).first()
        if not settlement:
            raise NotFoundError("Settlement not found", settlement_id=settlement_id)
        return settlement

    def _guard(self, settlement: Settlement, action: str) -> str:
        allowed, target = TRANSITIONS[action]
        if settlement.status not in allowed:
            raise InvalidStateTransition(
                current=settlement.status, requested=action, settlement_id=settlement.id
            )
        return target

    def _flush(self, settlement: Settlement, action: str) -> None:
        """Write the transition; a concurrent writer makes the version check fail."""
        try:
            self.db.flush()
        except StaleDataError:
            self.db.rollback()
            current = self.db.query(Settlement.status).filter(Settlement.id == settlement.id).scalar()
            logger.warning(f"Settlement {settlement.id}: lost concurrent {action}, now '{current}'")
            raise InvalidStateTransition(
                current=current,
                requested=action,
                message=f"Settlement was modified concurrently, it is now '{current}'",
                settlement_id=settlement.id,
            )

    def _log(self, settlement: Settlement, action: str, previous: str) -> None:
        logger.info(
            f"Settlement {settlement.settlement_no}: {action} ({previous} -> {settlement.status})"
        )

    def submit(self, settlement_id: int) -> Settlement:
        settlement = self._load(settlement_id)
        previous = settlement.status
        settlement.status = self._guard(settlement, "submit")
        settlement.submit_time = datetime.utcnow()
        self._flush(settlement, "submit")
        self.db.commit()
        self.db.refresh(settlement)
        self._log(settlement, "submit", previous)
        return settlement

    def approve(
        self,
        settlement_id: int,
        reviewer_id: Optional[int],
        reviewer_name: Optional[str],
        comment: Optional[str],
    ) -> Settlement:
        settlement = self._load(settlement_id)
        previous = settlement.status
        target = self._guard(settlement, "approve")
        if not comment or not comment.strip():
            raise ValidationError("Approval comment is required", settlement_id=settlement_id)

        settlement.status = target
        settlement.reviewer_id = reviewer_id
        settlement.reviewer_name = reviewer_name
        settlement.review_time = datetime.utcnow()
        settlement.review_comment = comment.strip()
        self._flush(settlement, "approve")

        try:
            ref = self.voucher_linker.create_payable_voucher(settlement)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Settlement {settlement_id}: voucher creation failed, approval rolled back: {e}")
            if isinstance(e, ExternalServiceError):
                raise
            raise ExternalServiceError(f"Voucher creation failed: {e}", settlement_id=settlement_id) from e

        settlement.financial_voucher_id = ref.voucher_id
        settlement.financial_voucher_no = ref.voucher_no
        for record in settlement.commission_records:
            record.status = RecordStatus.SETTLED.value
        for record in settlement.penalty_records:
            record.status = PenaltyRecordStatus.SETTLED.value

        self.db.commit()
        self.db.refresh(settlement)
        self._log(settlement, "approve", previous)
        return settlement

    def reject(
        self,
        settlement_id: int,
        reviewer_id: Optional[int],
        reviewer_name: Optional[str],
        comment: Optional[str],
    ) -> Settlement:
        settlement = self._load(settlement_id)
        previous = settlement.status
        target = self._guard(settlement, "reject")
        if not comment or not comment.strip():
            raise ValidationError("Rejection reason is required", settlement_id=settlement_id)

        settlement.status = target
        settlement.reviewer_id = reviewer_id
        settlement.reviewer_name = reviewer_name
        settlement.review_time = datetime.utcnow()
        settlement.review_comment = comment.strip()

        # Release the records so the period can be settled again once corrected
        for record in list(settlement.commission_records):
            record.settlement_id = None
        for record in list(settlement.penalty_records):
            record.settlement_id = None

        self._flush(settlement, "reject")
        self.db.commit()
        self.db.refresh(settlement)
        self._log(settlement, "reject", previous)
        return settlement

    def mark_paid(self, settlement_id: int) -> Settlement:
        settlement = self._load(settlement_id)
        previous = settlement.status
        settlement.status = self._guard(settlement, "mark_paid")
        settlement.paid_time = datetime.utcnow()
        self._flush(settlement, "mark_paid")

        if settlement.financial_voucher_id:
            try:
                self.voucher_linker.mark_voucher_paid(settlement.financial_voucher_id, settlement.paid_time)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Settlement {settlement_id}: marking voucher paid failed, rolled back: {e}")
                if isinstance(e, ExternalServiceError):
                    raise
                raise ExternalServiceError(f"Voucher update failed: {e}", settlement_id=settlement_id) from e
        else:
            logger.warning(f"Settlement {settlement.settlement_no} marked paid without a linked voucher")

        self.db.commit()
        self.db.refresh(settlement)
        self._log(settlement, "mark_paid", previous)
        return settlement

    def batch_submit(self, ids: List[int]) -> Dict:
        """Submit each settlement independently and report per-item outcomes."""
        if not ids:
            raise ValidationError("Select at least one settlement to submit")

        results = []
        count = failed = 0
        for settlement_id in ids:
            try:
                settlement = self.submit(settlement_id)
            except CommissionEngineError as e:
                self.db.rollback()
                failed += 1
                results.append({"id": settlement_id, "success": False, "error": e.message})
                continue
            count += 1
            results.append({"id": settlement_id, "settlement_no": settlement.settlement_no, "success": True})

        logger.info(f"Batch submit: {count} submitted, {failed} failed")
        return {"count": count, "failed": failed, "results": results}
