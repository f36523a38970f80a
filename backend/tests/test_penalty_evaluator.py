"""Tests for penalty evaluation, the reward cap and penalty record bookkeeping."""

from datetime import date
from decimal import Decimal

import pytest

from app.core.exceptions import InvalidRuleConfig, ValidationError
from app.models.penalty import PenaltyRule
from app.schemas.penalty import Incident, PenaltyRuleCreate, PenaltyRuleUpdate
from app.services.penalty import PenaltyEvaluator, PenaltyService, apply_penalty_cap

from conftest import add_reward

RUNNING_DAY = date(2026, 5, 10)
TRIAL_DAY = date(2026, 1, 15)


def _inspection_rule(**overrides) -> PenaltyRule:
    fields = dict(
        id=1,
        penalty_name="Failed inspection",
        penalty_type="inspection",
        supervisor_penalty=Decimal("50"),
        sales_penalty=Decimal("100"),
        document_penalty=Decimal("50"),
        max_penalty_rate=Decimal("100"),
        is_active=True,
    )
    fields.update(overrides)
    return PenaltyRule(**fields)


def _incident(**overrides) -> Incident:
    fields = dict(
        penalty_rule_id=1,
        salesperson_id=11,
        salesperson_name="Lin",
        incident_date=RUNNING_DAY,
        incident_description="Seal broken at inspection",
    )
    fields.update(overrides)
    return Incident(**fields)


@pytest.fixture
def evaluator(calculator) -> PenaltyEvaluator:
    return PenaltyEvaluator(calculator)


class TestPenaltyEvaluator:
    def test_fixed_role_split(self, evaluator) -> None:
        record = evaluator.evaluate(_inspection_rule(), _incident(), monthly_reward_so_far=Decimal("5000"))
        assert record.supervisor_penalty == Decimal("50.00")
        assert record.sales_penalty == Decimal("100.00")
        assert record.document_penalty == Decimal("50.00")
        assert record.total_penalty == Decimal("200.00")
        assert record.effective_penalty == Decimal("200.00")
        assert record.cap_deferred is False
        assert record.status == "pending"

    def test_capped_by_monthly_reward(self, evaluator) -> None:
        rule = _inspection_rule(max_penalty_rate=Decimal("10"))
        record = evaluator.evaluate(rule, _incident(), monthly_reward_so_far=Decimal("1000"))
        assert record.total_penalty == Decimal("200.00")
        assert record.effective_penalty == Decimal("100.00")

    def test_cap_deferred_without_reward(self, evaluator) -> None:
        rule = _inspection_rule(max_penalty_rate=Decimal("10"))
        record = evaluator.evaluate(rule, _incident(), monthly_reward_so_far=Decimal("0"))
        assert record.cap_deferred is True
        assert record.effective_penalty == Decimal("200.00")

    def test_loss_percentage(self, evaluator) -> None:
        rule = PenaltyRule(
            id=2, penalty_name="Cargo loss", penalty_type="loss",
            loss_percentage=Decimal("10"), max_penalty_rate=Decimal("100"), is_active=True,
        )
        record = evaluator.evaluate(
            rule, _incident(loss_amount=Decimal("5000")), monthly_reward_so_far=Decimal("9000")
        )
        assert record.total_penalty == Decimal("500.00")
        assert record.sales_penalty == Decimal("500.00")
        assert record.loss_amount == Decimal("5000.00")

    def test_trial_incident_is_flagged_at_full_amount(self, evaluator) -> None:
        record = evaluator.evaluate(
            _inspection_rule(), _incident(incident_date=TRIAL_DAY), monthly_reward_so_far=Decimal("5000")
        )
        assert record.is_trial_period is True
        assert record.total_penalty == Decimal("200.00")
        assert record.status == "communicated"

    def test_loss_rule_without_percentage_is_invalid(self, evaluator) -> None:
        rule = PenaltyRule(id=3, penalty_name="Loss", penalty_type="loss", is_active=True)
        with pytest.raises(InvalidRuleConfig):
            evaluator.evaluate(rule, _incident())

    def test_inactive_rule_is_invalid(self, evaluator) -> None:
        with pytest.raises(InvalidRuleConfig):
            evaluator.evaluate(_inspection_rule(is_active=False), _incident())

    def test_apply_penalty_cap(self) -> None:
        assert apply_penalty_cap(Decimal("300"), Decimal("1000"), Decimal("20")) == Decimal("200.00")
        assert apply_penalty_cap(Decimal("150"), Decimal("1000"), Decimal("20")) == Decimal("150.00")
        assert apply_penalty_cap(Decimal("300"), Decimal("1000"), None) == Decimal("300.00")


class TestPenaltyService:
    @pytest.fixture
    def service(self, db, calculator) -> PenaltyService:
        return PenaltyService(db, calculator)

    @pytest.fixture
    def rule(self, service) -> PenaltyRule:
        return service.create_rule(PenaltyRuleCreate(
            penalty_name="Failed inspection",
            penalty_type="inspection",
            supervisor_penalty=Decimal("50"),
            sales_penalty=Decimal("100"),
            document_penalty=Decimal("50"),
            max_penalty_rate=Decimal("10"),
        ), created_by=1)

    def test_create_record_caps_against_monthly_reward(self, db, service, rule) -> None:
        add_reward(db, 11, "2026-05", "1500")

        record = service.create_record(_incident(penalty_rule_id=rule.id))

        assert record.record_no.startswith("PR")
        assert record.settlement_month == "2026-05"
        assert record.effective_penalty == Decimal("150.00")
        assert record.cap_deferred is False

    def test_explicit_settlement_month_wins(self, service, rule) -> None:
        record = service.create_record(_incident(penalty_rule_id=rule.id, settlement_month="2026-06"))
        assert record.settlement_month == "2026-06"
        assert record.cap_deferred is True

    def test_rule_requires_type_fields(self, service) -> None:
        with pytest.raises(InvalidRuleConfig):
            service.create_rule(PenaltyRuleCreate(penalty_name="Loss", penalty_type="loss"))
        with pytest.raises(InvalidRuleConfig):
            service.create_rule(PenaltyRuleCreate(penalty_name="Mistake", penalty_type="mistake"))

    def test_status_flow_appends_notes(self, service, rule) -> None:
        record = service.create_record(_incident(penalty_rule_id=rule.id))
        record = service.update_record_status(record.id, "confirmed", "acknowledged by sales")
        assert record.status == "confirmed"
        assert "acknowledged by sales" in record.notes

        with pytest.raises(ValidationError):
            service.update_record_status(record.id, "pending")

    def test_settled_is_not_a_manual_status(self, service, rule) -> None:
        record = service.create_record(_incident(penalty_rule_id=rule.id))
        with pytest.raises(ValidationError):
            service.update_record_status(record.id, "settled")

    def test_delete_only_open_records(self, service, rule) -> None:
        record = service.create_record(_incident(penalty_rule_id=rule.id))
        service.update_record_status(record.id, "confirmed")
        with pytest.raises(ValidationError):
            service.delete_record(record.id)

        other = service.create_record(_incident(penalty_rule_id=rule.id, incident_date=TRIAL_DAY))
        service.delete_record(other.id)
        assert service.list_records()["total"] == 1

    def test_update_rule_changes_amounts(self, service, rule) -> None:
        updated = service.update_rule(rule.id, PenaltyRuleUpdate(sales_penalty=Decimal("120")))
        assert updated.sales_penalty == Decimal("120")
        assert updated.max_penalty_rate == Decimal("10")

    def test_update_rule_cannot_clear_required_fields(self, db, service, rule) -> None:
        with pytest.raises(ValidationError):
            service.update_rule(rule.id, PenaltyRuleUpdate(max_penalty_rate=None))
        db.refresh(rule)
        assert rule.max_penalty_rate == Decimal("10")

    def test_update_rule_keeps_type_fields(self, db, service) -> None:
        loss = service.create_rule(PenaltyRuleCreate(
            penalty_name="Cargo loss", penalty_type="loss", loss_percentage=Decimal("20"),
        ))
        with pytest.raises(InvalidRuleConfig):
            service.update_rule(loss.id, PenaltyRuleUpdate(loss_percentage=None))
        db.refresh(loss)
        assert loss.loss_percentage == Decimal("20")

        with pytest.raises(InvalidRuleConfig):
            service.update_rule(loss.id, PenaltyRuleUpdate(penalty_type="mistake"))
