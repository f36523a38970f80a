"""Tests for commission rule evaluation, stacking and the calculation service."""

from decimal import Decimal

import pytest

from app.core.exceptions import InvalidRuleConfig, ValidationError
from app.models.commission import CommissionRecord
from app.schemas.commission import BusinessEvent, CommissionRuleCreate, CommissionTierCreate
from app.services.commission import (
    CommissionCalculationService,
    RuleEvaluator,
    compose,
    find_tier,
    is_applicable,
)

from app.services.numbering import daily_prefix

from conftest import add_reward, make_rule

TIERS = [
    dict(tier_level=1, min_count=1, max_count=10,
         supervisor_bonus=Decimal("20"), sales_bonus=Decimal("50"), document_bonus=Decimal("10")),
    dict(tier_level=2, min_count=11, max_count=30,
         supervisor_bonus=Decimal("30"), sales_bonus=Decimal("80"), document_bonus=Decimal("15")),
    dict(tier_level=3, min_count=31, max_count=None,
         supervisor_bonus=Decimal("40"), sales_bonus=Decimal("120"), document_bonus=Decimal("20")),
]


def _event(**overrides) -> BusinessEvent:
    fields = dict(
        salesperson_id=11,
        salesperson_name="Lin",
        customer_id="C-1",
        customer_name="Acme Freight",
        customer_level="normal",
        source_type="contract",
        source_no="HT-001",
        base_amount=Decimal("10000"),
        settlement_month="2026-05",
    )
    fields.update(overrides)
    return BusinessEvent(**fields)


@pytest.fixture
def evaluator() -> RuleEvaluator:
    return RuleEvaluator()


class TestPercentageRules:
    def test_rate_of_base(self, evaluator) -> None:
        record = evaluator.evaluate(make_rule(commission_rate=Decimal("5")), _event())
        assert record.commission_amount == Decimal("500.00")
        assert record.sales_amount == Decimal("500.00")
        assert record.supervisor_amount == Decimal("0")
        assert record.document_amount == Decimal("0")

    def test_capped_at_max_commission(self, evaluator) -> None:
        rule = make_rule(commission_rate=Decimal("5"), max_commission=Decimal("300"))
        assert evaluator.evaluate(rule, _event()).commission_amount == Decimal("300.00")

    def test_min_base_is_subtracted(self, evaluator) -> None:
        rule = make_rule(commission_rate=Decimal("5"), min_base_amount=Decimal("4000"))
        assert evaluator.evaluate(rule, _event()).commission_amount == Decimal("300.00")

    def test_base_below_min_yields_zero(self, evaluator) -> None:
        rule = make_rule(commission_rate=Decimal("5"), min_base_amount=Decimal("20000"))
        assert evaluator.evaluate(rule, _event()).commission_amount == Decimal("0")

    def test_rounds_half_up_to_cents(self, evaluator) -> None:
        record = evaluator.evaluate(make_rule(), _event(base_amount=Decimal("100.10")))
        assert record.commission_amount == Decimal("5.01")

    def test_missing_rate_is_invalid(self, evaluator) -> None:
        with pytest.raises(InvalidRuleConfig):
            evaluator.evaluate(make_rule(commission_rate=None), _event())


class TestFixedAndTieredRules:
    def test_fixed_amounts_split_by_role(self, evaluator) -> None:
        rule = make_rule(
            rule_type="fixed",
            commission_rate=None,
            fixed_supervisor_amount=Decimal("30"),
            fixed_sales_amount=Decimal("100"),
            fixed_document_amount=Decimal("20"),
        )
        record = evaluator.evaluate(rule, _event())
        assert (record.supervisor_amount, record.sales_amount, record.document_amount) == (
            Decimal("30.00"), Decimal("100.00"), Decimal("20.00")
        )
        assert record.commission_amount == Decimal("150.00")

    def test_fixed_without_amounts_is_invalid(self, evaluator) -> None:
        with pytest.raises(InvalidRuleConfig):
            evaluator.evaluate(make_rule(rule_type="fixed", commission_rate=None), _event())

    @pytest.mark.parametrize("count,level,total", [
        (1, 1, Decimal("80.00")),
        (10, 1, Decimal("80.00")),
        (11, 2, Decimal("125.00")),
        (31, 3, Decimal("180.00")),
        (500, 3, Decimal("180.00")),
    ])
    def test_tier_selected_by_unit_count(self, evaluator, count, level, total) -> None:
        rule = make_rule(rule_type="tiered", commission_rate=None, tiers=TIERS)
        record = evaluator.evaluate(rule, _event(), unit_count=count)
        assert record.tier_level == level
        assert record.commission_amount == total
        assert record.unit_count == count

    def test_no_matching_tier_yields_zero(self, evaluator) -> None:
        rule = make_rule(rule_type="tiered", commission_rate=None, tiers=TIERS)
        record = evaluator.evaluate(rule, _event(), unit_count=0)
        assert record.commission_amount == Decimal("0")
        assert record.tier_level is None

    def test_legacy_bonus_amount_goes_to_sales(self, evaluator) -> None:
        rule = make_rule(
            rule_type="tiered",
            commission_rate=None,
            tiers=[dict(tier_level=1, min_count=1, max_count=None, bonus_amount=Decimal("60"))],
        )
        record = evaluator.evaluate(rule, _event(), unit_count=3)
        assert record.sales_amount == Decimal("60.00")
        assert record.commission_amount == Decimal("60.00")

    def test_tiered_without_unit_count_is_rejected(self, evaluator) -> None:
        rule = make_rule(rule_type="tiered", commission_rate=None, tiers=TIERS)
        with pytest.raises(ValidationError):
            evaluator.evaluate(rule, _event())

    def test_tiered_without_tiers_is_invalid(self, evaluator) -> None:
        with pytest.raises(InvalidRuleConfig):
            evaluator.evaluate(make_rule(rule_type="tiered", commission_rate=None), _event(), unit_count=1)

    def test_find_tier_prefers_lowest_min_count(self) -> None:
        rule = make_rule(rule_type="tiered", tiers=[
            dict(tier_level=2, min_count=5, max_count=None, sales_bonus=Decimal("9")),
            dict(tier_level=1, min_count=1, max_count=10, sales_bonus=Decimal("1")),
        ])
        assert find_tier(rule.tiers, 7).min_count == 1


class TestApplicabilityAndStacking:
    def test_inactive_rule_is_invalid(self, evaluator) -> None:
        with pytest.raises(InvalidRuleConfig):
            evaluator.evaluate(make_rule(is_active=False), _event())

    def test_applicability_by_level_source_and_base(self) -> None:
        event = _event(customer_level="vip", source_type="order", commission_base="order_amount")
        assert is_applicable(make_rule(), event)
        assert not is_applicable(make_rule(customer_level="normal"), event)
        assert not is_applicable(make_rule(apply_to="contract"), event)
        assert not is_applicable(make_rule(commission_base="profit"), event)
        assert is_applicable(make_rule(commission_base="all"), event)

    def _pair(self, rule_id, amount, stackable, priority):
        rule = make_rule(id=rule_id, is_stackable=stackable, priority=priority)
        return rule, CommissionRecord(commission_amount=Decimal(amount))

    def test_all_stackable_contribute(self) -> None:
        chosen = compose([self._pair(1, "10", True, 0), self._pair(2, "20", True, 5)])
        assert [r.id for r, _ in chosen] == [2, 1]

    def test_highest_priority_exclusive_wins(self) -> None:
        chosen = compose([
            self._pair(1, "10", False, 1),
            self._pair(2, "20", False, 9),
            self._pair(3, "5", True, 0),
        ])
        assert sorted(r.id for r, _ in chosen) == [2, 3]

    def test_priority_tie_keeps_earlier_rule(self) -> None:
        chosen = compose([self._pair(1, "10", False, 3), self._pair(2, "99", False, 3)])
        assert [r.id for r, _ in chosen] == [1]

    def test_zero_amounts_do_not_contribute(self) -> None:
        chosen = compose([self._pair(1, "0", False, 9), self._pair(2, "10", False, 1)])
        assert [r.id for r, _ in chosen] == [2]


class TestCalculationService:
    def test_calculate_persists_numbered_records(self, db) -> None:
        make_rule(db, rule_name="Contract 5%", commission_rate=Decimal("5"), is_stackable=False, priority=10)
        make_rule(db, rule_name="Contract 1%", commission_rate=Decimal("1"), is_stackable=False, priority=1)
        make_rule(
            db, rule_name="Flat", rule_type="fixed", commission_rate=None,
            fixed_sales_amount=Decimal("50"), is_stackable=True,
        )

        result = CommissionCalculationService(db).calculate(_event())

        assert result["total_commission"] == Decimal("550.00")
        assert sorted(r.rule_name for r in result["records"]) == ["Contract 5%", "Flat"]
        for record in result["records"]:
            assert record.record_no.startswith("CR")
            assert len(record.record_no) == 14
            assert record.settlement_month == "2026-05"
            assert record.status == "pending"

    def test_broken_rule_is_skipped(self, db) -> None:
        broken = make_rule(db, rule_type="fixed", commission_rate=None)
        make_rule(db, commission_rate=Decimal("2"))

        result = CommissionCalculationService(db).calculate(_event())

        assert result["skipped_rules"] == [broken.id]
        assert result["total_commission"] == Decimal("200.00")

    def test_tier_unit_count_is_monthly_count_plus_one(self, db) -> None:
        make_rule(db, rule_type="tiered", commission_rate=None, tiers=TIERS)
        service = CommissionCalculationService(db)

        for i in range(11):
            result = service.calculate(_event(source_no=f"DD-{i:03d}", source_type="order"))

        last = result["records"][0]
        assert last.unit_count == 11
        assert last.tier_level == 2

    def test_cancelled_records_do_not_count_as_units(self, db) -> None:
        make_rule(db, rule_type="tiered", commission_rate=None, tiers=[
            dict(tier_level=1, min_count=1, max_count=1, sales_bonus=Decimal("10")),
            dict(tier_level=2, min_count=2, max_count=None, sales_bonus=Decimal("20")),
        ])
        service = CommissionCalculationService(db)
        first = service.calculate(_event(source_no="DD-1"))["records"][0]
        service.cancel_record(first.id, reason="duplicate order")

        second = service.calculate(_event(source_no="DD-2"))["records"][0]
        assert second.tier_level == 1

    def test_no_applicable_rules(self, db) -> None:
        make_rule(db, apply_to="payment")
        result = CommissionCalculationService(db).calculate(_event())
        assert result["records"] == []
        assert result["total_commission"] == Decimal("0")

    def test_create_rule_resequences_tiers_and_warns(self, db) -> None:
        data = CommissionRuleCreate(
            rule_name="Volume",
            rule_type="tiered",
            tiers=[
                CommissionTierCreate(tier_level=1, min_count=11, max_count=None, sales_bonus=Decimal("80")),
                CommissionTierCreate(tier_level=2, min_count=1, max_count=12, sales_bonus=Decimal("50")),
            ],
        )
        rule, warnings = CommissionCalculationService(db).create_rule(data, created_by=1)

        assert [(t.tier_level, t.min_count) for t in rule.tiers] == [(1, 1), (2, 11)]
        assert any("overlaps" in w for w in warnings)
        assert any("ascending" in w for w in warnings)

    def test_create_rule_requires_type_fields(self, db) -> None:
        with pytest.raises(InvalidRuleConfig):
            CommissionCalculationService(db).create_rule(CommissionRuleCreate(rule_name="X", rule_type="percentage"))

    def test_remove_tier_renumbers(self, db) -> None:
        rule = make_rule(db, rule_type="tiered", commission_rate=None, tiers=TIERS)
        rule = CommissionCalculationService(db).remove_tier(rule.id, 1)
        assert [(t.tier_level, t.min_count) for t in rule.tiers] == [(1, 11), (2, 31)]

    def test_cancel_twice_is_rejected(self, db) -> None:
        make_rule(db)
        service = CommissionCalculationService(db)
        record = service.calculate(_event())["records"][0]
        service.cancel_record(record.id)
        with pytest.raises(ValidationError):
            service.cancel_record(record.id)

    def test_record_numbers_continue_past_9999(self, db) -> None:
        prefix = daily_prefix("CR")
        add_reward(db, 12, "2026-05", "10", record_no=f"{prefix}9999")
        make_rule(db)
        service = CommissionCalculationService(db)

        first = service.calculate(_event(source_no="HT-1"))["records"][0]
        second = service.calculate(_event(source_no="HT-2"))["records"][0]

        assert first.record_no == f"{prefix}10000"
        assert second.record_no == f"{prefix}10001"
