"""Shared fixtures: in-memory database, API client and a fake finance voucher service."""

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.exceptions import ExternalServiceError
from app.core.security import CurrentUser, get_current_user
from app.main import app
from app.models.commission import CommissionRecord, CommissionRule, CommissionTier
from app.models.penalty import PenaltyRecord
from app.schemas.scheme import SchemeConfig
from app.services.trial_period import TrialPeriodCalculator
from app.services.voucher import VoucherRef, get_voucher_linker


class FakeVoucherLinker:
    """Records calls instead of talking to the finance module."""

    def __init__(self):
        self.created = []
        self.paid = []
        self.fail_create = False
        self.fail_paid = False

    def create_payable_voucher(self, settlement) -> VoucherRef:
        if self.fail_create:
            raise ExternalServiceError("Voucher service unavailable")
        self.created.append(settlement.settlement_no)
        n = len(self.created)
        return VoucherRef(voucher_id=f"V-{n}", voucher_no=f"PZ{n:05d}")

    def mark_voucher_paid(self, voucher_id, paid_at=None) -> None:
        if self.fail_paid:
            raise ExternalServiceError("Voucher service unavailable")
        self.paid.append(voucher_id)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def voucher_linker() -> FakeVoucherLinker:
    return FakeVoucherLinker()


@pytest.fixture
def user() -> CurrentUser:
    return CurrentUser(id=1, name="Admin", role="admin")


@pytest.fixture
def client(db, voucher_linker, user):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_voucher_linker] = lambda: voucher_linker
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def scheme() -> SchemeConfig:
    return SchemeConfig(start_date=date(2025, 12, 1), trial_period_months=3, scheme_min=6, scheme_max=12)


@pytest.fixture
def calculator(scheme) -> TrialPeriodCalculator:
    return TrialPeriodCalculator(scheme)


# ── Builders ──


def make_rule(db=None, **overrides) -> CommissionRule:
    fields = dict(
        rule_name="Rule",
        rule_type="percentage",
        customer_level="all",
        apply_to="all",
        commission_rate=Decimal("5"),
        min_base_amount=Decimal("0"),
        is_stackable=True,
        priority=0,
        is_active=True,
    )
    tiers = overrides.pop("tiers", None)
    fields.update(overrides)
    rule = CommissionRule(**fields)
    if tiers:
        rule.tiers = [CommissionTier(**t) for t in tiers]
    if db is not None:
        db.add(rule)
        db.commit()
        db.refresh(rule)
    return rule


_seq = {"cr": 0, "pr": 0}


def add_reward(db, salesperson_id: int, month: str, amount: str, **overrides) -> CommissionRecord:
    _seq["cr"] += 1
    fields = dict(
        record_no=f"CRTEST{_seq['cr']:06d}",
        salesperson_id=salesperson_id,
        salesperson_name=f"Sales {salesperson_id}",
        base_amount=Decimal(amount) * 10,
        supervisor_amount=Decimal("0"),
        sales_amount=Decimal(amount),
        document_amount=Decimal("0"),
        commission_amount=Decimal(amount),
        source_type="order",
        settlement_month=month,
        status="pending",
    )
    fields.update(overrides)
    record = CommissionRecord(**fields)
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def add_penalty(
    db,
    salesperson_id: int,
    month: str,
    amount: str,
    is_trial_period: bool = False,
    cap_deferred: bool = False,
    max_penalty_rate: Optional[str] = "100",
    **overrides,
) -> PenaltyRecord:
    _seq["pr"] += 1
    fields = dict(
        record_no=f"PRTEST{_seq['pr']:06d}",
        penalty_name="Inspection",
        penalty_type="inspection",
        salesperson_id=salesperson_id,
        salesperson_name=f"Sales {salesperson_id}",
        supervisor_penalty=Decimal("0"),
        sales_penalty=Decimal(amount),
        document_penalty=Decimal("0"),
        total_penalty=Decimal(amount),
        effective_penalty=Decimal(amount),
        max_penalty_rate=Decimal(max_penalty_rate) if max_penalty_rate is not None else None,
        cap_deferred=cap_deferred,
        loss_amount=Decimal("0"),
        is_trial_period=is_trial_period,
        incident_date=date(2026, 5, 10),
        settlement_month=month,
        status="communicated" if is_trial_period else "pending",
    )
    fields.update(overrides)
    record = PenaltyRecord(**fields)
    db.add(record)
    db.commit()
    db.refresh(record)
    return record
