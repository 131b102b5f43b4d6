"""Shared fixtures: in-memory database, fake gateway, fixed clock and plan builders"""

import asyncio
import os
from datetime import datetime, timedelta
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")
os.environ["BILLING_GATEWAY_TIMEOUT_SECONDS"] = "45"

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from ortho_billing.database import Base  # noqa: E402
from ortho_billing.domain.billing.exceptions import FailureCode, GatewayError  # noqa: E402
from ortho_billing.domain.billing.gateway import PaymentIntent  # noqa: E402
from ortho_billing.domain.billing.recurring_billing import RecurringBillingEngine  # noqa: E402
from ortho_billing.domain.billing.schemas import RecurringBillingConfig  # noqa: E402
from ortho_billing.models import (  # noqa: E402
    PatientAccount,
    PaymentMethod,
    PaymentPlan,
    ScheduledPayment,
)

NOW = datetime(2024, 6, 15, 10, 30)
CLINIC_ID = "clinic-1"


class FakeGateway:
    """
    Stand-in for the Stripe adapter

    Each call pops the next queued outcome: a status string for the returned intent,
    an exception instance to raise, or "hang" to never answer. Defaults to success.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def queue(self, *outcomes):
        self.outcomes.extend(outcomes)

    def is_payment_successful(self, intent):
        return intent.status == "succeeded"

    async def create_payment_intent(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0) if self.outcomes else "succeeded"
        if outcome == "hang":
            await asyncio.sleep(10)
        if isinstance(outcome, Exception):
            raise outcome
        return PaymentIntent(
            id=f"pi_test_{len(self.calls)}",
            status=outcome,
            amount=kwargs["amount"],
            currency="cad",
            metadata=kwargs.get("metadata") or {},
        )


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def declined(message="Your card was declined."):
    return GatewayError(message, FailureCode.DECLINED)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def config():
    return RecurringBillingConfig()


@pytest.fixture
def billing_engine(db, gateway, config, clock):
    return RecurringBillingEngine(db, gateway=gateway, config=config, clock=clock)


@pytest.fixture
def make_plan(db):
    """Build an account, card on file and payment plan"""

    def _make_plan(
        clinic_id=CLINIC_ID,
        auto_pay_enabled=True,
        customer_id="cus_123",
        method_id="pm_123",
        with_method=True,
    ):
        account = PatientAccount(
            clinic_id=clinic_id,
            patient_id="patient-1",
            patient_name="Jamie Rivera",
            patient_email="jamie@example.com",
        )
        db.add(account)
        db.flush()

        method = None
        if with_method:
            method = PaymentMethod(
                clinic_id=clinic_id,
                account_id=account.id,
                gateway_customer_id=customer_id,
                gateway_method_id=method_id,
                card_brand="visa",
                card_last4="4242",
            )
            db.add(method)
            db.flush()

        plan = PaymentPlan(
            clinic_id=clinic_id,
            account_id=account.id,
            plan_number="PP-0001",
            total_amount=Decimal("1800.00"),
            number_of_payments=12,
            frequency="MONTHLY",
            auto_pay_enabled=auto_pay_enabled,
            payment_method_id=method.id if method else None,
            status="ACTIVE",
        )
        db.add(plan)
        db.commit()
        db.refresh(plan)
        return plan

    return _make_plan


@pytest.fixture
def make_scheduled_payment(db):
    def _make_scheduled_payment(
        plan, due_date=None, amount="150.00", status="PENDING", retry_count=0, locked_at=None
    ):
        scheduled_payment = ScheduledPayment(
            clinic_id=plan.clinic_id,
            payment_plan_id=plan.id,
            amount=Decimal(amount),
            due_date=due_date or NOW - timedelta(days=1),
            status=status,
            retry_count=retry_count,
            locked_at=locked_at,
        )
        db.add(scheduled_payment)
        db.commit()
        db.refresh(scheduled_payment)
        return scheduled_payment

    return _make_scheduled_payment
