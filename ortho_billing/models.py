"""
Billing and insurance models for the recurring payment engine
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate a string primary key"""
    return str(uuid.uuid4())


class PatientAccount(Base):
    """Patient billing account - balances are derived by the reconciler"""

    __tablename__ = "patient_accounts"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    patient_id = Column(String(36), nullable=False, index=True)
    account_number = Column(String(50), nullable=True)
    patient_name = Column(String(255), nullable=True)
    patient_email = Column(String(255), nullable=True)

    # Derived balances (recomputed by update_account_balance)
    current_balance = Column(Numeric(12, 2), default=0)
    insurance_balance = Column(Numeric(12, 2), default=0)
    patient_balance = Column(Numeric(12, 2), default=0)
    credit_balance = Column(Numeric(12, 2), default=0)
    aging_30 = Column(Numeric(12, 2), default=0)
    aging_60 = Column(Numeric(12, 2), default=0)
    aging_90 = Column(Numeric(12, 2), default=0)
    aging_120_plus = Column(Numeric(12, 2), default=0)
    updated_by = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    payment_plans = relationship("PaymentPlan", back_populates="account")
    payments = relationship("Payment", back_populates="account")
    invoices = relationship("Invoice", back_populates="account")


class PaymentMethod(Base):
    """Card on file with the payment gateway"""

    __tablename__ = "payment_methods"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey("patient_accounts.id"), nullable=False)
    gateway_customer_id = Column(String(255), nullable=True)  # e.g. cus_...
    gateway_method_id = Column(String(255), nullable=True)  # e.g. pm_...
    card_brand = Column(String(50), nullable=True)
    card_last4 = Column(String(4), nullable=True)
    status = Column(String(20), default="ACTIVE")

    created_at = Column(DateTime, server_default=func.now())


class PaymentPlan(Base):
    """Installment plan grouping scheduled payments for one account"""

    __tablename__ = "payment_plans"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey("patient_accounts.id"), nullable=False)
    plan_number = Column(String(50), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=True)
    number_of_payments = Column(Integer, nullable=True)
    frequency = Column(String(20), nullable=True)  # WEEKLY, BIWEEKLY, MONTHLY
    auto_pay_enabled = Column(Boolean, default=False, nullable=False)
    payment_method_id = Column(String(36), ForeignKey("payment_methods.id"), nullable=True)
    status = Column(String(20), default="ACTIVE", nullable=False)  # ACTIVE, COMPLETED

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    account = relationship("PatientAccount", back_populates="payment_plans")
    payment_method = relationship("PaymentMethod")
    scheduled_payments = relationship(
        "ScheduledPayment", back_populates="payment_plan", order_by="ScheduledPayment.due_date"
    )


class ScheduledPayment(Base):
    """One installment obligation under a payment plan"""

    __tablename__ = "scheduled_payments"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    payment_plan_id = Column(String(36), ForeignKey("payment_plans.id"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), default="PENDING", nullable=False, index=True)

    # Retry bookkeeping
    retry_count = Column(Integer, default=0, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    failure_code = Column(String(50), nullable=True)
    # Set when the row is claimed for processing, cleared when released
    locked_at = Column(DateTime, nullable=True)

    processed_at = Column(DateTime, nullable=True)
    result_payment_id = Column(String(36), ForeignKey("payments.id"), nullable=True)
    skip_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    payment_plan = relationship("PaymentPlan", back_populates="scheduled_payments")
    result_payment = relationship("Payment", foreign_keys=[result_payment_id])


class Payment(Base):
    """Ledger entry for money actually moved - never mutated after creation"""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    patient_id = Column(String(36), nullable=False)
    account_id = Column(String(36), ForeignKey("patient_accounts.id"), nullable=False)
    payment_number = Column(String(50), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime, nullable=False)
    payment_type = Column(String(20), default="PATIENT")
    payment_method_type = Column(String(20), default="CREDIT_CARD")
    status = Column(String(20), default="COMPLETED")

    gateway = Column(String(20), default="STRIPE")
    gateway_payment_id = Column(String(255), nullable=True, index=True)

    # Link back to the originating plan and installment
    source_type = Column(String(30), nullable=True)
    source_id = Column(String(36), nullable=True)
    scheduled_payment_id = Column(String(36), nullable=True, index=True)
    payment_method_id = Column(String(36), ForeignKey("payment_methods.id"), nullable=True)

    description = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    payment_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    account = relationship("PatientAccount", back_populates="payments")


class Invoice(Base):
    """Invoice totals consumed by the account balance reconciler"""

    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey("patient_accounts.id"), nullable=False)
    invoice_number = Column(String(50), nullable=True)
    status = Column(String(20), default="PENDING")  # DRAFT, PENDING, PAID, VOID, ...

    subtotal = Column(Numeric(12, 2), default=0)
    adjustments = Column(Numeric(12, 2), default=0)
    insurance_amount = Column(Numeric(12, 2), default=0)
    patient_amount = Column(Numeric(12, 2), default=0)
    balance = Column(Numeric(12, 2), default=0)
    due_date = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    account = relationship("PatientAccount", back_populates="invoices")


class CreditBalance(Base):
    """Unapplied credit on an account"""

    __tablename__ = "credit_balances"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey("patient_accounts.id"), nullable=False)
    remaining_amount = Column(Numeric(12, 2), default=0)
    status = Column(String(20), default="AVAILABLE")

    created_at = Column(DateTime, server_default=func.now())


class PatientInsurance(Base):
    """Orthodontic coverage details for a patient"""

    __tablename__ = "patient_insurances"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    patient_id = Column(String(36), nullable=False, index=True)

    has_ortho_benefit = Column(Boolean, default=False, nullable=False)
    ortho_lifetime_max = Column(Numeric(12, 2), nullable=True)
    ortho_used_amount = Column(Numeric(12, 2), nullable=True)
    ortho_remaining_amount = Column(Numeric(12, 2), nullable=True)
    ortho_coverage_percent = Column(Numeric(5, 2), nullable=True)
    ortho_deductible = Column(Numeric(12, 2), nullable=True)
    ortho_deductible_met = Column(Numeric(12, 2), nullable=True)
    ortho_age_limit = Column(Integer, nullable=True)
    ortho_waiting_period = Column(Integer, nullable=True)  # Months

    effective_date = Column(Date, nullable=False)
    termination_date = Column(Date, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class InsuranceClaim(Base):
    """Insurance claim filed for orthodontic treatment"""

    __tablename__ = "insurance_claims"

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), nullable=False, index=True)
    patient_insurance_id = Column(String(36), ForeignKey("patient_insurances.id"), nullable=True)
    claim_number = Column(String(20), nullable=False, index=True)
    status = Column(String(20), default="DRAFT", nullable=False)

    billed_amount = Column(Numeric(12, 2), default=0, nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=True)
    adjustment_amount = Column(Numeric(12, 2), nullable=True)
    patient_responsibility = Column(Numeric(12, 2), nullable=True)

    filing_date = Column(DateTime, nullable=True)
    appeal_deadline = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
