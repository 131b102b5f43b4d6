"""Billing helpers - money rounding, document numbering and account balance reconciliation"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import CreditBalance, Invoice, Payment, PatientAccount

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value) -> Decimal:
    """Round a monetary value to 2 decimal places (half up)"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount) -> int:
    """Convert a major-unit amount to integer cents for the gateway"""
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def next_sequence_number(
    db: Session, column, clinic_column, clinic_id: str, prefix: str, width: int = 5
) -> str:
    """
    Next PREFIX-NNNNN number for a clinic, one past the highest existing suffix

    Args:
        db: Database session
        column: Model column holding the number (e.g. Payment.payment_number)
        clinic_column: Model column holding the clinic id
        clinic_id: Clinic the number is scoped to
        prefix: Number prefix including the year, e.g. "PAY-2024-"
    """
    last_number = (
        db.query(column)
        .filter(clinic_column == clinic_id, column.startswith(prefix))
        .order_by(column.desc())
        .limit(1)
        .scalar()
    )

    next_number = 1
    if last_number:
        suffix = last_number[len(prefix):]
        if suffix.isdigit():
            next_number = int(suffix) + 1

    return f"{prefix}{str(next_number).zfill(width)}"


def generate_payment_number(db: Session, clinic_id: str, now: Optional[datetime] = None) -> str:
    """Generate a clinic-scoped payment number, e.g. PAY-2024-00001"""
    year = (now or utcnow()).year
    return next_sequence_number(
        db, Payment.payment_number, Payment.clinic_id, clinic_id, f"PAY-{year}-"
    )


def update_account_balance(
    db: Session, account_id: str, clinic_id: str, user_id: str, now: Optional[datetime] = None
) -> Optional[PatientAccount]:
    """
    Recalculate derived balances for a patient account

    Sums open (non-draft, non-void) invoices into current/insurance/patient balances,
    buckets overdue invoice balances by days past due and adds available credit.
    Changes are flushed, not committed, so the caller controls the transaction.
    """
    account = (
        db.query(PatientAccount)
        .filter(PatientAccount.id == account_id, PatientAccount.clinic_id == clinic_id)
        .first()
    )
    if not account:
        logger.warning(f"⚠️ Account {account_id} not found for clinic {clinic_id}, balance not updated")
        return None

    invoices = (
        db.query(Invoice)
        .filter(
            Invoice.account_id == account_id,
            Invoice.clinic_id == clinic_id,
            Invoice.status.notin_(["DRAFT", "VOID"]),
            Invoice.deleted_at.is_(None),
        )
        .all()
    )

    now = now or utcnow()
    total_balance = Decimal("0")
    insurance_balance = Decimal("0")
    patient_balance = Decimal("0")
    aging = {"30": Decimal("0"), "60": Decimal("0"), "90": Decimal("0"), "120+": Decimal("0")}

    for invoice in invoices:
        balance = to_decimal(invoice.balance)
        total_balance += balance
        insurance_balance += to_decimal(invoice.insurance_amount)
        patient_balance += to_decimal(invoice.patient_amount)

        if balance > 0 and invoice.due_date:
            days_past_due = (now - invoice.due_date).days
            if days_past_due <= 30:
                continue
            elif days_past_due <= 60:
                aging["30"] += balance
            elif days_past_due <= 90:
                aging["60"] += balance
            elif days_past_due <= 120:
                aging["90"] += balance
            else:
                aging["120+"] += balance

    credit_balance = (
        db.query(func.coalesce(func.sum(CreditBalance.remaining_amount), 0))
        .filter(
            CreditBalance.account_id == account_id,
            CreditBalance.clinic_id == clinic_id,
            CreditBalance.status == "AVAILABLE",
        )
        .scalar()
    )

    account.current_balance = round_money(total_balance)
    account.insurance_balance = round_money(insurance_balance)
    account.patient_balance = round_money(patient_balance)
    account.credit_balance = round_money(credit_balance)
    account.aging_30 = round_money(aging["30"])
    account.aging_60 = round_money(aging["60"])
    account.aging_90 = round_money(aging["90"])
    account.aging_120_plus = round_money(aging["120+"])
    account.updated_by = user_id
    db.flush()

    logger.info(f"📊 Account {account_id} balance recalculated: {account.current_balance}")
    return account
