"""Billing repository - Database operations for recurring billing"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import Payment, PaymentPlan, ScheduledPayment
from .state_machine import OPEN_STATUSES, ScheduledPaymentStatus


def _with_plan(query):
    """Eager-load everything processing a scheduled payment needs"""
    return query.options(
        joinedload(ScheduledPayment.payment_plan).joinedload(PaymentPlan.account),
        joinedload(ScheduledPayment.payment_plan).joinedload(PaymentPlan.payment_method),
    )


class BillingRepository:
    """Repository for scheduled payment and payment plan database operations"""

    @staticmethod
    def get_scheduled_payment(db: Session, scheduled_payment_id: str) -> Optional[ScheduledPayment]:
        """Get a scheduled payment with its plan, account and payment method"""
        return (
            _with_plan(db.query(ScheduledPayment))
            .filter(ScheduledPayment.id == scheduled_payment_id)
            .first()
        )

    @staticmethod
    def get_payment_plan(db: Session, payment_plan_id: str) -> Optional[PaymentPlan]:
        """Get payment plan by ID"""
        return db.query(PaymentPlan).filter(PaymentPlan.id == payment_plan_id).first()

    @staticmethod
    def get_due_payment_ids(db: Session, clinic_id: str, now: datetime) -> list[str]:
        """IDs of PENDING payments due at or before now, earliest due first"""
        rows = (
            db.query(ScheduledPayment.id)
            .filter(
                ScheduledPayment.clinic_id == clinic_id,
                ScheduledPayment.status == ScheduledPaymentStatus.PENDING.value,
                ScheduledPayment.due_date <= now,
            )
            .order_by(ScheduledPayment.due_date.asc(), ScheduledPayment.id.asc())
            .all()
        )
        return [row.id for row in rows]

    @staticmethod
    def claim(
        db: Session,
        scheduled_payment_id: str,
        now: datetime,
        due_before: Optional[datetime] = None,
    ) -> bool:
        """
        Atomically move one row from PENDING to PROCESSING

        The conditional UPDATE only matches while the row is still PENDING, so
        exactly one concurrent caller wins the claim.

        Args:
            now: Lock timestamp written to locked_at
            due_before: Only claim the row if it is still due at this time

        Returns:
            bool: True if this caller claimed the row
        """
        query = db.query(ScheduledPayment).filter(
            ScheduledPayment.id == scheduled_payment_id,
            ScheduledPayment.status == ScheduledPaymentStatus.PENDING.value,
        )
        if due_before is not None:
            query = query.filter(ScheduledPayment.due_date <= due_before)
        claimed = query.update(
            {
                ScheduledPayment.status: ScheduledPaymentStatus.PROCESSING.value,
                ScheduledPayment.locked_at: now,
            },
            synchronize_session=False,
        )
        db.commit()
        return claimed == 1

    @staticmethod
    def renew_claim(
        db: Session, scheduled_payment_id: str, locked_at: Optional[datetime], now: datetime
    ) -> bool:
        """
        Re-stamp a PROCESSING row, but only if it still carries our lock timestamp

        A claim that went stale may have been released and taken by another run;
        the locked_at comparison fails in that case.
        """
        renewed = (
            db.query(ScheduledPayment)
            .filter(
                ScheduledPayment.id == scheduled_payment_id,
                ScheduledPayment.status == ScheduledPaymentStatus.PROCESSING.value,
                ScheduledPayment.locked_at == locked_at,
            )
            .update({ScheduledPayment.locked_at: now}, synchronize_session=False)
        )
        db.commit()
        return renewed == 1

    @staticmethod
    def claim_due_payment(
        db: Session, scheduled_payment_id: str, due_before: datetime, now: datetime
    ) -> Optional[ScheduledPayment]:
        """Claim one payment if it is still PENDING and due, and load it for processing"""
        if not BillingRepository.claim(db, scheduled_payment_id, now, due_before=due_before):
            return None
        return (
            _with_plan(db.query(ScheduledPayment))
            .filter(ScheduledPayment.id == scheduled_payment_id)
            .populate_existing()
            .first()
        )

    @staticmethod
    def get_stale_processing(
        db: Session, locked_before: datetime, clinic_id: Optional[str] = None
    ) -> list[ScheduledPayment]:
        """Rows stuck in PROCESSING since before locked_before"""
        query = db.query(ScheduledPayment).filter(
            ScheduledPayment.status == ScheduledPaymentStatus.PROCESSING.value,
            ScheduledPayment.locked_at < locked_before,
        )
        if clinic_id:
            query = query.filter(ScheduledPayment.clinic_id == clinic_id)
        return query.all()

    @staticmethod
    def get_clinics_with_due_payments(db: Session, now: datetime) -> list[str]:
        """Distinct clinic IDs that have PENDING payments due at or before now"""
        rows = (
            db.query(ScheduledPayment.clinic_id)
            .filter(
                ScheduledPayment.status == ScheduledPaymentStatus.PENDING.value,
                ScheduledPayment.due_date <= now,
            )
            .distinct()
            .all()
        )
        return [row.clinic_id for row in rows]

    @staticmethod
    def count_open_installments(db: Session, payment_plan_id: str) -> int:
        """Count PENDING/PROCESSING installments of a plan"""
        return (
            db.query(ScheduledPayment)
            .filter(
                ScheduledPayment.payment_plan_id == payment_plan_id,
                ScheduledPayment.status.in_([status.value for status in OPEN_STATUSES]),
            )
            .count()
        )

    @staticmethod
    def count_by_status(
        db: Session,
        clinic_id: str,
        status: ScheduledPaymentStatus,
        due_from: Optional[datetime] = None,
        due_before: Optional[datetime] = None,
    ) -> int:
        """Count a clinic's scheduled payments in a status, optionally within a due-date window"""
        query = db.query(ScheduledPayment).filter(
            ScheduledPayment.clinic_id == clinic_id,
            ScheduledPayment.status == status.value,
        )
        if due_from is not None:
            query = query.filter(ScheduledPayment.due_date >= due_from)
        if due_before is not None:
            query = query.filter(ScheduledPayment.due_date < due_before)
        return query.count()

    @staticmethod
    def create_scheduled_payments(db: Session, rows: list[dict]) -> list[ScheduledPayment]:
        """Bulk-create scheduled payments"""
        payments = [ScheduledPayment(**row) for row in rows]
        db.add_all(payments)
        db.commit()
        for payment in payments:
            db.refresh(payment)
        return payments

    @staticmethod
    def add_payment(db: Session, **payment_data) -> Payment:
        """Stage a ledger payment in the current transaction"""
        payment = Payment(**payment_data)
        db.add(payment)
        db.flush()
        return payment

    @staticmethod
    def get_payments_for_scheduled_payment(db: Session, scheduled_payment_id: str) -> list[Payment]:
        """Ledger rows created for an installment"""
        return (
            db.query(Payment)
            .filter(Payment.scheduled_payment_id == scheduled_payment_id)
            .all()
        )
