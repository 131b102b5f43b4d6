"""
Recurring billing engine

Charges due payment-plan installments through the payment gateway, schedules
retries on failure and keeps payment plans and account balances in step.
Business failures are reported in ProcessingResult; store errors propagate.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ...config import SYSTEM_ACTOR
from ...models import ScheduledPayment
from .exceptions import FailureCode, GatewayError, PaymentPlanNotFound, ScheduledPaymentNotFound
from .repository import BillingRepository
from .schemas import AttentionSummary, PaymentFrequency, ProcessingResult, RecurringBillingConfig
from .state_machine import PaymentPlanStatus, ScheduledPaymentStatus, transition
from .utils import generate_payment_number, to_cents, update_account_balance, utcnow

logger = logging.getLogger(__name__)

# Used when a retry index runs past the configured delays
FALLBACK_RETRY_DELAY_DAYS = 7

Notifier = Callable[[str, ScheduledPayment, ProcessingResult], Awaitable[None]]


def retry_delay_for(retry_count: int, config: RecurringBillingConfig) -> int:
    """Days to wait before the retry following attempt number retry_count"""
    if 0 <= retry_count < len(config.retry_delay_days):
        return config.retry_delay_days[retry_count]
    return FALLBACK_RETRY_DELAY_DAYS


def attempt_key(scheduled_payment: ScheduledPayment) -> str:
    return f"scheduled-payment-{scheduled_payment.id}-attempt-{scheduled_payment.retry_count}"


def advance_due_date(start_date: datetime, index: int, frequency: PaymentFrequency) -> datetime:
    """Due date of installment number index (0-based) for a schedule starting at start_date"""
    frequency = PaymentFrequency(frequency)
    if frequency == PaymentFrequency.WEEKLY:
        return start_date + timedelta(days=7 * index)
    if frequency == PaymentFrequency.BIWEEKLY:
        return start_date + timedelta(days=14 * index)
    return start_date + relativedelta(months=index)


class RecurringBillingEngine:
    """Service for processing scheduled payment-plan installments"""

    def __init__(
        self,
        db: Session,
        gateway,
        config: Optional[RecurringBillingConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        notifier: Optional[Notifier] = None,
        actor: str = SYSTEM_ACTOR,
    ):
        self.db = db
        self.gateway = gateway
        self.config = config or RecurringBillingConfig()
        self.clock = clock
        self.notifier = notifier
        self.actor = actor
        self.repo = BillingRepository()

    # ========================================================================
    # BATCH PROCESSING
    # ========================================================================

    async def process_due_payments(
        self, clinic_id: str, overrides: Optional[dict] = None
    ) -> list[ProcessingResult]:
        """
        Process all due scheduled payments for a clinic

        Each due row is claimed (PENDING → PROCESSING) right before it is charged, so a
        concurrent run for the same clinic cannot pick up the same installment and rows
        further down the batch are never locked while they wait.
        """
        config = self.config.with_overrides(overrides)
        now = self.clock()

        due_ids = self.repo.get_due_payment_ids(self.db, clinic_id, now)
        logger.info(f"🔄 Processing {len(due_ids)} due scheduled payments for clinic {clinic_id}")

        results = []
        for payment_id in due_ids:
            scheduled_payment = self.repo.claim_due_payment(self.db, payment_id, now, self.clock())
            if scheduled_payment is None:
                logger.info(f"⏭️ Scheduled payment {payment_id} was taken by another run")
                continue
            results.append(await self.process_scheduled_payment(scheduled_payment, config))

        succeeded = sum(1 for result in results if result.success)
        logger.info(
            f"📊 Clinic {clinic_id}: {succeeded} succeeded, {len(results) - succeeded} failed or retrying"
        )
        return results

    # ========================================================================
    # SINGLE PAYMENT
    # ========================================================================

    async def process_scheduled_payment(
        self,
        scheduled_payment: ScheduledPayment,
        config: Optional[RecurringBillingConfig] = None,
        idempotency_key: Optional[str] = None,
    ) -> ProcessingResult:
        """
        Charge one installment and drive its state transition

        The gateway idempotency key defaults to scheduled-payment-{id}-attempt-{retry_count},
        so re-running an interrupted attempt returns the original charge.
        """
        config = config or self.config
        payment_id = scheduled_payment.id

        if scheduled_payment.status == ScheduledPaymentStatus.PENDING.value:
            if not self.repo.claim(self.db, payment_id, self.clock()):
                logger.warning(f"⚠️ Scheduled payment {payment_id} was claimed by another run")
                return ProcessingResult(
                    scheduled_payment_id=payment_id,
                    success=False,
                    error="Scheduled payment is already being processed",
                )
            self.db.refresh(scheduled_payment)
        elif scheduled_payment.status == ScheduledPaymentStatus.PROCESSING.value:
            # Our claim may have gone stale and been released to another run
            if not self.repo.renew_claim(
                self.db, payment_id, scheduled_payment.locked_at, self.clock()
            ):
                logger.warning(f"⚠️ Lost the claim on scheduled payment {payment_id}")
                return ProcessingResult(
                    scheduled_payment_id=payment_id,
                    success=False,
                    error="Scheduled payment is already being processed",
                )
            self.db.refresh(scheduled_payment)
        else:
            return ProcessingResult(
                scheduled_payment_id=payment_id,
                success=False,
                error=f"Scheduled payment is {scheduled_payment.status}",
            )

        plan = scheduled_payment.payment_plan
        method = plan.payment_method

        precondition_error = None
        if not plan.auto_pay_enabled:
            precondition_error = "Auto-pay is not enabled for this payment plan"
        elif not method:
            precondition_error = "No payment method on file"
        elif not method.gateway_customer_id:
            precondition_error = "No gateway customer ID on file"
        elif not method.gateway_method_id:
            precondition_error = "No payment method on file"

        if precondition_error:
            logger.warning(f"⚠️ Scheduled payment {payment_id} cannot be charged: {precondition_error}")
            self._mark_failed(scheduled_payment, precondition_error, FailureCode.PRECONDITION)
            result = ProcessingResult(
                scheduled_payment_id=payment_id,
                success=False,
                error=precondition_error,
                failure_code=FailureCode.PRECONDITION,
            )
            await self._notify("payment_failed", scheduled_payment, result, config)
            return result

        try:
            intent = await asyncio.wait_for(
                self.gateway.create_payment_intent(
                    amount=to_cents(scheduled_payment.amount),
                    customer_id=method.gateway_customer_id,
                    payment_method_id=method.gateway_method_id,
                    description="Scheduled payment for payment plan",
                    receipt_email=plan.account.patient_email or None,
                    metadata={
                        "scheduled_payment_id": payment_id,
                        "payment_plan_id": plan.id,
                        "clinic_id": scheduled_payment.clinic_id,
                        "type": "recurring",
                    },
                    idempotency_key=idempotency_key or attempt_key(scheduled_payment),
                ),
                timeout=config.gateway_timeout_seconds,
            )
            if not self.gateway.is_payment_successful(intent):
                code = (
                    FailureCode.REQUIRES_ACTION
                    if intent.status == "requires_action"
                    else FailureCode.DECLINED
                )
                raise GatewayError(f"Payment status: {intent.status}", code, intent_id=intent.id)
        except asyncio.TimeoutError:
            error = GatewayError(
                f"Payment gateway timed out after {config.gateway_timeout_seconds:g}s",
                FailureCode.TIMEOUT,
            )
            return await self._handle_failure(scheduled_payment, error, config)
        except GatewayError as e:
            return await self._handle_failure(scheduled_payment, e, config)
        except Exception as e:
            logger.error(f"❌ Unexpected gateway error for scheduled payment {payment_id}: {e}")
            error = GatewayError(str(e) or type(e).__name__, FailureCode.UNKNOWN)
            return await self._handle_failure(scheduled_payment, error, config)

        payment = self._record_success(scheduled_payment, intent)
        logger.info(f"✅ Scheduled payment {payment_id} charged: payment {payment.id}")

        result = ProcessingResult(scheduled_payment_id=payment_id, success=True, payment_id=payment.id)
        await self._notify("payment_succeeded", scheduled_payment, result, config)
        return result

    def _record_success(self, scheduled_payment: ScheduledPayment, intent):
        """
        Post the ledger payment, complete the installment, reconcile the account balance
        and close the plan if nothing is left - all in one transaction
        """
        plan = scheduled_payment.payment_plan
        account = plan.account
        now = self.clock()

        try:
            payment = self.repo.add_payment(
                self.db,
                clinic_id=scheduled_payment.clinic_id,
                patient_id=account.patient_id,
                account_id=account.id,
                payment_number=generate_payment_number(self.db, scheduled_payment.clinic_id, now),
                amount=scheduled_payment.amount,
                payment_date=now,
                payment_type="PATIENT",
                payment_method_type="CREDIT_CARD",
                status="COMPLETED",
                gateway="STRIPE",
                gateway_payment_id=intent.id,
                source_type="PAYMENT_PLAN",
                source_id=plan.id,
                scheduled_payment_id=scheduled_payment.id,
                payment_method_id=plan.payment_method_id,
                description="Automatic payment for payment plan",
                payment_metadata={
                    "scheduled_payment_id": scheduled_payment.id,
                    "payment_plan_id": plan.id,
                },
            )

            transition(scheduled_payment, ScheduledPaymentStatus.COMPLETED)
            scheduled_payment.processed_at = now
            scheduled_payment.last_attempt_at = now
            scheduled_payment.result_payment_id = payment.id
            scheduled_payment.locked_at = None
            self.db.flush()

            update_account_balance(self.db, account.id, scheduled_payment.clinic_id, self.actor, now)
            self._check_plan_completion(plan.id)
            self.db.commit()
        except Exception as e:
            # The charge went through; the row stays PROCESSING for release_stale_claims
            logger.error(
                f"❌ Charge {intent.id} succeeded but recording scheduled payment "
                f"{scheduled_payment.id} failed: {e}"
            )
            self.db.rollback()
            raise

        return payment

    async def _handle_failure(
        self, scheduled_payment: ScheduledPayment, error: GatewayError, config: RecurringBillingConfig
    ) -> ProcessingResult:
        """Schedule a retry, or fail the installment once retries are exhausted"""
        now = self.clock()
        payment_id = scheduled_payment.id

        if scheduled_payment.retry_count < config.max_retry_attempts:
            next_retry_date = now + timedelta(days=retry_delay_for(scheduled_payment.retry_count, config))

            transition(scheduled_payment, ScheduledPaymentStatus.PENDING)
            scheduled_payment.retry_count += 1
            scheduled_payment.last_attempt_at = now
            scheduled_payment.last_error = error.message
            scheduled_payment.failure_code = error.code
            scheduled_payment.due_date = next_retry_date
            scheduled_payment.locked_at = None
            self.db.commit()

            logger.warning(
                f"⚠️ Scheduled payment {payment_id} failed ({error.code}): {error.message}. "
                f"Retry {scheduled_payment.retry_count}/{config.max_retry_attempts} on {next_retry_date:%Y-%m-%d}"
            )
            return ProcessingResult(
                scheduled_payment_id=payment_id,
                success=False,
                error=error.message,
                failure_code=error.code,
                retry_scheduled=True,
                next_retry_date=next_retry_date,
            )

        scheduled_payment.last_attempt_at = now
        self._mark_failed(scheduled_payment, error.message, error.code)
        logger.error(f"❌ Scheduled payment {payment_id} failed permanently: {error.message}")

        result = ProcessingResult(
            scheduled_payment_id=payment_id,
            success=False,
            error=f"Max retries reached: {error.message}",
            failure_code=error.code,
        )
        await self._notify("payment_failed", scheduled_payment, result, config)
        return result

    def _mark_failed(self, scheduled_payment: ScheduledPayment, error: str, failure_code: str) -> None:
        transition(scheduled_payment, ScheduledPaymentStatus.FAILED)
        scheduled_payment.last_error = error
        scheduled_payment.failure_code = failure_code
        scheduled_payment.locked_at = None
        self.db.flush()
        self._check_plan_completion(scheduled_payment.payment_plan_id)
        self.db.commit()

    def _check_plan_completion(self, payment_plan_id: str) -> bool:
        """Mark the plan COMPLETED once no installment is PENDING or PROCESSING"""
        if self.repo.count_open_installments(self.db, payment_plan_id) > 0:
            return False

        plan = self.repo.get_payment_plan(self.db, payment_plan_id)
        if plan and plan.status != PaymentPlanStatus.COMPLETED.value:
            plan.status = PaymentPlanStatus.COMPLETED.value
            self.db.flush()
            logger.info(f"🎉 Payment plan {payment_plan_id} completed")
        return True

    async def _notify(
        self,
        event: str,
        scheduled_payment: ScheduledPayment,
        result: ProcessingResult,
        config: RecurringBillingConfig,
    ) -> None:
        if not self.notifier:
            return
        if event == "payment_succeeded" and not config.notify_on_success:
            return
        if event == "payment_failed" and not config.notify_on_failure:
            return
        try:
            await self.notifier(event, scheduled_payment, result)
        except Exception as e:
            # Don't raise - the payment outcome is already recorded
            logger.error(f"❌ Failed to send {event} notification for {scheduled_payment.id}: {e}")

    # ========================================================================
    # OPERATOR ACTIONS
    # ========================================================================

    async def retry_scheduled_payment(
        self, scheduled_payment_id: str, overrides: Optional[dict] = None
    ) -> ProcessingResult:
        """Manually retry an installment through the normal processing path"""
        scheduled_payment = self.repo.get_scheduled_payment(self.db, scheduled_payment_id)

        if not scheduled_payment:
            return ProcessingResult(
                scheduled_payment_id=scheduled_payment_id,
                success=False,
                error="Scheduled payment not found",
            )

        if scheduled_payment.status == ScheduledPaymentStatus.COMPLETED.value:
            return ProcessingResult(
                scheduled_payment_id=scheduled_payment_id,
                success=False,
                error="Payment has already been completed",
            )

        if scheduled_payment.status == ScheduledPaymentStatus.PROCESSING.value:
            return ProcessingResult(
                scheduled_payment_id=scheduled_payment_id,
                success=False,
                error="Scheduled payment is already being processed",
            )

        if scheduled_payment.status != ScheduledPaymentStatus.PENDING.value:
            transition(scheduled_payment, ScheduledPaymentStatus.PENDING)
        scheduled_payment.due_date = self.clock()
        scheduled_payment.locked_at = None

        plan = scheduled_payment.payment_plan
        if plan.status == PaymentPlanStatus.COMPLETED.value:
            plan.status = PaymentPlanStatus.ACTIVE.value
            logger.info(f"🔁 Payment plan {plan.id} reopened for manual retry")
        self.db.commit()

        logger.info(f"🔁 Manual retry of scheduled payment {scheduled_payment_id}")
        # The automatic key for this retry_count may already be bound to a declined attempt
        manual_key = f"scheduled-payment-{scheduled_payment_id}-manual-{self.clock():%Y%m%d%H%M%S}"
        return await self.process_scheduled_payment(
            scheduled_payment, self.config.with_overrides(overrides), idempotency_key=manual_key
        )

    def skip_scheduled_payment(self, scheduled_payment_id: str, reason: str) -> ScheduledPayment:
        """Skip an installment (plan restructuring); completed and in-flight rows are rejected"""
        scheduled_payment = self.repo.get_scheduled_payment(self.db, scheduled_payment_id)
        if not scheduled_payment:
            raise ScheduledPaymentNotFound(f"Scheduled payment {scheduled_payment_id} not found")

        transition(scheduled_payment, ScheduledPaymentStatus.SKIPPED)
        scheduled_payment.skip_reason = reason
        scheduled_payment.locked_at = None
        self.db.flush()
        self._check_plan_completion(scheduled_payment.payment_plan_id)
        self.db.commit()
        self.db.refresh(scheduled_payment)

        logger.info(f"⏭️ Scheduled payment {scheduled_payment_id} skipped: {reason}")
        return scheduled_payment

    def generate_scheduled_payments(
        self,
        payment_plan_id: str,
        start_date: datetime,
        count: int,
        amount: Decimal,
        frequency: PaymentFrequency,
    ) -> list[ScheduledPayment]:
        """Create count PENDING installments starting at start_date, spaced by frequency"""
        if count < 1:
            raise ValueError("count must be at least 1")

        plan = self.repo.get_payment_plan(self.db, payment_plan_id)
        if not plan:
            raise PaymentPlanNotFound(f"Payment plan {payment_plan_id} not found")

        rows = [
            {
                "clinic_id": plan.clinic_id,
                "payment_plan_id": plan.id,
                "amount": amount,
                "due_date": advance_due_date(start_date, index, frequency),
                "status": ScheduledPaymentStatus.PENDING.value,
                "retry_count": 0,
            }
            for index in range(count)
        ]
        if plan.status == PaymentPlanStatus.COMPLETED.value:
            plan.status = PaymentPlanStatus.ACTIVE.value

        payments = self.repo.create_scheduled_payments(self.db, rows)
        logger.info(
            f"📅 Generated {count} {PaymentFrequency(frequency).value} installments for plan {payment_plan_id}"
        )
        return payments

    def release_stale_claims(self, clinic_id: Optional[str] = None) -> int:
        """
        Return rows stuck in PROCESSING to PENDING

        A row stays PROCESSING if the worker died mid-charge or recording a successful
        charge failed. retry_count is left alone, so the next attempt reuses the same
        gateway idempotency key and picks up the original charge instead of a new one.
        """
        now = self.clock()
        locked_before = now - timedelta(minutes=self.config.stale_processing_minutes)
        stale = self.repo.get_stale_processing(self.db, locked_before, clinic_id)

        for scheduled_payment in stale:
            transition(scheduled_payment, ScheduledPaymentStatus.PENDING)
            scheduled_payment.locked_at = None
            scheduled_payment.last_error = "Processing lock expired"
            logger.warning(f"⚠️ Released stale processing lock on scheduled payment {scheduled_payment.id}")

        if stale:
            self.db.commit()
        return len(stale)

    # ========================================================================
    # REPORTING
    # ========================================================================

    def get_payments_needing_attention(self, clinic_id: str) -> AttentionSummary:
        """Failed, overdue, due-today and due-this-week counts for a clinic"""
        today = self.clock().replace(hour=0, minute=0, second=0, microsecond=0)
        tomorrow = today + timedelta(days=1)
        next_week = today + timedelta(days=7)
        pending = ScheduledPaymentStatus.PENDING

        return AttentionSummary(
            failed=self.repo.count_by_status(self.db, clinic_id, ScheduledPaymentStatus.FAILED),
            overdue=self.repo.count_by_status(self.db, clinic_id, pending, due_before=today),
            due_today=self.repo.count_by_status(
                self.db, clinic_id, pending, due_from=today, due_before=tomorrow
            ),
            upcoming_week=self.repo.count_by_status(
                self.db, clinic_id, pending, due_from=today, due_before=next_week
            ),
        )
