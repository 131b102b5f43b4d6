"""Recurring billing router - FastAPI endpoints for scheduled payment operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...config import default_billing_config
from ...database import get_db
from .gateway import stripe_gateway
from .recurring_billing import RecurringBillingEngine
from .schemas import (
    AttentionSummary,
    GenerateScheduleRequest,
    ProcessDuePaymentsRequest,
    ProcessingResult,
    ReleaseStaleRequest,
    RetryRequest,
    ScheduledPaymentResponse,
    SkipRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing/recurring", tags=["Recurring Billing"])


def get_billing_engine(db: Session = Depends(get_db)) -> RecurringBillingEngine:
    """Dependency injection for RecurringBillingEngine"""
    return RecurringBillingEngine(db, gateway=stripe_gateway, config=default_billing_config())


def _overrides(body) -> dict:
    if body is None or body.config is None:
        return {}
    return body.config.model_dump(exclude_none=True)


# ============================================================================
# PROCESSING
# ============================================================================


@router.post("/process", response_model=list[ProcessingResult])
async def process_due_payments(
    body: ProcessDuePaymentsRequest,
    engine: RecurringBillingEngine = Depends(get_billing_engine),
):
    """Charge every due scheduled payment for a clinic"""
    return await engine.process_due_payments(body.clinic_id, _overrides(body))


@router.post("/scheduled-payments/{scheduled_payment_id}/retry", response_model=ProcessingResult)
async def retry_scheduled_payment(
    scheduled_payment_id: str,
    body: Optional[RetryRequest] = None,
    engine: RecurringBillingEngine = Depends(get_billing_engine),
):
    """Manually retry a failed, skipped or pending scheduled payment now"""
    return await engine.retry_scheduled_payment(scheduled_payment_id, _overrides(body))


@router.post("/release-stale")
async def release_stale_claims(
    body: Optional[ReleaseStaleRequest] = None,
    engine: RecurringBillingEngine = Depends(get_billing_engine),
):
    """Return scheduled payments stuck in PROCESSING to PENDING"""
    released = engine.release_stale_claims(body.clinic_id if body else None)
    return {"success": True, "released": released}


# ============================================================================
# SCHEDULE MANAGEMENT
# ============================================================================


@router.post(
    "/scheduled-payments/{scheduled_payment_id}/skip", response_model=ScheduledPaymentResponse
)
async def skip_scheduled_payment(
    scheduled_payment_id: str,
    body: SkipRequest,
    engine: RecurringBillingEngine = Depends(get_billing_engine),
):
    """Skip a scheduled payment (plan restructuring)"""
    return engine.skip_scheduled_payment(scheduled_payment_id, body.reason)


@router.post(
    "/payment-plans/{payment_plan_id}/schedule",
    response_model=list[ScheduledPaymentResponse],
    status_code=201,
)
async def generate_scheduled_payments(
    payment_plan_id: str,
    body: GenerateScheduleRequest,
    engine: RecurringBillingEngine = Depends(get_billing_engine),
):
    """Generate installments for a payment plan"""
    try:
        return engine.generate_scheduled_payments(
            payment_plan_id, body.start_date, body.count, body.amount, body.frequency
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================================================
# REPORTING
# ============================================================================


@router.get("/attention", response_model=AttentionSummary)
async def get_payments_needing_attention(
    clinic_id: str = Query(..., min_length=1),
    engine: RecurringBillingEngine = Depends(get_billing_engine),
):
    """Failed, overdue and upcoming scheduled payment counts for a clinic"""
    return engine.get_payments_needing_attention(clinic_id)
