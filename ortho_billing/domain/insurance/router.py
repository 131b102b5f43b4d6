"""Insurance router - FastAPI endpoints for benefit checks and claim reporting"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...database import get_db
from .claims import (
    calculate_claim_totals,
    calculate_estimated_insurance_payment,
    check_ortho_benefit_availability,
    generate_claim_number,
    summarize_claims,
    update_insurance_benefit_usage,
)
from .repository import InsuranceRepository
from .schemas import (
    BenefitAvailability,
    BenefitUsageRequest,
    ClaimItem,
    ClaimNumberResponse,
    ClaimsSummary,
    ClaimTotals,
    EstimateRequest,
    InsuranceEstimate,
    OrthoCoverage,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/insurance", tags=["Insurance"])


# ============================================================================
# BENEFITS
# ============================================================================


@router.post("/estimate", response_model=InsuranceEstimate)
async def estimate_insurance_payment(body: EstimateRequest):
    """Estimate the insurance portion of a procedure"""
    return calculate_estimated_insurance_payment(body.procedure_amount, body.coverage)


@router.post("/ortho-benefit", response_model=BenefitAvailability)
async def check_ortho_benefit(body: OrthoCoverage):
    """Check whether an orthodontic benefit is currently usable"""
    return check_ortho_benefit_availability(body)


@router.post("/patient-insurance/{patient_insurance_id}/benefit-usage", response_model=OrthoCoverage)
async def record_benefit_usage(
    patient_insurance_id: str,
    body: BenefitUsageRequest,
    db: Session = Depends(get_db),
):
    """Apply a paid claim amount to a patient's ortho benefit"""
    insurance = update_insurance_benefit_usage(db, patient_insurance_id, body.paid_amount)
    if not insurance:
        raise HTTPException(status_code=404, detail="Patient insurance not found")
    return insurance


# ============================================================================
# CLAIMS
# ============================================================================


@router.post("/claims/next-number", response_model=ClaimNumberResponse)
async def next_claim_number(
    clinic_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Next claim number for a clinic (not reserved)"""
    return ClaimNumberResponse(claim_number=generate_claim_number(db, clinic_id))


@router.post("/claims/totals", response_model=ClaimTotals)
async def claim_totals(items: list[ClaimItem]):
    """Total billed amount of claim lines"""
    return calculate_claim_totals(items)


@router.get("/claims/summary", response_model=ClaimsSummary)
async def claims_summary(
    clinic_id: str = Query(..., min_length=1),
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    """Claim statistics for a clinic"""
    claims = InsuranceRepository.get_claims(db, clinic_id, from_date, to_date)
    return summarize_claims(claims)
