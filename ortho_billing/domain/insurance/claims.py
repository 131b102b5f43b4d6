"""
Insurance claim and orthodontic benefit calculators

Claim numbering, claim aging, ortho benefit availability, estimated insurance
payments and claim summary statistics. Money is Decimal, rounded to cents half up.
"""

import logging
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ...models import InsuranceClaim, PatientInsurance
from ..billing.utils import next_sequence_number, round_money, to_decimal, utcnow
from .schemas import (
    BenefitAvailability,
    ClaimItem,
    ClaimsSummary,
    ClaimTotals,
    InsuranceEstimate,
    StatusTotals,
)

logger = logging.getLogger(__name__)

# Common orthodontic CDT procedure codes
ORTHO_CDT_CODES = {
    "COMPREHENSIVE_ADOLESCENT": "D8080",
    "COMPREHENSIVE_ADULT": "D8090",
    "LIMITED_TREATMENT": "D8010",  # Primary dentition
    "LIMITED_MIXED": "D8020",  # Transitional dentition
    "LIMITED_PERMANENT": "D8030",
    "INTERCEPTIVE": "D8050",
    "INTERCEPTIVE_MIXED": "D8060",
    "RETENTION": "D8680",
    "RETENTION_REMOVAL": "D8681",
    "RETENTION_FIXED": "D8682",
    "PERIODIC_VISIT": "D8670",
    "RECORDS": "D0350",
    "CEPH": "D0340",
    "PANORAMIC": "D0330",
}

# Claims that have come back from the payer
PROCESSED_CLAIM_STATUSES = {"PAID", "PARTIAL", "DENIED", "CLOSED"}

CDT_CODE_PATTERN = re.compile(r"D[0-9]{4}")


def _as_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _as_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


# ============================================================================
# CLAIMS
# ============================================================================


def generate_claim_number(db: Session, clinic_id: str, now: Optional[datetime] = None) -> str:
    """Generate a clinic-scoped claim number, e.g. CLM-2024-00001"""
    year = (now or utcnow()).year
    return next_sequence_number(
        db, InsuranceClaim.claim_number, InsuranceClaim.clinic_id, clinic_id, f"CLM-{year}-"
    )


def calculate_claim_totals(items: Iterable[ClaimItem]) -> ClaimTotals:
    """Total billed amount of claim lines (quantity defaults to 1)"""
    items = list(items)
    total = sum(
        (to_decimal(item.billed_amount) * (item.quantity or 1) for item in items), Decimal("0")
    )
    return ClaimTotals(total_billed=round_money(total), line_count=len(items))


def calculate_claim_aging(filing_date, now: Optional[datetime] = None) -> int:
    """Whole days since filing; 0 when not filed yet"""
    filing_date = _as_datetime(filing_date)
    if not filing_date:
        return 0
    return max(0, ((now or utcnow()) - filing_date).days)


def get_claim_aging_bucket(filing_date, now: Optional[datetime] = None) -> str:
    days = calculate_claim_aging(filing_date, now)
    if days <= 30:
        return "0-30"
    if days <= 60:
        return "31-60"
    if days <= 90:
        return "61-90"
    if days <= 120:
        return "91-120"
    return "120+"


def days_until_appeal_deadline(appeal_deadline, now: Optional[datetime] = None) -> Optional[int]:
    """Days left to appeal (negative once passed), None without a deadline"""
    appeal_deadline = _as_datetime(appeal_deadline)
    if not appeal_deadline:
        return None
    return (appeal_deadline - (now or utcnow())).days


def validate_cdt_code(code: str) -> bool:
    """CDT codes are D followed by 4 digits (e.g. D8080)"""
    return bool(CDT_CODE_PATTERN.fullmatch((code or "").upper()))


def format_payer_id(payer_id: str) -> str:
    """Uppercase and strip everything but letters and digits"""
    return re.sub(r"[^A-Z0-9]", "", payer_id.upper())


# ============================================================================
# ORTHO BENEFITS
# ============================================================================


def check_ortho_benefit_availability(insurance, now: Optional[datetime] = None) -> BenefitAvailability:
    """
    Check whether a patient's orthodontic benefit can be used

    Args:
        insurance: PatientInsurance row or OrthoCoverage schema
        now: Reference time (defaults to current UTC time)

    Returns:
        BenefitAvailability: is_available, remaining_benefit and the reason when unavailable
    """
    unavailable = Decimal("0.00")

    if not insurance.has_ortho_benefit:
        return BenefitAvailability(
            is_available=False,
            remaining_benefit=unavailable,
            reason="No orthodontic benefit on this plan",
        )

    today = (now or utcnow()).date()
    termination_date = _as_date(insurance.termination_date)
    if termination_date and termination_date < today:
        return BenefitAvailability(
            is_available=False, remaining_benefit=unavailable, reason="Coverage has terminated"
        )

    effective_date = _as_date(insurance.effective_date)
    if insurance.ortho_waiting_period and effective_date:
        waiting_end = effective_date + relativedelta(months=insurance.ortho_waiting_period)
        if today < waiting_end:
            return BenefitAvailability(
                is_available=False,
                remaining_benefit=unavailable,
                reason=f"Waiting period until {waiting_end:%Y-%m-%d}",
            )

    remaining = max(
        Decimal("0"),
        to_decimal(insurance.ortho_lifetime_max) - to_decimal(insurance.ortho_used_amount),
    )
    if remaining <= 0:
        return BenefitAvailability(
            is_available=False,
            remaining_benefit=unavailable,
            reason="Lifetime maximum has been met",
        )

    return BenefitAvailability(is_available=True, remaining_benefit=round_money(remaining))


def calculate_estimated_insurance_payment(procedure_amount, insurance) -> InsuranceEstimate:
    """
    Estimate what insurance pays toward a procedure

    The remaining deductible comes off first, coverage percent applies to the rest and
    the result is capped at the remaining lifetime benefit (uncapped when unknown).
    """
    procedure_amount = to_decimal(procedure_amount)
    coverage_percent = to_decimal(insurance.ortho_coverage_percent)
    remaining_deductible = max(
        Decimal("0"),
        to_decimal(insurance.ortho_deductible) - to_decimal(insurance.ortho_deductible_met),
    )

    after_deductible = max(Decimal("0"), procedure_amount - remaining_deductible)
    estimated_payment = after_deductible * coverage_percent / 100

    if insurance.ortho_remaining_amount is not None:
        estimated_payment = min(estimated_payment, to_decimal(insurance.ortho_remaining_amount))

    return InsuranceEstimate(
        estimated_payment=round_money(estimated_payment),
        deductible_applied=round_money(min(remaining_deductible, procedure_amount)),
        coverage_percent=coverage_percent,
    )


def update_insurance_benefit_usage(
    db: Session, patient_insurance_id: str, paid_amount
) -> Optional[PatientInsurance]:
    """Add a paid claim amount to ortho benefit usage and recompute the remaining benefit"""
    insurance = db.query(PatientInsurance).filter(PatientInsurance.id == patient_insurance_id).first()
    if not insurance:
        logger.warning(f"⚠️ Patient insurance {patient_insurance_id} not found, usage not updated")
        return None

    used = to_decimal(insurance.ortho_used_amount) + to_decimal(paid_amount)
    remaining = max(Decimal("0"), to_decimal(insurance.ortho_lifetime_max) - used)

    insurance.ortho_used_amount = round_money(used)
    insurance.ortho_remaining_amount = round_money(remaining)
    db.commit()
    db.refresh(insurance)

    logger.info(
        f"📊 Ortho benefit for insurance {patient_insurance_id}: used {insurance.ortho_used_amount}, "
        f"remaining {insurance.ortho_remaining_amount}"
    )
    return insurance


# ============================================================================
# REPORTING
# ============================================================================


def summarize_claims(claims: Iterable[InsuranceClaim]) -> ClaimsSummary:
    """Totals, per-status breakdown, average processing days and denial rate"""
    summary = ClaimsSummary()
    by_status: dict[str, StatusTotals] = {}
    total_processing_days = 0
    processed_count = 0
    denied_count = 0

    for claim in claims:
        billed = to_decimal(claim.billed_amount)
        summary.total_claims += 1
        summary.total_billed += billed
        summary.total_paid += to_decimal(claim.paid_amount)
        summary.total_adjusted += to_decimal(claim.adjustment_amount)
        summary.total_patient_responsibility += to_decimal(claim.patient_responsibility)

        totals = by_status.setdefault(claim.status, StatusTotals())
        totals.count += 1
        totals.amount += billed

        if claim.status in PROCESSED_CLAIM_STATUSES and claim.filing_date and claim.updated_at:
            total_processing_days += (claim.updated_at - _as_datetime(claim.filing_date)).days
            processed_count += 1

        if claim.status == "DENIED":
            denied_count += 1

    if processed_count:
        summary.average_processing_days = int(
            (Decimal(total_processing_days) / processed_count).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )

    if summary.total_claims:
        summary.denial_rate = float(
            (Decimal(denied_count) * 100 / summary.total_claims).quantize(
                Decimal("0.1"), rounding=ROUND_HALF_UP
            )
        )

    for totals in by_status.values():
        totals.amount = round_money(totals.amount)
    summary.by_status = by_status
    summary.total_billed = round_money(summary.total_billed)
    summary.total_paid = round_money(summary.total_paid)
    summary.total_adjusted = round_money(summary.total_adjusted)
    summary.total_patient_responsibility = round_money(summary.total_patient_responsibility)
    return summary
