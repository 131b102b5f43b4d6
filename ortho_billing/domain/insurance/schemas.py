"""Insurance domain schemas - Pydantic models for validation"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ClaimItem(BaseModel):
    """One billed line of a claim"""

    billed_amount: Decimal
    quantity: Optional[int] = None  # Defaults to 1
    procedure_code: Optional[str] = None


class ClaimTotals(BaseModel):
    total_billed: Decimal
    line_count: int


class OrthoCoverage(BaseModel):
    """Orthodontic coverage details, as stored on a patient insurance record"""

    model_config = ConfigDict(from_attributes=True)

    has_ortho_benefit: bool = False
    ortho_lifetime_max: Optional[Decimal] = None
    ortho_used_amount: Optional[Decimal] = None
    ortho_remaining_amount: Optional[Decimal] = None
    ortho_coverage_percent: Optional[Decimal] = None
    ortho_deductible: Optional[Decimal] = None
    ortho_deductible_met: Optional[Decimal] = None
    ortho_age_limit: Optional[int] = None
    ortho_waiting_period: Optional[int] = None  # Months after effective_date
    effective_date: Optional[date] = None
    termination_date: Optional[date] = None


class BenefitAvailability(BaseModel):
    is_available: bool
    remaining_benefit: Decimal
    reason: Optional[str] = None


class EstimateRequest(BaseModel):
    """Schema for estimating the insurance portion of a procedure"""

    procedure_amount: Decimal
    coverage: OrthoCoverage

    @field_validator("procedure_amount")
    @classmethod
    def validate_procedure_amount(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("procedure_amount cannot be negative")
        return v


class InsuranceEstimate(BaseModel):
    estimated_payment: Decimal
    deductible_applied: Decimal
    coverage_percent: Decimal


class ClaimNumberResponse(BaseModel):
    claim_number: str


class StatusTotals(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0")


class ClaimsSummary(BaseModel):
    """Aggregate claim statistics for a clinic"""

    total_claims: int = 0
    total_billed: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_adjusted: Decimal = Decimal("0")
    total_patient_responsibility: Decimal = Decimal("0")
    by_status: dict[str, StatusTotals] = {}
    average_processing_days: int = 0
    denial_rate: float = 0.0  # Percent, one decimal


class BenefitUsageRequest(BaseModel):
    """Schema for recording a paid claim against the ortho benefit"""

    paid_amount: Decimal

    @field_validator("paid_amount")
    @classmethod
    def validate_paid_amount(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("paid_amount cannot be negative")
        return v
