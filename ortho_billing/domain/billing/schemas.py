"""Billing domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentFrequency(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class RecurringBillingConfig(BaseModel):
    """Settings for the recurring billing engine"""

    max_retry_attempts: int = 3
    retry_delay_days: list[int] = Field(default_factory=lambda: [1, 3, 7])
    notify_on_failure: bool = True
    notify_on_success: bool = True
    gateway_timeout_seconds: float = 30.0
    stale_processing_minutes: int = 30

    @field_validator("max_retry_attempts")
    @classmethod
    def validate_max_retry_attempts(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retry_attempts cannot be negative")
        return v

    @field_validator("retry_delay_days")
    @classmethod
    def validate_retry_delay_days(cls, v: list[int]) -> list[int]:
        if any(days < 0 for days in v):
            raise ValueError("retry_delay_days cannot contain negative values")
        return v

    @field_validator("gateway_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("gateway_timeout_seconds must be positive")
        return v

    def with_overrides(self, overrides: Optional[dict] = None) -> "RecurringBillingConfig":
        """Return a validated copy with the given fields replaced"""
        if not overrides:
            return self
        data = self.model_dump()
        data.update({key: value for key, value in overrides.items() if value is not None})
        return RecurringBillingConfig(**data)


class RecurringBillingConfigOverrides(BaseModel):
    """Partial override of the recurring billing config for a single call"""

    max_retry_attempts: Optional[int] = None
    retry_delay_days: Optional[list[int]] = None
    notify_on_failure: Optional[bool] = None
    notify_on_success: Optional[bool] = None
    gateway_timeout_seconds: Optional[float] = None


class ProcessingResult(BaseModel):
    """Outcome of processing one scheduled payment"""

    scheduled_payment_id: str
    success: bool
    payment_id: Optional[str] = None
    error: Optional[str] = None
    failure_code: Optional[str] = None
    retry_scheduled: bool = False
    next_retry_date: Optional[datetime] = None


class AttentionSummary(BaseModel):
    """Counts of scheduled payments an operator should look at"""

    failed: int
    overdue: int
    due_today: int
    upcoming_week: int


class ProcessDuePaymentsRequest(BaseModel):
    """Schema for triggering a due-payment run for a clinic"""

    clinic_id: str
    config: Optional[RecurringBillingConfigOverrides] = None

    @field_validator("clinic_id")
    @classmethod
    def validate_clinic_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("clinic_id is required")
        return v


class RetryRequest(BaseModel):
    """Schema for a manual retry"""

    config: Optional[RecurringBillingConfigOverrides] = None


class SkipRequest(BaseModel):
    """Schema for skipping a scheduled payment"""

    reason: str

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("reason is required")
        return v.strip()


class GenerateScheduleRequest(BaseModel):
    """Schema for generating installments for a payment plan"""

    start_date: datetime
    count: int
    amount: Decimal
    frequency: PaymentFrequency = PaymentFrequency.MONTHLY

    @field_validator("count")
    @classmethod
    def validate_count(cls, v: int) -> int:
        if v < 1:
            raise ValueError("count must be at least 1")
        return v

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("amount must be greater than zero")
        return v


class ReleaseStaleRequest(BaseModel):
    """Schema for releasing rows stuck in PROCESSING"""

    clinic_id: Optional[str] = None


class ScheduledPaymentResponse(BaseModel):
    """Schema for scheduled payment response"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    clinic_id: str
    payment_plan_id: str
    amount: Decimal
    due_date: datetime
    status: str
    retry_count: int
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    failure_code: Optional[str] = None
    result_payment_id: Optional[str] = None
    skip_reason: Optional[str] = None
