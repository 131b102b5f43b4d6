"""Billing domain errors"""

from typing import Any, Dict, Optional


class ErrorCodes:
    """Standard error codes returned by the billing API"""

    SCHEDULED_PAYMENT_NOT_FOUND = "SCHEDULED_PAYMENT_NOT_FOUND"
    PAYMENT_PLAN_NOT_FOUND = "PAYMENT_PLAN_NOT_FOUND"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"


class FailureCode:
    """Classification recorded on a scheduled payment when an attempt fails"""

    PRECONDITION = "PRECONDITION"
    DECLINED = "DECLINED"
    REQUIRES_ACTION = "REQUIRES_ACTION"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    UNKNOWN = "UNKNOWN"


class BillingError(Exception):
    """Base exception for billing business logic errors"""

    code = "BILLING_ERROR"
    status_code = 400

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class ScheduledPaymentNotFound(BillingError):
    code = ErrorCodes.SCHEDULED_PAYMENT_NOT_FOUND
    status_code = 404


class PaymentPlanNotFound(BillingError):
    code = ErrorCodes.PAYMENT_PLAN_NOT_FOUND
    status_code = 404


class InvalidStatusTransition(BillingError):
    code = ErrorCodes.INVALID_STATUS_TRANSITION
    status_code = 409

    def __init__(self, current_status: str, new_status: str):
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(
            f"Cannot move scheduled payment from {current_status} to {new_status}",
            context={"current_status": current_status, "new_status": new_status},
        )


class GatewayError(Exception):
    """Raised by the payment gateway adapter when a charge does not succeed"""

    def __init__(self, message: str, code: str = FailureCode.UNKNOWN, intent_id: Optional[str] = None):
        self.message = message
        self.code = code
        self.intent_id = intent_id
        super().__init__(message)
