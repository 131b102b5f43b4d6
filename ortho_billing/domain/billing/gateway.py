"""
Stripe payment gateway adapter
Creates and confirms PaymentIntents for off-session installment charges
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from ...config import (
    BILLING_GATEWAY_TIMEOUT_SECONDS,
    STRIPE_API_URL,
    STRIPE_CURRENCY,
    STRIPE_SECRET_KEY,
)
from .exceptions import FailureCode, GatewayError

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
REQUIRES_ACTION = "requires_action"


@dataclass
class PaymentIntent:
    """The parts of a gateway payment intent the billing engine relies on"""

    id: str
    status: str
    amount: int
    currency: str
    metadata: dict = field(default_factory=dict)


def is_payment_successful(intent: PaymentIntent) -> bool:
    return intent.status == SUCCEEDED


def requires_action(intent: PaymentIntent) -> bool:
    return intent.status == REQUIRES_ACTION


def _encode_metadata(metadata: Optional[dict]) -> dict:
    """Stripe takes nested params as metadata[key]=value form fields"""
    return {f"metadata[{key}]": str(value) for key, value in (metadata or {}).items()}


class StripeGateway:
    """Service for Stripe PaymentIntent operations"""

    def __init__(
        self,
        secret_key: Optional[str] = STRIPE_SECRET_KEY,
        api_url: str = STRIPE_API_URL,
        currency: str = STRIPE_CURRENCY,
        timeout: float = BILLING_GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout
        self.transport = transport

        if not self.secret_key:
            logger.warning("STRIPE_SECRET_KEY not set; recurring charges will fail until configured")

    def is_available(self) -> bool:
        """Check if the gateway has credentials configured"""
        return bool(self.secret_key)

    def is_payment_successful(self, intent: PaymentIntent) -> bool:
        return is_payment_successful(intent)

    async def create_payment_intent(
        self,
        amount: int,
        customer_id: str,
        payment_method_id: str,
        description: Optional[str] = None,
        receipt_email: Optional[str] = None,
        metadata: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> PaymentIntent:
        """
        Create and confirm an off-session PaymentIntent

        Args:
            amount: Amount in cents
            customer_id: Gateway customer (cus_...)
            payment_method_id: Saved payment method (pm_...)
            description: Statement description
            receipt_email: Where the gateway sends the receipt
            metadata: Traceability tags (scheduled payment / plan ids)
            idempotency_key: Repeating a request with the same key returns the original intent

        Returns:
            PaymentIntent: The created intent, whatever its status

        Raises:
            GatewayError: Network failure, timeout, card decline or API error
        """
        if not self.is_available():
            raise GatewayError("Payment gateway is not configured", FailureCode.API_ERROR)

        data = {
            "amount": str(amount),
            "currency": currency or self.currency,
            "customer": customer_id,
            "payment_method": payment_method_id,
            "confirm": "true",
            "off_session": "true",
            "capture_method": "automatic",
        }
        if description:
            data["description"] = description
        if receipt_email:
            data["receipt_email"] = receipt_email
        data.update(_encode_metadata(metadata))

        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http_client:
                response = await http_client.post(
                    f"{self.api_url}/payment_intents", data=data, headers=headers
                )
        except httpx.TimeoutException as e:
            logger.error(f"❌ Stripe request timed out: {e}")
            raise GatewayError("Payment gateway timed out", FailureCode.TIMEOUT) from e
        except httpx.HTTPError as e:
            logger.error(f"❌ Stripe request failed: {e}")
            raise GatewayError(f"Payment gateway unreachable: {e}", FailureCode.NETWORK_ERROR) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            error = body.get("error", {}) if isinstance(body, dict) else {}
            message = error.get("message") or f"Stripe API error (HTTP {response.status_code})"
            intent_id = (error.get("payment_intent") or {}).get("id")
            if error.get("type") == "card_error" or response.status_code == 402:
                code = FailureCode.DECLINED
            else:
                code = FailureCode.API_ERROR
            logger.warning(f"⚠️ Stripe rejected payment intent ({code}): {message}")
            raise GatewayError(message, code, intent_id=intent_id)

        intent = PaymentIntent(
            id=body.get("id"),
            status=body.get("status"),
            amount=body.get("amount", amount),
            currency=body.get("currency", currency or self.currency),
            metadata=body.get("metadata") or {},
        )
        logger.info(f"💳 Stripe payment intent {intent.id} status={intent.status}")
        return intent


stripe_gateway = StripeGateway()
