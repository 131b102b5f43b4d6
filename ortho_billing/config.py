import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL")

# Stripe Configuration
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_API_URL = os.getenv("STRIPE_API_URL", "https://api.stripe.com/v1")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "cad")

# Recurring billing defaults (per-call overrides are applied on top of these)
BILLING_MAX_RETRY_ATTEMPTS = int(os.getenv("BILLING_MAX_RETRY_ATTEMPTS", "3"))
# Comma separated, the Nth retry waits the Nth value in days
BILLING_RETRY_DELAY_DAYS = [
    int(value)
    for value in os.getenv("BILLING_RETRY_DELAY_DAYS", "1,3,7").split(",")
    if value.strip()
]
BILLING_NOTIFY_ON_FAILURE = os.getenv("BILLING_NOTIFY_ON_FAILURE", "true").lower() == "true"
BILLING_NOTIFY_ON_SUCCESS = os.getenv("BILLING_NOTIFY_ON_SUCCESS", "true").lower() == "true"
BILLING_GATEWAY_TIMEOUT_SECONDS = float(os.getenv("BILLING_GATEWAY_TIMEOUT_SECONDS", "30"))
BILLING_STALE_PROCESSING_MINUTES = int(os.getenv("BILLING_STALE_PROCESSING_MINUTES", "30"))

# Actor recorded on accounts recomputed by automated jobs
SYSTEM_ACTOR = os.getenv("BILLING_SYSTEM_ACTOR", "system")


def default_billing_config():
    """Build the process-wide recurring billing config from the environment"""
    from .domain.billing.schemas import RecurringBillingConfig

    return RecurringBillingConfig(
        max_retry_attempts=BILLING_MAX_RETRY_ATTEMPTS,
        retry_delay_days=BILLING_RETRY_DELAY_DAYS,
        notify_on_failure=BILLING_NOTIFY_ON_FAILURE,
        notify_on_success=BILLING_NOTIFY_ON_SUCCESS,
        gateway_timeout_seconds=BILLING_GATEWAY_TIMEOUT_SECONDS,
        stale_processing_minutes=BILLING_STALE_PROCESSING_MINUTES,
    )
