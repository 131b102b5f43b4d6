"""
Billing Domain

Recurring payment-plan billing: scheduled installment processing, retries,
skips, schedule generation and account balance reconciliation.
"""

from .router import router

__all__ = ["router"]
