"""Insurance repository - Database operations for insurance claims"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import InsuranceClaim


class InsuranceRepository:
    """Repository for insurance claim database operations"""

    @staticmethod
    def get_claims(
        db: Session,
        clinic_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> list[InsuranceClaim]:
        """Non-deleted claims for a clinic, optionally limited by creation date"""
        query = db.query(InsuranceClaim).filter(
            InsuranceClaim.clinic_id == clinic_id,
            InsuranceClaim.deleted_at.is_(None),
        )
        if from_date:
            query = query.filter(InsuranceClaim.created_at >= from_date)
        if to_date:
            query = query.filter(InsuranceClaim.created_at <= to_date)
        return query.all()
