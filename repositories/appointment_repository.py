"""
AppointmentRepository - Data access layer for Appointment model
"""

from typing import List, Optional
from datetime import datetime
from sqlalchemy import desc, or_
from repositories.base_repository import BaseRepository
from crm_database import Appointment


class AppointmentRepository(BaseRepository):
    """Repository for Appointment data access"""

    def __init__(self, session):
        super().__init__(session, Appointment)

    def find_by_business(self, user_id: int) -> List[Appointment]:
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id)\
            .order_by(desc(self.model_class.appointment_date))\
            .all()

    def find_by_external_booking_id(self, user_id: int, external_booking_id: str) -> Optional[Appointment]:
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, external_booking_id=external_booking_id)\
            .first()

    def find_in_range(self, user_id: int, start: datetime, end: datetime) -> List[Appointment]:
        """
        Appointments with ``start <= appointment_date < end``.

        Returns:
            List of Appointment objects, most recent first
        """
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(self.model_class.appointment_date >= start)\
            .filter(self.model_class.appointment_date < end)\
            .order_by(desc(self.model_class.appointment_date))\
            .all()

    def count_in_range(self, user_id: int, start: datetime, end: datetime) -> int:
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(self.model_class.appointment_date >= start)\
            .filter(self.model_class.appointment_date < end)\
            .count()

    def count_for_campaign(self, campaign_id: int) -> int:
        return self.session.query(self.model_class)\
            .filter_by(campaign_id=campaign_id)\
            .count()

    def search(self, query: str, user_id: int) -> List[Appointment]:
        if not query:
            return []
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(or_(
                self.model_class.service.ilike(f"%{query}%"),
                self.model_class.external_booking_id == query
            ))\
            .order_by(desc(self.model_class.appointment_date))\
            .all()
