"""
CampaignRepository - Data access layer for Campaign model
"""

from typing import List, Optional
from datetime import datetime
from sqlalchemy import desc, asc, or_
from repositories.base_repository import BaseRepository
from crm_database import Campaign
from services.enums import CampaignStatus


class CampaignRepository(BaseRepository):
    """Repository for Campaign data access"""

    def __init__(self, session):
        super().__init__(session, Campaign)

    def find_by_business(self, user_id: int, status: Optional[str] = None) -> List[Campaign]:
        """Campaigns for a business, newest first, optionally filtered by status"""
        query = self.session.query(self.model_class).filter_by(user_id=user_id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(desc(self.model_class.created_at), desc(self.model_class.id)).all()

    def find_due_scheduled(self, now: datetime) -> List[Campaign]:
        """Scheduled campaigns whose send time has arrived, oldest first"""
        return self.session.query(self.model_class)\
            .filter(self.model_class.status == CampaignStatus.SCHEDULED.value)\
            .filter(self.model_class.scheduled_at.isnot(None))\
            .filter(self.model_class.scheduled_at <= now)\
            .order_by(asc(self.model_class.scheduled_at))\
            .all()

    def find_auto_slot(self, user_id: int, scheduled_at: datetime) -> Optional[Campaign]:
        """Lookup by the auto-campaign dedupe key, whatever the category"""
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, scheduled_at=scheduled_at, is_auto=True)\
            .first()

    def find_upcoming_auto(self, user_id: int, now: datetime, limit: int = 3) -> List[Campaign]:
        """Next auto-campaigns still waiting to go out, soonest first"""
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(self.model_class.is_auto.is_(True))\
            .filter(self.model_class.status == CampaignStatus.SCHEDULED.value)\
            .filter(self.model_class.scheduled_at > now)\
            .order_by(asc(self.model_class.scheduled_at))\
            .limit(limit)\
            .all()

    def find_top_by_bookings(self, user_id: int) -> Optional[Campaign]:
        """Campaign with the most attributed appointments"""
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(self.model_class.appointments_booked > 0)\
            .order_by(desc(self.model_class.appointments_booked), desc(self.model_class.sent_at))\
            .first()

    def search(self, query: str, user_id: int) -> List[Campaign]:
        if not query:
            return []
        pattern = f"%{query}%"
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(or_(
                self.model_class.name.ilike(pattern),
                self.model_class.subject.ilike(pattern)
            ))\
            .order_by(desc(self.model_class.created_at))\
            .all()
