"""
BusinessProfileRepository - Data access layer for BusinessProfile model
"""

from typing import List, Optional, Dict, Any
from repositories.base_repository import BaseRepository
from crm_database import BusinessProfile


class BusinessProfileRepository(BaseRepository):
    """Repository for BusinessProfile data access (one row per business)"""

    def __init__(self, session):
        super().__init__(session, BusinessProfile)

    def find_by_user(self, user_id: int) -> Optional[BusinessProfile]:
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id)\
            .first()

    def upsert(self, user_id: int, fields: Dict[str, Any]) -> BusinessProfile:
        """Create the profile for ``user_id`` or update the existing one"""
        profile = self.find_by_user(user_id)
        if profile is None:
            return self.create(user_id=user_id, **fields)
        return self.update(profile, **fields)

    def search(self, query: str, user_id: int) -> List[BusinessProfile]:
        profile = self.find_by_user(user_id)
        return [profile] if profile else []
