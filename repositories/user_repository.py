"""
UserRepository - Data access layer for business accounts
"""

from typing import List, Optional
from sqlalchemy import asc
from repositories.base_repository import BaseRepository
from crm_database import User


class UserRepository(BaseRepository):
    """Repository for User data access"""

    def __init__(self, session):
        super().__init__(session, User)

    def find_by_email(self, email: str) -> Optional[User]:
        return self.session.query(self.model_class)\
            .filter_by(email=email)\
            .first()

    def find_active(self) -> List[User]:
        """Active business accounts, used by the periodic jobs"""
        return self.session.query(self.model_class)\
            .filter_by(is_active=True)\
            .order_by(asc(self.model_class.id))\
            .all()

    def search(self, query: str, user_id: int = None) -> List[User]:
        if not query:
            return []
        return self.session.query(self.model_class)\
            .filter(self.model_class.email.ilike(f"%{query}%"))\
            .all()
