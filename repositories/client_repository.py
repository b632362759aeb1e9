"""
ClientRepository - Data access layer for Client model
"""

from typing import List, Optional, Iterable
from sqlalchemy import desc, or_
from repositories.base_repository import BaseRepository
from crm_database import Client


class ClientRepository(BaseRepository):
    """Repository for Client data access"""

    def __init__(self, session):
        super().__init__(session, Client)

    def find_by_business(self, user_id: int) -> List[Client]:
        """
        Full client roster for a business, newest first.

        This ordering is the roster order handed to segmentation, so segment
        results come back newest first as well.
        """
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id)\
            .order_by(desc(self.model_class.created_at), desc(self.model_class.id))\
            .all()

    def find_by_ids(self, user_id: int, client_ids: Iterable[int]) -> List[Client]:
        ids = list(client_ids)
        if not ids:
            return []
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(self.model_class.id.in_(ids))\
            .order_by(desc(self.model_class.created_at), desc(self.model_class.id))\
            .all()

    def find_by_email(self, user_id: int, email: str) -> Optional[Client]:
        """Case-insensitive email lookup within a business"""
        if not email:
            return None
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(self.model_class.email.ilike(email.strip()))\
            .first()

    def find_by_external_id(self, user_id: int, external_customer_id: str) -> Optional[Client]:
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, external_customer_id=external_customer_id)\
            .first()

    def count_for_business(self, user_id: int) -> int:
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id)\
            .count()

    def search(self, query: str, user_id: int) -> List[Client]:
        """Match on name, email or phone"""
        if not query:
            return []
        pattern = f"%{query}%"
        return self.session.query(self.model_class)\
            .filter(self.model_class.user_id == user_id)\
            .filter(or_(
                self.model_class.name.ilike(pattern),
                self.model_class.email.ilike(pattern),
                self.model_class.phone.ilike(pattern)
            ))\
            .order_by(desc(self.model_class.created_at))\
            .all()
