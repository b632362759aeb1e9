"""
IntegrationRepository - credential store for connected provider accounts
"""

from typing import List, Optional, Dict, Any
from datetime import datetime
from sqlalchemy import desc
from repositories.base_repository import BaseRepository
from crm_database import Integration
from utils.datetime_utils import utc_now
import logging

logger = logging.getLogger(__name__)


class IntegrationRepository(BaseRepository):
    """
    Repository for Integration data access.

    Rows are never hard-deleted: disconnecting or reconnecting deactivates
    the previous row so token history stays auditable.
    """

    def __init__(self, session):
        super().__init__(session, Integration)

    def find_active(self, user_id: int, provider: str) -> Optional[Integration]:
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, provider=provider, is_active=True)\
            .order_by(desc(self.model_class.created_at))\
            .first()

    def find_all_for_user(self, user_id: int, active_only: bool = False) -> List[Integration]:
        query = self.session.query(self.model_class).filter_by(user_id=user_id)
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(desc(self.model_class.created_at)).all()

    def find_active_by_provider(self, provider: str) -> List[Integration]:
        """All active integrations for a provider, across businesses"""
        return self.session.query(self.model_class)\
            .filter_by(provider=provider, is_active=True)\
            .all()

    def find_active_by_setting(self, provider: str, key: str, value: Any) -> Optional[Integration]:
        """
        Resolve the owning business of an inbound provider event.

        Settings are JSON, so the match runs in Python over the (small) set of
        active rows for the provider.
        """
        for integration in self.find_active_by_provider(provider):
            if (integration.settings or {}).get(key) == value:
                return integration
        return None

    def get_for_update(self, integration_id: int) -> Optional[Integration]:
        """
        Re-read a row under a row-level lock (SELECT ... FOR UPDATE).

        populate_existing makes the identity-mapped instance pick up whatever
        a concurrent writer committed. Dialects without row locks (SQLite)
        render a plain SELECT.
        """
        return self.session.query(self.model_class)\
            .filter_by(id=integration_id)\
            .populate_existing()\
            .with_for_update()\
            .first()

    def activate(self,
                 user_id: int,
                 provider: str,
                 access_token: str,
                 refresh_token: Optional[str],
                 token_expiry: Optional[datetime],
                 settings: Dict[str, Any]) -> Integration:
        """
        Make a new active integration for (user_id, provider).

        Any currently active row for the pair is deactivated and flushed
        before the insert, so the partial unique index never sees two active
        rows. The caller commits both changes together.
        """
        previous = self.session.query(self.model_class)\
            .filter_by(user_id=user_id, provider=provider, is_active=True)\
            .all()
        for row in previous:
            row.is_active = False
            row.updated_at = utc_now()
        if previous:
            self.session.flush()
            logger.info(f"Deactivated {len(previous)} previous {provider} integration(s) for user {user_id}")

        return self.create(
            user_id=user_id,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expiry=token_expiry,
            is_active=True,
            settings=settings,
        )

    def update_tokens(self,
                      integration: Integration,
                      access_token: str,
                      refresh_token: Optional[str],
                      token_expiry: Optional[datetime]) -> Integration:
        return self.update(
            integration,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expiry=token_expiry,
            updated_at=utc_now(),
        )

    def deactivate(self, integration: Integration, settings: Optional[Dict[str, Any]] = None) -> Integration:
        updates = {'is_active': False, 'updated_at': utc_now()}
        if settings is not None:
            updates['settings'] = settings
        return self.update(integration, **updates)

    def update_settings(self, integration: Integration, settings: Dict[str, Any]) -> Integration:
        # Reassign so the JSON column is marked dirty
        return self.update(integration, settings=dict(settings), updated_at=utc_now())

    def search(self, query: str, user_id: int) -> List[Integration]:
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, provider=query)\
            .order_by(desc(self.model_class.created_at))\
            .all()
