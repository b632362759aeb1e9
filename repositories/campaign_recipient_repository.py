"""
CampaignRecipientRepository - Data access layer for the recipient-attempt ledger
"""

from typing import List, Dict, Any
from sqlalchemy import asc, func
from repositories.base_repository import BaseRepository
from crm_database import CampaignRecipient
from utils.datetime_utils import utc_now


class CampaignRecipientRepository(BaseRepository):
    """Repository for CampaignRecipient data access"""

    def __init__(self, session):
        super().__init__(session, CampaignRecipient)

    def record_attempts(self, campaign_id: int, attempts: List[Dict[str, Any]]) -> List[CampaignRecipient]:
        """
        Write one ledger row per delivery attempt.

        Args:
            campaign_id: Campaign the attempts belong to
            attempts: Dicts with client_id, email, outcome, error and
                provider_message_id keys

        Returns:
            The created rows (flushed, not committed)
        """
        rows = [
            CampaignRecipient(
                campaign_id=campaign_id,
                client_id=attempt.get('client_id'),
                email=attempt['email'],
                outcome=attempt['outcome'],
                error=attempt.get('error'),
                provider_message_id=attempt.get('provider_message_id'),
                attempted_at=attempt.get('attempted_at') or utc_now(),
            )
            for attempt in attempts
        ]
        self.session.add_all(rows)
        self.session.flush()
        return rows

    def find_by_campaign(self, campaign_id: int) -> List[CampaignRecipient]:
        return self.session.query(self.model_class)\
            .filter_by(campaign_id=campaign_id)\
            .order_by(asc(self.model_class.id))\
            .all()

    def count_by_outcome(self, campaign_id: int) -> Dict[str, int]:
        rows = self.session.query(self.model_class.outcome, func.count(self.model_class.id))\
            .filter_by(campaign_id=campaign_id)\
            .group_by(self.model_class.outcome)\
            .all()
        return {outcome: count for outcome, count in rows}

    def search(self, query: str, user_id: int) -> List[CampaignRecipient]:
        # Ledger rows are only ever read per campaign
        return []
