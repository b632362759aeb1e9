"""
AutoCampaignService - materializes scheduled campaigns on a fixed cadence

Slots fall on days spaced ``interval_days`` apart counted from a fixed epoch,
so every run inside the same window proposes exactly the same dates.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional, Callable, Tuple

from sqlalchemy.exc import IntegrityError

from logging_config import get_logger
from repositories.business_profile_repository import BusinessProfileRepository
from repositories.campaign_repository import CampaignRepository
from repositories.client_repository import ClientRepository
from repositories.user_repository import UserRepository
from services.ai_service import ContentRequest
from services.business_profile_service import BusinessProfileService
from services.common.errors import ProfileIncomplete, ExternalServiceError
from services.common.result import Result
from services.enums import AutoCampaignCategory, CampaignStatus
from services.segmentation_service import AudienceSelector
from utils.datetime_utils import utc_now, ensure_utc

logger = get_logger(__name__)

SCHEDULE_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

CATEGORY_ROTATION = [
    AutoCampaignCategory.WIN_BACK,
    AutoCampaignCategory.SEASONAL_PROMO,
    AutoCampaignCategory.LOYALTY_REWARD,
    AutoCampaignCategory.NEW_CLIENT_WELCOME,
]

CATEGORY_SEGMENTS = {
    AutoCampaignCategory.WIN_BACK: 'inactive-60',
    AutoCampaignCategory.SEASONAL_PROMO: 'all',
    AutoCampaignCategory.LOYALTY_REWARD: 'loyal-clients',
    AutoCampaignCategory.NEW_CLIENT_WELCOME: 'new-clients',
}

CATEGORY_CAMPAIGN_TYPES = {
    AutoCampaignCategory.WIN_BACK: 'win-back',
    AutoCampaignCategory.SEASONAL_PROMO: 'seasonal',
    AutoCampaignCategory.LOYALTY_REWARD: 'loyalty',
    AutoCampaignCategory.NEW_CLIENT_WELCOME: 'welcome',
}

CATEGORY_TITLES = {
    AutoCampaignCategory.WIN_BACK: 'We Miss You',
    AutoCampaignCategory.SEASONAL_PROMO: 'Seasonal Special',
    AutoCampaignCategory.LOYALTY_REWARD: 'Thank You Reward',
    AutoCampaignCategory.NEW_CLIENT_WELCOME: 'Welcome',
}

# Month -> seasonal theme, matching the themes offered by the campaign editor
SEASONAL_THEMES = {
    1: 'New Year',
    2: 'Winter',
    3: 'Spring',
    4: 'Spring',
    5: 'Spring',
    6: 'Summer',
    7: 'Summer',
    8: 'Back to School',
    9: 'Fall',
    10: 'Fall',
    11: 'Holiday',
    12: 'Holiday',
}


def seasonal_theme(when: datetime) -> str:
    return SEASONAL_THEMES[when.month]


def slot_time(index: int, interval_days: int, send_hour: int) -> datetime:
    """Send time of the ``index``-th slot after the epoch"""
    return SCHEDULE_EPOCH + timedelta(days=index * interval_days, hours=send_hour)


def upcoming_slots(now: datetime, interval_days: int, horizon: int, send_hour: int) -> List[Tuple[int, datetime]]:
    """
    The next ``horizon`` slots strictly after ``now``.

    Returns:
        List of (slot index, send time) pairs, soonest first
    """
    now = ensure_utc(now)
    index = max(0, (now - SCHEDULE_EPOCH).days // interval_days)
    while slot_time(index, interval_days, send_hour) <= now:
        index += 1
    return [(i, slot_time(i, interval_days, send_hour)) for i in range(index, index + horizon)]


class AutoCampaignService:
    def __init__(self,
                 campaign_repository: CampaignRepository,
                 client_repository: ClientRepository,
                 profile_repository: BusinessProfileRepository,
                 user_repository: UserRepository,
                 segmentation_service,
                 ai_service,
                 interval_days: int = 14,
                 horizon: int = 3,
                 send_hour: int = 15,
                 clock: Callable[[], datetime] = utc_now):
        self.campaign_repository = campaign_repository
        self.client_repository = client_repository
        self.profile_repository = profile_repository
        self.user_repository = user_repository
        self.segmentation_service = segmentation_service
        self.ai_service = ai_service
        self.interval_days = interval_days
        self.horizon = horizon
        self.send_hour = send_hour
        self.clock = clock

    def _pick_category(self, slot_index: int, roster: List, now: datetime) -> Optional[AutoCampaignCategory]:
        """
        Category for a slot: the rotation entry for the slot index, moving on
        through the rotation past categories whose segment is empty.
        """
        for offset in range(len(CATEGORY_ROTATION)):
            category = CATEGORY_ROTATION[(slot_index + offset) % len(CATEGORY_ROTATION)]
            if self.segmentation_service.resolve(CATEGORY_SEGMENTS[category], roster, now):
                return category
        return None

    def _build_slot_campaign(self, business_id: int, profile, category: AutoCampaignCategory,
                             scheduled_at: datetime) -> Dict[str, Any]:
        segment = CATEGORY_SEGMENTS[category]
        theme = seasonal_theme(scheduled_at) if category == AutoCampaignCategory.SEASONAL_PROMO else None

        request = ContentRequest(
            business_type=profile.business_category,
            campaign_type=CATEGORY_CAMPAIGN_TYPES[category],
            target_audience=self.segmentation_service.describe(segment),
            seasonal_theme=theme,
            business_profile=BusinessProfileService.to_prompt_context(profile),
        )
        content = self.ai_service.generate_campaign_content(request)

        title = f"{theme} {CATEGORY_TITLES[category]}" if theme else CATEGORY_TITLES[category]
        return {
            'user_id': business_id,
            'name': f"{title} - {scheduled_at:%b %d, %Y}",
            'subject': content['subject'],
            'body': content['body'],
            'audience': AudienceSelector(segment_type=segment).to_dict(),
            'status': CampaignStatus.SCHEDULED.value,
            'recipient_count': 0,
            'scheduled_at': scheduled_at,
            'is_auto': True,
            'auto_category': category.value,
        }

    def generate_auto_campaigns(self, business_id: int) -> Result:
        """
        Create the scheduled campaigns for the upcoming slots.

        Idempotent per (business, slot date): a slot that already has an
        auto-campaign is left alone, whatever category the roster would pick
        today. A slot whose content generation fails is skipped and retried
        on the next run.

        Returns:
            Result with {'campaigns_created', 'campaigns', 'skipped', 'failed'}
        """
        profile = self.profile_repository.find_by_user(business_id)
        missing = BusinessProfileService.missing_fields(profile)
        if missing:
            return Result.from_error(ProfileIncomplete(missing))

        now = self.clock()
        roster = self.client_repository.find_by_business(business_id)
        created, skipped, failed = [], [], []

        for slot_index, scheduled_at in upcoming_slots(now, self.interval_days, self.horizon, self.send_hour):
            # A filled slot keeps its campaign even if the roster now picks another category
            existing = self.campaign_repository.find_auto_slot(business_id, scheduled_at)
            if existing is not None:
                skipped.append({'scheduled_at': scheduled_at.isoformat(), 'category': existing.auto_category,
                                'reason': 'already scheduled'})
                continue

            category = self._pick_category(slot_index, roster, now)
            if category is None:
                skipped.append({'scheduled_at': scheduled_at.isoformat(), 'reason': 'no clients in any segment'})
                continue

            try:
                fields = self._build_slot_campaign(business_id, profile, category, scheduled_at)
            except ExternalServiceError as e:
                logger.warning("Auto-campaign content generation failed", business_id=business_id,
                               category=category.value, scheduled_at=scheduled_at.isoformat(), error=str(e))
                failed.append({'scheduled_at': scheduled_at.isoformat(), 'category': category.value,
                               'error': str(e)})
                continue

            try:
                campaign = self.campaign_repository.create(**fields)
                self.campaign_repository.commit()
            except IntegrityError:
                # Another run filled the slot first
                self.campaign_repository.rollback()
                skipped.append({'scheduled_at': scheduled_at.isoformat(), 'category': category.value,
                                'reason': 'already scheduled'})
                continue
            created.append(campaign)

        logger.info("Auto-campaign generation finished", business_id=business_id,
                    created=len(created), skipped=len(skipped), failed=len(failed))
        return Result.success({
            'campaigns_created': len(created),
            'campaigns': created,
            'skipped': skipped,
            'failed': failed,
        })

    def generate_for_all_businesses(self) -> Dict[str, Any]:
        """Run generation for every active business; incomplete profiles are counted, not errors"""
        summary = {'businesses': 0, 'campaigns_created': 0, 'profile_incomplete': 0, 'errors': []}
        for user in self.user_repository.find_active():
            summary['businesses'] += 1
            result = self.generate_auto_campaigns(user.id)
            if result.is_success:
                summary['campaigns_created'] += result.data['campaigns_created']
            elif result.error_code == ProfileIncomplete.code:
                summary['profile_incomplete'] += 1
            else:
                summary['errors'].append({'business_id': user.id, 'error': result.error})
        return summary

    def get_upcoming_auto_campaigns(self, business_id: int, limit: int = 3) -> Result:
        return Result.success(self.campaign_repository.find_upcoming_auto(business_id, self.clock(), limit=limit))

    def get_next_auto_campaign_date(self, business_id: int) -> Result:
        """
        When the next auto-campaign goes out.

        Uses the soonest scheduled auto-campaign, or the next slot when none
        has been generated yet.

        Returns:
            Result with {'next_date', 'days_until', 'generated'}
        """
        now = self.clock()
        upcoming = self.campaign_repository.find_upcoming_auto(business_id, now, limit=1)
        if upcoming:
            next_date, generated = ensure_utc(upcoming[0].scheduled_at), True
        else:
            next_date = upcoming_slots(now, self.interval_days, 1, self.send_hour)[0][1]
            generated = False
        return Result.success({
            'next_date': next_date,
            'days_until': max(0, (next_date.date() - now.date()).days),
            'generated': generated,
        })
