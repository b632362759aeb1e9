"""
DashboardService - overview metrics for a business
"""

from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Callable

from repositories.appointment_repository import AppointmentRepository
from repositories.campaign_repository import CampaignRepository
from repositories.client_repository import ClientRepository
from services.common.result import Result
from services.enums import CampaignStatus
from utils.datetime_utils import utc_now, ensure_utc


def growth_percent(current: int, previous: int) -> float:
    """Period-over-period growth; 100 when starting from zero, 0 when both are zero"""
    if previous > 0:
        return round((current - previous) / previous * 100, 1)
    return 100.0 if current > 0 else 0.0


class DashboardService:
    def __init__(self,
                 appointment_repository: AppointmentRepository,
                 campaign_repository: CampaignRepository,
                 client_repository: ClientRepository,
                 segmentation_service,
                 clock: Callable[[], datetime] = utc_now):
        self.appointment_repository = appointment_repository
        self.campaign_repository = campaign_repository
        self.client_repository = client_repository
        self.segmentation_service = segmentation_service
        self.clock = clock

    def get_overview_metrics(self, business_id: int, now: Optional[datetime] = None) -> Result:
        """
        Appointment counts for the last 30 and 7 days, growth against the 30
        days before that, and the campaign with the most bookings.
        """
        now = ensure_utc(now) if now else self.clock()
        end = now + timedelta(microseconds=1)

        last_30 = self.appointment_repository.count_in_range(business_id, now - timedelta(days=30), end)
        last_7 = self.appointment_repository.count_in_range(business_id, now - timedelta(days=7), end)
        previous_30 = self.appointment_repository.count_in_range(
            business_id, now - timedelta(days=60), now - timedelta(days=30))

        top = self.campaign_repository.find_top_by_bookings(business_id)
        top_campaign = {
            'id': top.id,
            'name': top.name,
            'bookings': top.appointments_booked or 0,
        } if top else None

        return Result.success({
            'appointments_30d': last_30,
            'appointments_7d': last_7,
            'appointments_growth': growth_percent(last_30, previous_30),
            'top_campaign': top_campaign,
        })

    def get_audience_overview(self, business_id: int, now: Optional[datetime] = None) -> Result:
        """Client count, segment sizes and campaign counts by status"""
        now = ensure_utc(now) if now else self.clock()
        roster = self.client_repository.find_by_business(business_id)
        campaigns = self.campaign_repository.find_by_business(business_id)

        by_status: Dict[str, Any] = {status.value: 0 for status in CampaignStatus}
        for campaign in campaigns:
            by_status[campaign.status] = by_status.get(campaign.status, 0) + 1

        return Result.success({
            'total_clients': len(roster),
            'segments': self.segmentation_service.count_by_segment(roster, now),
            'campaigns_by_status': by_status,
        })
