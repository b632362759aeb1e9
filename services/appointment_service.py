"""
AppointmentService - bookings and their campaign attribution
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, Optional

from logging_config import get_logger
from repositories.appointment_repository import AppointmentRepository
from repositories.campaign_repository import CampaignRepository
from repositories.client_repository import ClientRepository
from services.common.errors import ValidationError, NotFound, PromoPalError
from services.common.result import Result
from services.enums import AppointmentStatus
from utils.datetime_utils import utc_now, ensure_utc, parse_iso_datetime

logger = get_logger(__name__)


class AppointmentService:
    def __init__(self,
                 appointment_repository: AppointmentRepository,
                 campaign_repository: CampaignRepository,
                 client_repository: ClientRepository):
        self.appointment_repository = appointment_repository
        self.campaign_repository = campaign_repository
        self.client_repository = client_repository

    def _clean(self, business_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        appointment_date = data.get('appointment_date')
        if isinstance(appointment_date, str):
            appointment_date = parse_iso_datetime(appointment_date)
        if not isinstance(appointment_date, datetime):
            raise ValidationError("A valid appointment date is required")

        status = data.get('status') or AppointmentStatus.BOOKED.value
        if status not in {s.value for s in AppointmentStatus}:
            raise ValidationError(f"Invalid appointment status: {status}")

        amount = data.get('amount')
        if amount is not None:
            try:
                amount = Decimal(str(amount))
            except InvalidOperation:
                raise ValidationError(f"Invalid amount: {amount}")

        client_id = data.get('client_id')
        if client_id is not None and self.client_repository.get_owned(client_id, business_id) is None:
            raise NotFound(f"Client {client_id} not found")

        campaign_id = data.get('campaign_id')
        if campaign_id is not None and self.campaign_repository.get_owned(campaign_id, business_id) is None:
            raise NotFound(f"Campaign {campaign_id} not found")

        return {
            'user_id': business_id,
            'client_id': client_id,
            'campaign_id': campaign_id,
            'appointment_date': ensure_utc(appointment_date),
            'service': data.get('service'),
            'status': status,
            'amount': amount,
            'external_booking_id': data.get('external_booking_id'),
        }

    def recount_campaign_bookings(self, campaign_id: int) -> int:
        """Recompute appointments_booked from the attributed appointments (flushes, no commit)"""
        campaign = self.campaign_repository.get_by_id(campaign_id)
        if campaign is None:
            return 0
        booked = self.appointment_repository.count_for_campaign(campaign_id)
        self.campaign_repository.update(campaign, appointments_booked=booked)
        return booked

    def create_appointment(self, business_id: int, data: Dict[str, Any]) -> Result:
        """
        Record an appointment, attributing it to a campaign when one is given.

        Appointments carrying an external booking id already on file are
        returned as-is.
        """
        try:
            fields = self._clean(business_id, data)
        except PromoPalError as e:
            return Result.from_error(e)

        if fields['external_booking_id']:
            existing = self.appointment_repository.find_by_external_booking_id(
                business_id, fields['external_booking_id'])
            if existing is not None:
                return Result.success(existing, metadata={'created': False})

        appointment = self.appointment_repository.create(**fields)
        if appointment.campaign_id:
            self.recount_campaign_bookings(appointment.campaign_id)
        self.appointment_repository.commit()

        logger.info("Appointment created", business_id=business_id, appointment_id=appointment.id,
                    campaign_id=appointment.campaign_id)
        return Result.success(appointment, metadata={'created': True})

    def list_appointments(self, business_id: int) -> Result:
        return Result.success(self.appointment_repository.find_by_business(business_id))

    def get_recent_appointments(self, business_id: int, days: int = 30,
                                now: Optional[datetime] = None) -> Result:
        """Appointments dated within the last ``days`` days up to now"""
        end = ensure_utc(now) if now else utc_now()
        start = end - timedelta(days=days)
        return Result.success(self.appointment_repository.find_in_range(business_id, start, end))
