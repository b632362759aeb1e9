"""
SchedulingSyncService - pulls customers and bookings from a connected Square account
"""

from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Callable

from logging_config import get_logger
from repositories.appointment_repository import AppointmentRepository
from repositories.client_repository import ClientRepository
from repositories.integration_repository import IntegrationRepository
from services.common.errors import IntegrationTokenExpired, ExternalServiceError, NotFound, ValidationError
from services.common.integration_settings import settings_from_dict
from services.common.result import Result
from services.enums import AppointmentStatus, IntegrationProvider
from utils.datetime_utils import utc_now, ensure_utc, parse_iso_datetime

logger = get_logger(__name__)

IMPORT_TAG = 'square-import'
BOOKING_LOOKBACK_DAYS = 30
DEFAULT_SERVICE_NAME = 'Square Booking'

# Errors a single malformed provider record can raise
RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def customer_name(customer: Dict[str, Any]) -> str:
    name = f"{customer.get('given_name') or ''} {customer.get('family_name') or ''}".strip()
    return name or customer.get('company_name') or customer.get('email_address') or 'Square Customer'


def booking_status(square_status: Optional[str]) -> str:
    return AppointmentStatus.BOOKED.value if square_status == 'ACCEPTED' else AppointmentStatus.PENDING.value


class SchedulingSyncService:
    def __init__(self,
                 integration_repository: IntegrationRepository,
                 client_repository: ClientRepository,
                 appointment_repository: AppointmentRepository,
                 square_service,
                 token_lifecycle_service,
                 appointment_service,
                 clock: Callable[[], datetime] = utc_now):
        self.integration_repository = integration_repository
        self.client_repository = client_repository
        self.appointment_repository = appointment_repository
        self.square_service = square_service
        self.token_lifecycle_service = token_lifecycle_service
        self.appointment_service = appointment_service
        self.clock = clock

    def sync_customers(self, business_id: int, access_token: str) -> Dict[str, int]:
        """
        Import Square customers as clients.

        Matches on the Square customer id, then on email. A matched client
        only gets its Square id linked; nothing else is overwritten.
        """
        counts = {'synced': 0, 'linked': 0, 'skipped': 0, 'errors': 0}
        for customer in self.square_service.list_customers(access_token):
            try:
                external_id = customer['id']
                email = (customer.get('email_address') or '').strip()

                existing = self.client_repository.find_by_external_id(business_id, external_id)
                if existing is None and email:
                    existing = self.client_repository.find_by_email(business_id, email)

                if existing is not None:
                    if not existing.external_customer_id:
                        self.client_repository.update(existing, external_customer_id=external_id)
                        counts['linked'] += 1
                    else:
                        counts['skipped'] += 1
                    continue

                if not email:
                    counts['skipped'] += 1
                    continue

                self.client_repository.create(
                    user_id=business_id,
                    name=customer_name(customer),
                    email=email,
                    phone=customer.get('phone_number'),
                    external_customer_id=external_id,
                    tags=[IMPORT_TAG],
                    client_metadata={
                        'square_customer_id': external_id,
                        'imported_at': self.clock().isoformat(),
                    },
                )
                counts['synced'] += 1
            except RECORD_ERRORS as e:
                counts['errors'] += 1
                logger.warning("Skipping malformed Square customer", business_id=business_id,
                               customer_id=customer.get('id') if isinstance(customer, dict) else None,
                               error=str(e))

        self.client_repository.commit()
        return counts

    def sync_bookings(self, business_id: int, access_token: str, location_id: Optional[str],
                      now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Import the last 30 days of Square bookings as appointments.

        Idempotent on the Square booking id. Accepted bookings already in the
        past move the client's last_visit forward.
        """
        now = ensure_utc(now) if now else self.clock()
        counts = {'synced': 0, 'existing': 0, 'errors': 0}
        bookings = self.square_service.list_bookings(
            access_token, location_id, now - timedelta(days=BOOKING_LOOKBACK_DAYS), now
        )

        for booking in bookings:
            try:
                external_id = booking['id']
                if self.appointment_repository.find_by_external_booking_id(business_id, external_id):
                    counts['existing'] += 1
                    continue

                start_at = parse_iso_datetime(booking.get('start_at'))
                if start_at is None:
                    raise ValueError(f"booking {external_id} has no valid start_at")

                client = None
                if booking.get('customer_id'):
                    client = self.client_repository.find_by_external_id(business_id, booking['customer_id'])

                status = booking_status(booking.get('status'))
                self.appointment_repository.create(
                    user_id=business_id,
                    client_id=client.id if client else None,
                    appointment_date=start_at,
                    service=DEFAULT_SERVICE_NAME,
                    status=status,
                    amount=0,
                    external_booking_id=external_id,
                )

                if client is not None and status == AppointmentStatus.BOOKED.value and start_at <= now:
                    last_visit = ensure_utc(client.last_visit)
                    if last_visit is None or start_at > last_visit:
                        self.client_repository.update(client, last_visit=start_at)

                counts['synced'] += 1
            except RECORD_ERRORS as e:
                counts['errors'] += 1
                logger.warning("Skipping malformed Square booking", business_id=business_id,
                               booking_id=booking.get('id') if isinstance(booking, dict) else None,
                               error=str(e))

        self.appointment_repository.commit()
        return counts

    def sync_business(self, business_id: int) -> Result:
        """
        Full sync for one business.

        Returns:
            Result with {'customers': counts, 'bookings': counts or None}
        """
        integration = self.integration_repository.find_active(business_id, IntegrationProvider.SQUARE.value)
        if integration is None:
            return Result.from_error(NotFound("Square integration not found or inactive"))

        try:
            access_token = self.token_lifecycle_service.get_valid_access_token(integration)
        except IntegrationTokenExpired as e:
            return Result.from_error(e)

        settings = settings_from_dict(integration.provider, integration.settings)
        results = {'customers': None, 'bookings': None}
        try:
            results['customers'] = self.sync_customers(business_id, access_token)
            if settings.location_id:
                results['bookings'] = self.sync_bookings(business_id, access_token, settings.location_id)
        except ExternalServiceError as e:
            logger.error("Square sync failed", business_id=business_id, error=str(e))
            return Result.from_error(e, metadata=results)

        settings.last_synced_at = self.clock().isoformat()
        self.integration_repository.update_settings(integration, settings.to_dict())
        self.integration_repository.commit()

        logger.info("Square sync completed", business_id=business_id, results=results)
        return Result.success(results)

    def is_sync_due(self, integration, now: datetime) -> bool:
        settings = settings_from_dict(integration.provider, integration.settings)
        if not settings.auto_sync:
            return False
        last_synced = parse_iso_datetime(settings.last_synced_at)
        return last_synced is None or now - last_synced >= timedelta(hours=settings.sync_interval_hours)

    def sync_due_integrations(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Sync every active Square integration whose interval has elapsed"""
        now = ensure_utc(now) if now else self.clock()
        summary = {'checked': 0, 'synced': 0, 'failed': 0, 'errors': []}
        for integration in self.integration_repository.find_active_by_provider(IntegrationProvider.SQUARE.value):
            summary['checked'] += 1
            if not self.is_sync_due(integration, now):
                continue
            result = self.sync_business(integration.user_id)
            if result.is_success:
                summary['synced'] += 1
            else:
                summary['failed'] += 1
                summary['errors'].append({'business_id': integration.user_id, 'error': result.error,
                                          'code': result.error_code})
        return summary

    def update_sync_settings(self, business_id: int, auto_sync: Optional[bool] = None,
                             sync_interval_hours: Optional[int] = None) -> Result:
        integration = self.integration_repository.find_active(business_id, IntegrationProvider.SQUARE.value)
        if integration is None:
            return Result.from_error(NotFound("Square integration not found or inactive"))

        settings = settings_from_dict(integration.provider, integration.settings)
        if auto_sync is not None:
            settings.auto_sync = bool(auto_sync)
        if sync_interval_hours is not None:
            if int(sync_interval_hours) < 1:
                return Result.from_error(ValidationError("Sync interval must be at least one hour"))
            settings.sync_interval_hours = int(sync_interval_hours)

        self.integration_repository.update_settings(integration, settings.to_dict())
        self.integration_repository.commit()
        return Result.success(settings)

    def handle_booking_created(self, payload: Dict[str, Any]) -> Result:
        """
        Process a Square ``booking.created`` webhook.

        The owning business is resolved from the merchant id stored on its
        Square integration. A campaign id in the booked service's metadata
        attributes the appointment to that campaign.
        """
        event_type = payload.get('type') or payload.get('event_type')
        if event_type != 'booking.created':
            return Result.success({'handled': False})

        data = payload.get('data') or {}
        booking = (data.get('object') or {}).get('booking') or data.get('booking')
        if not booking:
            return Result.from_error(ValidationError("Webhook payload has no booking"))

        merchant_id = payload.get('merchant_id')
        integration = self.integration_repository.find_active_by_setting(
            IntegrationProvider.SQUARE.value, 'merchant_id', merchant_id) if merchant_id else None
        if integration is None:
            logger.warning("Square webhook for unknown merchant", merchant_id=merchant_id)
            return Result.from_error(NotFound(f"No active Square integration for merchant {merchant_id}"))
        business_id = integration.user_id

        segment = (booking.get('appointment_segments') or [{}])[0]
        service_variation = segment.get('service_variation') or {}
        campaign_id = (service_variation.get('metadata') or {}).get('campaign_id')

        client = None
        if booking.get('customer_id'):
            client = self.client_repository.find_by_external_id(business_id, booking['customer_id'])

        return self.appointment_service.create_appointment(business_id, {
            'external_booking_id': booking.get('id'),
            'campaign_id': int(campaign_id) if str(campaign_id or '').isdigit() else None,
            'client_id': client.id if client else None,
            'appointment_date': segment.get('start_time') or booking.get('start_at'),
            'service': service_variation.get('name') or DEFAULT_SERVICE_NAME,
            'status': AppointmentStatus.BOOKED.value,
        })
