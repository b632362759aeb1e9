"""
Tests for AppointmentService
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from crm_database import Appointment


@pytest.fixture
def appointment_service(app):
    return app.services.get('appointment')


class TestAppointmentService:

    def test_create_with_campaign_updates_bookings(self, appointment_service, business, make_client,
                                                   make_campaign):
        client = make_client(business)
        campaign = make_campaign(business, status='sent')

        result = appointment_service.create_appointment(business.id, {
            'client_id': client.id,
            'campaign_id': campaign.id,
            'appointment_date': '2025-06-20T15:00:00Z',
            'service': 'Whitening',
            'amount': '149.00',
        })

        assert result.is_success
        assert result.metadata == {'created': True}
        assert result.data.amount == Decimal('149.00')
        assert result.data.status == 'booked'
        assert campaign.appointments_booked == 1

    @pytest.mark.parametrize('data', [
        {'appointment_date': 'soon'},
        {'appointment_date': '2025-06-20T15:00:00Z', 'status': 'rescheduled'},
        {'appointment_date': '2025-06-20T15:00:00Z', 'amount': 'lots'},
    ])
    def test_invalid_input(self, appointment_service, business, data):
        assert appointment_service.create_appointment(business.id, data).error_code == 'VALIDATION_ERROR'

    def test_campaign_of_other_business(self, appointment_service, business, other_business, make_campaign):
        campaign = make_campaign(other_business)

        result = appointment_service.create_appointment(business.id, {
            'campaign_id': campaign.id, 'appointment_date': '2025-06-20T15:00:00Z',
        })

        assert result.error_code == 'NOT_FOUND'

    def test_external_booking_is_deduplicated(self, appointment_service, business, db_session):
        data = {'external_booking_id': 'B1', 'appointment_date': '2025-06-20T15:00:00Z'}

        first = appointment_service.create_appointment(business.id, data)
        second = appointment_service.create_appointment(business.id, data)

        assert second.data.id == first.data.id
        assert db_session.query(Appointment).filter_by(user_id=business.id).count() == 1

    def test_recent_appointments_window(self, appointment_service, business, db_session):
        now = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)
        for days in (1, 29, 31):
            db_session.add(Appointment(user_id=business.id, appointment_date=now - timedelta(days=days)))
        db_session.flush()

        result = appointment_service.get_recent_appointments(business.id, days=30, now=now)

        assert len(result.data) == 2
