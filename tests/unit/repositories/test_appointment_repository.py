"""
Tests for AppointmentRepository
"""

from datetime import timedelta

import pytest

from crm_database import Appointment
from repositories.appointment_repository import AppointmentRepository
from utils.datetime_utils import utc_now


@pytest.fixture
def repository(db_session):
    return AppointmentRepository(session=db_session)


@pytest.fixture
def make_appointment(db_session):
    def _make(business, days_ago, **kwargs):
        appointment = Appointment(user_id=business.id,
                                  appointment_date=utc_now() - timedelta(days=days_ago),
                                  **kwargs)
        db_session.add(appointment)
        db_session.flush()
        return appointment
    return _make


class TestAppointmentRepository:

    def test_find_by_business_most_recent_first(self, repository, business, other_business, make_appointment):
        old = make_appointment(business, 10)
        recent = make_appointment(business, 1)
        make_appointment(other_business, 1)

        assert repository.find_by_business(business.id) == [recent, old]

    def test_find_by_external_booking_id(self, repository, business, make_appointment):
        appointment = make_appointment(business, 0, external_booking_id='BK-1')

        assert repository.find_by_external_booking_id(business.id, 'BK-1') == appointment
        assert repository.find_by_external_booking_id(business.id, 'BK-2') is None

    def test_range_is_half_open(self, repository, business, make_appointment):
        inside = make_appointment(business, 5)
        make_appointment(business, 40)
        now = utc_now()

        assert repository.find_in_range(business.id, now - timedelta(days=30), now) == [inside]
        assert repository.count_in_range(business.id, now - timedelta(days=30), now) == 1
        assert repository.count_in_range(business.id, inside.appointment_date - timedelta(days=1),
                                         inside.appointment_date) == 0

    def test_count_for_campaign(self, repository, business, make_campaign, make_appointment):
        campaign = make_campaign(business, status='sent')
        make_appointment(business, 1, campaign_id=campaign.id)
        make_appointment(business, 2, campaign_id=campaign.id)
        make_appointment(business, 3)

        assert repository.count_for_campaign(campaign.id) == 2

    def test_search_by_service(self, repository, business, make_appointment):
        cleaning = make_appointment(business, 1, service='Teeth Cleaning')
        make_appointment(business, 2, service='Whitening')

        assert repository.search('cleaning', business.id) == [cleaning]
