"""
Tests for DashboardService metrics
"""

from datetime import datetime, timedelta, timezone

import pytest

from crm_database import Appointment
from services.dashboard_service import growth_percent

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def dashboard_service(app):
    return app.services.get('dashboard')


@pytest.fixture
def add_appointment(db_session):
    def _add(business, days_ago, campaign=None):
        db_session.add(Appointment(user_id=business.id, appointment_date=NOW - timedelta(days=days_ago),
                                   campaign_id=campaign.id if campaign else None))
        db_session.flush()
    return _add


class TestGrowthPercent:

    @pytest.mark.parametrize('current,previous,expected', [
        (15, 10, 50.0),
        (5, 10, -50.0),
        (3, 0, 100.0),
        (0, 0, 0.0),
    ])
    def test_growth(self, current, previous, expected):
        assert growth_percent(current, previous) == expected


class TestOverviewMetrics:

    def test_counts_and_growth(self, dashboard_service, business, add_appointment):
        for days in (1, 5, 20):
            add_appointment(business, days)
        for days in (35, 50):
            add_appointment(business, days)

        data = dashboard_service.get_overview_metrics(business.id, now=NOW).data

        assert data['appointments_30d'] == 3
        assert data['appointments_7d'] == 2
        assert data['appointments_growth'] == 50.0
        assert data['top_campaign'] is None

    def test_top_campaign(self, dashboard_service, business, make_campaign):
        make_campaign(business, name='Quiet', status='sent', appointments_booked=1, sent_at=NOW)
        make_campaign(business, name='Winner', status='sent', appointments_booked=7, sent_at=NOW)

        data = dashboard_service.get_overview_metrics(business.id, now=NOW).data

        assert data['top_campaign']['name'] == 'Winner'
        assert data['top_campaign']['bookings'] == 7

    def test_other_business_is_not_counted(self, dashboard_service, business, other_business, add_appointment):
        add_appointment(other_business, 1)

        assert dashboard_service.get_overview_metrics(business.id, now=NOW).data['appointments_30d'] == 0


class TestAudienceOverview:

    def test_segments_and_campaign_statuses(self, dashboard_service, business, make_client, make_campaign):
        make_client(business, last_visit_days=45, tags=['vip'])
        make_client(business, last_visit_days=2)
        make_campaign(business)
        make_campaign(business, status='sent')

        data = dashboard_service.get_audience_overview(business.id).data

        assert data['total_clients'] == 2
        assert data['segments']['all'] == 2
        assert data['segments']['inactive-30'] == 1
        assert data['segments']['high-spend'] == 1
        assert data['campaigns_by_status'] == {'draft': 1, 'scheduled': 0, 'sending': 0, 'sent': 1}
