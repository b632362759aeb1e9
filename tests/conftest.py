# tests/conftest.py
"""
Shared fixtures for the pytest suite.

The app is built once per module against in-memory SQLite. Each test runs
inside a connection-level transaction that is rolled back afterwards, and
the service registry is pointed at that test session so services built
during the test see the same data.
"""
import os
from datetime import timedelta

import pytest
from unittest.mock import Mock

# Task modules build an app at import time, before any fixture runs
os.environ.setdefault('FLASK_ENV', 'testing')

from app import create_app  # noqa: E402
from extensions import db
from crm_database import User, BusinessProfile, Client, Campaign, Integration
from services.registry import ServiceLifecycle
from utils.datetime_utils import utc_now


@pytest.fixture(scope='module')
def app():
    """A Flask application with the testing config and all tables created"""
    os.environ['FLASK_ENV'] = 'testing'

    app = create_app(config_name='testing')

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """
    A session bound to a connection whose transaction is rolled back after
    the test. SQLite cannot nest transactions, so commit() only flushes.
    """
    with app.app_context():
        connection = db.engine.connect()
        transaction = connection.begin()

        from sqlalchemy.orm import scoped_session, sessionmaker
        session = scoped_session(sessionmaker(bind=connection))

        def fake_commit():
            """Replace commit with flush to keep changes in the transaction"""
            session.flush()

        session.commit = fake_commit

        old_session = db.session
        db.session = session

        try:
            yield session
        finally:
            session.close()
            if transaction.is_active:
                transaction.rollback()
            connection.close()
            db.session = old_session
            session.remove()


@pytest.fixture(autouse=True)
def ensure_test_session_in_services(app, db_session):
    """Rebuild every service against the test session"""
    with app.app_context():
        app.services.clear_all_instances()
        app.services.register_factory('db_session', lambda: db_session, lifecycle=ServiceLifecycle.SCOPED)
        app.services.clear_dependency_chain('db_session')
        yield
        app.services.clear_all_instances()


# --- Data helpers ---

@pytest.fixture
def business(db_session):
    """An active business with a complete profile"""
    user = User(email='owner@brightsmile.example', business_name='Bright Smile Dental', is_active=True)
    db_session.add(user)
    db_session.flush()
    db_session.add(BusinessProfile(
        user_id=user.id,
        business_name='Bright Smile Dental',
        business_category='Healthcare',
        location='Portland, OR',
        business_email='hello@brightsmile.example',
        brand_voice='friendly',
        short_business_bio='Family dentistry since 1998.',
        products_services='Cleanings, whitening, implants',
    ))
    db_session.flush()
    return user


@pytest.fixture
def other_business(db_session):
    user = User(email='owner@fitlab.example', business_name='FitLab', is_active=True)
    db_session.add(user)
    db_session.flush()
    return user


@pytest.fixture
def make_client(db_session):
    """Factory for clients; ``last_visit_days``/``created_days`` are days before now"""
    counter = {'n': 0}

    def _make(business, name=None, email=None, last_visit_days=None, created_days=None, tags=None, **kwargs):
        counter['n'] += 1
        now = utc_now()
        client = Client(
            user_id=business.id,
            name=name or f"Client {counter['n']}",
            email=email or f"client{counter['n']}@example.com",
            last_visit=now - timedelta(days=last_visit_days) if last_visit_days is not None else None,
            created_at=now - timedelta(days=created_days if created_days is not None else 90),
            tags=tags or [],
            **kwargs
        )
        db_session.add(client)
        db_session.flush()
        return client

    return _make


@pytest.fixture
def make_campaign(db_session):
    def _make(business, **kwargs):
        defaults = {
            'name': 'Spring Cleaning Special',
            'subject': 'Your smile deserves a spring refresh',
            'body': '<p>Book your cleaning this month and save 20%.</p>',
            'audience': {'segmentType': 'all', 'clientIds': [], 'filters': {}},
            'status': 'draft',
            'recipient_count': 0,
        }
        defaults.update(kwargs)
        campaign = Campaign(user_id=business.id, **defaults)
        db_session.add(campaign)
        db_session.flush()
        return campaign

    return _make


@pytest.fixture
def make_integration(db_session):
    def _make(business, provider='gmail', **kwargs):
        defaults = {
            'access_token': 'access-1',
            'refresh_token': 'refresh-1',
            'token_expiry': utc_now() + timedelta(hours=1),
            'is_active': True,
            'settings': {'kind': provider},
        }
        defaults.update(kwargs)
        integration = Integration(user_id=business.id, provider=provider, **defaults)
        db_session.add(integration)
        db_session.flush()
        return integration

    return _make


@pytest.fixture
def mock_gmail():
    """Gmail client double that accepts every message"""
    gmail = Mock()
    gmail.is_configured.return_value = True
    gmail.send_email.side_effect = lambda token, message, timeout=None: (True, f"msg-{message.to}")
    return gmail


@pytest.fixture
def mock_ai():
    ai = Mock()
    ai.generate_campaign_content.return_value = {
        'subject': 'We saved you a chair',
        'body': '<p>It has been a while. Book this week for 15% off.</p>',
    }
    return ai
