"""
Tests for CampaignService: CRUD, content generation, scheduling and sending
"""

import time
from datetime import timedelta
from types import SimpleNamespace

import pytest
from unittest.mock import Mock, call
from sqlalchemy.exc import SQLAlchemyError

from services.campaign_service import CampaignService, SendReport
from services.common.errors import IntegrationTokenExpired, ExternalServiceError
from services.segmentation_service import SegmentationService
from utils.datetime_utils import utc_now


@pytest.fixture
def token_lifecycle():
    service = Mock()
    service.get_valid_access_token.return_value = 'gmail-access'
    return service


@pytest.fixture
def campaign_service(app, mock_gmail, mock_ai, token_lifecycle):
    return CampaignService(
        campaign_repository=app.services.get('campaign_repository'),
        client_repository=app.services.get('client_repository'),
        recipient_repository=app.services.get('campaign_recipient_repository'),
        integration_repository=app.services.get('integration_repository'),
        profile_repository=app.services.get('business_profile_repository'),
        segmentation_service=SegmentationService(),
        token_lifecycle_service=token_lifecycle,
        gmail_service=mock_gmail,
        ai_service=mock_ai,
        max_workers=4,
        send_timeout=2.0,
    )


@pytest.fixture
def gmail_connected(business, make_integration):
    return make_integration(business, provider='gmail',
                            settings={'kind': 'gmail', 'email_address': 'owner@brightsmile.example'})


class TestCampaignCrud:

    def test_create_campaign_starts_as_empty_draft(self, campaign_service, business):
        result = campaign_service.create_campaign(business.id, '  Summer Whitening  ',
                                                  audience={'segment_type': 'high-value'})

        assert result.is_success
        campaign = result.data
        assert campaign.name == 'Summer Whitening'
        assert campaign.status == 'draft'
        assert campaign.recipient_count == 0
        assert campaign.audience == {'segmentType': 'high-value', 'clientIds': [], 'filters': {}}

    def test_create_campaign_requires_name(self, campaign_service, business):
        result = campaign_service.create_campaign(business.id, '   ')

        assert result.is_failure
        assert result.error_code == 'VALIDATION_ERROR'

    def test_campaigns_are_scoped_to_their_business(self, campaign_service, business, other_business,
                                                    make_campaign):
        campaign = make_campaign(business)

        result = campaign_service.get_campaign(other_business.id, campaign.id)

        assert result.is_failure
        assert result.error_code == 'NOT_FOUND'

    def test_update_draft(self, campaign_service, business, make_campaign):
        campaign = make_campaign(business)

        result = campaign_service.update_campaign(business.id, campaign.id, {
            'subject': 'New subject', 'audience': 'inactive-60', 'status': 'sent'
        })

        assert result.is_success
        assert campaign.subject == 'New subject'
        assert campaign.audience['segmentType'] == 'inactive-60'
        # Status is not an editable field
        assert campaign.status == 'draft'

    @pytest.mark.parametrize('status', ['sending', 'sent'])
    def test_update_rejected_once_sending(self, campaign_service, business, make_campaign, status):
        campaign = make_campaign(business, status=status)

        result = campaign_service.update_campaign(business.id, campaign.id, {'subject': 'Too late'})

        assert result.error_code == 'INVALID_STATE'
        assert campaign.subject != 'Too late'

    def test_list_campaigns_filters_by_status(self, campaign_service, business, make_campaign):
        make_campaign(business, name='Draft one')
        make_campaign(business, name='Sent one', status='sent')

        result = campaign_service.list_campaigns(business.id, status='sent')

        assert [c.name for c in result.data] == ['Sent one']

    def test_delete_draft(self, campaign_service, business, make_campaign):
        campaign = make_campaign(business)

        assert campaign_service.delete_campaign(business.id, campaign.id).is_success
        assert campaign_service.get_campaign(business.id, campaign.id).error_code == 'NOT_FOUND'

    def test_delete_sent_requires_confirmation(self, campaign_service, business, make_campaign):
        campaign = make_campaign(business, status='sent', recipient_count=12)

        refused = campaign_service.delete_campaign(business.id, campaign.id)
        confirmed = campaign_service.delete_campaign(business.id, campaign.id, confirm=True)

        assert refused.error_code == 'CONFIRMATION_REQUIRED'
        assert confirmed.is_success

    def test_delete_while_sending_is_refused(self, campaign_service, business, make_campaign):
        campaign = make_campaign(business, status='sending')

        assert campaign_service.delete_campaign(business.id, campaign.id, confirm=True).error_code == 'INVALID_STATE'


class TestContentGeneration:

    def test_generate_content_stores_on_draft(self, campaign_service, business, make_campaign, mock_ai):
        campaign = make_campaign(business, subject=None, body=None,
                                 audience={'segmentType': 'inactive-60', 'clientIds': [], 'filters': {}})

        result = campaign_service.generate_content(business.id, {'campaign_type': 'win-back'},
                                                   campaign_id=campaign.id)

        assert result.is_success
        assert campaign.subject == 'We saved you a chair'
        assert campaign.status == 'draft'
        request = mock_ai.generate_campaign_content.call_args[0][0]
        assert request.business_type == 'Healthcare'
        assert request.target_audience == "clients who haven't visited in 60 days"
        assert request.business_profile['business_name'] == 'Bright Smile Dental'

    def test_preview_without_campaign(self, campaign_service, business, mock_ai):
        result = campaign_service.generate_content(business.id, {
            'business_type': 'Dental clinic',
            'campaign_type': 'seasonal',
            'target_audience': 'families',
            'seasonal_theme': 'Back to School',
        })

        assert result.data == mock_ai.generate_campaign_content.return_value
        request = mock_ai.generate_campaign_content.call_args[0][0]
        assert request.seasonal_theme == 'Back to School'

    def test_campaign_type_is_required(self, campaign_service, business):
        result = campaign_service.generate_content(business.id, {})
        assert result.error_code == 'VALIDATION_ERROR'

    def test_failed_generation_keeps_existing_content(self, campaign_service, business, make_campaign, mock_ai):
        campaign = make_campaign(business)
        mock_ai.generate_campaign_content.side_effect = ExternalServiceError('gemini', 'empty response')

        result = campaign_service.generate_content(business.id, {'campaign_type': 'promotional'},
                                                   campaign_id=campaign.id)

        assert result.error_code == 'EXTERNAL_SERVICE_ERROR'
        assert campaign.subject == 'Your smile deserves a spring refresh'

    def test_sent_campaign_content_is_frozen(self, campaign_service, business, make_campaign):
        campaign = make_campaign(business, status='sent')

        result = campaign_service.generate_content(business.id, {'campaign_type': 'promotional'},
                                                   campaign_id=campaign.id)

        assert result.error_code == 'INVALID_STATE'


class TestScheduling:

    def test_schedule_draft_for_future(self, campaign_service, business, make_campaign):
        campaign = make_campaign(business)
        when = utc_now() + timedelta(days=2)

        result = campaign_service.schedule_campaign(business.id, campaign.id, when)

        assert result.is_success
        assert campaign.status == 'scheduled'

    def test_schedule_in_past_is_rejected(self, campaign_service, business, make_campaign):
        campaign = make_campaign(business)

        result = campaign_service.schedule_campaign(business.id, campaign.id, utc_now() - timedelta(minutes=1))

        assert result.error_code == 'VALIDATION_ERROR'
        assert campaign.status == 'draft'

    def test_schedule_without_content_is_rejected(self, campaign_service, business, make_campaign):
        campaign = make_campaign(business, body=None)

        result = campaign_service.schedule_campaign(business.id, campaign.id, utc_now() + timedelta(days=1))

        assert result.error_code == 'VALIDATION_ERROR'


class TestSendCampaign:

    def test_send_to_inactive_segment(self, campaign_service, business, make_client, mock_gmail,
                                      gmail_connected):
        never = make_client(business, name='Ana', email='ana@example.com', last_visit_days=None)
        lapsed = make_client(business, name='Ben', email='ben@example.com', last_visit_days=45)
        make_client(business, name='Cat', email='cat@example.com', last_visit_days=2)
        campaign = campaign_service.create_campaign(
            business.id, 'We miss you', audience={'segmentType': 'inactive-30'},
            subject='We miss you', body='<p>Come back soon</p>',
        ).data

        result = campaign_service.send_campaign(business.id, campaign.id)

        assert result.is_success
        report = result.data
        assert isinstance(report, SendReport)
        assert report.recipient_count == 2
        assert report.sent == 2 and report.failed == 0
        assert campaign.status == 'sent'
        assert campaign.recipient_count == 2
        assert campaign.sent_at is not None

        sent_to = {call[0][1].to for call in mock_gmail.send_email.call_args_list}
        assert sent_to == {never.email, lapsed.email}
        message = mock_gmail.send_email.call_args_list[0][0][1]
        assert message.sender == 'owner@brightsmile.example'
        assert mock_gmail.send_email.call_args_list[0][0][0] == 'gmail-access'

    def test_every_attempt_is_recorded_in_ledger(self, campaign_service, business, make_client,
                                                 make_campaign, mock_gmail, gmail_connected):
        good = make_client(business, email='good@example.com')
        bad = make_client(business, email='bad@example.com')
        mock_gmail.send_email.side_effect = lambda token, message, timeout=None: (
            (True, 'gm-1') if message.to == 'good@example.com' else (False, 'Gmail API error 400')
        )
        campaign = make_campaign(business)

        campaign_service.send_campaign(business.id, campaign.id)
        ledger = campaign_service.get_recipient_ledger(business.id, campaign.id)

        outcomes = {row.client_id: (row.outcome, row.provider_message_id, row.error) for row in ledger.data}
        assert outcomes[good.id] == ('sent', 'gm-1', None)
        assert outcomes[bad.id] == ('failed', None, 'Gmail API error 400')
        assert ledger.metadata['counts'] == {'sent': 1, 'failed': 1}

    def test_all_deliveries_failing_still_marks_sent(self, campaign_service, business, make_client,
                                                     make_campaign, mock_gmail, gmail_connected):
        for _ in range(3):
            make_client(business)
        mock_gmail.send_email.side_effect = RuntimeError('connection reset')
        campaign = make_campaign(business)

        result = campaign_service.send_campaign(business.id, campaign.id)

        assert result.is_success
        assert result.data.failed == 3
        assert all('connection reset' in failure.error for failure in result.data.failures)
        assert campaign.status == 'sent'
        assert campaign.recipient_count == 3

    def test_slow_delivery_is_waited_for(self, campaign_service, business, make_client,
                                         make_campaign, mock_gmail, gmail_connected):
        make_client(business, email='slow@example.com')
        make_client(business, email='fast@example.com')
        delivered = []

        def send(token, message, timeout=None):
            if message.to == 'slow@example.com':
                time.sleep(0.3)
            delivered.append((message.to, timeout))
            return True, f"gm-{message.to}"

        mock_gmail.send_email.side_effect = send
        campaign_service.send_timeout = 0.2
        campaign = make_campaign(business)

        report = campaign_service.send_campaign(business.id, campaign.id).data

        # Every call finished before the campaign was marked sent
        assert sorted(delivered) == [('fast@example.com', 0.2), ('slow@example.com', 0.2)]
        assert (report.sent, report.failed) == (2, 0)
        assert campaign.status == 'sent'

    def test_timed_out_call_is_ledgered_as_failed(self, campaign_service, business, make_client,
                                                  make_campaign, mock_gmail, gmail_connected):
        slow = make_client(business, email='slow@example.com')
        mock_gmail.send_email.side_effect = lambda token, message, timeout=None: (
            (False, 'Failed to send email: timed out') if message.to == 'slow@example.com' else (True, 'gm-1')
        )
        campaign = make_campaign(business)

        campaign_service.send_campaign(business.id, campaign.id)

        ledger = {row.client_id: row for row in campaign_service.get_recipient_ledger(business.id, campaign.id).data}
        assert ledger[slow.id].outcome == 'failed'
        assert 'timed out' in ledger[slow.id].error
        assert campaign.status == 'sent'

    def test_empty_audience_sends_nothing(self, campaign_service, business, make_campaign, mock_gmail,
                                          gmail_connected):
        campaign = make_campaign(business)

        result = campaign_service.send_campaign(business.id, campaign.id)

        assert result.data.recipient_count == 0
        assert campaign.status == 'sent'
        mock_gmail.send_email.assert_not_called()

    def test_send_without_gmail_requires_reconnect(self, campaign_service, business, make_client,
                                                   make_campaign, mock_gmail):
        make_client(business)
        campaign = make_campaign(business)

        result = campaign_service.send_campaign(business.id, campaign.id)

        assert result.error_code == 'RECONNECT_REQUIRED'
        assert campaign.status == 'draft'
        mock_gmail.send_email.assert_not_called()

    def test_expired_credentials_leave_campaign_unchanged(self, campaign_service, business, make_client,
                                                          make_campaign, token_lifecycle, gmail_connected):
        make_client(business)
        token_lifecycle.get_valid_access_token.side_effect = IntegrationTokenExpired('gmail')
        campaign = make_campaign(business, status='scheduled', scheduled_at=utc_now() - timedelta(minutes=1))

        result = campaign_service.send_campaign(business.id, campaign.id)

        assert result.error_code == 'RECONNECT_REQUIRED'
        assert campaign.status == 'scheduled'
        assert campaign.recipient_count == 0

    def test_sent_campaign_cannot_be_resent(self, campaign_service, business, make_campaign, gmail_connected):
        campaign = make_campaign(business, status='sent')

        assert campaign_service.send_campaign(business.id, campaign.id).error_code == 'INVALID_STATE'

    def test_send_requires_content(self, campaign_service, business, make_campaign, gmail_connected):
        campaign = make_campaign(business, subject=None)

        assert campaign_service.send_campaign(business.id, campaign.id).error_code == 'VALIDATION_ERROR'


class TestInterruptedSend:
    """A failure after the campaign entered sending never leaves it stuck there"""

    @pytest.fixture
    def stub_campaign(self):
        return SimpleNamespace(id=11, user_id=1, status='draft', subject='Hello', body='<p>Hi</p>',
                               audience={'segmentType': 'all', 'clientIds': [], 'filters': {}})

    @pytest.fixture
    def repos(self, stub_campaign):
        campaigns = Mock()
        campaigns.get_owned.return_value = stub_campaign
        campaigns.update.side_effect = lambda entity, **fields: [setattr(entity, k, v) for k, v in fields.items()]
        clients = Mock()
        clients.find_by_business.return_value = [
            SimpleNamespace(id=1, email='a@example.com', name='Ann', tags=[], last_visit=None, created_at=None),
            SimpleNamespace(id=2, email='b@example.com', name='Bo', tags=[], last_visit=None, created_at=None),
        ]
        integrations = Mock()
        integrations.find_active.return_value = SimpleNamespace(
            provider='gmail', settings={'kind': 'gmail', 'email_address': 'owner@brightsmile.example'})
        return SimpleNamespace(campaigns=campaigns, clients=clients, recipients=Mock(), integrations=integrations)

    @pytest.fixture
    def service(self, repos, mock_gmail, mock_ai):
        token_lifecycle = Mock()
        token_lifecycle.get_valid_access_token.return_value = 'gmail-access'
        return CampaignService(
            campaign_repository=repos.campaigns,
            client_repository=repos.clients,
            recipient_repository=repos.recipients,
            integration_repository=repos.integrations,
            profile_repository=Mock(),
            segmentation_service=SegmentationService(),
            token_lifecycle_service=token_lifecycle,
            gmail_service=mock_gmail,
            ai_service=mock_ai,
            max_workers=2,
        )

    def test_ledger_write_failure_still_marks_sent(self, service, repos, stub_campaign, mock_gmail):
        repos.recipients.record_attempts.side_effect = SQLAlchemyError('disk full')

        result = service.send_campaign(1, stub_campaign.id)

        assert result.error_code == 'SEND_INCOMPLETE'
        assert result.metadata == {'delivered': True, 'status': 'sent'}
        assert stub_campaign.status == 'sent'
        assert stub_campaign.recipient_count == 2
        assert mock_gmail.send_email.call_count == 2
        repos.campaigns.rollback.assert_called_once()
        assert repos.campaigns.method_calls[-1] == call.commit()

    def test_failure_before_delivery_restores_status(self, service, repos, stub_campaign, mock_gmail, mocker):
        mocker.patch.object(service, '_deliver_all', side_effect=RuntimeError('pool shut down'))

        result = service.send_campaign(1, stub_campaign.id)

        assert result.error_code == 'SEND_INCOMPLETE'
        assert result.metadata == {'delivered': False, 'status': 'draft'}
        assert stub_campaign.status == 'draft'
        repos.recipients.record_attempts.assert_not_called()
        repos.campaigns.rollback.assert_called_once()
        assert repos.campaigns.method_calls[-1] == call.commit()

    def test_scheduled_campaign_returns_to_scheduled(self, service, repos, stub_campaign, mocker):
        stub_campaign.status = 'scheduled'
        mocker.patch.object(service, '_deliver_all', side_effect=RuntimeError('pool shut down'))

        service.send_campaign(1, stub_campaign.id)

        assert stub_campaign.status == 'scheduled'


class TestDispatchDueCampaigns:

    def test_only_due_campaigns_are_sent(self, campaign_service, business, make_client, make_campaign,
                                         gmail_connected):
        make_client(business)
        due = make_campaign(business, name='Due', status='scheduled',
                            scheduled_at=utc_now() - timedelta(minutes=5))
        later = make_campaign(business, name='Later', status='scheduled',
                              scheduled_at=utc_now() + timedelta(days=1))

        summary = campaign_service.dispatch_due_campaigns()

        assert summary['due'] == 1
        assert summary['sent'] == 1
        assert due.status == 'sent'
        assert later.status == 'scheduled'

    def test_one_failure_does_not_stop_others(self, campaign_service, business, other_business,
                                              make_client, make_campaign, gmail_connected):
        make_client(business)
        past = utc_now() - timedelta(minutes=5)
        # other_business has no Gmail connected
        blocked = make_campaign(other_business, status='scheduled', scheduled_at=past - timedelta(minutes=1))
        ok = make_campaign(business, status='scheduled', scheduled_at=past)

        summary = campaign_service.dispatch_due_campaigns()

        assert summary['sent'] == 1
        assert summary['failed'] == 1
        assert summary['errors'][0]['campaign_id'] == blocked.id
        assert summary['errors'][0]['code'] == 'RECONNECT_REQUIRED'
        assert ok.status == 'sent'
