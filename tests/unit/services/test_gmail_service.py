"""
Tests for the GmailService client
"""

import base64
from email import message_from_bytes

import pytest
import requests
from unittest.mock import Mock, MagicMock, patch
from googleapiclient.errors import HttpError

from services.common.errors import ExternalServiceError
from services.gmail_service import GmailService, MailMessage


@pytest.fixture
def gmail():
    return GmailService('g-client', 'g-secret', 'https://app.example/integrations/gmail/callback', timeout=7.0)


@pytest.fixture
def message():
    return MailMessage(to='ana@example.com', to_name='Ana Silva', subject='We miss you',
                       body_html='<p>Come back</p>', sender='owner@brightsmile.example')


class TestGmailOAuth:

    def test_authorization_url_requests_offline_access(self, gmail):
        url = gmail.authorization_url('signed-state')

        assert 'access_type=offline' in url
        assert 'prompt=consent' in url
        assert 'state=signed-state' in url

    def test_is_configured(self, gmail):
        assert gmail.is_configured()
        assert not GmailService(None, None, 'x').is_configured()

    @patch('services.gmail_service.requests.post')
    def test_exchange_code_returns_absolute_expiry(self, mock_post, gmail):
        mock_post.return_value = Mock(status_code=200)
        mock_post.return_value.json.return_value = {
            'access_token': 'g-access', 'refresh_token': 'g-refresh', 'expires_in': 3599
        }

        tokens = gmail.exchange_code('code-1')

        assert tokens['access_token'] == 'g-access'
        assert tokens['refresh_token'] == 'g-refresh'
        assert tokens['expiry'] is not None
        assert mock_post.call_args.kwargs['timeout'] == 7.0
        assert mock_post.call_args.kwargs['data']['grant_type'] == 'authorization_code'

    @patch('services.gmail_service.requests.post')
    def test_refresh_without_new_refresh_token(self, mock_post, gmail):
        mock_post.return_value = Mock(status_code=200)
        mock_post.return_value.json.return_value = {'access_token': 'g-access-2', 'expires_in': 3599}

        tokens = gmail.refresh_access_token('g-refresh')

        assert tokens['refresh_token'] is None

    @patch('services.gmail_service.requests.post')
    def test_rejected_refresh_raises(self, mock_post, gmail):
        mock_post.return_value = Mock(status_code=400)

        with pytest.raises(ExternalServiceError, match='400'):
            gmail.refresh_access_token('revoked')

    @patch('services.gmail_service.requests.post')
    def test_unreachable_token_endpoint_raises(self, mock_post, gmail):
        mock_post.side_effect = requests.ConnectionError('dns failure')

        with pytest.raises(ExternalServiceError):
            gmail.exchange_code('code-1')

    @patch('services.gmail_service.requests.post')
    def test_revoke_never_raises(self, mock_post, gmail):
        mock_post.side_effect = requests.Timeout('slow')
        assert gmail.revoke_token('g-refresh') is False


class TestGmailSend:

    def test_raw_message_headers(self, gmail, message):
        raw = gmail.build_raw_message(message)

        parsed = message_from_bytes(base64.urlsafe_b64decode(raw))
        assert parsed['To'] == 'Ana Silva <ana@example.com>'
        assert parsed['From'] == 'owner@brightsmile.example'
        assert parsed['Subject'] == 'We miss you'

    def test_default_sender(self, gmail, message):
        message.sender = None
        parsed = message_from_bytes(base64.urlsafe_b64decode(gmail.build_raw_message(message)))
        assert parsed['From'] == 'PromoPal <noreply@promopal.com>'

    def test_send_success_returns_message_id(self, gmail, message):
        client = MagicMock()
        client.users().messages().send().execute.return_value = {'id': 'gm-123'}

        with patch.object(gmail, '_build_client', return_value=client):
            assert gmail.send_email('g-access', message) == (True, 'gm-123')

    def test_send_http_error_is_reported(self, gmail, message):
        client = MagicMock()
        client.users().messages().send().execute.side_effect = HttpError(Mock(status=403), b'forbidden')

        with patch.object(gmail, '_build_client', return_value=client):
            success, detail = gmail.send_email('g-access', message)

        assert success is False
        assert detail == 'Gmail API error 403'

    def test_send_unexpected_error_is_reported(self, gmail, message):
        with patch.object(gmail, '_build_client', side_effect=OSError('socket closed')):
            success, detail = gmail.send_email('g-access', message)

        assert success is False
        assert 'socket closed' in detail

    def test_profile_email_unreadable(self, gmail):
        with patch.object(gmail, '_build_client', side_effect=OSError('timed out')):
            assert gmail.get_profile_email('g-access') is None

    def test_send_uses_call_timeout(self, gmail, message):
        client = MagicMock()
        client.users().messages().send().execute.return_value = {'id': 'gm-9'}

        with patch.object(gmail, '_build_client', return_value=client) as mock_build:
            gmail.send_email('g-access', message, timeout=0.5)

        mock_build.assert_called_once_with('g-access', timeout=0.5)

    def test_socket_timeout_is_reported_as_failure(self, gmail, message):
        client = MagicMock()
        client.users().messages().send().execute.side_effect = TimeoutError('timed out')

        with patch.object(gmail, '_build_client', return_value=client):
            success, detail = gmail.send_email('g-access', message, timeout=0.5)

        assert success is False
        assert 'timed out' in detail

    @patch('services.gmail_service.build')
    @patch('services.gmail_service.AuthorizedHttp')
    @patch('services.gmail_service.httplib2.Http')
    def test_client_transport_timeout(self, mock_http, mock_authorized, mock_build, gmail):
        gmail._build_client('g-access', timeout=0.5)
        gmail._build_client('g-access')

        assert [call.kwargs['timeout'] for call in mock_http.call_args_list] == [0.5, 7.0]
        assert mock_build.call_args.kwargs['http'] is mock_authorized.return_value
