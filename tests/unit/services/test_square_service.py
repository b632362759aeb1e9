"""
Tests for the SquareService API client
"""

from datetime import datetime, timezone

import pytest
import requests
from unittest.mock import Mock, patch

from services.common.errors import ExternalServiceError
from services.square_service import SquareService


def response(status_code=200, payload=None):
    mock = Mock(status_code=status_code, content=b'{}' if payload is not None else b'')
    mock.json.return_value = payload or {}
    return mock


@pytest.fixture
def square():
    return SquareService('sq-client', 'sq-secret', 'https://app.example/integrations/square/callback',
                         environment='sandbox', timeout=5.0)


class TestSquareService:

    def test_sandbox_base_url(self, square):
        assert square.base_url == 'https://connect.squareupsandbox.com'

    def test_authorization_url(self, square):
        url = square.authorization_url('signed-state')

        assert url.startswith('https://connect.squareupsandbox.com/oauth2/authorize?')
        assert 'state=signed-state' in url
        assert 'CUSTOMERS_READ' in url

    @patch('services.square_service.requests.request')
    def test_every_call_carries_timeout(self, mock_request, square):
        mock_request.return_value = response(payload={'locations': [{'id': 'L1'}]})

        locations = square.list_locations('sq-access')

        assert locations == [{'id': 'L1'}]
        kwargs = mock_request.call_args.kwargs
        assert kwargs['timeout'] == 5.0
        assert kwargs['headers']['Authorization'] == 'Bearer sq-access'

    @patch('services.square_service.requests.request')
    def test_pagination_follows_cursor(self, mock_request, square):
        mock_request.side_effect = [
            response(payload={'customers': [{'id': 'C1'}], 'cursor': 'next'}),
            response(payload={'customers': [{'id': 'C2'}]}),
        ]

        customers = square.list_customers('sq-access')

        assert [c['id'] for c in customers] == ['C1', 'C2']
        assert mock_request.call_args_list[1].kwargs['params'] == {'cursor': 'next'}

    @patch('services.square_service.requests.request')
    def test_list_bookings_sends_window(self, mock_request, square):
        mock_request.return_value = response(payload={'bookings': []})
        start = datetime(2025, 5, 16, tzinfo=timezone.utc)
        end = datetime(2025, 6, 15, tzinfo=timezone.utc)

        square.list_bookings('sq-access', 'L1', start, end)

        params = mock_request.call_args.kwargs['params']
        assert params['location_id'] == 'L1'
        assert params['start_at_min'] == start.isoformat()

    @patch('services.square_service.requests.request')
    def test_http_error_raises(self, mock_request, square):
        mock_request.return_value = response(status_code=401, payload={})

        with pytest.raises(ExternalServiceError, match='401'):
            square.exchange_code('bad-code')

    @patch('services.square_service.requests.request')
    def test_network_error_raises(self, mock_request, square):
        mock_request.side_effect = requests.Timeout('read timed out')

        with pytest.raises(ExternalServiceError):
            square.refresh_access_token('sq-refresh')

    @patch('services.square_service.requests.request')
    def test_revoke_failure_returns_false(self, mock_request, square):
        mock_request.return_value = response(status_code=500, payload={})

        assert square.revoke_token('sq-access') is False
        assert mock_request.call_args.kwargs['headers']['Authorization'] == 'Client sq-secret'

    def test_pick_primary_location(self):
        locations = [{'id': 'L0', 'status': 'INACTIVE'}, {'id': 'L1', 'status': 'ACTIVE'}]

        assert SquareService.pick_primary_location(locations)['id'] == 'L1'
        assert SquareService.pick_primary_location([{'id': 'L0'}])['id'] == 'L0'
        assert SquareService.pick_primary_location([]) is None
