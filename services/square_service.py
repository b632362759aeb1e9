"""
SquareService - OAuth and read-only API access to a business's Square account
Handles OAuth 2.0 token exchange plus the customer, location and booking
listings used by scheduling sync
"""

import time
from datetime import datetime
from typing import Dict, Optional, List, Any
from urllib.parse import urlencode

import requests

from logging_config import get_logger, performance_logger
from services.common.errors import ExternalServiceError

logger = get_logger(__name__)

SQUARE_BASE_URLS = {
    'production': "https://connect.squareup.com",
    'sandbox': "https://connect.squareupsandbox.com",
}

SQUARE_SCOPES = [
    "CUSTOMERS_READ",
    "APPOINTMENTS_READ",
    "MERCHANT_PROFILE_READ",
]


class SquareService:
    def __init__(self,
                 client_id: Optional[str],
                 client_secret: Optional[str],
                 redirect_uri: str,
                 environment: str = 'production',
                 api_version: str = '2024-01-17',
                 timeout: float = 10.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.base_url = SQUARE_BASE_URLS.get(environment, SQUARE_BASE_URLS['production'])
        self.api_version = api_version
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            'Square-Version': self.api_version,
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        if access_token:
            headers['Authorization'] = f'Bearer {access_token}'
        return headers

    def _request(self, method: str, path: str, access_token: Optional[str] = None,
                 json: Dict = None, params: Dict = None, headers: Dict = None) -> Dict[str, Any]:
        """Make a Square API call, raising ExternalServiceError on any failure"""
        started = time.monotonic()
        try:
            response = requests.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers or self._headers(access_token),
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalServiceError('square', f"{path} unreachable: {e}") from e

        performance_logger.log_api_call('square', path, (time.monotonic() - started) * 1000,
                                        response.status_code)
        if response.status_code >= 400:
            raise ExternalServiceError('square', f"{path} returned {response.status_code}")
        return response.json() if response.content else {}

    # OAuth

    def authorization_url(self, state: str) -> str:
        params = {
            'client_id': self.client_id,
            'scope': ' '.join(SQUARE_SCOPES),
            'session': 'false',
            'redirect_uri': self.redirect_uri,
            'state': state,
        }
        return f"{self.base_url}/oauth2/authorize?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Returns:
            Raw token payload: access_token, refresh_token, expires_in or
            expires_at, merchant_id
        """
        return self._request('POST', '/oauth2/token', json={
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'code': code,
            'grant_type': 'authorization_code',
            'redirect_uri': self.redirect_uri,
        })

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        return self._request('POST', '/oauth2/token', json={
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'refresh_token': refresh_token,
            'grant_type': 'refresh_token',
        })

    def revoke_token(self, access_token: str) -> bool:
        """Best-effort revoke; failures are logged, never raised"""
        headers = self._headers()
        headers['Authorization'] = f'Client {self.client_secret}'
        try:
            self._request('POST', '/oauth2/revoke', headers=headers, json={
                'client_id': self.client_id,
                'access_token': access_token,
            })
            return True
        except ExternalServiceError as e:
            logger.warning("Square token revoke failed", error=str(e))
            return False

    # Read APIs

    def _paginate(self, path: str, access_token: str, key: str, params: Dict = None) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        params = dict(params or {})
        while True:
            page = self._request('GET', path, access_token=access_token, params=params)
            items.extend(page.get(key, []))
            cursor = page.get('cursor')
            if not cursor:
                return items
            params['cursor'] = cursor

    def list_locations(self, access_token: str) -> List[Dict[str, Any]]:
        return self._request('GET', '/v2/locations', access_token=access_token).get('locations', [])

    def list_customers(self, access_token: str) -> List[Dict[str, Any]]:
        """All customers of the merchant (email_address, given_name, family_name, phone_number, ...)"""
        return self._paginate('/v2/customers', access_token, 'customers')

    def list_bookings(self, access_token: str, location_id: Optional[str],
                      start_at_min: datetime, start_at_max: datetime) -> List[Dict[str, Any]]:
        """Bookings starting within [start_at_min, start_at_max]"""
        params = {
            'start_at_min': start_at_min.isoformat(),
            'start_at_max': start_at_max.isoformat(),
        }
        if location_id:
            params['location_id'] = location_id
        return self._paginate('/v2/bookings', access_token, 'bookings', params=params)

    @staticmethod
    def pick_primary_location(locations: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """First ACTIVE location, else the first one listed"""
        for location in locations:
            if location.get('status') == 'ACTIVE':
                return location
        return locations[0] if locations else None
