"""
Token Lifecycle Service
Hands out valid OAuth access tokens for stored integrations, refreshing
expired ones exactly once per expiry and persisting the new grant
"""

import threading
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Any, Optional

import requests

from logging_config import get_logger
from repositories.integration_repository import IntegrationRepository
from services.common.errors import IntegrationTokenExpired, ExternalServiceError
from utils.datetime_utils import utc_now, ensure_utc, utc_from_timestamp, parse_iso_datetime

logger = get_logger(__name__)

# Lifetime assumed when a provider omits the expiry of a fresh token
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


@dataclass
class TokenGrant:
    """Provider-neutral result of a token exchange or refresh"""
    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]


def _require_access_token(payload: Dict[str, Any]) -> str:
    access_token = payload.get('access_token')
    if not access_token:
        raise ValueError("Token payload has no access_token")
    return access_token


def absolute_expiry_grant(payload: Dict[str, Any], now: datetime) -> TokenGrant:
    """
    Normalize a payload that carries an absolute expiry.

    ``expiry`` may be a datetime, an ISO-8601 string or epoch milliseconds.
    A missing expiry defaults to one hour from ``now``.
    """
    expiry = payload.get('expiry')
    if isinstance(expiry, datetime):
        expires_at = ensure_utc(expiry)
    elif isinstance(expiry, (int, float)):
        expires_at = utc_from_timestamp(expiry / 1000.0)
    elif isinstance(expiry, str):
        expires_at = parse_iso_datetime(expiry)
        if expires_at is None:
            raise ValueError(f"Unparseable token expiry: {expiry!r}")
    else:
        expires_at = ensure_utc(now) + DEFAULT_TOKEN_LIFETIME

    return TokenGrant(
        access_token=_require_access_token(payload),
        refresh_token=payload.get('refresh_token'),
        expires_at=expires_at,
    )


def relative_expiry_grant(payload: Dict[str, Any], now: datetime) -> TokenGrant:
    """
    Normalize a payload that carries a lifetime in seconds (``expires_in``).

    The lifetime is turned into an absolute timestamp against ``now``. An
    absolute ``expires_at`` is accepted when no lifetime is present.
    """
    expires_in = payload.get('expires_in')
    if expires_in is not None:
        expires_at = ensure_utc(now) + timedelta(seconds=int(expires_in))
    elif payload.get('expires_at'):
        expires_at = parse_iso_datetime(payload['expires_at'])
        if expires_at is None:
            raise ValueError(f"Unparseable token expiry: {payload['expires_at']!r}")
    else:
        expires_at = None

    return TokenGrant(
        access_token=_require_access_token(payload),
        refresh_token=payload.get('refresh_token'),
        expires_at=expires_at,
    )


@dataclass
class TokenProvider:
    """
    How to refresh one provider's tokens.

    Attributes:
        name: Provider key ('gmail', 'square')
        refresh: Calls the provider with a refresh token, returns its raw payload
        normalize: Turns that payload into a TokenGrant
    """
    name: str
    refresh: Callable[[str], Dict[str, Any]]
    normalize: Callable[[Dict[str, Any], datetime], TokenGrant]


# Errors a refresh call may raise that mean "this refresh failed"
REFRESH_ERRORS = (
    ExternalServiceError,
    requests.RequestException,
    KeyError,
    ValueError,
    TypeError,
)


class TokenLifecycleService:
    """
    Single entry point for "give me a usable access token".

    Refresh is a critical section per integration row: an in-process lock
    serializes threads and the row is re-read under SELECT ... FOR UPDATE to
    serialize processes. The expiry is re-checked after acquiring both, so a
    request that waited behind a refresh reuses its result instead of
    refreshing again.
    """

    # Entries live only while some caller holds the lock
    _locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
    _locks_guard = threading.Lock()

    def __init__(self,
                 integration_repository: IntegrationRepository,
                 providers: Dict[str, TokenProvider],
                 clock: Callable[[], datetime] = utc_now):
        self.integration_repository = integration_repository
        self.providers = providers
        self.clock = clock

    @classmethod
    def _lock_for(cls, integration_id: int) -> threading.Lock:
        with cls._locks_guard:
            lock = cls._locks.get(integration_id)
            if lock is None:
                lock = cls._locks[integration_id] = threading.Lock()
            return lock

    @staticmethod
    def is_expired(integration, now: datetime) -> bool:
        """No recorded expiry means the token does not expire"""
        expiry = ensure_utc(integration.token_expiry)
        return expiry is not None and ensure_utc(now) >= expiry

    def get_valid_access_token(self, integration) -> str:
        """
        Return a usable access token for ``integration``.

        Args:
            integration: An Integration row

        Returns:
            The stored access token, or a freshly refreshed one

        Raises:
            IntegrationTokenExpired: The refresh failed; stored tokens are unchanged
        """
        if not self.is_expired(integration, self.clock()):
            return integration.access_token

        provider = self.providers.get(integration.provider)
        if provider is None:
            raise IntegrationTokenExpired(integration.provider,
                                          f"No token refresher for provider {integration.provider}")

        with self._lock_for(integration.id):
            locked = self.integration_repository.get_for_update(integration.id) or integration
            now = self.clock()

            if not self.is_expired(locked, now):
                # Refreshed by a concurrent request while we waited
                self.integration_repository.commit()
                return locked.access_token

            refresh_token = locked.refresh_token
            if not refresh_token:
                self.integration_repository.rollback()
                raise IntegrationTokenExpired(provider.name, f"{provider.name} token expired and no refresh token is stored")

            try:
                grant = provider.normalize(provider.refresh(refresh_token), now)
            except REFRESH_ERRORS as e:
                self.integration_repository.rollback()
                logger.warning("Token refresh failed",
                               provider=provider.name,
                               integration_id=integration.id,
                               error=str(e))
                raise IntegrationTokenExpired(provider.name) from e

            self.integration_repository.update_tokens(
                locked,
                access_token=grant.access_token,
                # Providers that do not rotate refresh tokens omit them
                refresh_token=grant.refresh_token or refresh_token,
                token_expiry=grant.expires_at,
            )
            self.integration_repository.commit()

            logger.info("Refreshed integration token",
                        provider=provider.name,
                        integration_id=integration.id,
                        expires_at=grant.expires_at.isoformat() if grant.expires_at else None)
            return grant.access_token
