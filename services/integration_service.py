"""
IntegrationService - connect and disconnect a business's Gmail and Square accounts
"""

from datetime import datetime
from typing import Dict, Any, List, Callable, Optional

from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from logging_config import get_logger, security_logger
from repositories.integration_repository import IntegrationRepository
from services.common.errors import ValidationError, NotFound, ExternalServiceError
from services.common.integration_settings import (
    MailProviderSettings, SchedulingProviderSettings, settings_from_dict
)
from services.common.result import Result
from services.enums import IntegrationProvider
from services.token_lifecycle_service import absolute_expiry_grant, relative_expiry_grant
from utils.datetime_utils import utc_now, ensure_utc

logger = get_logger(__name__)

STATE_SALT = 'promopal-oauth-state'


class IntegrationService:
    """
    OAuth connect/disconnect flows.

    The OAuth ``state`` is a signed, time-limited token carrying the business
    id and provider, so a callback can neither be forged for another business
    nor replayed after ``state_max_age`` seconds.
    """

    def __init__(self,
                 integration_repository: IntegrationRepository,
                 gmail_service,
                 square_service,
                 secret_key: str,
                 state_max_age: int = 600,
                 scheduling_sync_service=None,
                 clock: Callable[[], datetime] = utc_now):
        self.integration_repository = integration_repository
        self.gmail_service = gmail_service
        self.square_service = square_service
        self.state_max_age = state_max_age
        self.scheduling_sync_service = scheduling_sync_service
        self.clock = clock
        self._serializer = URLSafeTimedSerializer(secret_key, salt=STATE_SALT)

    def _client_for(self, provider: str):
        if provider == IntegrationProvider.GMAIL.value:
            return self.gmail_service
        if provider == IntegrationProvider.SQUARE.value:
            return self.square_service
        raise ValidationError(f"Unknown integration provider: {provider}")

    # OAuth state

    def make_state(self, business_id: int, provider: str) -> str:
        return self._serializer.dumps({'business_id': business_id, 'provider': provider})

    def verify_state(self, state: Optional[str], provider: str) -> int:
        """
        Check a callback's state and return the business id it was issued for.

        Raises:
            ValidationError: Missing, tampered, expired or issued for another provider
        """
        if not state:
            security_logger.log_oauth_state_rejected(provider, 'missing')
            raise ValidationError("Missing OAuth state")
        try:
            data = self._serializer.loads(state, max_age=self.state_max_age)
        except SignatureExpired:
            security_logger.log_oauth_state_rejected(provider, 'expired')
            raise ValidationError("OAuth state expired, please try connecting again")
        except BadSignature:
            security_logger.log_oauth_state_rejected(provider, 'bad_signature')
            raise ValidationError("Invalid OAuth state")

        if not isinstance(data, dict) or data.get('provider') != provider or not data.get('business_id'):
            security_logger.log_oauth_state_rejected(provider, 'provider_mismatch')
            raise ValidationError("Invalid OAuth state")
        return int(data['business_id'])

    # Connect

    def build_authorization_url(self, business_id: int, provider: str) -> Result:
        try:
            client = self._client_for(provider)
        except ValidationError as e:
            return Result.from_error(e)
        if not client.is_configured():
            return Result.failure(f"{provider} integration is not configured", code='NOT_CONFIGURED')
        return Result.success(client.authorization_url(self.make_state(business_id, provider)))

    def _connect_gmail(self, code: str, now: datetime):
        grant = absolute_expiry_grant(self.gmail_service.exchange_code(code), now)
        settings = MailProviderSettings(email_address=self.gmail_service.get_profile_email(grant.access_token))
        return grant, settings

    def _connect_square(self, code: str, now: datetime):
        payload = self.square_service.exchange_code(code)
        grant = relative_expiry_grant(payload, now)
        locations = self.square_service.list_locations(grant.access_token)
        primary = self.square_service.pick_primary_location(locations)
        settings = SchedulingProviderSettings(
            merchant_id=payload.get('merchant_id'),
            location_id=primary.get('id') if primary else None,
            locations=[
                {'id': loc.get('id'), 'name': loc.get('name'), 'status': loc.get('status')}
                for loc in locations
            ],
        )
        return grant, settings

    def complete_authorization(self, provider: str, code: Optional[str], state: Optional[str]) -> Result:
        """
        Finish an OAuth callback: verify state, exchange the code and store
        the integration as the single active one for (business, provider).

        For Square an initial customer import runs afterwards; its failure
        does not fail the connection.
        """
        try:
            self._client_for(provider)
            business_id = self.verify_state(state, provider)
            if not code:
                raise ValidationError("Missing authorization code")
        except ValidationError as e:
            return Result.from_error(e)

        now = self.clock()
        try:
            if provider == IntegrationProvider.GMAIL.value:
                grant, settings = self._connect_gmail(code, now)
            else:
                grant, settings = self._connect_square(code, now)
        except ExternalServiceError as e:
            logger.error("OAuth code exchange failed", provider=provider, business_id=business_id, error=str(e))
            return Result.from_error(e)
        except ValueError as e:
            logger.error("Malformed token response", provider=provider, business_id=business_id, error=str(e))
            return Result.from_error(ExternalServiceError(provider, str(e)))

        integration = self.integration_repository.activate(
            user_id=business_id,
            provider=provider,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_expiry=grant.expires_at,
            settings=settings.to_dict(),
        )
        self.integration_repository.commit()
        security_logger.log_integration_change(business_id, provider, 'connected')

        metadata = {}
        if provider == IntegrationProvider.SQUARE.value and self.scheduling_sync_service is not None:
            try:
                metadata['initial_sync'] = self.scheduling_sync_service.sync_customers(business_id, grant.access_token)
            except ExternalServiceError as e:
                logger.warning("Initial Square customer sync failed", business_id=business_id, error=str(e))
                metadata['initial_sync'] = {'error': str(e)}

        return Result.success(integration, metadata=metadata)

    # Disconnect / status

    def disconnect(self, business_id: int, provider: str) -> Result:
        """Best-effort revoke at the provider, then deactivate (rows are kept)"""
        try:
            client = self._client_for(provider)
        except ValidationError as e:
            return Result.from_error(e)

        integration = self.integration_repository.find_active(business_id, provider)
        if integration is None:
            return Result.from_error(NotFound(f"No active {provider} integration"))

        token = integration.refresh_token if provider == IntegrationProvider.GMAIL.value else None
        revoked = client.revoke_token(token or integration.access_token)

        settings = settings_from_dict(provider, integration.settings)
        settings.disconnected_at = self.clock().isoformat()
        self.integration_repository.deactivate(integration, settings.to_dict())
        self.integration_repository.commit()

        security_logger.log_integration_change(business_id, provider, 'disconnected')
        return Result.success({'provider': provider, 'revoked': revoked})

    def list_integrations(self, business_id: int) -> Result:
        """Connection summaries for a business. Tokens are never included."""
        summaries: List[Dict[str, Any]] = []
        for integration in self.integration_repository.find_all_for_user(business_id):
            expiry = ensure_utc(integration.token_expiry)
            summaries.append({
                'id': integration.id,
                'provider': integration.provider,
                'is_active': integration.is_active,
                'connected_at': ensure_utc(integration.created_at).isoformat() if integration.created_at else None,
                'token_expiry': expiry.isoformat() if expiry else None,
                'settings': settings_from_dict(integration.provider, integration.settings).to_dict(),
            })
        return Result.success(summaries)
