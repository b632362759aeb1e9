"""
Domain error taxonomy.

Services raise these internally and convert them to Result failures at their
public boundary, keeping the error code stable for callers.
"""

from typing import Optional, List


class PromoPalError(Exception):
    """Base class for domain errors"""
    code = 'ERROR'

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class ValidationError(PromoPalError):
    """Malformed input to a create/update operation"""
    code = 'VALIDATION_ERROR'


class NotFound(PromoPalError):
    """Referenced entity is absent or not owned by the calling business"""
    code = 'NOT_FOUND'


class IntegrationTokenExpired(PromoPalError):
    """Token refresh failed. The business must reconnect the integration."""
    code = 'RECONNECT_REQUIRED'

    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(message or f"{provider} connection expired, reconnect required")
        self.provider = provider


class ExternalServiceError(PromoPalError):
    """Content generation, mail send or provider API call failed"""
    code = 'EXTERNAL_SERVICE_ERROR'

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class ProfileIncomplete(PromoPalError):
    """Business profile is missing fields required for content generation"""
    code = 'PROFILE_INCOMPLETE'

    def __init__(self, missing_fields: List[str]):
        super().__init__(f"Business profile incomplete, missing: {', '.join(missing_fields)}")
        self.missing_fields = missing_fields
