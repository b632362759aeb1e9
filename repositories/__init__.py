"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import (
    BaseRepository,
    PaginationParams,
    PaginatedResult,
    SortOrder
)
from .client_repository import ClientRepository
from .campaign_repository import CampaignRepository
from .campaign_recipient_repository import CampaignRecipientRepository
from .appointment_repository import AppointmentRepository
from .integration_repository import IntegrationRepository
from .business_profile_repository import BusinessProfileRepository
from .user_repository import UserRepository

__all__ = [
    'BaseRepository',
    'PaginationParams',
    'PaginatedResult',
    'SortOrder',
    'ClientRepository',
    'CampaignRepository',
    'CampaignRecipientRepository',
    'AppointmentRepository',
    'IntegrationRepository',
    'BusinessProfileRepository',
    'UserRepository'
]
