"""
Service layer enums
These match the string values stored in the database but allow services
to work without importing database models
"""

from enum import Enum


class CampaignStatus(str, Enum):
    """Campaign lifecycle states. Transitions never leave SENT."""
    DRAFT = 'draft'
    SCHEDULED = 'scheduled'
    SENDING = 'sending'
    SENT = 'sent'


class IntegrationProvider(str, Enum):
    """External accounts a business can connect"""
    GMAIL = 'gmail'
    SQUARE = 'square'


class BrandVoice(str, Enum):
    FRIENDLY = 'friendly'
    PROFESSIONAL = 'professional'
    PLAYFUL = 'playful'
    SOPHISTICATED = 'sophisticated'


class RecipientOutcome(str, Enum):
    SENT = 'sent'
    FAILED = 'failed'


class AppointmentStatus(str, Enum):
    BOOKED = 'booked'
    PENDING = 'pending'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class AutoCampaignCategory(str, Enum):
    """Categories the auto-campaign scheduler rotates through"""
    WIN_BACK = 'win-back'
    SEASONAL_PROMO = 'seasonal-promo'
    LOYALTY_REWARD = 'loyalty-reward'
    NEW_CLIENT_WELCOME = 'new-client-welcome'
