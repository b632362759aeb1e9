"""
BusinessProfileService - the one-per-business profile used as prompt context
"""

from typing import Optional, Dict, Any, List

from logging_config import get_logger
from repositories.business_profile_repository import BusinessProfileRepository
from services.common.errors import ValidationError
from services.common.result import Result
from services.enums import BrandVoice
from services.client_service import is_valid_email

logger = get_logger(__name__)

BUSINESS_CATEGORIES = [
    'Healthcare',
    'Fitness & Wellness',
    'Beauty & Salon',
    'Restaurant & Food',
    'Retail',
    'Professional Services',
    'Education',
    'Entertainment',
    'Other',
]

PROFILE_FIELDS = [
    'business_name',
    'business_category',
    'location',
    'business_email',
    'brand_voice',
    'short_business_bio',
    'products_services',
    'business_materials',
]

# Fields content generation cannot do without
REQUIRED_FOR_CONTENT = ['business_name', 'business_category', 'location', 'brand_voice']


class BusinessProfileService:
    def __init__(self, profile_repository: BusinessProfileRepository):
        self.profile_repository = profile_repository

    def get_profile(self, business_id: int) -> Result:
        """Result data is the profile, or None when the business has not saved one"""
        return Result.success(self.profile_repository.find_by_user(business_id))

    def _validate(self, fields: Dict[str, Any]) -> None:
        voice = fields.get('brand_voice')
        if voice and voice not in {v.value for v in BrandVoice}:
            raise ValidationError(f"Invalid brand voice: {voice}")

        category = fields.get('business_category')
        if category and category not in BUSINESS_CATEGORIES:
            raise ValidationError(f"Invalid business category: {category}")

        email = fields.get('business_email')
        if email and not is_valid_email(email):
            raise ValidationError(f"Invalid business email: {email}")

        for required in ('business_name', 'business_category', 'location'):
            if required in fields and not (fields[required] or '').strip():
                raise ValidationError(f"{required.replace('_', ' ').capitalize()} cannot be empty")

    def save_profile(self, business_id: int, data: Dict[str, Any]) -> Result:
        """
        Create or update the business profile.

        Only known profile fields are taken from ``data``; strings are stripped.
        """
        fields = {
            key: (value.strip() if isinstance(value, str) else value)
            for key, value in data.items()
            if key in PROFILE_FIELDS
        }
        try:
            self._validate(fields)
            profile = self.profile_repository.upsert(business_id, fields)
            self.profile_repository.commit()
        except ValidationError as e:
            return Result.from_error(e)

        logger.info("Business profile saved", business_id=business_id)
        return Result.success(profile)

    @staticmethod
    def missing_fields(profile) -> List[str]:
        if profile is None:
            return list(REQUIRED_FOR_CONTENT)
        return [name for name in REQUIRED_FOR_CONTENT if not getattr(profile, name, None)]

    @staticmethod
    def to_prompt_context(profile) -> Dict[str, Any]:
        """Profile fields as a plain dict for content generation, {} when absent"""
        if profile is None:
            return {}
        return {name: getattr(profile, name, None) for name in PROFILE_FIELDS}
