import google.generativeai as genai
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List
from logging_config import get_logger
from services.common.errors import ExternalServiceError
from utils.datetime_utils import parse_iso_datetime

logger = get_logger(__name__)

CAMPAIGN_SYSTEM_PROMPT = """You are an expert email marketing specialist for service businesses.
Generate high-converting email campaigns that drive appointment bookings.
Your response must be valid JSON with this exact format:
{
  "subject": "compelling subject line under 50 characters",
  "body": "personalized email body that includes a clear call-to-action to book an appointment"
}"""

CLEANING_SYSTEM_PROMPT = """You are a data cleaning expert. Clean and structure messy CSV client data.
Your response must be valid JSON array with this exact format:
[
  {
    "name": "cleaned full name",
    "email": "valid email address",
    "phone": "cleaned phone number (optional)",
    "tags": ["array", "of", "relevant", "tags"],
    "lastVisit": "ISO date string if available (optional)"
  }
]

Rules:
- Fix typos and inconsistent formatting
- Standardize phone numbers
- Validate email addresses
- Extract relevant tags from any available data
- Convert dates to ISO format
- Skip invalid records
- Maximum 100 records per response"""

PROFILE_PROMPT_FIELDS = [
    ('Business Name', 'business_name'),
    ('Business Category', 'business_category'),
    ('Location', 'location'),
    ('Brand Voice', 'brand_voice'),
    ('Business Bio', 'short_business_bio'),
    ('Products/Services', 'products_services'),
    ('Brand Materials', 'business_materials'),
]


@dataclass
class ContentRequest:
    """Inputs to campaign content generation"""
    business_type: str
    campaign_type: str
    target_audience: str
    seasonal_theme: Optional[str] = None
    focus_keywords: Optional[str] = None
    custom_prompt: Optional[str] = None
    additional_instructions: Optional[str] = None
    business_profile: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CleanedClient:
    name: str
    email: str
    phone: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    last_visit: Optional[datetime] = None


class AIService:
    def __init__(self, api_key: Optional[str], model_name: str = 'gemini-2.5-flash',
                 cleaning_model_name: str = 'gemini-2.5-pro', timeout: float = 30.0):
        """
        Models are configured on first use so the service can be registered
        before the API key is validated.
        """
        self.api_key = api_key
        self.model_name = model_name
        self.cleaning_model_name = cleaning_model_name
        self.timeout = timeout
        self._models: Dict[str, Any] = {}

    def _get_model(self, model_name: str, system_instruction: str):
        key = f"{model_name}:{hash(system_instruction)}"
        if key not in self._models:
            if not self.api_key:
                raise ExternalServiceError('gemini', "GEMINI_API_KEY not configured")
            genai.configure(api_key=self.api_key)
            self._models[key] = genai.GenerativeModel(model_name, system_instruction=system_instruction)
            logger.info("AIService model configured", model=model_name)
        return self._models[key]

    def _generate_json(self, model_name: str, system_instruction: str, prompt: str) -> Any:
        model = self._get_model(model_name, system_instruction)
        try:
            response = model.generate_content(
                prompt,
                generation_config={'response_mime_type': 'application/json'},
                request_options={'timeout': self.timeout},
            )
            raw = (response.text or '').strip()
        except Exception as e:
            logger.error("Error calling Gemini API", model=model_name, error=str(e))
            raise ExternalServiceError('gemini', f"generation failed: {e}") from e

        if not raw:
            raise ExternalServiceError('gemini', "empty response")
        cleaned = raw.replace("```json", "").replace("```", "").strip()
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ExternalServiceError('gemini', f"response was not valid JSON: {e}") from e

    @staticmethod
    def build_campaign_prompt(request: ContentRequest) -> str:
        lines = [
            f"Business Type: {request.business_type}",
            f"Campaign Type: {request.campaign_type}",
            f"Target Audience: {request.target_audience}",
        ]
        if request.seasonal_theme:
            lines.append(f"Seasonal Theme: {request.seasonal_theme}")
        if request.focus_keywords:
            lines.append(f"Focus Keywords: {request.focus_keywords}")
        if request.custom_prompt:
            lines.append(f"Additional Instructions: {request.custom_prompt}")
        if request.additional_instructions:
            lines.append(f"Extra Instructions: {request.additional_instructions}")

        if request.business_profile:
            lines.append("")
            lines.append("Business Context:")
            for label, key in PROFILE_PROMPT_FIELDS:
                lines.append(f"- {label}: {request.business_profile.get(key) or 'Not specified'}")

        lines.append("""
Create an email campaign that:
- Has a compelling subject line that drives opens
- Includes personalized content relevant to the target audience
- Has a clear call-to-action to book an appointment
- Maintains the specified brand voice and tone
- Incorporates the business context and details provided
- Includes urgency or value proposition where appropriate
- Incorporates the seasonal theme and focus keywords if provided
- Uses the business name, location, and specific services when relevant""")
        return "\n".join(lines)

    def generate_campaign_content(self, request: ContentRequest) -> Dict[str, str]:
        """
        Generate a campaign subject and body.

        Returns:
            Dict with non-empty 'subject' and 'body'

        Raises:
            ExternalServiceError: On API failure or a payload missing either field
        """
        content = self._generate_json(self.model_name, CAMPAIGN_SYSTEM_PROMPT,
                                      self.build_campaign_prompt(request))
        if not isinstance(content, dict):
            raise ExternalServiceError('gemini', "expected a JSON object with subject and body")

        subject = str(content.get('subject') or '').strip()
        body = str(content.get('body') or '').strip()
        if not subject or not body:
            raise ExternalServiceError('gemini', "generated content is missing a subject or body")

        logger.info("Generated campaign content", campaign_type=request.campaign_type)
        return {'subject': subject, 'body': body}

    def clean_client_data(self, csv_text: str) -> List[CleanedClient]:
        """
        Turn messy CSV text into structured client rows.

        Rows without a name or email are dropped.
        """
        prompt = f"""Clean this CSV data:
{csv_text}

Please:
1. Auto-detect column headers
2. Fix typos and formatting issues
3. Extract meaningful tags from any available data
4. Ensure email addresses are valid
5. Standardize phone number formats
6. Convert any date fields to ISO format"""

        rows = self._generate_json(self.cleaning_model_name, CLEANING_SYSTEM_PROMPT, prompt)
        if not isinstance(rows, list):
            raise ExternalServiceError('gemini', "expected a JSON array of clients")

        cleaned = []
        for row in rows:
            if not isinstance(row, dict) or not row.get('name') or not row.get('email'):
                continue
            cleaned.append(CleanedClient(
                name=str(row['name']).strip(),
                email=str(row['email']).strip(),
                phone=row.get('phone') or None,
                tags=[str(tag) for tag in (row.get('tags') or [])],
                last_visit=parse_iso_datetime(row.get('lastVisit')),
            ))
        return cleaned
