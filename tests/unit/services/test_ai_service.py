"""
Tests for AIService content generation and client data cleaning
"""

import pytest
from unittest.mock import Mock, patch

from services.ai_service import AIService, ContentRequest
from services.common.errors import ExternalServiceError


@pytest.fixture
def mock_model():
    model = Mock()
    model.generate_content.return_value = Mock(
        text='```json\n{"subject": "Spring into savings", "body": "<p>Book today</p>"}\n```'
    )
    return model


@pytest.fixture
def ai_service(mock_model):
    with patch('services.ai_service.genai') as mock_genai:
        mock_genai.GenerativeModel.return_value = mock_model
        yield AIService(api_key='test-key', timeout=12.0)


@pytest.fixture
def content_request():
    return ContentRequest(
        business_type='Healthcare',
        campaign_type='promotional',
        target_audience='all clients',
        seasonal_theme='Spring',
        business_profile={'business_name': 'Bright Smile Dental', 'location': 'Portland, OR'},
    )


class TestGenerateCampaignContent:

    def test_returns_subject_and_body(self, ai_service, content_request, mock_model):
        content = ai_service.generate_campaign_content(content_request)

        assert content == {'subject': 'Spring into savings', 'body': '<p>Book today</p>'}
        kwargs = mock_model.generate_content.call_args.kwargs
        assert kwargs['request_options'] == {'timeout': 12.0}
        assert kwargs['generation_config'] == {'response_mime_type': 'application/json'}

    def test_prompt_includes_business_context(self, content_request):
        prompt = AIService.build_campaign_prompt(content_request)

        assert 'Business Type: Healthcare' in prompt
        assert 'Seasonal Theme: Spring' in prompt
        assert '- Business Name: Bright Smile Dental' in prompt
        assert '- Brand Voice: Not specified' in prompt

    def test_empty_response_raises(self, ai_service, content_request, mock_model):
        mock_model.generate_content.return_value = Mock(text='')

        with pytest.raises(ExternalServiceError, match='empty response'):
            ai_service.generate_campaign_content(content_request)

    def test_missing_body_raises(self, ai_service, content_request, mock_model):
        mock_model.generate_content.return_value = Mock(text='{"subject": "Hi", "body": "  "}')

        with pytest.raises(ExternalServiceError):
            ai_service.generate_campaign_content(content_request)

    def test_invalid_json_raises(self, ai_service, content_request, mock_model):
        mock_model.generate_content.return_value = Mock(text='Sure! Here is your campaign.')

        with pytest.raises(ExternalServiceError, match='not valid JSON'):
            ai_service.generate_campaign_content(content_request)

    def test_api_failure_raises(self, ai_service, content_request, mock_model):
        mock_model.generate_content.side_effect = RuntimeError('deadline exceeded')

        with pytest.raises(ExternalServiceError, match='deadline exceeded'):
            ai_service.generate_campaign_content(content_request)

    def test_missing_api_key(self, content_request):
        with pytest.raises(ExternalServiceError, match='GEMINI_API_KEY'):
            AIService(api_key=None).generate_campaign_content(content_request)


class TestCleanClientData:

    def test_rows_without_name_or_email_are_dropped(self, ai_service, mock_model):
        mock_model.generate_content.return_value = Mock(text="""[
            {"name": "Ana Silva", "email": "ana@example.com", "tags": ["vip"], "lastVisit": "2025-05-01T00:00:00Z"},
            {"name": "", "email": "nobody@example.com"},
            {"name": "No Email"}
        ]""")

        rows = ai_service.clean_client_data('name,email\nAna Silva,ana@example.com')

        assert len(rows) == 1
        assert rows[0].name == 'Ana Silva'
        assert rows[0].tags == ['vip']
        assert rows[0].last_visit.year == 2025

    def test_non_list_response_raises(self, ai_service, mock_model):
        mock_model.generate_content.return_value = Mock(text='{"name": "Ana"}')

        with pytest.raises(ExternalServiceError):
            ai_service.clean_client_data('name\nAna')
