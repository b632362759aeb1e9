"""
Tests for the typed integration settings
"""

import pytest

from services.common.integration_settings import (
    MailProviderSettings, SchedulingProviderSettings, settings_from_dict
)


class TestIntegrationSettings:

    def test_decodes_by_kind_tag(self):
        settings = settings_from_dict('square', {'kind': 'gmail', 'email_address': 'a@example.com'})

        assert isinstance(settings, MailProviderSettings)
        assert settings.email_address == 'a@example.com'

    def test_falls_back_to_provider_without_tag(self):
        settings = settings_from_dict('square', {'merchant_id': 'M1'})

        assert isinstance(settings, SchedulingProviderSettings)
        assert settings.auto_sync is True
        assert settings.sync_interval_hours == 24

    def test_unknown_keys_are_dropped(self):
        settings = settings_from_dict('gmail', {'email_address': 'a@example.com', 'legacy_flag': True})
        assert not hasattr(settings, 'legacy_flag')

    def test_empty_settings(self):
        assert settings_from_dict('gmail', None) == MailProviderSettings()

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            settings_from_dict('mailchimp', {})

    def test_to_dict_includes_kind(self):
        data = SchedulingProviderSettings(merchant_id='M1', location_id='L1').to_dict()

        assert data['kind'] == 'square'
        assert data['locations'] == []
        assert settings_from_dict('square', data) == SchedulingProviderSettings(merchant_id='M1', location_id='L1')
