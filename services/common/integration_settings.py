"""
Provider-specific integration settings.

Integration.settings is stored as JSON; these dataclasses are the typed view
of it. Each variant carries a ``kind`` tag so a row can be decoded without
consulting the provider column.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Union

from services.enums import IntegrationProvider


@dataclass
class MailProviderSettings:
    """Settings for a connected mailbox"""
    email_address: Optional[str] = None
    disconnected_at: Optional[str] = None
    kind: str = IntegrationProvider.GMAIL.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SchedulingProviderSettings:
    """Settings for a connected scheduling/CRM platform"""
    merchant_id: Optional[str] = None
    location_id: Optional[str] = None
    locations: List[Dict[str, Any]] = field(default_factory=list)
    auto_sync: bool = True
    sync_interval_hours: int = 24
    last_synced_at: Optional[str] = None
    disconnected_at: Optional[str] = None
    kind: str = IntegrationProvider.SQUARE.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


IntegrationSettings = Union[MailProviderSettings, SchedulingProviderSettings]

_SETTINGS_BY_KIND = {
    IntegrationProvider.GMAIL.value: MailProviderSettings,
    IntegrationProvider.SQUARE.value: SchedulingProviderSettings,
}


def settings_from_dict(provider: str, raw: Optional[Dict[str, Any]]) -> IntegrationSettings:
    """
    Decode stored settings into the variant for ``provider``.

    Unknown keys are dropped so older rows keep loading after a field is
    removed.
    """
    raw = dict(raw or {})
    kind = raw.get('kind') or provider
    settings_class = _SETTINGS_BY_KIND.get(kind)
    if settings_class is None:
        raise ValueError(f"Unknown integration settings kind: {kind}")
    known = set(settings_class.__dataclass_fields__)
    return settings_class(**{k: v for k, v in raw.items() if k in known})
