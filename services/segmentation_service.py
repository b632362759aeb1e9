"""
Audience Segmentation Service
Resolves a campaign audience selector against a business's client roster
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional, Union, Sequence, Callable

from logging_config import get_logger
from services.common.errors import ValidationError
from utils.datetime_utils import ensure_utc

logger = get_logger(__name__)

ALL = 'all'
NEW_CLIENTS = 'new-clients'
LOYAL_CLIENTS = 'loyal-clients'
HIGH_SPEND = 'high-spend'
HIGH_VALUE = 'high-value'
AT_RISK = 'at-risk'

NEW_CLIENT_WINDOW_DAYS = 7

INACTIVE_PATTERN = re.compile(r'^inactive-(\d+)$')

# Any fixed time works when only checking whether a segment is recognized
_REFERENCE_TIME = datetime(2000, 1, 1, tzinfo=timezone.utc)

# Segment name -> tags that qualify a client for it
TAG_SEGMENTS = {
    LOYAL_CLIENTS: frozenset({'loyal', 'regular'}),
    HIGH_SPEND: frozenset({'high-spend', 'vip'}),
    AT_RISK: frozenset({'at-risk', 'churning'}),
}

# Labels offered by the campaign editor that map onto a canonical segment
SEGMENT_ALIASES = {
    HIGH_VALUE: HIGH_SPEND,
}

DESCRIPTIONS = {
    ALL: 'all clients',
    NEW_CLIENTS: 'new clients who joined in the last week',
    LOYAL_CLIENTS: 'loyal, regular clients',
    HIGH_SPEND: 'high-spending VIP clients',
    AT_RISK: 'clients at risk of churning',
}

# Segments reported on the dashboard
DASHBOARD_SEGMENTS = ('all', 'inactive-30', 'inactive-60', NEW_CLIENTS, LOYAL_CLIENTS, HIGH_SPEND, AT_RISK)


@dataclass
class AudienceSelector:
    """
    A campaign's stored audience.

    ``client_ids`` is an explicit allow-list; when non-empty it takes
    precedence over ``segment_type``. ``filters`` may narrow the result
    further (currently only ``{'tags': [...]}``, any-of).
    """
    segment_type: str = ALL
    client_ids: List[int] = field(default_factory=list)
    filters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Union[Dict[str, Any], str]]) -> 'AudienceSelector':
        """Normalize stored audience JSON (camelCase or snake_case) or a bare segment name"""
        if isinstance(raw, str):
            return cls(segment_type=raw or ALL)
        raw = raw or {}
        segment_type = raw.get('segmentType') or raw.get('segment_type') or ALL
        client_ids = raw.get('clientIds') or raw.get('client_ids') or []
        filters = raw.get('filters') or {}
        return cls(
            segment_type=str(segment_type).strip(),
            client_ids=list(client_ids),
            filters=dict(filters),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'segmentType': self.segment_type,
            'clientIds': list(self.client_ids),
            'filters': dict(self.filters),
        }


def _client_tags(client) -> set:
    return {str(tag).strip().lower() for tag in (getattr(client, 'tags', None) or [])}


def _inactive_predicate(days: int, now: datetime) -> Callable:
    cutoff = now - timedelta(days=days)

    def predicate(client) -> bool:
        last_visit = ensure_utc(client.last_visit)
        # A client who never visited is always inactive
        return last_visit is None or last_visit < cutoff

    return predicate


def _new_client_predicate(now: datetime) -> Callable:
    window_start = now - timedelta(days=NEW_CLIENT_WINDOW_DAYS)

    def predicate(client) -> bool:
        created_at = ensure_utc(client.created_at)
        return created_at is not None and window_start < created_at <= now

    return predicate


def _tag_predicate(tags: frozenset) -> Callable:
    return lambda client: bool(_client_tags(client) & tags)


def _predicate_for(segment_type: str, now: datetime) -> Optional[Callable]:
    """Predicate for a segment name, or None if the name is not recognized"""
    segment_type = SEGMENT_ALIASES.get(segment_type, segment_type)

    if segment_type == ALL:
        return lambda client: True
    if segment_type == NEW_CLIENTS:
        return _new_client_predicate(now)
    if segment_type in TAG_SEGMENTS:
        return _tag_predicate(TAG_SEGMENTS[segment_type])

    match = INACTIVE_PATTERN.match(segment_type)
    if match and int(match.group(1)) > 0:
        return _inactive_predicate(int(match.group(1)), now)

    return None


def is_known_segment(segment_type: str) -> bool:
    return _predicate_for(segment_type, _REFERENCE_TIME) is not None


def resolve(selector: Union[AudienceSelector, Dict[str, Any], str],
            clients: Sequence,
            now: datetime,
            strict: bool = False) -> List:
    """
    Compute the clients matching ``selector``.

    Pure and synchronous. The result is a stable filter of ``clients``: a
    subsequence in input order, never re-sorted.

    Args:
        selector: AudienceSelector, stored audience dict or bare segment name
        clients: The business's roster
        now: Reference time for time-windowed segments
        strict: Raise ValidationError for an unknown segment instead of
            falling back to all clients

    Returns:
        List of matching clients
    """
    if not isinstance(selector, AudienceSelector):
        selector = AudienceSelector.from_dict(selector)
    now = ensure_utc(now)

    if selector.client_ids:
        allowed = {str(client_id) for client_id in selector.client_ids}
        matched = [client for client in clients if str(client.id) in allowed]
    else:
        predicate = _predicate_for(selector.segment_type, now)
        if predicate is None:
            if strict:
                raise ValidationError(f"Unknown audience segment: {selector.segment_type}")
            logger.warning("Unknown audience segment, falling back to all clients",
                           segment_type=selector.segment_type)
            predicate = _predicate_for(ALL, now)
        matched = [client for client in clients if predicate(client)]

    tag_filter = {str(tag).strip().lower() for tag in (selector.filters.get('tags') or [])}
    if tag_filter:
        matched = [client for client in matched if _client_tags(client) & tag_filter]

    return matched


def describe(selector: Union[AudienceSelector, Dict[str, Any], str]) -> str:
    """Human-readable audience description used as content-generation context"""
    if not isinstance(selector, AudienceSelector):
        selector = AudienceSelector.from_dict(selector)

    if selector.client_ids:
        return f"a hand-picked list of {len(selector.client_ids)} clients"

    segment_type = SEGMENT_ALIASES.get(selector.segment_type, selector.segment_type)
    if segment_type in DESCRIPTIONS:
        return DESCRIPTIONS[segment_type]

    match = INACTIVE_PATTERN.match(segment_type)
    if match:
        return f"clients who haven't visited in {match.group(1)} days"

    return DESCRIPTIONS[ALL]


class SegmentationService:
    """Registry-facing wrapper holding the configured strictness"""

    def __init__(self, strict: bool = False):
        self.strict = strict

    def resolve(self, selector, clients: Sequence, now: datetime) -> List:
        return resolve(selector, clients, now, strict=self.strict)

    def describe(self, selector) -> str:
        return describe(selector)

    def validate_selector(self, selector) -> AudienceSelector:
        """
        Normalize a selector for storage.

        Raises:
            ValidationError: In strict mode, for an unknown segment name
        """
        if not isinstance(selector, AudienceSelector):
            selector = AudienceSelector.from_dict(selector)
        if not selector.client_ids and not is_known_segment(selector.segment_type):
            if self.strict:
                raise ValidationError(f"Unknown audience segment: {selector.segment_type}")
            logger.warning("Storing audience with unknown segment", segment_type=selector.segment_type)
        return selector

    def count_by_segment(self, clients: Sequence, now: datetime) -> Dict[str, int]:
        """Segment sizes for the dashboard"""
        return {
            segment: len(resolve(segment, clients, now))
            for segment in DASHBOARD_SEGMENTS
        }
