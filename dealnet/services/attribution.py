"""
Attribution codec - the encode/decode contract for the compact record stored
in ClickEvent.attribution.

Wire format (v1): URL query-string syntax, unordered, plain-token values.
Keys: event, section, dealStatus, cta, badge, provider, site, partner.
A missing key means its default: "unknown" for classificatory fields and
"none" for partner. Every writer and every reader goes through this module;
changing a key or a default is a breaking wire change.
"""
import logging
from dataclasses import dataclass, fields
from typing import Optional
from urllib.parse import parse_qsl, urlencode

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
NO_PARTNER = "none"

EVENT_AFFILIATE_CLICK = "affiliate_click"
EVENT_IMPRESSION = "impression"

# record field -> wire key
WIRE_KEYS: dict[str, str] = {
    "event_name": "event",
    "section": "section",
    "deal_status": "dealStatus",
    "cta_variant": "cta",
    "badge_variant": "badge",
    "provider": "provider",
    "site_key": "site",
    "partner_key": "partner",
}

# Always written, even when unknown
_REQUIRED_FIELDS = ("event_name", "site_key")


@dataclass(frozen=True)
class AttributionRecord:
    event_name: str = UNKNOWN
    section: str = UNKNOWN
    deal_status: str = UNKNOWN
    cta_variant: str = UNKNOWN
    badge_variant: str = UNKNOWN
    provider: str = UNKNOWN
    site_key: str = UNKNOWN
    partner_key: str = NO_PARTNER

    def __post_init__(self):
        # Values are stored trimmed, blanks take the field default and provider
        # is lower-case, so decode(encode(r)) == r holds for any record.
        for f in fields(self):
            value = getattr(self, f.name)
            value = str(value).strip() if value is not None else ""
            if f.name == "provider":
                value = value.lower()
            object.__setattr__(self, f.name, value or f.default)

    @property
    def is_affiliate_click(self) -> bool:
        return self.event_name == EVENT_AFFILIATE_CLICK


_DEFAULTS: dict[str, str] = {f.name: f.default for f in fields(AttributionRecord)}


def encode(record: AttributionRecord) -> str:
    """Encode a record. event and site are always set; other keys only when known."""
    pairs: list[tuple[str, str]] = []
    for field_name, wire_key in WIRE_KEYS.items():
        value = getattr(record, field_name)
        if field_name in _REQUIRED_FIELDS:
            pairs.append((wire_key, value or _DEFAULTS[field_name]))
        elif value and value != _DEFAULTS[field_name]:
            pairs.append((wire_key, value))
    return urlencode(pairs)


def build_record(
    event_name: str,
    site_key: str,
    *,
    section: Optional[str] = None,
    deal_status: Optional[str] = None,
    cta_variant: Optional[str] = None,
    badge_variant: Optional[str] = None,
    provider: Optional[str] = None,
    partner_key: Optional[str] = None,
) -> AttributionRecord:
    """Build a record from optional write-path values; blanks fall back to defaults."""
    return AttributionRecord(
        event_name=event_name or UNKNOWN,
        site_key=site_key or UNKNOWN,
        section=section or UNKNOWN,
        deal_status=deal_status or UNKNOWN,
        cta_variant=cta_variant or UNKNOWN,
        badge_variant=badge_variant or UNKNOWN,
        provider=provider or UNKNOWN,
        partner_key=partner_key or NO_PARTNER,
    )


def decode(raw: Optional[str]) -> AttributionRecord:
    """
    Decode an attribution string. Never raises.

    Missing, blank or unparseable keys resolve to their defaults. When a key
    repeats, the first occurrence wins. Provider is lower-cased.
    """
    if not raw:
        return AttributionRecord()

    try:
        pairs = parse_qsl(str(raw), keep_blank_values=False)
    except (ValueError, TypeError) as e:
        logger.debug("Unparseable attribution, using defaults: %s", str(e))
        return AttributionRecord()

    by_key: dict[str, str] = {}
    for key, value in pairs:
        if value.strip() and key not in by_key:
            by_key[key] = value

    return AttributionRecord(**{
        field_name: by_key[wire_key]
        for field_name, wire_key in WIRE_KEYS.items()
        if wire_key in by_key
    })
