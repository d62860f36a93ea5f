"""
Partner registry and partner API authentication.

Failures are reported as status codes, not exceptions, so every router
answers them the same way: plain "Not found." with the status. Unknown,
disabled and out-of-scope partners all get 404 so endpoints can't be
discovered by probing.
"""
import hmac
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from dealnet.schemas.partner_config import PartnerConfig, PartnersConfigFile

logger = logging.getLogger(__name__)

_registry: Optional[PartnersConfigFile] = None
_registry_lock = threading.Lock()


class PartnerRegistryError(Exception):
    """partners.json is missing or invalid."""


@dataclass(frozen=True)
class PartnerAuthResult:
    ok: bool
    status: Optional[int] = None  # 401, 404 or 503 when not ok
    partner: Optional[PartnerConfig] = None


def load_partners_config(path: Optional[str] = None) -> PartnersConfigFile:
    """Read and validate the registry file. Raises PartnerRegistryError."""
    if path is None:
        from dealnet.config import get_settings
        path = get_settings().partners_config_path

    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise PartnerRegistryError(f"Unable to read partners config at {path}: {e}") from e

    try:
        config = PartnersConfigFile.model_validate_json(raw)
    except ValidationError as e:
        raise PartnerRegistryError(f"Invalid partners config at {path}: {e}") from e

    keys = [p.key for p in config.partners]
    if len(keys) != len(set(keys)):
        raise PartnerRegistryError(f"Duplicate partner keys in {path}")
    return config


def get_partners_config() -> PartnersConfigFile:
    """Cached registry. Call reload_partners_config() after editing the file."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = load_partners_config()
            logger.info("Loaded %d partners", len(_registry.partners))
        return _registry


def reload_partners_config() -> PartnersConfigFile:
    global _registry
    with _registry_lock:
        _registry = None
    return get_partners_config()


def get_partner_by_key(key: str) -> Optional[PartnerConfig]:
    for partner in get_partners_config().partners:
        if partner.key == key:
            return partner
    return None


def _tokens_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_partner(db: AsyncSession, partner_key: str, token: Optional[str]) -> PartnerAuthResult:
    """
    Authenticate a partner API call.

    Unknown or disabled partner -> 404. No secret configured for the
    partner -> 503. Wrong token -> 401, and the attempt is counted toward
    token_invalid governance alerts.
    """
    partner = get_partner_by_key(partner_key)
    if partner is None or not partner.enabled:
        return PartnerAuthResult(ok=False, status=404)

    expected = os.environ.get(partner.token_env_var, "")
    if not expected:
        logger.error(
            "Partner %s has no token configured (%s)", partner.key, partner.token_env_var,
            extra={"partner_key": partner.key},
        )
        return PartnerAuthResult(ok=False, status=503)

    if not _tokens_match(token or "", expected):
        logger.info("Invalid partner token for %s", partner.key, extra={"partner_key": partner.key})
        from dealnet.services.governance import record_invalid_token_attempt
        await record_invalid_token_attempt(db, partner.key)
        return PartnerAuthResult(ok=False, status=401)

    return PartnerAuthResult(ok=True, partner=partner)


def require_scope(partner: PartnerConfig, scope: str) -> Optional[int]:
    """None when the partner holds the scope, else the status to answer with (404)."""
    if scope not in partner.scopes:
        return 404
    return None
