"""
Partner governance - enforcement state derived from unresolved governance
alerts, and the enforcement decision applied to each partner API call.

The action is a pure function of current alert counts (no stored state
machine). Counts are cached per partner for a short TTL in process memory.
Any failure reading the alert store fails open to "allow": partner traffic
is never blocked by an observability outage.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealnet.models.system_alert import SystemAlert
from dealnet.services.alert_sink import (
    ALERT_TYPE_SYSTEM,
    GOV_PREFIX,
    GovernanceAction,
    GovernanceRule,
    partner_prefix,
    record_once,
)
from dealnet.utils.rate_limiter import get_rate_limiter

logger = logging.getLogger(__name__)

ENFORCEMENT_SCAN_LIMIT = 500
DEFAULT_CACHE_TTL_SECONDS = 60

# Escalation thresholds on unresolved alerts: (action, min_open, min_critical).
# Either threshold is sufficient. Checked strictest first.
ESCALATION: tuple[tuple[str, Optional[int], Optional[int]], ...] = (
    (GovernanceAction.TERMINATE, 15, 3),
    (GovernanceAction.SUSPEND, 10, 2),
    (GovernanceAction.THROTTLE, 5, None),
    (GovernanceAction.WARN, 2, None),
)

ACTION_ORDER: dict[str, int] = {
    GovernanceAction.ALLOW: 0,
    GovernanceAction.WARN: 1,
    GovernanceAction.THROTTLE: 2,
    GovernanceAction.SUSPEND: 3,
    GovernanceAction.TERMINATE: 4,
}

THROTTLE_FRACTION = 0.25
THROTTLE_FLOOR_PER_MINUTE = 5
BAD_TOKEN_LIMIT_PER_MINUTE = 20

GOVERNANCE_HEADER = "x-governance"


@dataclass(frozen=True)
class EnforcementState:
    action: str
    open_violations: int
    open_critical: int


ALLOW_STATE = EnforcementState(action=GovernanceAction.ALLOW, open_violations=0, open_critical=0)


@dataclass(frozen=True)
class GovernanceDecision:
    ok: bool
    status: Optional[int] = None  # 404 or 429 when not ok
    headers: dict[str, str] = field(default_factory=dict)


def compute_action(open_violations: int, open_critical: int) -> str:
    for action, min_open, min_critical in ESCALATION:
        if open_violations >= min_open:
            return action
        if min_critical is not None and open_critical >= min_critical:
            return action
    return GovernanceAction.ALLOW


def throttle_limit(rate_limit_per_minute: int) -> int:
    return max(THROTTLE_FLOOR_PER_MINUTE, math.floor(rate_limit_per_minute * THROTTLE_FRACTION))


class EnforcementCache:
    """Per-partner TTL cache of EnforcementState. Process-local."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, EnforcementState]] = {}
        self._lock = threading.Lock()

    def get(self, partner_key: str) -> Optional[EnforcementState]:
        with self._lock:
            entry = self._entries.get(partner_key)
            if entry is None:
                return None
            expires_at, state = entry
            if self._clock() >= expires_at:
                del self._entries[partner_key]
                return None
            return state

    def set(self, partner_key: str, state: EnforcementState) -> None:
        with self._lock:
            self._entries[partner_key] = (self._clock() + self.ttl_seconds, state)

    def invalidate(self, partner_key: str) -> None:
        with self._lock:
            self._entries.pop(partner_key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_enforcement_cache: Optional[EnforcementCache] = None


def get_enforcement_cache() -> EnforcementCache:
    global _enforcement_cache
    if _enforcement_cache is None:
        from dealnet.config import get_settings
        _enforcement_cache = EnforcementCache(ttl_seconds=get_settings().governance_cache_ttl_seconds)
    return _enforcement_cache


async def _count_open_alerts(db: AsyncSession, partner_key: str) -> EnforcementState:
    result = await db.execute(
        select(SystemAlert.severity)
        .where(
            SystemAlert.type == ALERT_TYPE_SYSTEM,
            SystemAlert.resolved_at.is_(None),
            SystemAlert.message.startswith(partner_prefix(partner_key), autoescape=True),
        )
        .order_by(SystemAlert.created_at.desc())
        .limit(ENFORCEMENT_SCAN_LIMIT)
    )
    severities = result.scalars().all()
    open_violations = len(severities)
    open_critical = sum(1 for s in severities if s == "CRITICAL")
    return EnforcementState(
        action=compute_action(open_violations, open_critical),
        open_violations=open_violations,
        open_critical=open_critical,
    )


async def get_partner_enforcement_state(db: AsyncSession, partner_key: str) -> EnforcementState:
    """Cached enforcement state for a partner. Never raises; store errors mean allow."""
    cache = get_enforcement_cache()
    cached = cache.get(partner_key)
    if cached is not None:
        return cached

    try:
        state = await _count_open_alerts(db, partner_key)
    except Exception as e:
        logger.warning(
            "Governance state read failed for %s, failing open: %s", partner_key, str(e),
            extra={"partner_key": partner_key},
        )
        return ALLOW_STATE

    cache.set(partner_key, state)
    return state


async def _record_quietly(db: AsyncSession, partner_key: str, **kwargs) -> None:
    # The decision is already made; bookkeeping failures must not change it.
    try:
        await record_once(db, partner_key, **kwargs)
    except Exception as e:
        logger.warning(
            "Governance alert write failed for %s: %s", partner_key, str(e),
            extra={"partner_key": partner_key, "rule": kwargs.get("rule")},
        )
        try:
            await db.rollback()
        except Exception:
            logger.debug("Rollback after failed governance write also failed")


async def enforce_partner_governance(db: AsyncSession, partner, endpoint_key: str) -> GovernanceDecision:
    """
    Decide whether a partner API call proceeds.

    suspend/terminate -> 404 (never 403) plus a deduplicated CRITICAL alert.
    throttle -> secondary limiter at 25% of the partner's limit (min 5/min);
    429 with Retry-After when exceeded, else allowed with a header.
    warn -> allowed with a header. allow -> no side effects.
    """
    state = await get_partner_enforcement_state(db, partner.key)
    log_extra = {"partner_key": partner.key, "endpoint": endpoint_key, "action": state.action}

    if state.action in (GovernanceAction.SUSPEND, GovernanceAction.TERMINATE):
        logger.warning(
            "Partner %s blocked (%s): open=%d critical=%d",
            partner.key, state.action, state.open_violations, state.open_critical,
            extra=log_extra,
        )
        await _record_quietly(
            db,
            partner.key,
            rule=GovernanceRule.SUSPENDED_DUE_TO_VIOLATIONS,
            action=state.action,
            severity="CRITICAL",
            details=f"{endpoint_key} open={state.open_violations} critical={state.open_critical}",
            dedupe_window=timedelta(minutes=30),
        )
        return GovernanceDecision(ok=False, status=404)

    if state.action == GovernanceAction.THROTTLE:
        limit = throttle_limit(partner.rate_limit_per_minute)
        rl = get_rate_limiter().allow(f"gov:throttle:{partner.key}:{endpoint_key}", limit, 60_000)
        if not rl.ok:
            logger.warning(
                "Partner %s throttled on %s at %d/min", partner.key, endpoint_key, limit,
                extra=log_extra,
            )
            await _record_quietly(
                db,
                partner.key,
                rule=GovernanceRule.THROTTLED_DUE_TO_VIOLATIONS,
                action=GovernanceAction.THROTTLE,
                severity="ERROR",
                details=f"{endpoint_key} limit={limit}/min",
                dedupe_window=timedelta(minutes=10),
            )
            return GovernanceDecision(
                ok=False,
                status=429,
                headers={"Retry-After": str(rl.retry_after_seconds or 60)},
            )
        return GovernanceDecision(ok=True, headers={GOVERNANCE_HEADER: GovernanceAction.THROTTLE})

    if state.action == GovernanceAction.WARN:
        logger.warning("Partner %s at warn tier", partner.key, extra=log_extra)
        return GovernanceDecision(ok=True, headers={GOVERNANCE_HEADER: GovernanceAction.WARN})

    return GovernanceDecision(ok=True)


async def record_invalid_token_attempt(db: AsyncSession, partner_key: str) -> None:
    """
    Count a bad-token attempt in memory; only sustained failures become an
    alert. IP and user agent are not stored.
    """
    rl = get_rate_limiter().allow(f"gov:badtoken:{partner_key}", BAD_TOKEN_LIMIT_PER_MINUTE, 60_000)
    if rl.ok:
        return
    await _record_quietly(
        db,
        partner_key,
        rule=GovernanceRule.TOKEN_INVALID,
        action=GovernanceAction.WARN,
        severity="WARNING",
        details="Repeated invalid token attempts (rate-limited)",
        dedupe_window=timedelta(minutes=30),
    )


async def record_over_limit_requested(
    db: AsyncSession,
    partner_key: str,
    requested: int,
    max_limit: int,
    endpoint_key: str,
) -> None:
    await _record_quietly(
        db,
        partner_key,
        rule=GovernanceRule.OVER_LIMIT_REQUESTED,
        action=GovernanceAction.WARN,
        severity="INFO",
        details=f"{endpoint_key} requested={requested} max={max_limit}",
        dedupe_window=timedelta(minutes=60),
    )


async def get_governance_report(db: AsyncSession, partners, alert_limit: int = 100) -> dict:
    """Admin view: enforcement state for every registered partner plus recent governance alerts."""
    result = await db.execute(
        select(SystemAlert)
        .where(
            SystemAlert.type == ALERT_TYPE_SYSTEM,
            SystemAlert.message.startswith(GOV_PREFIX),
        )
        .order_by(SystemAlert.created_at.desc())
        .limit(alert_limit)
    )
    alerts = result.scalars().all()

    rows = []
    for partner in partners:
        state = await get_partner_enforcement_state(db, partner.key)
        rows.append({
            "key": partner.key,
            "enabled": partner.enabled,
            "site_key": partner.site_key,
            "tier": partner.tier,
            "scopes": sorted(partner.scopes),
            "action": state.action,
            "open_violations": state.open_violations,
            "open_critical": state.open_critical,
        })

    return {
        "partners": rows,
        "alerts": [
            {
                "id": str(a.id),
                "created_at": a.created_at.isoformat() if a.created_at else None,
                "severity": a.severity,
                "message": a.message,
                "resolved_at": a.resolved_at.isoformat() if a.resolved_at else None,
            }
            for a in alerts
        ],
    }
