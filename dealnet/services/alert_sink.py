"""
Governance alert sink - deduplicated writes of governance violations into the
shared system alert log.

Message format (parsed back by the governance engine, so treat as a wire
format):

    gov:partner=<key> rule=<rule> action=<action>[ details=<text>]

Governance accounting counts unresolved alerts by prefix match on
"gov:partner=<key> ". Any message built outside gov_message() is invisible
to enforcement.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealnet.models.system_alert import SEVERITIES, SystemAlert

logger = logging.getLogger(__name__)

GOV_PREFIX = "gov:"
ALERT_TYPE_SYSTEM = "SYSTEM"


class GovernanceRule:
    """Closed set of governance rule names."""
    TOKEN_INVALID = "token_invalid"
    OVER_LIMIT_REQUESTED = "over_limit_requested"
    SCOPE_MISSING = "scope_missing"
    BILLING_DISABLED = "billing_disabled"
    THROTTLED_DUE_TO_VIOLATIONS = "throttled_due_to_violations"
    SUSPENDED_DUE_TO_VIOLATIONS = "suspended_due_to_violations"


class GovernanceAction:
    """Enforcement actions, mildest first."""
    ALLOW = "allow"
    WARN = "warn"
    THROTTLE = "throttle"
    SUSPEND = "suspend"
    TERMINATE = "terminate"


RULES = frozenset({
    GovernanceRule.TOKEN_INVALID,
    GovernanceRule.OVER_LIMIT_REQUESTED,
    GovernanceRule.SCOPE_MISSING,
    GovernanceRule.BILLING_DISABLED,
    GovernanceRule.THROTTLED_DUE_TO_VIOLATIONS,
    GovernanceRule.SUSPENDED_DUE_TO_VIOLATIONS,
})

ACTIONS = (
    GovernanceAction.ALLOW,
    GovernanceAction.WARN,
    GovernanceAction.THROTTLE,
    GovernanceAction.SUSPEND,
    GovernanceAction.TERMINATE,
)


@dataclass(frozen=True)
class GovMessage:
    partner_key: str
    rule: str
    action: str
    details: Optional[str] = None


def partner_prefix(partner_key: str) -> str:
    """Prefix shared by every governance message for this partner (note the trailing space)."""
    return f"{GOV_PREFIX}partner={partner_key} "


def gov_message(
    partner_key: str,
    rule: str,
    action: str,
    details: Optional[str] = None,
) -> str:
    if rule not in RULES:
        raise ValueError(f"Unknown governance rule: {rule}")
    if action not in ACTIONS:
        raise ValueError(f"Unknown governance action: {action}")
    if not partner_key or " " in partner_key:
        raise ValueError("partner_key must be a non-empty token")

    parts = [f"{GOV_PREFIX}partner={partner_key}", f"rule={rule}", f"action={action}"]
    if details:
        parts.append(f"details={details}")
    return " ".join(parts)


def parse_gov_message(message: str) -> Optional[GovMessage]:
    """Inverse of gov_message(). Returns None for anything that isn't a governance message."""
    if not message or not message.startswith(GOV_PREFIX):
        return None

    head, sep, details = message[len(GOV_PREFIX):].partition(" details=")
    fields = {}
    for token in head.split(" "):
        key, eq, value = token.partition("=")
        if not eq:
            return None
        fields[key] = value

    if not fields.get("partner") or not fields.get("rule") or not fields.get("action"):
        return None
    return GovMessage(
        partner_key=fields["partner"],
        rule=fields["rule"],
        action=fields["action"],
        details=details if sep else None,
    )


async def record_once(
    db: AsyncSession,
    partner_key: str,
    rule: str,
    action: str,
    severity: str,
    details: Optional[str] = None,
    dedupe_window: timedelta = timedelta(minutes=30),
) -> bool:
    """
    Insert a governance alert unless an unresolved alert with the identical
    message exists inside the dedupe window.

    Returns True if a new alert was written. Commits on insert. Two
    concurrent callers can both miss the existing row; at most that yields
    one extra alert, never a lost one.
    """
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown severity: {severity}")

    message = gov_message(partner_key, rule, action, details)
    since = datetime.now(timezone.utc) - dedupe_window

    existing = (await db.execute(
        select(SystemAlert.id).where(
            SystemAlert.type == ALERT_TYPE_SYSTEM,
            SystemAlert.message == message,
            SystemAlert.resolved_at.is_(None),
            SystemAlert.created_at >= since,
        ).limit(1)
    )).scalar_one_or_none()
    if existing is not None:
        return False

    db.add(SystemAlert(
        type=ALERT_TYPE_SYSTEM,
        severity=severity,
        noisy=False,
        message=message,
    ))
    await db.commit()

    logger.warning(
        "Governance alert recorded: %s", message,
        extra={"partner_key": partner_key, "rule": rule, "action": action},
    )
    if severity == "CRITICAL":
        await _send_webhook_alert(message)
    return True


async def resolve_alert(db: AsyncSession, alert_id) -> Optional[SystemAlert]:
    """Soft-resolve an alert. Returns the alert, or None if it doesn't exist."""
    alert = await db.get(SystemAlert, alert_id)
    if alert is None:
        return None
    if alert.resolved_at is None:
        alert.resolved_at = datetime.now(timezone.utc)
        await db.commit()
        logger.info("Alert %s resolved", alert_id)
    return alert


async def _send_webhook_alert(message: str) -> None:
    """Post a CRITICAL governance alert to the configured webhook (Discord/Slack)."""
    try:
        from dealnet.config import get_settings
        settings = get_settings()

        webhook_url = getattr(settings, "alert_webhook_url", "")
        if not webhook_url:
            return

        import httpx

        from dealnet.utils.logging import get_correlation_id
        content = f"\U0001f6a8 **partner_governance**\n{message}"
        cid = get_correlation_id()
        if cid:
            content += f"\n`correlation_id: {cid}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Alert sending failure should never crash the request
        logger.warning("Failed to send webhook alert: %s", str(e))
