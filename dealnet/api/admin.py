"""
Admin API - internal signals, CTR and governance views.
All endpoints require the admin bearer token.
"""
import hmac
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from dealnet.config import get_settings
from dealnet.database import get_db
from dealnet.services.aggregation import SignalsParams
from dealnet.services.alert_sink import parse_gov_message, resolve_alert
from dealnet.services.governance import get_enforcement_cache, get_governance_report
from dealnet.services.partners import get_partners_config
from dealnet.services.signals import get_cached_signals, get_ctr_report

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

bearer_scheme = HTTPBearer(auto_error=False)


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> None:
    """Dependency that requires the configured admin token."""
    expected = get_settings().admin_api_token
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API not configured")
    provided = credentials.credentials if credentials else ""
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid admin token")


# === SIGNALS ===

@router.get("/signals")
async def admin_signals(
    days: int = Query(default=30, ge=1, le=90),
    site: Optional[str] = None,
    partner: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin),
):
    """Network signals at the pro tier, optionally narrowed to one site or partner."""
    params = SignalsParams(days=days, tier="pro", site_key=site, partner_key=partner)
    return await get_cached_signals(db, params)


@router.get("/ctr")
async def admin_ctr(
    days: int = Query(default=7, ge=1, le=90),
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin),
):
    """CTR by section and deal state, plus top CTAs. Unfiltered."""
    return await get_ctr_report(db, days)


# === GOVERNANCE ===

@router.get("/governance")
async def admin_governance(
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin),
):
    """Per-partner enforcement state and recent governance alerts."""
    return await get_governance_report(db, get_partners_config().partners, alert_limit=limit)


@router.post("/alerts/{alert_id}/resolve")
async def admin_resolve_alert(
    alert_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin),
):
    """Soft-resolve an alert. Governance alerts drop that partner's cached state."""
    alert = await resolve_alert(db, alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")

    parsed = parse_gov_message(alert.message)
    if parsed is not None:
        get_enforcement_cache().invalidate(parsed.partner_key)

    return {
        "id": str(alert.id),
        "resolved_at": alert.resolved_at.isoformat() if alert.resolved_at else None,
    }
