"""
Tracking endpoints - client-side event beacon and the outbound redirect.

- POST /api/track              - impressions, page views, exits (rate limited per fingerprint)
- GET  /out/{provider}/{asin}  - records an outbound affiliate click, then redirects
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from dealnet.api.helpers import client_fingerprint, rate_limited
from dealnet.config import get_settings
from dealnet.database import get_db
from dealnet.schemas.tracking import TrackPayload, TrackResponse
from dealnet.services.tracking import record_outbound_click, record_track_event
from dealnet.utils.rate_limiter import rate_limit

logger = logging.getLogger(__name__)
router = APIRouter(tags=["tracking"])

OUT_RATE_LIMIT_PER_MINUTE = 60

# Same bounds as TrackPayload; asin and dealId fit their click_events columns
ASIN_MAX_LENGTH = 20
DEAL_ID_MAX_LENGTH = 64
PARTNER_MAX_LENGTH = 64
SECTION_MAX_LENGTH = 200
VARIANT_MAX_LENGTH = 40


@router.post("/api/track", response_model=TrackResponse)
async def track_event(
    payload: TrackPayload,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Store one tracking event. 429 with Retry-After when the fingerprint is over its limit."""
    settings = get_settings()
    rl = rate_limit(f"track:{client_fingerprint(request)}", settings.track_rate_limit_per_minute)
    if not rl.ok:
        raise HTTPException(
            status_code=429,
            detail="rate_limited",
            headers={"Retry-After": str(rl.retry_after_seconds or 60)},
        )

    await record_track_event(
        db,
        payload,
        site_key=settings.site_key,
        user_agent=request.headers.get("user-agent"),
    )
    return TrackResponse(ok=True)


@router.get("/out/{provider}/{asin}")
async def outbound_redirect(
    request: Request,
    provider: str = Path(max_length=VARIANT_MAX_LENGTH),
    asin: str = Path(min_length=1, max_length=ASIN_MAX_LENGTH),
    section: Optional[str] = Query(default=None, max_length=SECTION_MAX_LENGTH),
    cta: Optional[str] = Query(default=None, max_length=VARIANT_MAX_LENGTH),
    badge: Optional[str] = Query(default=None, max_length=VARIANT_MAX_LENGTH),
    dealStatus: Optional[str] = Query(default=None, max_length=VARIANT_MAX_LENGTH),
    dealId: Optional[str] = Query(default=None, max_length=DEAL_ID_MAX_LENGTH),
    partner: Optional[str] = Query(default=None, max_length=PARTNER_MAX_LENGTH),
    db: AsyncSession = Depends(get_db),
):
    """Record an outbound click and 307 to the product URL (clean merchant URL as fallback)."""
    rl = rate_limit(f"out:{client_fingerprint(request)}", OUT_RATE_LIMIT_PER_MINUTE)
    if not rl.ok:
        return rate_limited(rl)

    destination = await record_outbound_click(
        db,
        provider=provider,
        asin=asin,
        site_key=get_settings().site_key,
        section=section,
        cta_variant=cta,
        badge_variant=badge,
        deal_status=dealStatus,
        deal_id=dealId,
        partner_key=partner,
        user_agent=request.headers.get("user-agent"),
    )
    return RedirectResponse(destination, status_code=307)
