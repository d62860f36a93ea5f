"""
Partner API v1 - aggregated intelligence and the deals feed.

Every call runs the same chain: auth -> scope -> governance -> per-partner
rate limit. Failures answer plain text with no detail; unknown, disabled,
out-of-scope and suspended partners all look like a missing endpoint.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dealnet.api.helpers import client_fingerprint, not_found, rate_limited
from dealnet.config import get_settings
from dealnet.database import get_db
from dealnet.models.deal import Deal
from dealnet.schemas.partner_api import (
    PARTNER_API_SCHEMA_DATE,
    PARTNER_API_VERSION,
    DealItem,
    DealsResponse,
    IntelligenceResponse,
    PartnerApiMeta,
    PartnerRef,
)
from dealnet.schemas.partner_config import PartnerConfig
from dealnet.services.aggregation import SignalsParams
from dealnet.services.governance import enforce_partner_governance, record_over_limit_requested
from dealnet.services.partners import require_partner, require_scope
from dealnet.services.signals import get_signals
from dealnet.utils.rate_limiter import rate_limit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/partners/{partner_key}/v1", tags=["partner-api"])

MIN_DAYS = 7
MAX_DAYS = 90
DEFAULT_DAYS = 30
EXPIRED_STATUS = "EXPIRED"


def _envelope_headers(extra: Optional[dict] = None) -> dict:
    headers = {
        "x-partner-api-version": str(PARTNER_API_VERSION),
        "x-partner-api-schema-date": PARTNER_API_SCHEMA_DATE,
    }
    headers.update(extra or {})
    return headers


def _meta(partner: PartnerConfig) -> PartnerApiMeta:
    return PartnerApiMeta(
        generated_at=datetime.now(timezone.utc),
        partner=PartnerRef(key=partner.key, site_key=partner.site_key),
    )


async def _authorize(
    request: Request,
    db: AsyncSession,
    partner_key: str,
    scope: str,
    endpoint_key: str,
) -> Union[tuple[PartnerConfig, dict], PlainTextResponse]:
    """Run the auth chain. Returns (partner, governance headers) or the response to send."""
    token = request.headers.get("x-partner-token") or request.query_params.get("token")
    auth = await require_partner(db, partner_key, token)
    if not auth.ok:
        return not_found(auth.status)
    partner = auth.partner

    scope_status = require_scope(partner, scope)
    if scope_status is not None:
        return not_found(scope_status)

    decision = await enforce_partner_governance(db, partner, endpoint_key)
    if not decision.ok:
        if decision.status == 404:
            return not_found(404)
        return PlainTextResponse("Rate limited.", status_code=429, headers=decision.headers)

    rl = rate_limit(
        f"partner:{endpoint_key}:{partner.key}:{client_fingerprint(request)}",
        partner.rate_limit_per_minute,
    )
    if not rl.ok:
        return rate_limited(rl)
    return partner, decision.headers


@router.get("/intelligence")
async def partner_intelligence(
    partner_key: str,
    request: Request,
    days: int = Query(default=DEFAULT_DAYS),
    db: AsyncSession = Depends(get_db),
):
    """Partner-attributed aggregates for this partner's site, filtered for its tier."""
    authorized = await _authorize(request, db, partner_key, "trends", "v1:intelligence")
    if isinstance(authorized, PlainTextResponse):
        return authorized
    partner, gov_headers = authorized

    days = max(MIN_DAYS, min(MAX_DAYS, days))
    report = await get_signals(
        db,
        SignalsParams(days=days, tier=partner.tier, site_key=partner.site_key, partner_key=partner.key),
    )
    body = IntelligenceResponse(meta=_meta(partner), tier=partner.tier, report=report)
    return JSONResponse(body.model_dump(mode="json", by_alias=True), headers=_envelope_headers(gov_headers))


def _outbound_url(base_url: str, partner: PartnerConfig, deal: Deal) -> str:
    params = {
        "section": f"partner_api:v1:deals:{partner.key}",
        "cta": "api",
        "badge": "api",
        "dealStatus": deal.status or "",
        "dealId": deal.id,
        "partner": partner.key,
    }
    asin = quote(deal.product.asin, safe="")
    return f"{base_url.rstrip('/')}/out/amazon/{asin}?{urlencode(params)}"


@router.get("/deals")
async def partner_deals(
    partner_key: str,
    request: Request,
    limit: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Live deals, soonest expiry first, with tracked outbound URLs."""
    authorized = await _authorize(request, db, partner_key, "feed", "v1:deals")
    if isinstance(authorized, PlainTextResponse):
        return authorized
    partner, gov_headers = authorized

    requested = limit if limit is not None else partner.max_limit
    if requested > partner.max_limit:
        await record_over_limit_requested(db, partner.key, requested, partner.max_limit, "v1:deals")
    take = max(1, min(partner.max_limit, requested))

    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(Deal)
        .options(selectinload(Deal.product))
        .where(Deal.expires_at > now, Deal.status != EXPIRED_STATUS)
        .order_by(Deal.expires_at.asc())
        .limit(take)
    )
    deals = result.scalars().all()

    base_url = get_settings().app_base_url
    items = [
        DealItem(
            asin=d.product.asin,
            title=d.product.title,
            category=d.product.category_override or d.product.category,
            current_price_cents=d.current_price_cents,
            old_price_cents=d.old_price_cents,
            expires_at=d.expires_at,
            outbound_url=_outbound_url(base_url, partner, d),
        )
        for d in deals
    ]
    body = DealsResponse(meta=_meta(partner), count=len(items), items=items)
    return JSONResponse(body.model_dump(mode="json", by_alias=True), headers=_envelope_headers(gov_headers))
