"""
Write path - stores tracking events and outbound affiliate clicks.

Synthetic events (impressions, page views, exits) are stored with
href=event://<name>; outbound clicks store the real destination URL. Either
way the attribution column carries the encoded attribution record, which is
all the read side ever looks at.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealnet.models.click_event import (
    ClickEvent,
    KIND_AFFILIATE_OUTBOUND,
    KIND_IMPRESSION,
)
from dealnet.models.deal import Product
from dealnet.schemas.tracking import TrackPayload
from dealnet.services.attribution import (
    EVENT_AFFILIATE_CLICK,
    EVENT_IMPRESSION,
    build_record,
    encode,
)

logger = logging.getLogger(__name__)

SYNTHETIC_HREF_SCHEME = "event://"


def synthetic_href(event_name: str) -> str:
    return f"{SYNTHETIC_HREF_SCHEME}{event_name}"


def clean_merchant_url(asin: str) -> str:
    return f"https://www.amazon.com/dp/{quote(asin, safe='')}"


async def record_track_event(
    db: AsyncSession,
    payload: TrackPayload,
    *,
    site_key: str,
    user_agent: Optional[str] = None,
) -> ClickEvent:
    """Store one client-side tracking event."""
    record = build_record(
        payload.event,
        site_key,
        section=payload.section,
        deal_status=payload.dealStatus,
        cta_variant=payload.ctaVariant,
        badge_variant=payload.badgeVariant,
        provider=payload.provider,
        partner_key=payload.partner,
    )
    href = synthetic_href(payload.event)
    event = ClickEvent(
        occurred_at=datetime.now(timezone.utc),
        kind=KIND_IMPRESSION if payload.event == EVENT_IMPRESSION else KIND_AFFILIATE_OUTBOUND,
        href=href,
        asin=payload.asin,
        deal_id=payload.dealId,
        attribution=encode(record),
        user_agent=user_agent,
    )
    db.add(event)
    await db.commit()
    logger.debug("Tracked %s in section %s", payload.event, payload.section)
    return event


async def resolve_destination(db: AsyncSession, asin: str) -> str:
    """The product's stored URL, else the clean merchant URL for the ASIN."""
    product_url = (await db.execute(
        select(Product.product_url).where(Product.asin == asin)
    )).scalar_one_or_none()
    return product_url or clean_merchant_url(asin)


async def record_outbound_click(
    db: AsyncSession,
    *,
    provider: str,
    asin: str,
    site_key: str,
    section: Optional[str] = None,
    cta_variant: Optional[str] = None,
    badge_variant: Optional[str] = None,
    deal_status: Optional[str] = None,
    deal_id: Optional[str] = None,
    partner_key: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    """Store an outbound affiliate click and return the URL to redirect to."""
    destination = await resolve_destination(db, asin)
    record = build_record(
        EVENT_AFFILIATE_CLICK,
        site_key,
        section=section,
        deal_status=deal_status,
        cta_variant=cta_variant,
        badge_variant=badge_variant,
        provider=provider,
        partner_key=partner_key,
    )
    db.add(ClickEvent(
        occurred_at=datetime.now(timezone.utc),
        kind=KIND_AFFILIATE_OUTBOUND,
        href=destination,
        asin=asin,
        deal_id=deal_id or None,
        attribution=encode(record),
        user_agent=user_agent,
    ))
    await db.commit()
    logger.info(
        "Outbound click %s/%s section=%s", record.provider, asin, record.section,
        extra={"partner_key": record.partner_key, "site_key": site_key},
    )
    return destination
