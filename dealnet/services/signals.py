"""
Signals service - fetch a bounded event window, resolve the deals it
references, aggregate and privacy-filter. Entry point for the partner
intelligence API and the admin views.

Event store failures propagate as EventStoreError; routers map them to 503.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dealnet.config import get_settings
from dealnet.models.click_event import KIND_AFFILIATE_OUTBOUND, KIND_IMPRESSION
from dealnet.services.aggregation import (
    SignalsParams,
    build_ctr_report,
    build_signals_report,
)
from dealnet.services.event_reader import fetch_deal_snapshots, fetch_events
from dealnet.services.privacy import apply_privacy_filter

logger = logging.getLogger(__name__)

CTR_FETCH_CAP = 20_000
CACHE_KEY_PREFIX = "dealnet:signals"


async def get_signals(
    db: AsyncSession,
    params: SignalsParams,
    *,
    now: Optional[datetime] = None,
    cap: Optional[int] = None,
) -> dict:
    """Filtered signals report for the given window, tier and filters."""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=params.days)
    cap = cap or get_settings().event_fetch_cap

    window = await fetch_events(db, since, cap=cap)
    deals = await fetch_deal_snapshots(db, (e.deal_id for e in window.events))
    report = build_signals_report(window, deals, params, now=now)
    return apply_privacy_filter(report, params.tier).to_dict()


async def get_ctr_report(
    db: AsyncSession,
    days: int,
    *,
    now: Optional[datetime] = None,
) -> dict:
    """Internal CTR breakdown. Not privacy-filtered; admin only."""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=days)
    window = await fetch_events(
        db,
        since,
        kinds=(KIND_IMPRESSION, KIND_AFFILIATE_OUTBOUND),
        cap=CTR_FETCH_CAP,
    )
    report = build_ctr_report(window.events)
    report["since"] = since.isoformat()
    report["truncated"] = window.truncated
    return report


async def get_cached_signals(db: AsyncSession, params: SignalsParams) -> dict:
    """get_signals behind a short Redis cache. Cache errors fall through to a fresh computation."""
    settings = get_settings()
    cache_key = (
        f"{CACHE_KEY_PREFIX}:{params.tier}:{params.days}:"
        f"{params.site_key or 'all'}:{params.partner_key or 'all'}"
    )

    try:
        from dealnet.utils.redis_client import get_redis
        redis = await get_redis()
        cached = await redis.get(cache_key)
        if cached:
            raw = cached.decode() if isinstance(cached, bytes) else str(cached)
            return json.loads(raw)
    except Exception as e:
        logger.debug("Signals cache read failed for %s: %s", cache_key, str(e))

    result = await get_signals(db, params)

    try:
        from dealnet.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.set(
            cache_key,
            json.dumps(result, default=str),
            ex=settings.admin_signals_cache_ttl_seconds,
        )
    except Exception as e:
        logger.debug("Signals cache write failed for %s: %s", cache_key, str(e))

    return result
