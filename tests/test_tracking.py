"""
Tests for dealnet/services/tracking.py - the write path.
"""
from sqlalchemy import select

from dealnet.models.click_event import ClickEvent, IMPRESSION_HREF
from dealnet.schemas.tracking import TrackPayload
from dealnet.services.attribution import decode
from dealnet.services.tracking import (
    clean_merchant_url,
    record_outbound_click,
    record_track_event,
    resolve_destination,
)
from conftest import seed_deal


class TestRecordTrackEvent:
    async def test_impression_uses_sentinel_href(self, db):
        payload = TrackPayload(event="impression", section="home_live", dealId="d1", dealStatus="ACTIVE")
        await record_track_event(db, payload, site_key="trendsinusa", user_agent="pytest")

        stored = (await db.execute(select(ClickEvent))).scalar_one()
        assert stored.href == IMPRESSION_HREF
        assert stored.kind == "impression"
        assert stored.deal_id == "d1"
        record = decode(stored.attribution)
        assert record.event_name == "impression"
        assert record.section == "home_live"
        assert record.deal_status == "ACTIVE"
        assert record.site_key == "trendsinusa"

    async def test_other_events_use_event_scheme(self, db):
        payload = TrackPayload(event="product_exit", section="pdp", partner="acme", provider="Walmart")
        await record_track_event(db, payload, site_key="s1")

        stored = (await db.execute(select(ClickEvent))).scalar_one()
        assert stored.href == "event://product_exit"
        record = decode(stored.attribution)
        assert record.partner_key == "acme"
        assert record.provider == "walmart"


class TestOutboundClick:
    async def test_falls_back_to_clean_merchant_url(self, db):
        url = await record_outbound_click(db, provider="amazon", asin="B0NOPRODUCT", site_key="s1")
        assert url == clean_merchant_url("B0NOPRODUCT")

    async def test_stores_click_with_attribution(self, db):
        await seed_deal(db, deal_id="d1", asin="B000TEST01")

        url = await record_outbound_click(
            db, provider="AMAZON", asin="B000TEST01", site_key="s1",
            section="partner_api:v1:deals:acme", cta_variant="api", badge_variant="api",
            deal_status="ACTIVE", deal_id="d1", partner_key="acme", user_agent="ua",
        )

        stored = (await db.execute(select(ClickEvent))).scalar_one()
        assert stored.href == url
        assert stored.deal_id == "d1"
        record = decode(stored.attribution)
        assert record.is_affiliate_click
        assert record.provider == "amazon"
        assert record.partner_key == "acme"
        assert record.section == "partner_api:v1:deals:acme"

    async def test_prefers_stored_product_url(self, db):
        await seed_deal(db, deal_id="d1", asin="B000TEST01")
        from dealnet.models.deal import Product
        product = (await db.execute(select(Product))).scalar_one()
        product.product_url = "https://www.amazon.com/dp/B000TEST01?th=1"
        await db.commit()

        assert await resolve_destination(db, "B000TEST01") == "https://www.amazon.com/dp/B000TEST01?th=1"
