"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis and webhooks.
"""
import os
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")
os.environ.setdefault("PARTNERS_CONFIG_PATH", str(Path(__file__).parent / "partners.json"))
os.environ.setdefault("ALERT_WEBHOOK_URL", "")
os.environ.setdefault("DEALNET_TEST_TOKEN_ACME", "acme-secret")
os.environ.setdefault("DEALNET_TEST_TOKEN_BASICCO", "basicco-secret")
os.environ.setdefault("DEALNET_TEST_TOKEN_DORMANT", "dormant-secret")

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from dealnet.database import Base
import dealnet.models  # noqa: F401  (registers tables on Base.metadata)
from dealnet.models.click_event import ClickEvent, IMPRESSION_HREF, KIND_AFFILIATE_OUTBOUND, KIND_IMPRESSION
from dealnet.models.deal import Deal, Product
from dealnet.services.attribution import build_record, encode


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture(autouse=True)
def _reset_process_state(monkeypatch):
    """Rate-limit windows, governance cache and partner registry are process-global."""
    from dealnet.utils.rate_limiter import get_rate_limiter
    from dealnet.services.governance import get_enforcement_cache
    import dealnet.services.partners as partners

    get_rate_limiter().reset()
    get_enforcement_cache().clear()
    monkeypatch.setattr(partners, "_registry", None)
    yield
    get_rate_limiter().reset()
    get_enforcement_cache().clear()


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("dealnet.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def now():
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_impression(occurred_at, *, section="home_live", site="trendsinusa", partner=None,
                    provider=None, deal_id=None, deal_status=None):
    record = build_record(
        "impression", site, section=section, provider=provider,
        partner_key=partner, deal_status=deal_status,
    )
    return ClickEvent(
        occurred_at=occurred_at,
        kind=KIND_IMPRESSION,
        href=IMPRESSION_HREF,
        deal_id=deal_id,
        attribution=encode(record),
    )


def make_click(occurred_at, *, section="home_live", provider="amazon", site="trendsinusa",
               partner=None, deal_id=None, deal_status=None, cta=None):
    record = build_record(
        "affiliate_click", site, section=section, provider=provider,
        partner_key=partner, deal_status=deal_status, cta_variant=cta,
    )
    return ClickEvent(
        occurred_at=occurred_at,
        kind=KIND_AFFILIATE_OUTBOUND,
        href="https://www.amazon.com/dp/B000TEST01",
        deal_id=deal_id,
        attribution=encode(record),
    )


async def seed_deal(db, *, deal_id="deal-1", asin="B000TEST01", category="electronics",
                    category_override=None, current=8000, old=10000,
                    expires_at=None, created_at=None, status="ACTIVE"):
    product = Product(
        id=f"prod-{deal_id}", asin=asin, title=f"Product {asin}",
        category=category, category_override=category_override,
    )
    deal = Deal(
        id=deal_id,
        product_id=product.id,
        status=status,
        current_price_cents=current,
        old_price_cents=old,
        expires_at=expires_at or datetime.now(timezone.utc) + timedelta(hours=12),
        created_at=created_at or datetime.now(timezone.utc) - timedelta(hours=12),
    )
    db.add_all([product, deal])
    await db.commit()
    return deal
