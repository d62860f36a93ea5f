"""
Event store reader - bounded, time-windowed fetch of raw click events and the
deal snapshots they reference.

Every fetch is capped (newest first) and never scans the full table. The cap
is a cost/latency guard, not sampling: a window that hits the cap is flagged
as truncated so callers don't present its aggregates as exact counts.

Store failures raise EventStoreError. Callers decide whether to fail soft.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dealnet.models.click_event import ClickEvent, IMPRESSION_HREF
from dealnet.models.deal import Deal

logger = logging.getLogger(__name__)

DEFAULT_FETCH_CAP = 100_000
UNKNOWN_CATEGORY = "unknown"


class EventStoreError(Exception):
    """The event store (or deal store) could not be read."""


@dataclass(frozen=True)
class Event:
    occurred_at: datetime
    kind: str
    href: str
    attribution: str
    asin: Optional[str] = None
    deal_id: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_impression(self) -> bool:
        return self.href == IMPRESSION_HREF


@dataclass(frozen=True)
class EventWindow:
    since: datetime
    until: Optional[datetime]
    cap: int
    events: Sequence[Event]
    # True only when more than `cap` rows matched and the oldest were dropped
    truncated: bool = False


@dataclass(frozen=True)
class DealSnapshot:
    deal_id: str
    category: str
    status: Optional[str]
    current_price_cents: int
    old_price_cents: Optional[int]
    expires_at: datetime
    created_at: Optional[datetime] = None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_event(row: ClickEvent) -> Event:
    return Event(
        occurred_at=_as_utc(row.occurred_at),
        kind=row.kind,
        href=row.href,
        attribution=row.attribution or "",
        asin=row.asin,
        deal_id=row.deal_id,
        user_agent=row.user_agent,
    )


async def fetch_events(
    db: AsyncSession,
    since: datetime,
    *,
    until: Optional[datetime] = None,
    kinds: Optional[Iterable[str]] = None,
    cap: int = DEFAULT_FETCH_CAP,
) -> EventWindow:
    """
    Fetch events with occurred_at >= since (and < until if given), newest
    first, truncated at `cap` rows. Read-only.
    """
    if cap <= 0:
        raise ValueError("cap must be positive")

    stmt = select(ClickEvent).where(ClickEvent.occurred_at >= since)
    if until is not None:
        stmt = stmt.where(ClickEvent.occurred_at < until)
    if kinds:
        stmt = stmt.where(ClickEvent.kind.in_(list(kinds)))
    # One extra row distinguishes "exactly cap rows" from "cut off at cap"
    stmt = stmt.order_by(ClickEvent.occurred_at.desc()).limit(cap + 1)

    try:
        result = await db.execute(stmt)
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        logger.error("Event store read failed: %s", str(e))
        raise EventStoreError("event store read failed") from e

    truncated = len(rows) > cap
    events = [_to_event(row) for row in rows[:cap]]
    if truncated:
        logger.info("Event window truncated at cap=%d (since=%s)", cap, since.isoformat())
    return EventWindow(since=since, until=until, cap=cap, events=events, truncated=truncated)


async def fetch_deal_snapshots(
    db: AsyncSession,
    deal_ids: Iterable[str],
) -> dict[str, DealSnapshot]:
    """Resolve each distinct deal id once. Unknown ids are simply absent."""
    ids = sorted({d for d in deal_ids if d})
    if not ids:
        return {}

    try:
        result = await db.execute(
            select(Deal).options(selectinload(Deal.product)).where(Deal.id.in_(ids))
        )
        deals = result.scalars().all()
    except SQLAlchemyError as e:
        logger.error("Deal snapshot read failed: %s", str(e))
        raise EventStoreError("deal store read failed") from e

    snapshots: dict[str, DealSnapshot] = {}
    for deal in deals:
        product = deal.product
        category = None
        if product is not None:
            category = product.category_override or product.category
        snapshots[deal.id] = DealSnapshot(
            deal_id=deal.id,
            category=category or UNKNOWN_CATEGORY,
            status=deal.status,
            current_price_cents=deal.current_price_cents,
            old_price_cents=deal.old_price_cents,
            expires_at=_as_utc(deal.expires_at),
            created_at=_as_utc(deal.created_at),
        )
    return snapshots
