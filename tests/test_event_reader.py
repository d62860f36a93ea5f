"""
Tests for dealnet/services/event_reader.py - bounded event fetch and deal snapshots.
"""
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock
from sqlalchemy.exc import OperationalError

from dealnet.services.event_reader import (
    EventStoreError,
    UNKNOWN_CATEGORY,
    fetch_deal_snapshots,
    fetch_events,
)
from conftest import make_click, make_impression, seed_deal


class TestFetchEvents:
    async def test_newest_first_within_window(self, db, now):
        db.add_all([
            make_impression(now - timedelta(days=2)),
            make_impression(now - timedelta(hours=1)),
            make_click(now - timedelta(hours=5)),
            make_impression(now - timedelta(days=40)),
        ])
        await db.commit()

        window = await fetch_events(db, now - timedelta(days=30), cap=100)

        assert len(window.events) == 3
        times = [e.occurred_at for e in window.events]
        assert times == sorted(times, reverse=True)
        assert window.truncated is False

    async def test_cap_truncates_and_flags(self, db, now):
        db.add_all([make_impression(now - timedelta(minutes=i)) for i in range(10)])
        await db.commit()

        window = await fetch_events(db, now - timedelta(days=1), cap=4)

        assert len(window.events) == 4
        assert window.truncated is True
        # The newest four survive
        assert window.events[0].occurred_at == now

    async def test_exactly_cap_rows_is_not_truncated(self, db, now):
        db.add_all([make_impression(now - timedelta(minutes=i)) for i in range(4)])
        await db.commit()

        window = await fetch_events(db, now - timedelta(days=1), cap=4)

        assert len(window.events) == 4
        assert window.truncated is False

    async def test_until_is_exclusive(self, db, now):
        db.add_all([make_impression(now - timedelta(hours=2)), make_impression(now)])
        await db.commit()

        window = await fetch_events(db, now - timedelta(days=1), until=now, cap=10)
        assert len(window.events) == 1

    async def test_kind_filter(self, db, now):
        db.add_all([make_impression(now), make_click(now)])
        await db.commit()

        window = await fetch_events(db, now - timedelta(days=1), kinds=["impression"], cap=10)
        assert [e.is_impression for e in window.events] == [True]

    async def test_rejects_non_positive_cap(self, db, now):
        with pytest.raises(ValueError):
            await fetch_events(db, now, cap=0)

    async def test_store_error_is_explicit(self, now):
        broken = AsyncMock()
        broken.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))

        with pytest.raises(EventStoreError):
            await fetch_events(broken, now - timedelta(days=1))

    async def test_returned_times_are_timezone_aware(self, db, now):
        db.add(make_impression(now))
        await db.commit()
        window = await fetch_events(db, now - timedelta(days=1), cap=10)
        assert window.events[0].occurred_at.tzinfo is not None


class TestFetchDealSnapshots:
    async def test_category_override_wins(self, db):
        await seed_deal(db, deal_id="d1", asin="A1", category="home", category_override="kitchen")
        snapshots = await fetch_deal_snapshots(db, ["d1"])
        assert snapshots["d1"].category == "kitchen"

    async def test_base_category_then_unknown(self, db):
        await seed_deal(db, deal_id="d1", asin="A1", category="home")
        await seed_deal(db, deal_id="d2", asin="A2", category=None)
        snapshots = await fetch_deal_snapshots(db, ["d1", "d2", "d1"])
        assert snapshots["d1"].category == "home"
        assert snapshots["d2"].category == UNKNOWN_CATEGORY

    async def test_unknown_ids_are_absent(self, db):
        snapshots = await fetch_deal_snapshots(db, ["missing", None, ""])
        assert snapshots == {}

    async def test_store_error_is_explicit(self):
        broken = AsyncMock()
        broken.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        with pytest.raises(EventStoreError):
            await fetch_deal_snapshots(broken, ["d1"])
