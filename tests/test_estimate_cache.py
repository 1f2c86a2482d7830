"""Tests for the vendor estimate TTL cache."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select

from marketship.models.estimate_cache import RateEstimateCache
from marketship.services.estimate_cache import EstimateCache

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
ZONES = {"A": {"label": "North (Delhi NCR)", "price": "55.00"}}


def clock_at(moment: datetime):
    return lambda: moment


async def _rows(db) -> int:
    return (await db.execute(select(func.count()).select_from(RateEstimateCache))).scalar_one()


class TestEstimateCache:
    async def test_hit_within_ttl(self, db):
        cache = EstimateCache(db, ttl_hours=24, clock=clock_at(T0))
        await cache.set("vendor-1", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES)

        later = EstimateCache(db, ttl_hours=24, clock=clock_at(T0 + timedelta(hours=23)))
        entry = await later.get("vendor-1", "110001", 0.5)

        assert entry is not None
        assert entry.min_price == Decimal("55.00")
        assert entry.max_price == Decimal("80.00")
        assert entry.zone_data == ZONES

    async def test_stale_entry_is_a_miss_but_kept(self, db):
        cache = EstimateCache(db, ttl_hours=24, clock=clock_at(T0))
        await cache.set("vendor-1", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES)

        stale = EstimateCache(db, ttl_hours=24, clock=clock_at(T0 + timedelta(hours=25)))

        assert await stale.get("vendor-1", "110001", 0.5) is None
        assert await _rows(db) == 1

    async def test_key_includes_vendor_origin_and_slab(self, db):
        cache = EstimateCache(db, ttl_hours=24, clock=clock_at(T0))
        await cache.set("vendor-1", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES)

        assert await cache.get("vendor-2", "110001", 0.5) is None
        assert await cache.get("vendor-1", "400001", 0.5) is None
        assert await cache.get("vendor-1", "110001", 1.0) is None

    async def test_set_replaces_existing_entry(self, db):
        cache = EstimateCache(db, ttl_hours=24, clock=clock_at(T0))
        await cache.set("vendor-1", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES)
        await cache.get("vendor-1", "110001", 0.5)

        refreshed = EstimateCache(db, ttl_hours=24, clock=clock_at(T0 + timedelta(hours=30)))
        await refreshed.set("vendor-1", "110001", 0.5, Decimal("60"), Decimal("90"), {})
        entry = await refreshed.get("vendor-1", "110001", 0.5)

        assert await _rows(db) == 1
        assert entry.min_price == Decimal("60.00")
        assert entry.max_price == Decimal("90.00")

    async def test_clear_one_vendor(self, db):
        cache = EstimateCache(db, ttl_hours=24, clock=clock_at(T0))
        await cache.set("vendor-1", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES)
        await cache.set("vendor-1", "110001", 1.0, Decimal("65"), Decimal("95"), ZONES)
        await cache.set("vendor-2", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES)

        deleted = await cache.clear("vendor-1")

        assert deleted == 2
        assert await _rows(db) == 1
        assert await cache.get("vendor-2", "110001", 0.5) is not None

    async def test_clear_everything(self, db):
        cache = EstimateCache(db, ttl_hours=24, clock=clock_at(T0))
        await cache.set("vendor-1", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES)
        await cache.set("vendor-2", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES)

        assert await cache.clear() == 2
        assert await _rows(db) == 0

    async def test_purge_removes_only_expired_rows(self, db):
        await EstimateCache(db, ttl_hours=24, clock=clock_at(T0)).set(
            "vendor-1", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES
        )
        await EstimateCache(db, ttl_hours=24, clock=clock_at(T0 + timedelta(hours=20))).set(
            "vendor-2", "110001", 0.5, Decimal("55"), Decimal("80"), ZONES
        )

        purger = EstimateCache(db, ttl_hours=24, clock=clock_at(T0 + timedelta(hours=30)))

        assert await purger.purge_expired() == 1
        assert await purger.get("vendor-2", "110001", 0.5) is not None
