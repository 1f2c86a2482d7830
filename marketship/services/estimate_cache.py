"""
TTL cache of vendor shipping estimates.

Entries are keyed by (vendor, origin pincode, slab). Reads treat entries
older than the TTL as misses but never delete them; stale rows are removed
by purge_expired(), which the scheduler runs once a day.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from marketship.config import settings
from marketship.models.estimate_cache import RateEstimateCache
from marketship.services.slab_engine import cache_key

logger = logging.getLogger(__name__)

UPSERT_DIALECTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


@dataclass
class CacheEntry:
    vendor_id: str
    origin_pincode: str
    slab_key: str
    min_price: Decimal
    max_price: Decimal
    zone_data: Dict[str, Any]
    created_at: datetime


class EstimateCache:
    """Estimate cache backed by the rate_estimate_cache table."""

    def __init__(
        self,
        db: AsyncSession,
        ttl_hours: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.ttl = timedelta(hours=ttl_hours or settings.ESTIMATE_CACHE_TTL_HOURS)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _key(self, vendor_id: str, origin_pincode: str, slab: float) -> Dict[str, str]:
        return {
            "vendor_id": str(vendor_id),
            "origin_pincode": str(origin_pincode).strip(),
            "slab_key": cache_key(vendor_id, str(origin_pincode).strip(), slab),
        }

    async def get(self, vendor_id: str, origin_pincode: str, slab: float) -> Optional[CacheEntry]:
        """Cached estimate, or None when missing or older than the TTL."""
        key = self._key(vendor_id, origin_pincode, slab)
        result = await self.db.execute(
            select(RateEstimateCache).where(
                and_(
                    RateEstimateCache.vendor_id == key["vendor_id"],
                    RateEstimateCache.origin_pincode == key["origin_pincode"],
                    RateEstimateCache.slab_key == key["slab_key"],
                )
            ).execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None

        created_at = _as_utc(row.created_at)
        if self._clock() - created_at > self.ttl:
            logger.debug(f"Estimate cache stale for vendor {vendor_id}, origin {origin_pincode}, slab {slab}")
            return None

        return CacheEntry(
            vendor_id=row.vendor_id,
            origin_pincode=row.origin_pincode,
            slab_key=row.slab_key,
            min_price=row.min_price,
            max_price=row.max_price,
            zone_data=row.zone_data or {},
            created_at=created_at,
        )

    async def set(
        self,
        vendor_id: str,
        origin_pincode: str,
        slab: float,
        min_price: Decimal,
        max_price: Decimal,
        zone_data: Dict[str, Any],
    ) -> None:
        """Insert or replace the entry for the natural key; created_at restarts the TTL."""
        values = {
            **self._key(vendor_id, origin_pincode, slab),
            "min_price": Decimal(str(min_price)),
            "max_price": Decimal(str(max_price)),
            "zone_data": zone_data,
            "created_at": self._clock(),
        }

        insert = UPSERT_DIALECTS.get(self.db.bind.dialect.name)
        if insert is not None:
            stmt = insert(RateEstimateCache).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["vendor_id", "origin_pincode", "slab_key"],
                set_={
                    "min_price": stmt.excluded.min_price,
                    "max_price": stmt.excluded.max_price,
                    "zone_data": stmt.excluded.zone_data,
                    "created_at": stmt.excluded.created_at,
                },
            )
            await self.db.execute(stmt)
        else:
            await self.db.execute(
                delete(RateEstimateCache).where(
                    and_(
                        RateEstimateCache.vendor_id == values["vendor_id"],
                        RateEstimateCache.origin_pincode == values["origin_pincode"],
                        RateEstimateCache.slab_key == values["slab_key"],
                    )
                )
            )
            self.db.add(RateEstimateCache(**values))
        await self.db.flush()

    async def clear(self, vendor_id: Optional[str] = None) -> int:
        """Delete one vendor's entries, or every entry when vendor_id is None."""
        stmt = delete(RateEstimateCache)
        if vendor_id is not None:
            stmt = stmt.where(RateEstimateCache.vendor_id == str(vendor_id))
        result = await self.db.execute(stmt)
        await self.db.flush()
        logger.info(f"Cleared {result.rowcount} estimate cache rows" + (f" for vendor {vendor_id}" if vendor_id else ""))
        return result.rowcount

    async def purge_expired(self) -> int:
        cutoff = self._clock() - self.ttl
        result = await self.db.execute(
            delete(RateEstimateCache).where(RateEstimateCache.created_at < cutoff)
        )
        await self.db.flush()
        return result.rowcount
