"""Rate estimate cache table."""
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketship.database import Base
from marketship.db_types import JSONType, MoneyType


class RateEstimateCache(Base):
    """
    Pre-checkout shipping estimate for a vendor/origin/weight slab.

    Rows are replaced in place on refresh (upsert on the natural key) and
    considered stale 24 hours after created_at; stale rows are left in
    place until the purge job runs.
    """
    __tablename__ = "rate_estimate_cache"
    __table_args__ = (
        UniqueConstraint(
            "vendor_id", "origin_pincode", "slab_key",
            name="uq_rate_estimate_cache_natural_key"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vendor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    origin_pincode: Mapped[str] = mapped_column(String(10), nullable=False)
    slab_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="md5 of vendor, origin and slab formatted to 2 decimals"
    )
    min_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    max_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    zone_data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
