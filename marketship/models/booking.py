"""Booking record: the persisted outcome of a successful label generation."""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from marketship.database import Base
from marketship.db_types import UUIDType


class BookingRecord(Base):
    """
    One row per booked order.

    The primary key is the order id, so inserting a second record for the
    same order fails at the database level. That insert is the duplicate
    booking guard; nothing else decides whether an order is already booked.
    """
    __tablename__ = "booking_records"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        primary_key=True
    )
    carrier: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment="Carrier platform tag e.g. shiprocket, bigship"
    )
    carrier_shipment_id: Mapped[str] = mapped_column(String(100), nullable=False)
    awb_code: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Air Waybill number from carrier"
    )
    courier_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    courier_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    label_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    booked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<BookingRecord(order_id='{self.order_id}', carrier='{self.carrier}', awb='{self.awb_code}')>"
