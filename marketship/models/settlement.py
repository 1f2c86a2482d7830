"""RTO settlement record."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from marketship.database import Base
from marketship.db_types import UUIDType, MoneyType


class RtoSettlement(Base):
    """
    Refund settlement for an order that came back to origin.

    Inserted before any wallet movement; the primary key on order_id makes
    that insert the "already processed" guard.
    """
    __tablename__ = "rto_settlements"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        primary_key=True
    )

    # Vendor leg: reversal of the shipping charge debited at booking
    vendor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    vendor_refund_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    vendor_transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    vendor_refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Buyer leg: order total minus (full carrier cost + retailer cap)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    buyer_penalty_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    buyer_refund_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    buyer_transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    buyer_refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
