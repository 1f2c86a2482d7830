"""Order models consumed by the shipping engine (order/workflow collaborator)."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketship.database import Base
from marketship.db_types import JSONType, UUIDType, MoneyType


class OrderStatus(str, Enum):
    """Order workflow states (stored as VARCHAR, uppercase)."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"         # Accepted, awaiting/with shipping label
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"
    RTO_INITIATED = "RTO_INITIATED"   # Carrier is returning the parcel
    RTO_DELIVERED = "RTO_DELIVERED"   # Parcel is back with the vendor


# States in which a label must never be generated
TERMINAL_ORDER_STATES = {
    OrderStatus.CANCELLED.value,
    OrderStatus.REFUNDED.value,
    OrderStatus.FAILED.value,
    OrderStatus.REJECTED.value,
}

# States polled by the background tracking sync
ACTIVE_LOGISTICS_STATES = [
    OrderStatus.PROCESSING.value,
    OrderStatus.ON_HOLD.value,
    OrderStatus.RTO_INITIATED.value,
]

RTO_STATES = {
    OrderStatus.RTO_INITIATED.value,
    OrderStatus.RTO_DELIVERED.value,
}


class Order(Base):
    """
    Marketplace order as seen by the shipping engine.

    Pickup/shipping addresses, line items and package dimensions are kept as
    JSON snapshots taken at checkout; everything the engine learns later
    (carrier, AWB, costs, sync timestamps) lives in OrderMeta.
    """
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)

    vendor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    vendor_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="PENDING, PROCESSING, ON_HOLD, COMPLETED, CANCELLED, REFUNDED, FAILED, REJECTED, RTO_INITIATED, RTO_DELIVERED"
    )
    payment_mode: Mapped[str] = mapped_column(String(20), default="PREPAID", nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    pickup_address: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    shipping_address: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    line_items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    package: Mapped[dict] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
        comment="weight_kg, length_cm, width_cm, height_cm"
    )

    # Optimistic concurrency: concurrent writers on the same row fail with StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    meta: Mapped[List["OrderMeta"]] = relationship(
        "OrderMeta",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="noload"
    )
    notes: Mapped[List["OrderNote"]] = relationship(
        "OrderNote",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderNote.created_at",
        lazy="noload"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


class OrderMeta(Base):
    """Key-value metadata attached to an order."""
    __tablename__ = "order_meta"
    __table_args__ = (
        UniqueConstraint("order_id", "meta_key", name="uq_order_meta_key"),
        Index("ix_order_meta_key_value", "meta_key", "meta_value"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    meta_key: Mapped[str] = mapped_column(String(100), nullable=False)
    meta_value: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="meta")


class OrderNote(Base):
    """Audit note attached to an order (status transitions, settlements)."""
    __tablename__ = "order_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="notes")
