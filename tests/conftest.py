"""Shared fixtures: in-memory database, fake carriers and order factory."""
import uuid
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from marketship import models  # noqa: F401
from marketship.core.exceptions import CarrierAPIError
from marketship.database import Base, custom_json_dumps
from marketship.models.order import Order, OrderStatus
from marketship.services.cache_service import CacheService, InMemoryCache
from marketship.services.carriers.base import CarrierAdapter
from marketship.services.carriers.types import (
    AwbResult,
    BookingHandle,
    LabelResult,
    RateQuote,
    Shipment,
    TrackingSnapshot,
)
from marketship.services.order_repository import MetaKeys, OrderRepository


# ==================== DATABASE ====================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        json_serializer=custom_json_dumps,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


# ==================== CARRIERS ====================

def rate(carrier: str, cost, courier: str = "Courier", courier_id: Optional[str] = None, zone: str = "z_a") -> RateQuote:
    return RateQuote(
        carrier=carrier,
        courier_name=courier,
        base_cost=Decimal(str(cost)),
        zone=zone,
        estimated_days=3,
        courier_id=courier_id,
    )


class FakeCarrier(CarrierAdapter):
    """
    Scripted carrier with per-method call counters.

    book_errors are raised by successive book() calls; once exhausted,
    book() succeeds.
    """

    def __init__(
        self,
        code: str,
        quotes=None,
        balance="10000",
        book_errors: Optional[List[Exception]] = None,
        awb: Optional[AwbResult] = None,
        label_url: str = "https://labels.example/label.pdf",
        requires_manifest: bool = False,
        bulk: bool = False,
        tracking: Optional[Dict[str, object]] = None,
        quote_error: Optional[Exception] = None,
    ):
        super().__init__(cache=CacheService(InMemoryCache()))
        self.code = code
        self.name = code.title()
        self.quotes = quotes if quotes is not None else []
        self.balance = Decimal(str(balance))
        self.book_errors = list(book_errors or [])
        self.awb = awb or AwbResult(success=True, awb_code=f"AWB-{code.upper()}-1", courier_name="Fake Express")
        self.label_url = label_url
        self.requires_manifest = requires_manifest
        self.supports_bulk_tracking = bulk
        self.tracking = tracking or {}
        self.quote_error = quote_error
        self.calls = Counter()
        self.booked: List[Shipment] = []

    @property
    def carrier_calls(self) -> int:
        return sum(self.calls.values())

    async def quote(self, shipment):
        self.calls["quote"] += 1
        if self.quote_error:
            raise self.quote_error
        return self.quotes

    async def wallet_balance(self):
        self.calls["wallet_balance"] += 1
        return self.balance

    async def book(self, shipment):
        self.calls["book"] += 1
        self.booked.append(shipment)
        if self.book_errors:
            raise self.book_errors.pop(0)
        return BookingHandle(carrier=self.code, shipment_id=f"SHP-{self.calls['book']}")

    async def manifest(self, handle, courier_id):
        self.calls["manifest"] += 1
        return {"success": True}

    async def generate_awb(self, handle, courier_id=None):
        self.calls["generate_awb"] += 1
        return self.awb

    async def get_label(self, handle):
        self.calls["get_label"] += 1
        return LabelResult(label_url=self.label_url)

    async def after_booking(self, handle):
        self.calls["after_booking"] += 1
        return {MetaKeys.PICKUP_STATUS: 1}

    async def track(self, awb_code):
        self.calls["track"] += 1
        if awb_code not in self.tracking:
            raise CarrierAPIError(self.code, 404, f"Unknown AWB {awb_code}")
        return TrackingSnapshot(carrier=self.code, awb_code=awb_code, payload=self.tracking[awb_code])

    async def track_bulk(self, awb_codes):
        self.calls["track_bulk"] += 1
        return {
            awb: TrackingSnapshot(carrier=self.code, awb_code=awb, payload=self.tracking[awb])
            for awb in awb_codes
            if awb in self.tracking
        }

    def tracking_url(self, awb_code):
        return f"https://track.example/{self.code}/{awb_code}"


def carriers_of(*adapters: FakeCarrier):
    """Carrier provider in the order given (first = highest priority)."""
    mapping = {adapter.code: adapter for adapter in adapters}
    return lambda: mapping


@pytest.fixture
def shipment() -> Shipment:
    from marketship.services.carriers.types import Address
    return Shipment(
        order_id="ORD-1",
        vendor_id="vendor-1",
        origin=Address(name="Vendor", pincode="110001"),
        destination=Address(name="Buyer", pincode="560001"),
        weight_kg=1.0,
        declared_value=Decimal("500"),
    )


# ==================== ORDERS ====================

@pytest.fixture
def make_order(db):
    counter = {"n": 0}

    async def _make(
        status: str = OrderStatus.PROCESSING.value,
        total_amount="500.00",
        meta: Optional[Dict[str, object]] = None,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> Order:
        counter["n"] += 1
        order = Order(
            id=uuid.uuid4(),
            order_number=f"MS-{1000 + counter['n']}",
            vendor_id=fields.pop("vendor_id", "vendor-1"),
            vendor_email=fields.pop("vendor_email", "vendor@example.com"),
            customer_id=fields.pop("customer_id", "customer-1"),
            customer_email=fields.pop("customer_email", "buyer@example.com"),
            status=status,
            total_amount=Decimal(str(total_amount)),
            pickup_address=fields.pop("pickup_address", {"name": "Vendor Store", "pincode": "110001", "city": "Delhi"}),
            shipping_address=fields.pop("shipping_address", {"name": "Asha Rao", "pincode": "560001", "city": "Bengaluru"}),
            line_items=fields.pop("line_items", [{"name": "Kurta", "sku": "KRT-1", "quantity": 1, "price": "500"}]),
            package=fields.pop("package", {"weight_kg": 0.8, "length_cm": 20, "width_cm": 15, "height_cm": 5}),
            created_at=created_at or datetime.now(timezone.utc),
            **fields,
        )
        db.add(order)
        await db.flush()
        if meta:
            await OrderRepository(db).set_meta_many(order.id, meta)
        await db.commit()
        return order

    return _make
