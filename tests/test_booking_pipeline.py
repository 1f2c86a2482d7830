"""Tests for the label booking pipeline."""
import uuid
from decimal import Decimal

from sqlalchemy import func, insert, select

from marketship.core.exceptions import CarrierAPIError
from marketship.models.booking import BookingRecord
from marketship.models.order import OrderStatus
from marketship.models.wallet import WalletTransaction
from marketship.schemas.pricing import PricingConfig, PricingSlab
from marketship.services.booking_pipeline import BookingPipeline, BookingStatus
from marketship.services.carriers.types import AwbResult
from marketship.services.order_repository import MetaKeys, OrderRepository

from tests.conftest import FakeCarrier, carriers_of, rate

PRICING = PricingConfig(
    vendor_slabs=(PricingSlab(min=0, max=100, percent=10),),
    retailer_slabs=(PricingSlab(min=0, max=100, percent=20),),
)


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestBookOrder:
    async def test_books_cheapest_carrier_and_persists(self, db, make_order):
        order = await make_order()
        alpha = FakeCarrier("alpha", quotes=[rate("alpha", 120)])
        beta = FakeCarrier("beta", quotes=[rate("beta", 100, "Beta Air", "9")])

        result = await BookingPipeline(db, carriers_of(alpha, beta), PRICING).book_order(order.id)

        assert result.status == BookingStatus.BOOKED
        assert result.carrier == "beta"
        assert result.awb_code == "AWB-BETA-1"
        assert result.shipping_cost == Decimal("55.00")

        record = await db.get(BookingRecord, order.id)
        assert record.carrier == "beta"
        assert record.label_url == "https://labels.example/label.pdf"

        meta = await OrderRepository(db).get_all_meta(order.id)
        assert meta[MetaKeys.SHIPPING_PLATFORM] == "beta"
        assert meta[MetaKeys.AWB] == "AWB-BETA-1"
        assert meta[MetaKeys.SHIPPING_COST] == "55.00"
        assert meta[MetaKeys.BASE_SHIPPING_COST] == "100.00"
        assert meta[MetaKeys.RETAILER_CAP_AMOUNT] == "10.00"
        assert meta[MetaKeys.PICKUP_STATUS] == "1"
        assert meta[MetaKeys.TRACKING_URL] == "https://track.example/beta/AWB-BETA-1"
        assert meta[MetaKeys.VENDOR_DEBIT_TRANSACTION]

    async def test_vendor_wallet_is_debited_once(self, db, make_order):
        order = await make_order()
        carrier = FakeCarrier("alpha", quotes=[rate("alpha", 100)])

        await BookingPipeline(db, carriers_of(carrier), PRICING).book_order(order.id)

        rows = (await db.execute(select(WalletTransaction))).scalars().all()
        assert len(rows) == 1
        assert rows[0].transaction_type == "DEBIT"
        assert rows[0].user_id == "vendor-1"
        assert rows[0].amount == Decimal("55.00")
        assert rows[0].memo == f"Shipping charge for order #{order.order_number}"

    async def test_second_booking_makes_no_carrier_calls(self, db, make_order):
        order = await make_order()
        carrier = FakeCarrier("alpha", quotes=[rate("alpha", 100)])
        pipeline = BookingPipeline(db, carriers_of(carrier), PRICING)

        first = await pipeline.book_order(order.id)
        calls_after_first = carrier.carrier_calls

        second = await pipeline.book_order(order.id)

        assert first.status == BookingStatus.BOOKED
        assert second.status == BookingStatus.DUPLICATE
        assert carrier.carrier_calls == calls_after_first
        assert await _count(db, BookingRecord) == 1

    async def test_manifest_runs_for_carriers_that_need_it(self, db, make_order):
        order = await make_order()
        carrier = FakeCarrier("alpha", quotes=[rate("alpha", 100, courier_id="42")], requires_manifest=True)

        result = await BookingPipeline(db, carriers_of(carrier), PRICING).book_order(order.id)

        assert result.success
        assert carrier.calls["manifest"] == 1
        assert await OrderRepository(db).get_meta(order.id, MetaKeys.MANIFEST_STATUS) == "1"

    async def test_awb_failure_leaves_nothing_behind(self, db, make_order):
        order = await make_order()
        carrier = FakeCarrier(
            "alpha",
            quotes=[rate("alpha", 100)],
            awb=AwbResult(success=False, message="Courier not serviceable"),
        )

        result = await BookingPipeline(db, carriers_of(carrier), PRICING).book_order(order.id)

        assert result.status == BookingStatus.FAILED
        assert "Courier not serviceable" in result.message
        assert carrier.calls["get_label"] == 0
        assert await _count(db, BookingRecord) == 0
        assert await _count(db, WalletTransaction) == 0

    async def test_missing_label_is_fatal(self, db, make_order):
        order = await make_order()
        carrier = FakeCarrier("alpha", quotes=[rate("alpha", 100)], label_url="")

        result = await BookingPipeline(db, carriers_of(carrier), PRICING).book_order(order.id)

        assert result.status == BookingStatus.FAILED
        assert "Label URL not found" in result.message
        assert await _count(db, BookingRecord) == 0

    async def test_no_quotes_fails(self, db, make_order):
        order = await make_order()
        carrier = FakeCarrier("alpha", quotes=[])

        result = await BookingPipeline(db, carriers_of(carrier), PRICING).book_order(order.id)

        assert result.status == BookingStatus.FAILED
        assert result.message.startswith("Shipping failed")

    async def test_balance_error_falls_back_to_next_carrier(self, db, make_order):
        order = await make_order()
        alpha = FakeCarrier(
            "alpha",
            quotes=[rate("alpha", 90)],
            book_errors=[CarrierAPIError("alpha", 400, "Please recharge your wallet")],
        )
        beta = FakeCarrier("beta", quotes=[rate("beta", 100)])

        result = await BookingPipeline(db, carriers_of(alpha, beta), PRICING).book_order(order.id)

        assert result.status == BookingStatus.BOOKED
        assert result.carrier == "beta"
        assert result.rounds == 2

    async def test_cancelled_order_is_not_booked(self, db, make_order):
        order = await make_order(status=OrderStatus.CANCELLED.value)
        carrier = FakeCarrier("alpha", quotes=[rate("alpha", 100)])

        result = await BookingPipeline(db, carriers_of(carrier), PRICING).book_order(order.id)

        assert result.status == BookingStatus.FAILED
        assert carrier.carrier_calls == 0

    async def test_unknown_order(self, db):
        result = await BookingPipeline(db, carriers_of(), PRICING).book_order(uuid.uuid4())

        assert result.status == BookingStatus.FAILED
        assert result.message == "Order not found"

    async def test_after_booking_failure_does_not_fail_booking(self, db, make_order):
        class NoPickupCarrier(FakeCarrier):
            async def after_booking(self, handle):
                raise CarrierAPIError(self.code, 500, "Pickup service down")

        order = await make_order()
        carrier = NoPickupCarrier("alpha", quotes=[rate("alpha", 100)])

        result = await BookingPipeline(db, carriers_of(carrier), PRICING).book_order(order.id)

        assert result.status == BookingStatus.BOOKED
        assert await db.get(BookingRecord, order.id) is not None

    async def test_competing_booking_is_reported_as_duplicate(self, db, make_order):
        order = await make_order()
        order_id = order.id

        class RacedCarrier(FakeCarrier):
            async def get_label(self, handle):
                # Another worker stores its label between our check and our insert
                await db.execute(insert(BookingRecord).values(
                    order_id=order_id,
                    carrier="beta",
                    carrier_shipment_id="SHP-OTHER",
                    awb_code="AWB-OTHER-1",
                    label_url="https://labels.example/other.pdf",
                ))
                return await super().get_label(handle)

        carrier = RacedCarrier("alpha", quotes=[rate("alpha", 100)])

        result = await BookingPipeline(db, carriers_of(carrier), PRICING).book_order(order_id)

        assert result.status == BookingStatus.DUPLICATE
        assert result.order_id == str(order_id)
        assert await _count(db, WalletTransaction) == 0
