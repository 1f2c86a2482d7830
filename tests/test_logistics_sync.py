"""Tests for tracking parsers and the logistics synchronizer."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from marketship.config import settings
from marketship.core.exceptions import TrackingParseAmbiguous
from marketship.models.order import Order, OrderNote, OrderStatus
from marketship.models.settlement import RtoSettlement
from marketship.services import logistics_sync
from marketship.services.logistics_sync import (
    LogisticsSynchronizer,
    TrackingStatus,
    parse_bigship,
    parse_shiprocket,
    parse_tracking,
)
from marketship.services.order_repository import MetaKeys, OrderRepository

from tests.conftest import FakeCarrier, carriers_of


def shiprocket_payload(status: str, code: int = 6, activity: str = None) -> dict:
    data = {
        "shipment_status": code,
        "shipment_track": [{"awb_code": "AWB", "current_status": status}],
    }
    if activity:
        data["shipment_track_activities"] = [{"activity": activity}]
    return {"tracking_data": data}


def bigship_payload(status: str, remarks: str = "") -> dict:
    return {
        "success": True,
        "data": {
            "order_detail": {"current_tracking_status": status},
            "scan_histories": [{"scan_status": status, "scan_remarks": remarks}],
        },
    }


def booked(platform: str, awb: str, **extra) -> dict:
    return {MetaKeys.SHIPPING_PLATFORM: platform, MetaKeys.AWB: awb, **extra}


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


async def _notes(db, order):
    result = await db.execute(select(OrderNote).where(OrderNote.order_id == order.id).order_by(OrderNote.id))
    return list(result.scalars().all())


# ==================== PARSERS ====================

class TestShiprocketParser:
    def test_in_transit_is_not_rto(self):
        status = parse_shiprocket(shiprocket_payload("In Transit", 6))

        assert status == TrackingStatus(status_label="In Transit")

    def test_rto_code_with_activity_reason(self):
        status = parse_shiprocket(shiprocket_payload("RTO Initiated", 14, "Customer refused delivery"))

        assert status.is_rto
        assert not status.is_rto_delivered
        assert status.reason == "Customer refused delivery"

    def test_rto_detected_from_label(self):
        status = parse_shiprocket(shiprocket_payload("rto in-transit", 0))

        assert status.is_rto
        assert status.reason == "rto in-transit"

    def test_rto_delivered_code(self):
        status = parse_shiprocket(shiprocket_payload("RTO Delivered", 11))

        assert status.is_rto
        assert status.is_rto_delivered

    def test_missing_tracking_data_is_ambiguous(self):
        with pytest.raises(TrackingParseAmbiguous):
            parse_shiprocket({"message": "Token expired"})


class TestBigShipParser:
    def test_undelivered_is_rto_with_remarks(self):
        status = parse_bigship(bigship_payload("Undelivered", "Consignee not available"))

        assert status.is_rto
        assert not status.is_rto_delivered
        assert status.reason == "Consignee not available"

    def test_rto_delivered(self):
        status = parse_bigship(bigship_payload("RTO Delivered"))

        assert status.is_rto_delivered
        assert status.reason == "RTO Delivered"

    def test_falls_back_to_latest_scan(self):
        payload = {"data": {"scan_histories": [{"scan_status": "In Transit"}]}}

        assert parse_bigship(payload).status_label == "In Transit"

    def test_ambiguous_payload_yields_blank_status(self):
        assert parse_tracking("bigship", {"success": False, "message": "Invalid tracking id"}) == TrackingStatus()
        assert parse_tracking("bigship", ["unexpected"]) == TrackingStatus()

    def test_unknown_carrier_yields_blank_status(self):
        assert parse_tracking("ekart", bigship_payload("Lost")) == TrackingStatus()


# ==================== SINGLE ORDER ====================

class TestSyncOrder:
    async def test_rto_detected_moves_order_once(self, db, make_order, now):
        order = await make_order(meta=booked("shiprocket", "AWB1"))
        carrier = FakeCarrier("shiprocket", tracking={
            "AWB1": shiprocket_payload("RTO Initiated", 14, "Customer refused delivery"),
        })
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now)

        outcome = await sync.sync_order(order.id)

        assert outcome.success
        assert outcome.message == "RTO detected"
        assert order.status == OrderStatus.RTO_INITIATED.value
        meta = await OrderRepository(db).get_all_meta(order.id)
        assert meta[MetaKeys.LOGISTICS_STATUS] == "RTO Initiated"
        assert meta[MetaKeys.RTO_REASON] == "Customer refused delivery"
        notes = await _notes(db, order)
        assert [n.note for n in notes] == [
            "RTO detected. Status: RTO Initiated. Reason: Customer refused delivery"
        ]

        later = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now + timedelta(minutes=5))
        again = await later.sync_order(order.id)

        assert again.message == "Synced"
        assert len(await _notes(db, order)) == 1

    async def test_rto_delivered_runs_settlement(self, db, make_order, now):
        order = await make_order(
            status=OrderStatus.RTO_INITIATED.value,
            total_amount="500.00",
            meta=booked(
                "shiprocket", "AWB1",
                shipping_cost="55.00",
                base_shipping_cost="100.00",
                retailer_cap_amount="10.00",
            ),
        )
        carrier = FakeCarrier("shiprocket", tracking={"AWB1": shiprocket_payload("RTO Delivered", 11)})
        sync = LogisticsSynchronizer(db, carriers_of(carrier), clock=lambda: now)

        outcome = await sync.sync_order(order.id)

        assert outcome.rto_delivered
        assert outcome.message == "RTO delivered"
        assert order.status == OrderStatus.RTO_DELIVERED.value
        settlement = await db.get(RtoSettlement, order.id)
        assert settlement.vendor_refund_amount == Decimal("55.00")
        assert settlement.buyer_refund_amount == Decimal("390.00")

    async def test_direct_rto_delivered_passes_through_rto_initiated(self, db, make_order, now):
        order = await make_order(meta=booked("bigship", "BS1"))
        carrier = FakeCarrier("bigship", tracking={"BS1": bigship_payload("RTO Delivered")})
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now)

        await sync.sync_order(order.id)

        notes = await _notes(db, order)
        assert [(n.from_status, n.to_status) for n in notes] == [
            ("PROCESSING", "RTO_INITIATED"),
            ("RTO_INITIATED", "RTO_DELIVERED"),
        ]

    async def test_manual_refresh_is_throttled(self, db, make_order, now):
        order = await make_order(meta=booked(
            "shiprocket", "AWB1",
            last_logistics_sync=(now - timedelta(seconds=10)).isoformat(),
            logistics_status="In Transit",
        ))
        carrier = FakeCarrier("shiprocket", tracking={"AWB1": shiprocket_payload("Delivered", 7)})
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now)

        outcome = await sync.sync_order(order.id)

        assert outcome.skipped
        assert outcome.message == "Recently synced."
        assert outcome.status == "In Transit"
        assert carrier.calls["track"] == 0

    async def test_refresh_after_throttle_window(self, db, make_order, now):
        order = await make_order(meta=booked(
            "shiprocket", "AWB1",
            last_logistics_sync=(now - timedelta(seconds=31)).isoformat(),
        ))
        carrier = FakeCarrier("shiprocket", tracking={"AWB1": shiprocket_payload("Delivered", 7)})
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now)

        outcome = await sync.sync_order(order.id)

        assert outcome.message == "Synced"
        assert outcome.status == "Delivered"
        assert carrier.calls["track"] == 1

    async def test_missing_platform(self, db, make_order):
        order = await make_order()
        sync = LogisticsSynchronizer(db, carriers_of(), observers=[])

        outcome = await sync.sync_order(order.id)

        assert not outcome.success
        assert outcome.message == "No shipping platform associated with this order."

    async def test_missing_awb(self, db, make_order):
        order = await make_order(meta={MetaKeys.SHIPPING_PLATFORM: "shiprocket"})
        sync = LogisticsSynchronizer(db, carriers_of(), observers=[])

        outcome = await sync.sync_order(order.id)

        assert outcome.message == "No AWB found for this order."

    async def test_unknown_platform(self, db, make_order):
        order = await make_order(meta=booked("ekart", "EK1"))
        sync = LogisticsSynchronizer(db, carriers_of(FakeCarrier("shiprocket")), observers=[])

        outcome = await sync.sync_order(order.id)

        assert outcome.message == "Adapter not found for platform: ekart"

    async def test_carrier_error_is_reported(self, db, make_order):
        order = await make_order(meta=booked("shiprocket", "AWB404"))
        sync = LogisticsSynchronizer(db, carriers_of(FakeCarrier("shiprocket")), observers=[])

        outcome = await sync.sync_order(order.id)

        assert not outcome.success
        assert outcome.message == "Unknown AWB AWB404"

    async def test_ambiguous_payload_records_blank_status(self, db, make_order, now):
        order = await make_order(meta=booked("bigship", "BS1"))
        carrier = FakeCarrier("bigship", tracking={"BS1": {"success": False, "message": "Not found"}})
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now)

        outcome = await sync.sync_order(order.id)

        assert outcome.success
        assert order.status == OrderStatus.PROCESSING.value
        assert await OrderRepository(db).get_meta(order.id, MetaKeys.LOGISTICS_STATUS) == ""

    async def test_concurrent_order_update_is_reported(self, db, make_order, now, monkeypatch):
        order = await make_order(meta=booked("shiprocket", "AWB1"))
        order_id = order.id
        carrier = FakeCarrier("shiprocket", tracking={"AWB1": shiprocket_payload("RTO Initiated", 14)})
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now)
        load = sync.repo.get_order_for_update

        async def load_then_bump_version(oid):
            loaded = await load(oid)
            # Another writer commits a change after our read
            await db.execute(
                update(Order)
                .where(Order.id == oid)
                .values(version=Order.version + 1)
                .execution_options(synchronize_session=False)
            )
            return loaded

        monkeypatch.setattr(sync.repo, "get_order_for_update", load_then_bump_version)

        outcome = await sync.sync_order(order_id)

        assert not outcome.success
        assert outcome.message == "Order was updated concurrently; try again."
        assert outcome.order_id == str(order_id)

    async def test_order_lock_is_dropped_after_sync(self, db, make_order, now):
        order = await make_order(meta=booked("shiprocket", "AWB1"))
        carrier = FakeCarrier("shiprocket", tracking={"AWB1": shiprocket_payload("In Transit")})
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now)

        outcome = await sync.sync_order(order.id)

        assert outcome.success
        assert str(order.id) not in logistics_sync._order_locks


# ==================== BATCH ====================

class TestSyncAll:
    async def test_bulk_carrier_is_tracked_in_chunks(self, db, make_order, now, monkeypatch):
        monkeypatch.setattr(settings, "LOGISTICS_BULK_CHUNK_SIZE", 2)
        tracking = {}
        for n in range(5):
            await make_order(meta=booked("shiprocket", f"AWB{n}"))
            tracking[f"AWB{n}"] = shiprocket_payload("In Transit", 6)
        tracking["AWB4"] = shiprocket_payload("RTO Initiated", 14, "Address incomplete")
        carrier = FakeCarrier("shiprocket", bulk=True, tracking=tracking)
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now)

        report = await sync.sync_all()

        assert carrier.calls["track_bulk"] == 3
        assert carrier.calls["track"] == 0
        assert report.candidates == 5
        assert report.synced == 5
        assert report.rto_detected == 1

    async def test_spaced_carrier_is_capped_and_paced(self, db, make_order, now, monkeypatch):
        monkeypatch.setattr(settings, "LOGISTICS_SPACED_LIMIT", 2)
        tracking = {}
        for n in range(4):
            await make_order(meta=booked("bigship", f"BS{n}"))
            tracking[f"BS{n}"] = bigship_payload("In Transit")
        carrier = FakeCarrier("bigship", tracking=tracking)
        sleep = FakeSleep()
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now, sleep=sleep)

        report = await sync.sync_all()

        assert carrier.calls["track"] == 2
        assert report.synced == 2
        assert report.skipped == 2
        assert sleep.delays == [settings.LOGISTICS_SPACED_DELAY_SECONDS]

    async def test_recently_synced_orders_are_skipped(self, db, make_order, now):
        await make_order(meta=booked("bigship", "BS1", last_logistics_sync=(now - timedelta(hours=1)).isoformat()))
        await make_order(meta=booked("bigship", "BS2", last_logistics_sync=(now - timedelta(hours=13)).isoformat()))
        carrier = FakeCarrier("bigship", tracking={
            "BS1": bigship_payload("In Transit"),
            "BS2": bigship_payload("In Transit"),
        })
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now, sleep=FakeSleep())

        report = await sync.sync_all()

        assert report.skipped == 1
        assert report.synced == 1
        assert carrier.calls["track"] == 1

    async def test_only_active_recent_booked_orders_are_candidates(self, db, make_order, now):
        await make_order(meta=booked("bigship", "BS1"))
        await make_order(status=OrderStatus.COMPLETED.value, meta=booked("bigship", "BS2"))
        await make_order(created_at=now - timedelta(days=45), meta=booked("bigship", "BS3"))
        await make_order(meta={MetaKeys.SHIPPING_PLATFORM: "bigship"})
        carrier = FakeCarrier("bigship", tracking={
            awb: bigship_payload("In Transit") for awb in ("BS1", "BS2", "BS3")
        })
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now, sleep=FakeSleep())

        report = await sync.sync_all()

        assert report.candidates == 1
        assert report.synced == 1

    async def test_disabled_carrier_is_skipped(self, db, make_order, now):
        await make_order(meta=booked("ekart", "EK1"))
        sync = LogisticsSynchronizer(db, carriers_of(FakeCarrier("bigship")), observers=[], clock=lambda: now)

        report = await sync.sync_all()

        assert report.candidates == 1
        assert report.skipped == 1
        assert report.synced == 0

    async def test_tracking_failures_are_counted(self, db, make_order, now):
        await make_order(meta=booked("bigship", "BS1"))
        await make_order(meta=booked("bigship", "BS-MISSING"))
        carrier = FakeCarrier("bigship", tracking={"BS1": bigship_payload("In Transit")})
        sync = LogisticsSynchronizer(db, carriers_of(carrier), observers=[], clock=lambda: now, sleep=FakeSleep())

        report = await sync.sync_all()

        assert report.synced == 1
        assert report.failed == 1
        assert len(report.to_dict()["errors"]) == 1
