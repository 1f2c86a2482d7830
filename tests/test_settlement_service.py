"""Tests for RTO settlement."""
import uuid
from decimal import Decimal

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketship.models.order import OrderNote
from marketship.models.settlement import RtoSettlement
from marketship.models.wallet import WalletTransaction
from marketship.services.order_repository import MetaKeys, OrderRepository
from marketship.services.settlement_service import SettlementEngine, SettlementStatus
from marketship.services.wallet_service import WalletService

BOOKING_META = {
    MetaKeys.SHIPPING_COST: "55.00",
    MetaKeys.BASE_SHIPPING_COST: "100.00",
    MetaKeys.RETAILER_CAP_AMOUNT: "10.00",
}


async def _credits(db, order_id):
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.order_id == order_id, WalletTransaction.transaction_type == "CREDIT")
        .order_by(WalletTransaction.created_at)
    )
    return list(result.scalars().all())


class TestProcessRto:
    async def test_refunds_vendor_and_buyer(self, db, make_order):
        order = await make_order(status="RTO_DELIVERED", total_amount="500.00", meta=BOOKING_META)

        result = await SettlementEngine(db).process_rto(order.id)

        assert result.status == SettlementStatus.PROCESSED
        assert result.vendor_refund == Decimal("55.00")
        assert result.buyer_penalty == Decimal("110.00")
        assert result.buyer_refund == Decimal("390.00")

        wallet = WalletService(db)
        assert await wallet.balance("vendor-1") == Decimal("55.00")
        assert await wallet.balance("customer-1") == Decimal("390.00")

        memos = {txn.user_id: txn.memo for txn in await _credits(db, order.id)}
        assert memos["vendor-1"] == f"RTO Reversal: Shipping Refund for Order #{order.order_number}"
        assert memos["customer-1"] == (
            f"RTO Refund for Order #{order.order_number} (Shipping Penalty: 110.00 Deducted)"
        )

    async def test_records_meta_and_note(self, db, make_order):
        order = await make_order(status="RTO_DELIVERED", meta=BOOKING_META)

        await SettlementEngine(db).process_rto(order.id)

        meta = await OrderRepository(db).get_all_meta(order.id)
        assert meta[MetaKeys.RTO_VENDOR_REFUND] == "55.00"
        assert meta[MetaKeys.RTO_BUYER_PENALTY] == "110.00"
        assert meta[MetaKeys.RTO_BUYER_REFUND] == "390.00"
        assert meta[MetaKeys.RTO_PROCESSED_AT]
        notes = (await db.execute(select(OrderNote.note).where(OrderNote.order_id == order.id))).scalars().all()
        assert "Automated RTO refund processed for vendor and buyer." in notes

    async def test_second_run_moves_no_money(self, db, make_order):
        order = await make_order(status="RTO_DELIVERED", meta=BOOKING_META)
        engine = SettlementEngine(db)

        first = await engine.process_rto(order.id)
        credits_after_first = len(await _credits(db, order.id))
        second = await SettlementEngine(db).process_rto(order.id)

        assert first.processed
        assert second.status == SettlementStatus.ALREADY_PROCESSED
        assert len(await _credits(db, order.id)) == credits_after_first == 2

    async def test_penalty_covering_total_refunds_nothing_to_buyer(self, db, make_order):
        order = await make_order(status="RTO_DELIVERED", total_amount="90.00", meta=BOOKING_META)

        result = await SettlementEngine(db).process_rto(order.id)

        assert result.processed
        assert result.buyer_penalty == Decimal("110.00")
        assert result.buyer_refund == Decimal("0")
        assert result.buyer_transaction_id is None
        assert [txn.user_id for txn in await _credits(db, order.id)] == ["vendor-1"]

    async def test_no_shipping_charge_means_no_vendor_credit(self, db, make_order):
        order = await make_order(status="RTO_DELIVERED", total_amount="500.00")

        result = await SettlementEngine(db).process_rto(order.id)

        assert result.processed
        assert result.vendor_transaction_id is None
        assert result.buyer_refund == Decimal("500.00")

    async def test_unknown_order(self, db):
        result = await SettlementEngine(db).process_rto(uuid.uuid4())

        assert result.status == SettlementStatus.NOT_FOUND

    async def test_order_not_back_with_vendor_is_refused(self, db, make_order):
        order = await make_order(status="PROCESSING", meta=BOOKING_META)

        result = await SettlementEngine(db).process_rto(order.id)

        assert result.status == SettlementStatus.NOT_ELIGIBLE
        assert result.message == "Order is PROCESSING; RTO settlement needs RTO_DELIVERED"
        assert await db.get(RtoSettlement, order.id) is None
        assert await _credits(db, order.id) == []

    async def test_concurrent_settlement_is_reported_once(self, db, make_order, monkeypatch):
        order = await make_order(status="RTO_DELIVERED", meta=BOOKING_META)
        order_id = order.id
        await db.execute(insert(RtoSettlement).values(
            order_id=order_id, vendor_id="vendor-1", customer_id="customer-1",
        ))
        await db.commit()

        # The other run's row is committed but not yet visible to the existence check
        original_get = AsyncSession.get

        async def get_without_settlement(self, entity, ident, **kwargs):
            if entity is RtoSettlement:
                return None
            return await original_get(self, entity, ident, **kwargs)

        monkeypatch.setattr(AsyncSession, "get", get_without_settlement)

        result = await SettlementEngine(db).process_rto(order_id)

        assert result.status == SettlementStatus.ALREADY_PROCESSED
        assert result.order_id == str(order_id)
        assert await _credits(db, order_id) == []
