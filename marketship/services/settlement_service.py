"""
RTO settlement.

When a returned parcel reaches the vendor again:
- Vendor: the shipping charge debited at booking is credited back in full.
- Buyer: charged the full carrier cost plus the retailer cap; the rest of
  the order total is refunded to their wallet.

The settlement row is inserted before any wallet movement. Its primary key
is the order id, so a second run for the same order stops at the insert.
Only orders in RTO_DELIVERED are settled.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketship.core.exceptions import SettlementAlreadyProcessed
from marketship.models.order import Order, OrderStatus
from marketship.models.settlement import RtoSettlement
from marketship.services.carriers.base import to_decimal
from marketship.services.order_repository import MetaKeys, OrderRepository
from marketship.services.pricing_engine import quantize_money
from marketship.services.wallet_service import WalletService

logger = logging.getLogger(__name__)


class SettlementStatus(str, Enum):
    PROCESSED = "PROCESSED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    NOT_FOUND = "NOT_FOUND"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"


@dataclass
class SettlementResult:
    status: SettlementStatus
    order_id: str
    vendor_refund: Decimal = Decimal("0")
    buyer_penalty: Decimal = Decimal("0")
    buyer_refund: Decimal = Decimal("0")
    vendor_transaction_id: Optional[str] = None
    buyer_transaction_id: Optional[str] = None
    message: str = ""

    @property
    def processed(self) -> bool:
        return self.status == SettlementStatus.PROCESSED


class SettlementEngine:
    """
    Settles wallets for an order that was returned to origin.

    Usage:
        engine = SettlementEngine(db)
        result = await engine.process_rto(order_id)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = OrderRepository(db)
        self.wallet = WalletService(db)

    async def process_rto(self, order_id: uuid.UUID) -> SettlementResult:
        key = str(order_id)
        order = await self.repo.get_order(order_id)
        if not order:
            return SettlementResult(SettlementStatus.NOT_FOUND, key, message="Order not found")

        if order.status != OrderStatus.RTO_DELIVERED.value:
            return SettlementResult(
                SettlementStatus.NOT_ELIGIBLE,
                key,
                message=f"Order is {order.status}; RTO settlement needs {OrderStatus.RTO_DELIVERED.value}",
            )

        try:
            settlement = await self._claim(order)
        except SettlementAlreadyProcessed as e:
            logger.info(str(e))
            return SettlementResult(SettlementStatus.ALREADY_PROCESSED, key, message=str(e))

        logger.info(f"Starting RTO settlement for order {order.order_number}")
        meta = await self.repo.get_all_meta(order.id)

        await self._settle_vendor(order, settlement, meta)
        await self._settle_buyer(order, settlement, meta)

        settlement.processed_at = datetime.now(timezone.utc)
        await self.repo.set_meta_many(order.id, {
            MetaKeys.RTO_VENDOR_REFUND: settlement.vendor_refund_amount,
            MetaKeys.RTO_BUYER_PENALTY: settlement.buyer_penalty_amount,
            MetaKeys.RTO_BUYER_REFUND: settlement.buyer_refund_amount,
            MetaKeys.RTO_PROCESSED_AT: settlement.processed_at.isoformat(),
        })
        await self.repo.add_note(order, "Automated RTO refund processed for vendor and buyer.")
        await self.db.commit()

        return SettlementResult(
            SettlementStatus.PROCESSED,
            key,
            vendor_refund=settlement.vendor_refund_amount,
            buyer_penalty=settlement.buyer_penalty_amount,
            buyer_refund=settlement.buyer_refund_amount,
            vendor_transaction_id=settlement.vendor_transaction_id,
            buyer_transaction_id=settlement.buyer_transaction_id,
            message="RTO settlement processed",
        )

    async def _claim(self, order: Order) -> RtoSettlement:
        """Insert the settlement row; a conflicting insert means it already ran."""
        order_id = order.id
        if await self.db.get(RtoSettlement, order_id):
            raise SettlementAlreadyProcessed(order_id)

        settlement = RtoSettlement(
            order_id=order_id,
            vendor_id=order.vendor_id,
            customer_id=order.customer_id,
        )
        try:
            self.db.add(settlement)
            await self.db.flush()
        except IntegrityError as e:
            # Rollback expires order; only order_id is safe to read below
            await self.db.rollback()
            raise SettlementAlreadyProcessed(order_id) from e
        return settlement

    async def _settle_vendor(self, order: Order, settlement: RtoSettlement, meta: dict) -> None:
        if not order.vendor_id:
            logger.error(f"RTO settlement: vendor not found for order {order.order_number}")
            return

        shipping_cost = quantize_money(to_decimal(meta.get(MetaKeys.SHIPPING_COST)))
        if shipping_cost <= 0:
            return

        settlement.vendor_transaction_id = await self.wallet.credit(
            order.vendor_id,
            shipping_cost,
            f"RTO Reversal: Shipping Refund for Order #{order.order_number}",
            order_id=order.id,
        )
        settlement.vendor_refund_amount = shipping_cost
        settlement.vendor_refunded_at = datetime.now(timezone.utc)
        logger.info(f"RTO settlement: refunded {shipping_cost} to vendor {order.vendor_id}")

    async def _settle_buyer(self, order: Order, settlement: RtoSettlement, meta: dict) -> None:
        if not order.customer_id:
            logger.error(f"RTO settlement: customer not found for order {order.order_number}")
            return

        base_cost = to_decimal(meta.get(MetaKeys.BASE_SHIPPING_COST))
        cap_amount = to_decimal(meta.get(MetaKeys.RETAILER_CAP_AMOUNT))
        penalty = quantize_money(base_cost + cap_amount)
        refund = quantize_money(Decimal(str(order.total_amount or 0)) - penalty)

        settlement.buyer_penalty_amount = penalty
        if refund <= 0:
            logger.info(
                f"RTO settlement: penalty {penalty} covers order total {order.total_amount} "
                f"for order {order.order_number}; no refund issued to buyer"
            )
            return

        settlement.buyer_transaction_id = await self.wallet.credit(
            order.customer_id,
            refund,
            f"RTO Refund for Order #{order.order_number} (Shipping Penalty: {penalty} Deducted)",
            order_id=order.id,
        )
        settlement.buyer_refund_amount = refund
        settlement.buyer_refunded_at = datetime.now(timezone.utc)
        logger.info(f"RTO settlement: refunded {refund} to buyer {order.customer_id} (penalty {penalty})")
