"""
Order/workflow collaborator used by the shipping engine.

Wraps order lookups, key-value order meta, status transitions with notes,
and the query behind the background tracking sync. Status transitions notify
registered observers explicitly; there is no global event dispatch.
"""
import logging
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import select, and_, exists
from sqlalchemy.ext.asyncio import AsyncSession

from marketship.models.order import Order, OrderMeta, OrderNote

logger = logging.getLogger(__name__)


class MetaKeys:
    """Order meta keys written by the shipping engine."""
    SHIPPING_PLATFORM = "shipping_platform"
    SHIPMENT_ID = "shipment_id"
    AWB = "awb"
    COURIER_NAME = "courier_name"
    COURIER_ID = "courier_id"
    LABEL_URL = "label_url"
    LABEL_STATUS = "label_status"
    SHIPPING_DATE = "shipping_date"
    MANIFEST_STATUS = "manifest_status"
    PICKUP_STATUS = "pickup_status"
    TRACKING_URL = "tracking_url"
    # Pricing captured at booking, consumed by RTO settlement
    SHIPPING_COST = "shipping_cost"
    BASE_SHIPPING_COST = "base_shipping_cost"
    RETAILER_CAP_AMOUNT = "retailer_cap_amount"
    VENDOR_DEBIT_TRANSACTION = "vendor_debit_transaction_id"
    # Tracking sync
    LOGISTICS_STATUS = "logistics_status"
    LAST_LOGISTICS_SYNC = "last_logistics_sync"
    RTO_REASON = "rto_reason"
    RTO_DATE = "rto_date"
    # Settlement
    RTO_VENDOR_REFUND = "rto_vendor_refund_amount"
    RTO_BUYER_PENALTY = "rto_buyer_penalty_amount"
    RTO_BUYER_REFUND = "rto_buyer_refund_amount"
    RTO_PROCESSED_AT = "rto_processed_at"


class OrderTransitionObserver(Protocol):
    """Called after an order changes status, within the same session."""

    async def on_transition(self, order: Order, from_status: Optional[str], to_status: str) -> None:
        ...


class OrderRepository:
    """Service for order reads and writes needed by shipping."""

    def __init__(self, db: AsyncSession, observers: Optional[Iterable[OrderTransitionObserver]] = None):
        self.db = db
        self.observers: List[OrderTransitionObserver] = list(observers or [])

    def add_observer(self, observer: OrderTransitionObserver) -> None:
        self.observers.append(observer)

    # ==================== ORDERS ====================

    async def get_order(self, order_id: uuid.UUID) -> Optional[Order]:
        return await self.db.get(Order, order_id)

    async def get_order_for_update(self, order_id: uuid.UUID) -> Optional[Order]:
        """Reload the order so status checks see the latest committed row."""
        result = await self.db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ==================== META ====================

    async def get_meta(self, order_id: uuid.UUID, key: str) -> Optional[str]:
        result = await self.db.execute(
            select(OrderMeta.meta_value).where(
                and_(OrderMeta.order_id == order_id, OrderMeta.meta_key == key)
            )
        )
        return result.scalar_one_or_none()

    async def get_all_meta(self, order_id: uuid.UUID) -> Dict[str, Optional[str]]:
        result = await self.db.execute(
            select(OrderMeta.meta_key, OrderMeta.meta_value).where(OrderMeta.order_id == order_id)
        )
        return {key: value for key, value in result.all()}

    async def set_meta(self, order_id: uuid.UUID, key: str, value) -> None:
        result = await self.db.execute(
            select(OrderMeta).where(
                and_(OrderMeta.order_id == order_id, OrderMeta.meta_key == key)
            )
        )
        meta = result.scalar_one_or_none()
        stored = None if value is None else str(value)

        if meta:
            meta.meta_value = stored
        else:
            self.db.add(OrderMeta(order_id=order_id, meta_key=key, meta_value=stored))
        await self.db.flush()

    async def set_meta_many(self, order_id: uuid.UUID, values: Dict[str, object]) -> None:
        for key, value in values.items():
            await self.set_meta(order_id, key, value)

    # ==================== STATUS ====================

    async def add_note(
        self,
        order: Order,
        note: str,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
    ) -> OrderNote:
        order_note = OrderNote(
            order_id=order.id,
            from_status=from_status,
            to_status=to_status,
            note=note,
        )
        self.db.add(order_note)
        await self.db.flush()
        return order_note

    async def transition_status(self, order: Order, new_status: str, note: str) -> bool:
        """
        Move the order to new_status, record a note and notify observers.

        Returns False (and does nothing) if the order is already in that
        status. A concurrent writer that updated the row first makes the
        flush fail with StaleDataError.
        """
        old_status = order.status
        if old_status == new_status:
            return False

        order.status = new_status
        await self.add_note(order, note, from_status=old_status, to_status=new_status)
        logger.info(f"Order {order.order_number}: {old_status} -> {new_status}")

        for observer in self.observers:
            try:
                await observer.on_transition(order, old_status, new_status)
            except Exception as e:
                logger.error(f"Transition observer {type(observer).__name__} failed for order {order.order_number}: {e}")

        return True

    # ==================== QUERIES ====================

    async def find_for_logistics_sync(
        self,
        states: Sequence[str],
        since: datetime,
        required_meta: Sequence[str] = (MetaKeys.SHIPPING_PLATFORM, MetaKeys.AWB),
    ) -> List[Tuple[Order, Dict[str, Optional[str]]]]:
        """Orders in `states`, created after `since`, that carry every key in `required_meta`."""
        conditions = [Order.status.in_(list(states)), Order.created_at >= since]
        for key in required_meta:
            conditions.append(
                exists().where(
                    and_(
                        OrderMeta.order_id == Order.id,
                        OrderMeta.meta_key == key,
                        OrderMeta.meta_value.is_not(None),
                        OrderMeta.meta_value != "",
                    )
                )
            )

        result = await self.db.execute(
            select(Order).where(and_(*conditions)).order_by(Order.created_at)
        )
        orders = list(result.scalars().all())
        if not orders:
            return []

        meta_result = await self.db.execute(
            select(OrderMeta.order_id, OrderMeta.meta_key, OrderMeta.meta_value).where(
                OrderMeta.order_id.in_([o.id for o in orders])
            )
        )
        meta_by_order: Dict[uuid.UUID, Dict[str, Optional[str]]] = {o.id: {} for o in orders}
        for order_id, key, value in meta_result.all():
            meta_by_order[order_id][key] = value

        return [(order, meta_by_order[order.id]) for order in orders]
