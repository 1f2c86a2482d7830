"""
Order transition observers.

Registered on OrderRepository and called after every status change:
- RTO_DELIVERED runs the RTO settlement.
- PROCESSING books a label, when AUTO_BOOK_ON_PROCESSING is enabled.
"""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketship.config import settings
from marketship.models.order import Order, OrderStatus
from marketship.services.order_repository import OrderTransitionObserver

logger = logging.getLogger(__name__)


class ShippingTransitionObserver:
    """Runs shipping side effects for order status changes."""

    def __init__(self, db: AsyncSession, auto_book: Optional[bool] = None):
        self.db = db
        self.auto_book = settings.AUTO_BOOK_ON_PROCESSING if auto_book is None else auto_book

    async def on_transition(self, order: Order, from_status: Optional[str], to_status: str) -> None:
        if to_status == OrderStatus.RTO_DELIVERED.value:
            from marketship.services.settlement_service import SettlementEngine

            result = await SettlementEngine(self.db).process_rto(order.id)
            logger.info(f"RTO settlement for order {order.order_number}: {result.status.value}")

        elif to_status == OrderStatus.PROCESSING.value and self.auto_book:
            from marketship.services.booking_pipeline import BookingPipeline

            result = await BookingPipeline(self.db).book_order(order.id)
            logger.info(f"Auto-booking for order {order.order_number}: {result.status.value} {result.message}")


def default_observers(db: AsyncSession) -> List[OrderTransitionObserver]:
    return [ShippingTransitionObserver(db)]
