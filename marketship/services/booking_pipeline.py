"""
Booking pipeline: quote -> select/book -> manifest -> AWB -> label -> persist.

Steps up to and including persistence are all-or-nothing: any failure before
the BookingRecord insert leaves nothing behind in the database. Everything
after persistence (pricing, wallet debit, pickup, tracking display) is
best-effort and can never turn a booked order into a failed booking.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketship.core.exceptions import (
    BookingFatalError,
    CarrierAPIError,
    DuplicateBookingError,
    NoViableCarrier,
    ShippingError,
)
from marketship.models.booking import BookingRecord
from marketship.models.order import Order, TERMINAL_ORDER_STATES
from marketship.schemas.pricing import PricingConfig
from marketship.services.carrier_selector import BalanceAwareSelector, Selection
from marketship.services.carriers.base import CarrierAdapter
from marketship.services.carriers.registry import get_enabled_carriers
from marketship.services.carriers.types import AwbResult, LabelResult
from marketship.services.order_mapper import map_order
from marketship.services.order_repository import MetaKeys, OrderRepository
from marketship.services.pricing_engine import booking_costs
from marketship.services.rate_aggregator import RateAggregator
from marketship.services.wallet_service import WalletService

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    BOOKED = "BOOKED"
    DUPLICATE = "DUPLICATE"
    FAILED = "FAILED"


@dataclass
class BookingResult:
    status: BookingStatus
    order_id: str
    message: str = ""
    carrier: Optional[str] = None
    courier_name: Optional[str] = None
    awb_code: Optional[str] = None
    label_url: Optional[str] = None
    shipping_cost: Optional[Decimal] = None
    rounds: int = 0

    @property
    def success(self) -> bool:
        return self.status == BookingStatus.BOOKED


class TrackingDisplay(Protocol):
    """Shows booking facts (AWB, courier, tracking link) wherever buyers and vendors look."""

    async def publish(self, order_id: uuid.UUID, awb_code: str, courier_name: str, tracking_url: str) -> None:
        ...


class MetaTrackingDisplay:
    """Default display: writes the tracking facts to order meta."""

    def __init__(self, repo: OrderRepository):
        self.repo = repo

    async def publish(self, order_id: uuid.UUID, awb_code: str, courier_name: str, tracking_url: str) -> None:
        await self.repo.set_meta_many(order_id, {
            MetaKeys.COURIER_NAME: courier_name,
            MetaKeys.TRACKING_URL: tracking_url,
        })


class BookingPipeline:
    """
    Books a shipping label for an order.

    Usage:
        pipeline = BookingPipeline(db)
        result = await pipeline.book_order(order_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        carriers: Optional[Callable[[], Mapping[str, CarrierAdapter]]] = None,
        pricing_config: Optional[PricingConfig] = None,
        tracking_display: Optional[TrackingDisplay] = None,
    ):
        self.db = db
        self.repo = OrderRepository(db)
        self.wallet = WalletService(db)
        self.aggregator = RateAggregator()
        self.selector = BalanceAwareSelector()
        self._carriers = carriers or get_enabled_carriers
        self.pricing_config = pricing_config
        self.tracking_display = tracking_display or MetaTrackingDisplay(self.repo)

    async def book_order(self, order_id: uuid.UUID) -> BookingResult:
        order_key = str(order_id)

        order = await self.repo.get_order(order_id)
        if not order:
            return BookingResult(BookingStatus.FAILED, order_key, "Order not found")

        # Short-circuit before any carrier call; the insert in _persist is the real guard
        if await self.db.get(BookingRecord, order.id):
            logger.info(f"Order {order.order_number} already has a label; skipping booking")
            return BookingResult(BookingStatus.DUPLICATE, order_key, "Label already generated.")

        if order.status in TERMINAL_ORDER_STATES:
            return BookingResult(
                BookingStatus.FAILED,
                order_key,
                f"Order is {order.status}; labels cannot be generated for it",
            )

        # ==================== Steps 1-5: all-or-nothing ====================
        try:
            selection = await self._select_and_book(order)
            awb = await self._assign_awb(selection)
            label = await self._fetch_label(selection)
            record = await self._persist(order, selection, awb, label)
        except DuplicateBookingError as e:
            return BookingResult(BookingStatus.DUPLICATE, order_key, str(e))
        except NoViableCarrier as e:
            logger.error(f"Booking failed for order {order.order_number}: {e}")
            return BookingResult(BookingStatus.FAILED, order_key, f"Shipping failed: {e}")
        except BookingFatalError as e:
            logger.error(f"Booking failed for order {order.order_number} at {e.step}: {e.message}")
            return BookingResult(BookingStatus.FAILED, order_key, str(e), carrier=e.carrier)

        logger.info(
            f"Label generated for order {order.order_number}: {record.carrier} AWB {record.awb_code}"
        )
        result = BookingResult(
            BookingStatus.BOOKED,
            order_key,
            "Label generated successfully",
            carrier=record.carrier,
            courier_name=record.courier_name or selection.quote.courier_name,
            awb_code=record.awb_code,
            label_url=record.label_url,
            rounds=selection.rounds,
        )

        # ==================== Steps 6-8: best-effort ====================
        result.shipping_cost = await self._apply_pricing(order, selection)
        await self._run_after_booking(order, selection)
        await self._publish_tracking(order, selection, result)
        return result

    # ==================== STEPS ====================

    async def _select_and_book(self, order: Order) -> Selection:
        shipment = map_order(order)
        carriers = self._carriers()
        quotes = await self.aggregator.collect(shipment, carriers)
        selection = await self.selector.select(shipment, quotes, carriers)

        adapter = selection.adapter
        if adapter.requires_manifest and selection.shipment.courier_id:
            try:
                await adapter.manifest(selection.handle, selection.shipment.courier_id)
            except CarrierAPIError as e:
                raise BookingFatalError("manifest", e.message, adapter.code) from e
        return selection

    async def _assign_awb(self, selection: Selection) -> AwbResult:
        adapter = selection.adapter
        try:
            awb = await adapter.generate_awb(selection.handle, selection.shipment.courier_id)
        except CarrierAPIError as e:
            raise BookingFatalError("awb", e.message, adapter.code) from e

        if not awb.success or not awb.awb_code:
            raise BookingFatalError("awb", awb.message or "AWB assignment failed.", adapter.code)
        return awb

    async def _fetch_label(self, selection: Selection) -> LabelResult:
        adapter = selection.adapter
        try:
            label = await adapter.get_label(selection.handle)
        except CarrierAPIError as e:
            raise BookingFatalError("label", e.message, adapter.code) from e

        if not label.label_url:
            raise BookingFatalError("label", "Label URL not found in response.", adapter.code)
        return label

    async def _persist(self, order: Order, selection: Selection, awb: AwbResult, label: LabelResult) -> BookingRecord:
        """Single insert keyed by order id; a conflicting insert means someone else booked first."""
        order_id = order.id
        courier_name = awb.courier_name or selection.quote.courier_name
        courier_id = awb.courier_id or selection.quote.courier_id
        record = BookingRecord(
            order_id=order_id,
            carrier=selection.adapter.code,
            carrier_shipment_id=selection.handle.shipment_id,
            awb_code=awb.awb_code,
            courier_name=courier_name,
            courier_id=courier_id,
            label_url=label.label_url,
        )

        try:
            self.db.add(record)
            await self.db.flush()
        except IntegrityError as e:
            # Rollback expires order; only order_id is safe to read below
            await self.db.rollback()
            logger.warning(f"Booking record already exists for order {order_id}: {e.orig}")
            raise DuplicateBookingError(order_id) from e

        meta: Dict[str, object] = {
            MetaKeys.SHIPPING_PLATFORM: record.carrier,
            MetaKeys.SHIPMENT_ID: record.carrier_shipment_id,
            MetaKeys.AWB: record.awb_code,
            MetaKeys.LABEL_URL: record.label_url,
            MetaKeys.LABEL_STATUS: 1,
            MetaKeys.SHIPPING_DATE: record.booked_at.isoformat(),
            MetaKeys.COURIER_NAME: courier_name,
            MetaKeys.COURIER_ID: courier_id,
        }
        if selection.adapter.requires_manifest and selection.shipment.courier_id:
            meta[MetaKeys.MANIFEST_STATUS] = 1
        await self.repo.set_meta_many(order.id, meta)
        await self.db.commit()
        return record

    async def _apply_pricing(self, order: Order, selection: Selection) -> Optional[Decimal]:
        """Store the cost split and debit the vendor. Never fails the booking."""
        order_number = order.order_number
        try:
            config = self.pricing_config or PricingConfig.from_settings()
            costs = booking_costs(selection.quote.base_cost, order.vendor_email or order.vendor_id, config)

            meta: Dict[str, object] = {
                MetaKeys.SHIPPING_COST: costs.vendor_charge,
                MetaKeys.BASE_SHIPPING_COST: costs.base_cost,
                MetaKeys.RETAILER_CAP_AMOUNT: costs.retailer_cap,
            }
            if costs.vendor_charge > 0:
                meta[MetaKeys.VENDOR_DEBIT_TRANSACTION] = await self.wallet.debit(
                    order.vendor_id,
                    costs.vendor_charge,
                    f"Shipping charge for order #{order_number}",
                    order_id=order.id,
                )
            await self.repo.set_meta_many(order.id, meta)
            await self.db.commit()
            return costs.vendor_charge
        except (SQLAlchemyError, ValueError) as e:
            await self._rollback_and_reload(order)
            logger.error(f"Pricing after booking failed for order {order_number}: {e}")
            return None

    async def _run_after_booking(self, order: Order, selection: Selection) -> None:
        adapter = selection.adapter
        order_number = order.order_number
        try:
            outcome = await adapter.after_booking(selection.handle)
            if outcome:
                await self.repo.set_meta_many(order.id, outcome)
                await self.db.commit()
        except ShippingError as e:
            logger.warning(f"Post-booking step on {adapter.code} failed for order {order_number}: {e}")
            try:
                await self.repo.add_note(order, f"Post-booking step on {adapter.name} failed: {e}")
                await self.db.commit()
            except SQLAlchemyError as db_error:
                await self._rollback_and_reload(order)
                logger.error(f"Could not record post-booking failure for {order_number}: {db_error}")
        except SQLAlchemyError as e:
            await self._rollback_and_reload(order)
            logger.error(f"Could not store post-booking outcome for {order_number}: {e}")

    async def _publish_tracking(self, order: Order, selection: Selection, result: BookingResult) -> None:
        order_number = order.order_number
        try:
            await self.tracking_display.publish(
                order.id,
                result.awb_code,
                result.courier_name,
                selection.adapter.tracking_url(result.awb_code),
            )
            await self.db.commit()
        except Exception as e:
            await self._rollback_and_reload(order)
            logger.warning(f"Tracking display update failed for order {order_number}: {e}")

    async def _rollback_and_reload(self, order: Order) -> None:
        """Roll back a failed best-effort step; the order is reloaded for the steps after it."""
        await self.db.rollback()
        await self.db.refresh(order)
