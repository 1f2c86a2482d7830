"""
Logistics synchronizer.

Polls carriers for the tracking state of booked orders, records the latest
status on the order and detects returns to origin (RTO):

- RTO detected: order moves to RTO_INITIATED (once) with a note.
- RTO delivered: order moves to RTO_DELIVERED; the transition observer
  then runs the RTO settlement.

Background runs and manual refreshes are throttled per order. Syncs for the
same order are serialized in-process by a per-order lock; across processes
the order's version column turns a concurrent write into StaleDataError.
"""
import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from marketship.config import settings
from marketship.core.exceptions import CarrierAPIError, ShippingError, TrackingParseAmbiguous
from marketship.models.order import ACTIVE_LOGISTICS_STATES, RTO_STATES, Order, OrderStatus
from marketship.services.carriers.base import CarrierAdapter
from marketship.services.carriers.registry import get_enabled_carriers
from marketship.services.carriers.types import TrackingSnapshot
from marketship.services.order_observers import default_observers
from marketship.services.order_repository import MetaKeys, OrderRepository, OrderTransitionObserver

logger = logging.getLogger(__name__)


# ==================== TRACKING PARSERS ====================

@dataclass(frozen=True)
class TrackingStatus:
    status_label: str = ""
    is_rto: bool = False
    is_rto_delivered: bool = False
    reason: str = ""


SHIPROCKET_RTO_CODES = {11, 13, 14}
SHIPROCKET_RTO_DELIVERED_CODE = 11

BIGSHIP_RTO_STATUSES = {"Undelivered", "RTO In Transit", "RTO Delivered", "Lost"}
BIGSHIP_RTO_DELIVERED_STATUS = "RTO Delivered"


def _first(items: Any) -> Dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def parse_shiprocket(payload: Any) -> TrackingStatus:
    if not isinstance(payload, dict):
        raise TrackingParseAmbiguous("shiprocket", f"(type {type(payload).__name__})")

    data = payload.get("tracking_data") or payload.get("data")
    if not isinstance(data, dict):
        raise TrackingParseAmbiguous("shiprocket", "(no tracking_data)")

    status_label = str(_first(data.get("shipment_track")).get("current_status") or "")
    try:
        shipment_status = int(data.get("shipment_status") or 0)
    except (TypeError, ValueError):
        shipment_status = 0

    is_rto = shipment_status in SHIPROCKET_RTO_CODES or "RTO" in status_label.upper()
    if not is_rto:
        return TrackingStatus(status_label=status_label)

    reason = str(_first(data.get("shipment_track_activities")).get("activity") or status_label)
    return TrackingStatus(
        status_label=status_label,
        is_rto=True,
        is_rto_delivered=(
            shipment_status == SHIPROCKET_RTO_DELIVERED_CODE
            or status_label.strip().upper() == "RTO DELIVERED"
        ),
        reason=reason,
    )


def parse_bigship(payload: Any) -> TrackingStatus:
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise TrackingParseAmbiguous("bigship", "(no data object)")

    data = payload["data"]
    latest_scan = _first(data.get("scan_histories"))
    status_label = str((data.get("order_detail") or {}).get("current_tracking_status") or "")
    if not status_label:
        status_label = str(latest_scan.get("scan_status") or "")

    if status_label not in BIGSHIP_RTO_STATUSES:
        return TrackingStatus(status_label=status_label)

    reason = str(latest_scan.get("scan_remarks") or latest_scan.get("scan_status") or status_label)
    return TrackingStatus(
        status_label=status_label,
        is_rto=True,
        is_rto_delivered=status_label == BIGSHIP_RTO_DELIVERED_STATUS,
        reason=reason,
    )


TRACKING_PARSERS: Dict[str, Callable[[Any], TrackingStatus]] = {
    "shiprocket": parse_shiprocket,
    "bigship": parse_bigship,
}


def parse_tracking(carrier: str, payload: Any) -> TrackingStatus:
    """Parse a raw payload. Unrecognised shapes yield a blank status."""
    parser = TRACKING_PARSERS.get(carrier)
    if parser is None:
        logger.warning(f"No tracking parser for carrier {carrier}")
        return TrackingStatus()
    try:
        return parser(payload)
    except TrackingParseAmbiguous as e:
        logger.warning(str(e))
        return TrackingStatus()


# ==================== RESULTS ====================

@dataclass
class SyncOutcome:
    order_id: str
    success: bool
    message: str = ""
    status: str = ""
    is_rto: bool = False
    reason: str = ""
    rto_delivered: bool = False
    skipped: bool = False


@dataclass
class SyncReport:
    candidates: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    rto_detected: int = 0
    rto_delivered: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidates": self.candidates,
            "synced": self.synced,
            "skipped": self.skipped,
            "failed": self.failed,
            "rto_detected": self.rto_detected,
            "rto_delivered": self.rto_delivered,
            "errors": self.errors[:20],
        }


# Per-order locks, shared by every synchronizer in this process.
# An entry lives only while some task holds or waits on its lock.
_order_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _order_lock(order_id: uuid.UUID) -> asyncio.Lock:
    key = str(order_id)
    lock = _order_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _order_locks[key] = lock
    return lock


def _chunks(items: List[Tuple[uuid.UUID, str]], size: int) -> Iterable[List[Tuple[uuid.UUID, str]]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


# ==================== SYNCHRONIZER ====================

class LogisticsSynchronizer:
    """
    Tracking sync for booked orders.

    Usage:
        synchronizer = LogisticsSynchronizer(db)
        report = await synchronizer.sync_all()
        outcome = await synchronizer.sync_order(order_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        carriers: Optional[Callable[[], Mapping[str, CarrierAdapter]]] = None,
        observers: Optional[Iterable[OrderTransitionObserver]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.db = db
        self.repo = OrderRepository(db, default_observers(db) if observers is None else observers)
        self._carriers = carriers or get_enabled_carriers
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or asyncio.sleep

    # ==================== BATCH ====================

    async def sync_all(self) -> SyncReport:
        """Background sync of every active order with a carrier and an AWB."""
        report = SyncReport()
        now = self._clock()
        since = now - timedelta(days=settings.LOGISTICS_SYNC_LOOKBACK_DAYS)
        throttle = timedelta(hours=settings.LOGISTICS_SYNC_THROTTLE_HOURS)

        candidates = await self.repo.find_for_logistics_sync(ACTIVE_LOGISTICS_STATES, since)
        report.candidates = len(candidates)
        if not candidates:
            return report

        carriers = self._carriers()
        batched: Dict[str, List[Tuple[uuid.UUID, str]]] = {}
        for order, meta in candidates:
            if self._recently_synced(meta, now, throttle):
                report.skipped += 1
                continue

            platform = meta.get(MetaKeys.SHIPPING_PLATFORM) or ""
            if platform not in carriers:
                logger.warning(f"Order {order.order_number}: carrier {platform} not enabled, skipping sync")
                report.skipped += 1
                continue
            batched.setdefault(platform, []).append((order.id, meta[MetaKeys.AWB]))

        for code, entries in batched.items():
            adapter = carriers[code]
            if adapter.supports_bulk_tracking:
                await self._sync_bulk(adapter, entries, report)
            else:
                await self._sync_spaced(adapter, entries, report)

        logger.info(f"Logistics sync finished: {report.to_dict()}")
        return report

    async def _sync_bulk(self, adapter: CarrierAdapter, entries: List[Tuple[uuid.UUID, str]], report: SyncReport) -> None:
        for chunk in _chunks(entries, settings.LOGISTICS_BULK_CHUNK_SIZE):
            awb_to_order = {awb: order_id for order_id, awb in chunk}
            try:
                snapshots = await adapter.track_bulk(list(awb_to_order))
            except ShippingError as e:
                logger.error(f"Bulk tracking on {adapter.code} failed for {len(chunk)} orders: {e}")
                report.failed += len(chunk)
                report.errors.append(f"{adapter.code} bulk: {e}")
                continue

            for awb, snapshot in snapshots.items():
                order_id = awb_to_order.get(awb)
                if order_id is None:
                    continue
                await self._apply_guarded(order_id, adapter, snapshot, report)

    async def _sync_spaced(self, adapter: CarrierAdapter, entries: List[Tuple[uuid.UUID, str]], report: SyncReport) -> None:
        limited = entries[:settings.LOGISTICS_SPACED_LIMIT]
        report.skipped += len(entries) - len(limited)

        for index, (order_id, awb) in enumerate(limited):
            if index:
                await self._sleep(settings.LOGISTICS_SPACED_DELAY_SECONDS)
            try:
                snapshot = await adapter.track(awb)
            except ShippingError as e:
                logger.error(f"Tracking {awb} on {adapter.code} failed: {e}")
                report.failed += 1
                report.errors.append(f"{order_id}: {e}")
                continue
            await self._apply_guarded(order_id, adapter, snapshot, report)

    async def _apply_guarded(
        self,
        order_id: uuid.UUID,
        adapter: CarrierAdapter,
        snapshot: TrackingSnapshot,
        report: SyncReport,
    ) -> None:
        try:
            outcome = await self._apply_locked(order_id, adapter, snapshot)
        except (StaleDataError, SQLAlchemyError) as e:
            await self.db.rollback()
            logger.error(f"Tracking update for order {order_id} failed: {e}")
            report.failed += 1
            report.errors.append(f"{order_id}: {e}")
            return

        if not outcome.success:
            report.failed += 1
            report.errors.append(f"{order_id}: {outcome.message}")
            return

        report.synced += 1
        if outcome.is_rto:
            report.rto_detected += 1
        if outcome.rto_delivered:
            report.rto_delivered += 1

    # ==================== SINGLE ORDER ====================

    async def sync_order(self, order_id: uuid.UUID) -> SyncOutcome:
        """On-demand refresh for one order, throttled to one live call per 30 seconds."""
        key = str(order_id)
        order = await self.repo.get_order(order_id)
        if not order:
            return SyncOutcome(key, False, "Invalid order.")

        meta = await self.repo.get_all_meta(order.id)
        platform = meta.get(MetaKeys.SHIPPING_PLATFORM)
        if not platform:
            return SyncOutcome(key, False, "No shipping platform associated with this order.")

        awb = meta.get(MetaKeys.AWB)
        if not awb:
            return SyncOutcome(key, False, "No AWB found for this order.")

        throttle = timedelta(seconds=settings.LOGISTICS_MANUAL_THROTTLE_SECONDS)
        if self._recently_synced(meta, self._clock(), throttle):
            return SyncOutcome(
                key, True, "Recently synced.",
                status=meta.get(MetaKeys.LOGISTICS_STATUS) or "",
                is_rto=order.status in RTO_STATES,
                skipped=True,
            )

        adapter = self._carriers().get(platform)
        if adapter is None:
            return SyncOutcome(key, False, f"Adapter not found for platform: {platform}")

        try:
            snapshot = await adapter.track(awb)
        except CarrierAPIError as e:
            return SyncOutcome(key, False, e.message)

        order_number = order.order_number
        try:
            return await self._apply_locked(order.id, adapter, snapshot)
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning(f"Order {order_number} changed during tracking sync: {e}")
            return SyncOutcome(key, False, "Order was updated concurrently; try again.")

    # ==================== APPLY ====================

    async def _apply_locked(self, order_id: uuid.UUID, adapter: CarrierAdapter, snapshot: TrackingSnapshot) -> SyncOutcome:
        async with _order_lock(order_id):
            order = await self.repo.get_order_for_update(order_id)
            if not order:
                return SyncOutcome(str(order_id), False, "Invalid order.")
            return await self._apply(order, adapter, snapshot)

    async def _apply(self, order: Order, adapter: CarrierAdapter, snapshot: TrackingSnapshot) -> SyncOutcome:
        tracking = parse_tracking(adapter.code, snapshot.payload)
        now = self._clock()

        await self.repo.set_meta_many(order.id, {
            MetaKeys.LOGISTICS_STATUS: tracking.status_label,
            MetaKeys.LAST_LOGISTICS_SYNC: now.isoformat(),
        })

        message = "Synced"
        delivered = False
        if tracking.is_rto and order.status not in RTO_STATES:
            await self.repo.transition_status(
                order,
                OrderStatus.RTO_INITIATED.value,
                f"RTO detected. Status: {tracking.status_label}. Reason: {tracking.reason}",
            )
            await self.repo.set_meta_many(order.id, {
                MetaKeys.RTO_REASON: tracking.reason,
                MetaKeys.RTO_DATE: now.isoformat(),
            })
            logger.warning(f"RTO alert: order {order.order_number} is in RTO. Reason: {tracking.reason}")
            message = "RTO detected"

        await self.db.commit()

        if tracking.is_rto_delivered and order.status != OrderStatus.RTO_DELIVERED.value:
            await self.repo.transition_status(
                order,
                OrderStatus.RTO_DELIVERED.value,
                f"RTO delivered to origin. Status: {tracking.status_label}",
            )
            await self.db.commit()
            message = "RTO delivered"
            delivered = True

        return SyncOutcome(
            str(order.id),
            True,
            message,
            status=tracking.status_label,
            is_rto=tracking.is_rto,
            reason=tracking.reason,
            rto_delivered=delivered,
        )

    @staticmethod
    def _recently_synced(meta: Mapping[str, Optional[str]], now: datetime, window: timedelta) -> bool:
        last_sync = meta.get(MetaKeys.LAST_LOGISTICS_SYNC)
        if not last_sync:
            return False
        try:
            synced_at = datetime.fromisoformat(last_sync)
        except ValueError:
            return False
        if synced_at.tzinfo is None:
            synced_at = synced_at.replace(tzinfo=timezone.utc)
        return now - synced_at < window
