"""
Order shipping API endpoints.

- Book a shipping label (cheapest funded carrier)
- Refresh tracking on demand
- Run RTO settlement
"""
import uuid
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status

from marketship.api.deps import DB
from marketship.schemas.base import BaseResponseSchema, Money
from marketship.services.booking_pipeline import BookingPipeline, BookingStatus
from marketship.services.logistics_sync import LogisticsSynchronizer
from marketship.services.settlement_service import SettlementEngine, SettlementStatus

logger = logging.getLogger(__name__)

router = APIRouter()


# ==================== SCHEMAS ====================

class BookingResponse(BaseResponseSchema):
    success: bool
    status: str
    message: str = ""
    carrier: Optional[str] = None
    courier_name: Optional[str] = None
    awb_code: Optional[str] = None
    label_url: Optional[str] = None
    shipping_cost: Optional[Money] = None


class TrackingRefreshResponse(BaseResponseSchema):
    success: bool
    status: str = ""
    is_rto: bool = False
    reason: str = ""
    message: str = ""


class SettlementResponse(BaseResponseSchema):
    status: str
    vendor_refund: Money
    buyer_penalty: Money
    buyer_refund: Money
    message: str = ""


# ==================== ENDPOINTS ====================

@router.post(
    "/{order_id}/book",
    response_model=BookingResponse,
    summary="Book shipping label",
    description="Quote every enabled carrier, book the cheapest funded one and generate the label. An order that already has a label reports DUPLICATE."
)
async def book_order(order_id: uuid.UUID, db: DB):
    result = await BookingPipeline(db).book_order(order_id)

    # An existing label is a no-op, not an error
    if not result.success and result.status != BookingStatus.DUPLICATE:
        if result.message == "Order not found":
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.message)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.message)

    return BookingResponse(
        success=result.success,
        status=result.status.value,
        message=result.message,
        carrier=result.carrier,
        courier_name=result.courier_name,
        awb_code=result.awb_code,
        label_url=result.label_url,
        shipping_cost=result.shipping_cost,
    )


@router.post(
    "/{order_id}/tracking/refresh",
    response_model=TrackingRefreshResponse,
    summary="Refresh tracking",
    description="Fetch live tracking for the order. Repeated refreshes within 30 seconds return the stored status."
)
async def refresh_tracking(order_id: uuid.UUID, db: DB):
    outcome = await LogisticsSynchronizer(db).sync_order(order_id)

    if not outcome.success:
        if outcome.message == "Invalid order.":
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=outcome.message)

    return TrackingRefreshResponse(
        success=True,
        status=outcome.status,
        is_rto=outcome.is_rto,
        reason=outcome.reason,
        message=outcome.message,
    )


@router.post(
    "/{order_id}/rto-settlement",
    response_model=SettlementResponse,
    summary="Run RTO settlement",
    description="Refund the vendor's shipping charge and the buyer's order total minus the RTO penalty. Runs once per order, only after the parcel is back with the vendor. A repeat call reports ALREADY_PROCESSED."
)
async def rto_settlement(order_id: uuid.UUID, db: DB):
    result = await SettlementEngine(db).process_rto(order_id)

    if result.status == SettlementStatus.NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if result.status == SettlementStatus.NOT_ELIGIBLE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)

    return SettlementResponse(
        status=result.status.value,
        vendor_refund=result.vendor_refund,
        buyer_penalty=result.buyer_penalty,
        buyer_refund=result.buyer_refund,
        message=result.message,
    )
