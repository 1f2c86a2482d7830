"""
Shiprocket carrier adapter.

Handles the Shiprocket API calls the shipping engine needs:
- Authentication (token cached for 24 hours)
- Courier serviceability (rate quotes)
- Order creation, AWB assignment, label generation
- Pickup request after booking
- Single and bulk tracking
- Wallet balance

API Docs: https://apidocs.shiprocket.in/
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any

from marketship.config import settings
from marketship.core.exceptions import CarrierAPIError
from marketship.services.carriers.base import CarrierAdapter, to_decimal, to_int, maybe_int
from marketship.services.carriers.types import (
    Shipment,
    RateQuote,
    BookingHandle,
    AwbResult,
    LabelResult,
    TrackingSnapshot,
)

logger = logging.getLogger(__name__)


class ShiprocketOrderStatus(str, Enum):
    """Shiprocket shipment status labels."""
    NEW = "NEW"
    AWB_ASSIGNED = "AWB Assigned"
    PICKUP_SCHEDULED = "Pickup Scheduled"
    PICKUP_QUEUED = "Pickup Queued"
    PICKED_UP = "Picked Up"
    IN_TRANSIT = "In Transit"
    OUT_FOR_DELIVERY = "Out For Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Canceled"
    RTO_INITIATED = "RTO Initiated"
    RTO_IN_TRANSIT = "RTO In-Transit"
    RTO_DELIVERED = "RTO Delivered"
    LOST = "Lost"
    UNDELIVERED = "Undelivered"


class ShiprocketAdapter(CarrierAdapter):
    """
    Shiprocket integration.

    Usage:
        adapter = ShiprocketAdapter()

        quotes = await adapter.quote(shipment)
        handle = await adapter.book(shipment)
        awb = await adapter.generate_awb(handle, quotes[0].courier_id)
    """

    code = "shiprocket"
    name = "Shiprocket"
    supports_bulk_tracking = True

    def __init__(self, email: Optional[str] = None, password: Optional[str] = None, **kwargs):
        kwargs.setdefault("base_url", settings.SHIPROCKET_API_URL)
        super().__init__(**kwargs)
        self.email = email if email is not None else settings.SHIPROCKET_EMAIL
        self.password = password if password is not None else settings.SHIPROCKET_PASSWORD

    async def _get_token(self) -> str:
        """
        Get authentication token (with caching).

        Shiprocket tokens are valid for 10 days.
        We cache for 24 hours and refresh automatically.
        """
        cached_token = await self.cache.get_carrier_token(self.code)
        if cached_token:
            return cached_token

        data = await self._request(
            "POST",
            "/auth/login",
            data={"email": self.email, "password": self.password},
            authenticated=False,
        )
        token = data.get("token")
        if not token:
            raise CarrierAPIError(self.code, 401, "No token in Shiprocket auth response", data)

        await self.cache.set_carrier_token(self.code, token)
        return token

    async def _auth_headers(self) -> Dict[str, str]:
        token = await self._get_token()
        return {"Authorization": f"Bearer {token}"}

    # ==================== RATES ====================

    async def quote(self, shipment: Shipment) -> List[RateQuote]:
        """Serviceable couriers for the route, cheapest first. Zero rates are dropped."""
        params = {
            "pickup_postcode": shipment.origin.pincode,
            "delivery_postcode": shipment.destination.pincode,
            "weight": shipment.weight_kg,
            "cod": 1 if shipment.is_cod else 0,
        }
        if shipment.is_cod and shipment.declared_value:
            params["declared_value"] = float(shipment.declared_value)

        try:
            result = await self._request("GET", "/courier/serviceability/", params=params)
        except CarrierAPIError as e:
            logger.error(f"Shiprocket serviceability failed for {shipment.order_id}: {e}")
            return []

        available = (result.get("data") or {}).get("available_courier_companies") or []

        quotes = []
        for courier in available:
            rate = to_decimal(courier.get("freight_charge", courier.get("rate")))
            if rate <= 0:
                continue
            quotes.append(RateQuote(
                carrier=self.code,
                courier_name=courier.get("courier_name") or self.name,
                base_cost=rate,
                zone=courier.get("zone", ""),
                estimated_days=to_int(courier.get("estimated_delivery_days")),
                courier_id=str(courier["courier_company_id"]) if courier.get("courier_company_id") else None,
            ))

        quotes.sort(key=lambda q: q.base_cost)
        return quotes

    async def wallet_balance(self) -> Decimal:
        try:
            result = await self._request("GET", "/account/details/wallet-balance")
        except CarrierAPIError as e:
            logger.error(f"Shiprocket wallet balance failed: {e}")
            return Decimal("0")
        return to_decimal((result.get("data") or {}).get("balance_amount"))

    # ==================== BOOKING ====================

    async def book(self, shipment: Shipment) -> BookingHandle:
        """Create an adhoc order; the returned shipment id drives the rest of the pipeline."""
        items = shipment.items or []
        per_item_price = shipment.declared_value / max(1, len(items))
        order_items = [
            {
                "name": item.name,
                "sku": item.sku,
                "units": item.quantity,
                "selling_price": str(item.price or per_item_price),
                "discount": "",
                "tax": "",
                "hsn": "",
            }
            for item in items
        ]

        dest = shipment.destination
        payload = {
            # Shiprocket rejects reused channel order ids, even for cancelled orders
            "order_id": f"{shipment.order_id}-{int(datetime.now(timezone.utc).timestamp())}",
            "order_date": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M"),
            "pickup_location": settings.SHIPROCKET_DEFAULT_PICKUP_LOCATION,
            "billing_customer_name": dest.name,
            "billing_last_name": "",
            "billing_address": dest.line1,
            "billing_address_2": dest.line2,
            "billing_city": dest.city,
            "billing_pincode": dest.pincode,
            "billing_state": dest.state,
            "billing_country": dest.country,
            "billing_email": dest.email,
            "billing_phone": dest.phone,
            "shipping_is_billing": True,
            "order_items": order_items,
            "payment_method": "COD" if shipment.is_cod else "Prepaid",
            "shipping_charges": 0,
            "giftwrap_charges": 0,
            "transaction_charges": 0,
            "total_discount": 0,
            "sub_total": float(shipment.declared_value),
            "length": shipment.length_cm,
            "breadth": shipment.width_cm,
            "height": shipment.height_cm,
            "weight": shipment.weight_kg,
        }

        result = await self._request("POST", "/orders/create/adhoc", data=payload)

        shipment_id = result.get("shipment_id")
        if not shipment_id:
            raise CarrierAPIError(self.code, 200, result.get("message") or "No shipment_id in order response", result)

        logger.info(f"Shiprocket order created: {result.get('order_id')} -> Shipment: {shipment_id}")
        return BookingHandle(carrier=self.code, shipment_id=str(shipment_id), raw=result)

    async def generate_awb(self, handle: BookingHandle, courier_id: Optional[str] = None) -> AwbResult:
        """Assign AWB. Shiprocket reports success with awb_assign_status == 1."""
        payload: Dict[str, Any] = {"shipment_id": maybe_int(handle.shipment_id)}
        if courier_id:
            payload["courier_id"] = maybe_int(courier_id)

        try:
            result = await self._request("POST", "/courier/assign/awb", data=payload)
        except CarrierAPIError as e:
            return AwbResult(success=False, message=e.message, raw=e.payload)

        data = (result.get("response") or {}).get("data") or {}
        if result.get("awb_assign_status") == 1 and data.get("awb_code"):
            logger.info(f"AWB generated for shipment {handle.shipment_id}: {data.get('awb_code')}")
            return AwbResult(
                success=True,
                awb_code=str(data["awb_code"]),
                courier_name=data.get("courier_name", ""),
                courier_id=str(data["courier_company_id"]) if data.get("courier_company_id") else None,
                raw=result,
            )

        message = result.get("message") or data.get("awb_assign_error") or "AWB assignment failed"
        return AwbResult(success=False, message=message, raw=result)

    async def get_label(self, handle: BookingHandle) -> LabelResult:
        try:
            result = await self._request("POST", "/courier/generate/label", data={
                "shipment_id": [maybe_int(handle.shipment_id)]
            })
        except CarrierAPIError as e:
            logger.error(f"Shiprocket label failed for shipment {handle.shipment_id}: {e}")
            return LabelResult(raw=e.payload)

        return LabelResult(label_url=result.get("label_url") or "", raw=result)

    async def after_booking(self, handle: BookingHandle) -> Dict[str, Any]:
        """Request pickup. Queued pickups count as scheduled."""
        result = await self._request("POST", "/courier/generate/pickup", data={
            "shipment_id": [maybe_int(handle.shipment_id)]
        })
        scheduled = result.get("pickup_status") == 1 or "queue" in str(result.get("message", "")).lower()
        return {"pickup_status": 1 if scheduled else 0, "pickup_message": str(result.get("message", ""))}

    # ==================== TRACKING ====================

    async def track(self, awb_code: str) -> TrackingSnapshot:
        result = await self._request("GET", f"/courier/track/awb/{awb_code}")
        return TrackingSnapshot(carrier=self.code, awb_code=awb_code, payload=result)

    async def track_bulk(self, awb_codes: List[str]) -> Dict[str, TrackingSnapshot]:
        """
        Track up to 50 AWBs in one call.

        The response is either a mapping keyed by AWB or a list of tracking
        objects that carry their AWB inside shipment_track.
        """
        result = await self._request("POST", "/courier/track/awbs", data={"awbs": awb_codes})
        entries = result.get("data", result) if isinstance(result, dict) else result

        snapshots: Dict[str, TrackingSnapshot] = {}
        if isinstance(entries, dict):
            for awb, info in entries.items():
                snapshots[str(awb)] = TrackingSnapshot(carrier=self.code, awb_code=str(awb), payload=info)
        elif isinstance(entries, list):
            for info in entries:
                awb = _nested_awb(info)
                if awb:
                    snapshots[awb] = TrackingSnapshot(carrier=self.code, awb_code=awb, payload=info)
        return snapshots

    def tracking_url(self, awb_code: str) -> str:
        return f"https://shiprocket.co/tracking/{awb_code}"


# ==================== HELPERS ====================

def _nested_awb(info: Any) -> Optional[str]:
    if not isinstance(info, dict):
        return None
    tracking_data = info.get("tracking_data") or {}
    track = tracking_data.get("shipment_track") or [{}]
    awb = track[0].get("awb_code") if isinstance(track, list) and track else None
    return str(awb) if awb else None
