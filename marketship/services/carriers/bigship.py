"""
BigShip carrier adapter.

BigShip works on "system orders": a draft order is created first and rates
are fetched against it, so quoting and booking share the same system order
id. After courier selection the order must be manifested before an AWB can
be generated. Labels come back as base64 PDFs and are written to disk.

BigShip has no multi-AWB tracking endpoint; the synchronizer polls it one
AWB at a time with a pause between calls.
"""
import base64
import binascii
import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional, List, Dict, Any

from marketship.config import settings
from marketship.core.exceptions import CarrierAPIError
from marketship.services.carriers.base import CarrierAdapter, response_message, to_decimal, to_int, maybe_int
from marketship.services.carriers.types import (
    Shipment,
    RateQuote,
    BookingHandle,
    AwbResult,
    LabelResult,
    TrackingSnapshot,
)

logger = logging.getLogger(__name__)

ENDPOINT_LOGIN = "login/user"
ENDPOINT_ADD_ORDER = "order/add/single"
ENDPOINT_GET_QUOTES = "order/shipping/rates"
ENDPOINT_MANIFEST = "order/manifest/single"
ENDPOINT_SHIPMENT_DATA = "shipment/data"
ENDPOINT_TRACK = "order/tracking"
ENDPOINT_WALLET_BALANCE = "Wallet/balance/get"

# shipment/data document selectors
SHIPMENT_DATA_AWB = 1
SHIPMENT_DATA_LABEL = 2

SYSTEM_ORDER_ID_RE = re.compile(r"system_order_id is (\d+)")
UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9 \-/]")
UNSAFE_ADDRESS_RE = re.compile(r"[^A-Za-z0-9 .,\-/]")
UNSAFE_NAME_RE = re.compile(r"[^A-Za-z .]")


class BigShipAdapter(CarrierAdapter):
    """BigShip integration."""

    code = "bigship"
    name = "BigShip"
    requires_manifest = True

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        access_key: Optional[str] = None,
        warehouse_id: Optional[str] = None,
        label_dir: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("base_url", settings.BIGSHIP_API_URL)
        super().__init__(**kwargs)
        self.username = username if username is not None else settings.BIGSHIP_USERNAME
        self.password = password if password is not None else settings.BIGSHIP_PASSWORD
        self.access_key = access_key if access_key is not None else settings.BIGSHIP_ACCESS_KEY
        self.warehouse_id = warehouse_id if warehouse_id is not None else settings.BIGSHIP_WAREHOUSE_ID
        self.label_dir = Path(label_dir or settings.BIGSHIP_LABEL_DIR)
        # order id -> system order id created while quoting
        self._draft_orders: Dict[str, str] = {}

    async def _get_token(self) -> str:
        cached_token = await self.cache.get_carrier_token(self.code)
        if cached_token:
            return cached_token

        data = await self._request(
            "POST",
            ENDPOINT_LOGIN,
            data={
                "user_name": self.username,
                "password": self.password,
                "access_key": self.access_key,
            },
            authenticated=False,
        )
        token = data.get("token") or (data.get("data") or {}).get("token")
        if not token:
            raise CarrierAPIError(self.code, 401, data.get("message") or "Token not found", data)

        await self.cache.set_carrier_token(self.code, token, ttl=settings.BIGSHIP_TOKEN_TTL)
        return token

    async def _auth_headers(self) -> Dict[str, str]:
        token = await self._get_token()
        return {"Authorization": f"Bearer {token}"}

    # ==================== DRAFT ORDERS ====================

    async def _create_draft_order(self, shipment: Shipment) -> str:
        """Create the BigShip system order and return its id."""
        result = await self._request("POST", ENDPOINT_ADD_ORDER, data=self._order_payload(shipment))

        data_str = str(result.get("data") or "")
        match = SYSTEM_ORDER_ID_RE.search(data_str)
        if match:
            return match.group(1)

        message = str(result.get("message") or "")
        if result.get("responseCode") == 202 or "exists" in data_str.lower() or "exists" in message.lower():
            match = re.search(r"is (\d+)", message)
            if match:
                return match.group(1)
            if shipment.order_id in self._draft_orders:
                return self._draft_orders[shipment.order_id]

        raise CarrierAPIError(self.code, 200, message or "No system_order_id in response", result)

    def _order_payload(self, shipment: Shipment) -> Dict[str, Any]:
        dest = shipment.destination
        items = shipment.items or []
        total_qty = sum(item.quantity for item in items) or 1

        product_details = [
            {
                "product_category": "Others",
                "product_sub_category": "General",
                "product_name": _sanitize(item.name, 50) or f"Item {shipment.order_id}",
                "product_quantity": item.quantity,
                "each_product_invoice_amount": float(shipment.declared_value / total_qty),
                "each_product_collectable_amount": 0,
                "hsn": "",
            }
            for item in items
        ]

        first_name, last_name = _split_name(dest.name)
        collectable = float(shipment.declared_value) if shipment.is_cod else 0

        return {
            "shipment_category": "b2c",
            "warehouse_detail": {
                "pickup_location_id": maybe_int(self.warehouse_id),
                "return_location_id": maybe_int(self.warehouse_id),
            },
            "consignee_detail": {
                "first_name": first_name,
                "last_name": last_name,
                "company_name": "",
                "contact_number_primary": dest.phone,
                "email_id": dest.email,
                "consignee_address": {
                    "address_line1": _address_line(dest.line1, minimum=10),
                    "address_line2": _address_line(dest.line2),
                    "address_landmark": "",
                    "pincode": dest.pincode,
                },
            },
            "order_detail": {
                "invoice_date": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z"),
                "invoice_id": str(shipment.order_id),
                "payment_type": "COD" if shipment.is_cod else "Prepaid",
                "shipment_invoice_amount": float(shipment.declared_value),
                "total_collectable_amount": collectable,
                "ewaybill_number": "",
                "document_detail": {
                    "invoice_document_file": "",
                    "ewaybill_document_file": "",
                },
                "box_details": [
                    {
                        "each_box_dead_weight": shipment.weight_kg,
                        "each_box_length": int(shipment.length_cm),
                        "each_box_width": int(shipment.width_cm),
                        "each_box_height": int(shipment.height_cm),
                        "each_box_invoice_amount": float(shipment.declared_value),
                        "each_box_collectable_amount": collectable,
                        "box_count": 1,
                        "product_details": product_details,
                    }
                ],
            },
        }

    # ==================== RATES ====================

    async def quote(self, shipment: Shipment) -> List[RateQuote]:
        try:
            system_order_id = await self._create_draft_order(shipment)
            self._draft_orders[shipment.order_id] = system_order_id

            result = await self._request("GET", ENDPOINT_GET_QUOTES, params={
                "shipment_category": "B2C",
                "system_order_id": system_order_id,
            })
        except CarrierAPIError as e:
            logger.error(f"BigShip rates failed for {shipment.order_id}: {e}")
            return []

        quotes = []
        for rate in result.get("data") or []:
            if not isinstance(rate, dict):
                continue
            base = to_decimal(rate.get("total_shipping_charges", rate.get("freight_charges")))
            courier_name = str(rate.get("courier_name") or "").strip()
            if base <= 0 or not courier_name:
                logger.warning(f"Dropping invalid BigShip rate: base={base}, courier='{courier_name}'")
                continue
            quotes.append(RateQuote(
                carrier=self.code,
                courier_name=courier_name,
                base_cost=base,
                zone=str(rate.get("zone") or ""),
                estimated_days=to_int(rate.get("tat") or rate.get("edd")),
                courier_id=str(rate["courier_id"]) if rate.get("courier_id") else None,
            ))
        return quotes

    async def wallet_balance(self) -> Decimal:
        try:
            result = await self._request("GET", ENDPOINT_WALLET_BALANCE)
        except CarrierAPIError as e:
            logger.error(f"BigShip wallet balance failed: {e}")
            return Decimal("0")
        if not result.get("success"):
            return Decimal("0")
        # {"data": "20854.61", "success": true}
        return to_decimal(result.get("data"))

    def is_balance_error(self, response: Any) -> bool:
        message = response_message(response)
        return any(word in message for word in ("balance", "insufficient", "credit"))

    # ==================== BOOKING ====================

    async def book(self, shipment: Shipment) -> BookingHandle:
        """Reuse the system order created while quoting, or create it now."""
        if not shipment.courier_name:
            raise CarrierAPIError(self.code, 0, "No courier selected for BigShip booking")

        system_order_id = self._draft_orders.get(shipment.order_id)
        if not system_order_id:
            system_order_id = await self._create_draft_order(shipment)
            self._draft_orders[shipment.order_id] = system_order_id

        return BookingHandle(
            carrier=self.code,
            shipment_id=system_order_id,
            raw={"system_order_id": system_order_id, "courier_name": shipment.courier_name},
        )

    async def manifest(self, handle: BookingHandle, courier_id: Optional[str]) -> Dict[str, Any]:
        """Assign the selected courier to the system order. Required before AWB."""
        if not courier_id:
            return {}
        result = await self._request("POST", ENDPOINT_MANIFEST, data={
            "system_order_id": maybe_int(handle.shipment_id),
            "courier_id": maybe_int(courier_id),
        })
        if result.get("success") is False:
            raise CarrierAPIError(self.code, 200, str(result.get("message") or "Manifest failed"), result)
        return result

    async def generate_awb(self, handle: BookingHandle, courier_id: Optional[str] = None) -> AwbResult:
        """BigShip has no status flag for AWB assignment; a master_awb means success."""
        params: Dict[str, Any] = {
            "shipment_data_id": SHIPMENT_DATA_AWB,
            "system_order_id": maybe_int(handle.shipment_id),
        }
        if courier_id:
            params["courier_id"] = maybe_int(courier_id)

        try:
            result = await self._request("POST", ENDPOINT_SHIPMENT_DATA, params=params)
        except CarrierAPIError as e:
            return AwbResult(success=False, message=e.message, raw=e.payload)

        data = result.get("data") or {}
        if isinstance(data, dict) and data.get("master_awb"):
            return AwbResult(
                success=True,
                awb_code=str(data["master_awb"]),
                courier_name=data.get("courier_name", ""),
                courier_id=str(data["courier_id"]) if data.get("courier_id") else None,
                raw=result,
            )
        return AwbResult(success=False, message=str(result.get("message") or "AWB Generation Failed"), raw=result)

    async def get_label(self, handle: BookingHandle) -> LabelResult:
        try:
            result = await self._request("POST", ENDPOINT_SHIPMENT_DATA, params={
                "shipment_data_id": SHIPMENT_DATA_LABEL,
                "system_order_id": maybe_int(handle.shipment_id),
            })
        except CarrierAPIError as e:
            logger.error(f"BigShip label failed for {handle.shipment_id}: {e}")
            return LabelResult(raw=e.payload)

        content = (result.get("data") or {}).get("res_FileContent") if isinstance(result.get("data"), dict) else None
        if not content:
            return LabelResult(raw=result)

        try:
            pdf = base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError):
            logger.error(f"BigShip label for {handle.shipment_id} is not valid base64")
            return LabelResult(raw=result)

        filename = f"label-{handle.shipment_id}-{int(datetime.now(timezone.utc).timestamp())}.pdf"
        self.label_dir.mkdir(parents=True, exist_ok=True)
        (self.label_dir / filename).write_bytes(pdf)

        return LabelResult(
            label_url=f"{settings.BIGSHIP_LABEL_BASE_URL.rstrip('/')}/{filename}",
            raw={"filename": filename},
        )

    # ==================== TRACKING ====================

    async def track(self, awb_code: str) -> TrackingSnapshot:
        result = await self._request("GET", ENDPOINT_TRACK, params={
            "tracking_type": "awb",
            "tracking_id": awb_code,
        })
        return TrackingSnapshot(carrier=self.code, awb_code=awb_code, payload=result)


# ==================== HELPERS ====================

def _sanitize(value: str, limit: Optional[int] = None) -> str:
    """Keep only characters BigShip accepts in names (letters, digits, space, - and /)."""
    value = UNSAFE_CHARS_RE.sub("", value or "")
    value = re.sub(r"\s+", " ", value).strip()
    return value[:limit] if limit else value


def _address_line(value: str, minimum: int = 0) -> str:
    line = UNSAFE_ADDRESS_RE.sub("", value or "").strip()
    if minimum and len(line) < minimum:
        line = f"{line} Address...".strip()
    return line[:50]


def _split_name(full_name: str) -> tuple[str, str]:
    """BigShip wants first and last names of 3 to 25 letters."""
    parts = (full_name or "").strip().split(" ")
    first = parts[0] if parts else ""
    last = " ".join(parts[1:]) or "Customer"

    first = UNSAFE_NAME_RE.sub("", first).ljust(3, ".")[:25]
    last = UNSAFE_NAME_RE.sub("", last).ljust(3, ".")[:25]
    return first, last
