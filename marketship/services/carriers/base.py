"""
Carrier adapter contract.

Every carrier integration subclasses CarrierAdapter and implements the
required capability set:

    quote, book, manifest, generate_awb, get_label, track,
    wallet_balance, is_balance_error

Optional hooks (bulk tracking, post-booking steps, tracking URL) have safe
defaults here so a new carrier only overrides what it supports. Adding a
carrier means adding a subclass and registering it; nothing in the engine
dispatches on carrier names.
"""
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any

import httpx

from marketship.config import settings
from marketship.core.exceptions import CarrierAPIError
from marketship.services.cache_service import CacheService, get_cache
from marketship.services.carriers.types import (
    Shipment,
    RateQuote,
    BookingHandle,
    AwbResult,
    LabelResult,
    TrackingSnapshot,
)

logger = logging.getLogger(__name__)


class CarrierAdapter(ABC):
    """Abstract carrier adapter."""

    #: Platform tag stored on bookings and order meta
    code: str = ""
    #: Human readable name
    name: str = ""
    #: Carrier needs a manifest call before AWB assignment
    requires_manifest: bool = False
    #: Carrier accepts several AWBs in one tracking call
    supports_bulk_tracking: bool = False

    def __init__(
        self,
        base_url: str = "",
        cache: Optional[CacheService] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache = cache or get_cache()
        self._transport = transport
        self.timeout = timeout or settings.CARRIER_TIMEOUT_SECONDS

    # ==================== REQUIRED CAPABILITIES ====================

    @abstractmethod
    async def quote(self, shipment: Shipment) -> List[RateQuote]:
        """Courier offers for the shipment; empty list when not serviceable."""

    @abstractmethod
    async def book(self, shipment: Shipment) -> BookingHandle:
        """Create the shipment on the carrier. Raises CarrierAPIError."""

    async def manifest(self, handle: BookingHandle, courier_id: Optional[str]) -> Dict[str, Any]:
        """Pre-AWB manifest. No-op unless requires_manifest is set."""
        return {}

    @abstractmethod
    async def generate_awb(self, handle: BookingHandle, courier_id: Optional[str] = None) -> AwbResult:
        """Assign an AWB to the booked shipment."""

    @abstractmethod
    async def get_label(self, handle: BookingHandle) -> LabelResult:
        """Label for the booked shipment."""

    @abstractmethod
    async def track(self, awb_code: str) -> TrackingSnapshot:
        """Raw tracking payload for one AWB."""

    @abstractmethod
    async def wallet_balance(self) -> Decimal:
        """Prepaid balance available for bookings (0 when unknown)."""

    def is_balance_error(self, response: Any) -> bool:
        """True when a booking failure was caused by low wallet balance."""
        message = response_message(response)
        return any(word in message for word in ("balance", "insufficient", "recharge"))

    # ==================== OPTIONAL HOOKS ====================

    async def track_bulk(self, awb_codes: List[str]) -> Dict[str, TrackingSnapshot]:
        """Track several AWBs. Default loops over track()."""
        return {awb: await self.track(awb) for awb in awb_codes}

    async def after_booking(self, handle: BookingHandle) -> Dict[str, Any]:
        """Carrier specific post-booking steps (e.g. pickup request)."""
        return {}

    def tracking_url(self, awb_code: str) -> str:
        return ""

    # ==================== HTTP ====================

    async def _auth_headers(self) -> Dict[str, str]:
        return {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Any] = None,
        params: Optional[Dict] = None,
        authenticated: bool = True,
    ) -> Dict:
        """Make a request to the carrier API and return the decoded JSON body."""
        headers = {"Content-Type": "application/json"}
        if authenticated:
            headers.update(await self._auth_headers())

        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async with self._client() as client:
            try:
                response = await client.request(
                    method.upper(),
                    url,
                    headers=headers,
                    params=params,
                    json=data,
                )
            except httpx.HTTPError as e:
                logger.error(f"{self.name} request failed: {method} {endpoint}: {e}")
                raise CarrierAPIError(self.code, 0, str(e)) from e

            try:
                body = response.json() if response.text else {}
            except ValueError:
                body = {"message": response.text}

            # Handle errors
            if response.status_code >= 400:
                logger.error(f"{self.name} API error: {response.status_code} - {response.text}")
                message = body.get("message", response.text) if isinstance(body, dict) else response.text
                raise CarrierAPIError(self.code, response.status_code, str(message), body if isinstance(body, dict) else {})

            return body


def response_message(response: Any) -> str:
    """Lower-cased error text from a CarrierAPIError or a raw payload."""
    if isinstance(response, CarrierAPIError):
        parts = [response.message, str(response.payload.get("message", ""))]
        return " ".join(parts).lower()
    if isinstance(response, dict):
        return str(response.get("message") or response.get("error") or "").lower()
    if isinstance(response, Exception):
        return str(response).lower()
    return ""


def to_decimal(value: Any) -> Decimal:
    """Carrier amounts arrive as numbers or strings; anything unparseable is 0."""
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def maybe_int(value: Any) -> Any:
    """Numeric ids go out as ints, anything else as given."""
    return int(value) if str(value).isdigit() else value
