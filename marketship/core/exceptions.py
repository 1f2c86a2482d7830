"""
Shipping engine error types.

Propagation policy:
- CarrierAPIError / AdapterDataError are absorbed at the adapter or
  aggregator boundary and turn into "no quotes".
- BalanceInsufficient drives the exclude-and-retry loop of the carrier
  selector and never leaves it.
- NoViableCarrier / BookingFatalError end a booking attempt and are
  reported to the caller as a failed BookingResult.
- DuplicateBookingError / SettlementAlreadyProcessed mark benign no-ops.
- TrackingParseAmbiguous leaves the tracking status blank.
"""
from typing import Any, Dict, Optional


class ShippingError(Exception):
    """Base class for shipping engine errors."""


class CarrierAPIError(ShippingError):
    """Carrier HTTP/API error."""

    def __init__(self, carrier: str, status_code: int, message: str, payload: Optional[Dict[str, Any]] = None):
        self.carrier = carrier
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}
        super().__init__(f"{carrier} API Error ({status_code}): {message}")


class AdapterDataError(ShippingError):
    """Carrier returned a response the adapter contract does not allow."""

    def __init__(self, carrier: str, detail: str):
        self.carrier = carrier
        self.detail = detail
        super().__init__(f"Malformed response from {carrier}: {detail}")


class BalanceInsufficient(ShippingError):
    """Carrier wallet cannot fund the selected quote."""

    def __init__(self, carrier: str, message: str = ""):
        self.carrier = carrier
        super().__init__(f"Insufficient balance on {carrier}: {message}" if message else f"Insufficient balance on {carrier}")


class NoViableCarrier(ShippingError):
    """Every carrier was excluded or none returned a quote."""

    def __init__(self, excluded: Optional[frozenset] = None):
        self.excluded = excluded or frozenset()
        detail = f" (excluded: {', '.join(sorted(self.excluded))})" if self.excluded else ""
        super().__init__(f"No rates with balance found{detail}")


class BookingFatalError(ShippingError):
    """Non-balance failure while booking, manifesting, assigning AWB or fetching the label."""

    def __init__(self, step: str, message: str, carrier: Optional[str] = None):
        self.step = step
        self.carrier = carrier
        self.message = message
        super().__init__(f"{step} failed: {message}")


class DuplicateBookingError(ShippingError):
    """A booking record already exists for the order."""

    def __init__(self, order_id: Any):
        self.order_id = order_id
        super().__init__(f"Label already generated for order {order_id}")


class TrackingParseAmbiguous(ShippingError):
    """Tracking payload shape was not recognised."""

    def __init__(self, carrier: str, detail: str = ""):
        self.carrier = carrier
        super().__init__(f"Unrecognised {carrier} tracking payload {detail}".strip())


class SettlementAlreadyProcessed(ShippingError):
    """RTO settlement already ran for the order."""

    def __init__(self, order_id: Any):
        self.order_id = order_id
        super().__init__(f"RTO settlement already processed for order {order_id}")
