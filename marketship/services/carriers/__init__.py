from marketship.services.carriers.base import CarrierAdapter
from marketship.services.carriers.bigship import BigShipAdapter
from marketship.services.carriers.registry import CARRIER_CLASSES, get_enabled_carriers, get_carrier
from marketship.services.carriers.shiprocket import ShiprocketAdapter
from marketship.services.carriers.types import (
    Address,
    LineItem,
    Shipment,
    RateQuote,
    BookingHandle,
    AwbResult,
    LabelResult,
    TrackingSnapshot,
)

__all__ = [
    "CarrierAdapter",
    "ShiprocketAdapter",
    "BigShipAdapter",
    "CARRIER_CLASSES",
    "get_enabled_carriers",
    "get_carrier",
    "Address",
    "LineItem",
    "Shipment",
    "RateQuote",
    "BookingHandle",
    "AwbResult",
    "LabelResult",
    "TrackingSnapshot",
]
