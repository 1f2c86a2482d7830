"""Data structures exchanged between the engine and carrier adapters."""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List, Dict, Any


@dataclass
class Address:
    """Pickup or delivery address."""
    name: str = ""
    phone: str = ""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = "India"
    email: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Address":
        data = data or {}
        return cls(
            name=data.get("name", ""),
            phone=str(data.get("phone", "")),
            line1=data.get("line1", data.get("address_line1", "")),
            line2=data.get("line2", data.get("address_line2", "")),
            city=data.get("city", ""),
            state=data.get("state", ""),
            pincode=str(data.get("pincode", "")).strip(),
            country=data.get("country", "India"),
            email=data.get("email", ""),
        )


@dataclass
class LineItem:
    name: str
    sku: str
    quantity: int = 1
    price: Decimal = Decimal("0")


@dataclass
class Shipment:
    """
    A parcel to quote or book.

    Built fresh for every booking or estimate request. The carrier fields are
    filled in by the selector once a winning quote is known.
    """
    order_id: str
    vendor_id: str
    origin: Address
    destination: Address
    weight_kg: float = 0.5
    length_cm: float = 10
    width_cm: float = 10
    height_cm: float = 10
    declared_value: Decimal = Decimal("0")
    payment_mode: str = "PREPAID"  # PREPAID or COD
    items: List[LineItem] = field(default_factory=list)

    # Set once a carrier is chosen
    carrier: Optional[str] = None
    courier_name: Optional[str] = None
    courier_id: Optional[str] = None

    @property
    def is_cod(self) -> bool:
        return self.payment_mode.upper() == "COD"


@dataclass(frozen=True)
class RateQuote:
    """One courier offer from one carrier platform."""
    carrier: str
    courier_name: str
    base_cost: Decimal
    zone: str = ""
    estimated_days: Optional[int] = None
    courier_id: Optional[str] = None


@dataclass
class BookingHandle:
    """Carrier-side identity of a booked shipment."""
    carrier: str
    shipment_id: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AwbResult:
    """Outcome of AWB assignment; success is decided by the carrier."""
    success: bool
    awb_code: str = ""
    courier_name: str = ""
    courier_id: Optional[str] = None
    message: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LabelResult:
    label_url: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrackingSnapshot:
    """Raw tracking payload for one AWB, parsed later by the synchronizer."""
    carrier: str
    awb_code: str
    payload: Any = None
