"""Builds a Shipment from a stored order."""
from decimal import Decimal

from marketship.models.order import Order
from marketship.services.carriers.types import Address, LineItem, Shipment

DEFAULT_WEIGHT_KG = 0.5
DEFAULT_SIDE_CM = 10


def _positive(value, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def map_order(order: Order) -> Shipment:
    """Order -> Shipment. Missing or non-positive package values fall back to defaults."""
    package = order.package or {}

    items = [
        LineItem(
            name=item.get("name", "Product"),
            sku=item.get("sku") or f"SKU-{index}",
            quantity=int(item.get("quantity", item.get("qty", 1)) or 1),
            price=Decimal(str(item.get("price", 0) or 0)),
        )
        for index, item in enumerate(order.line_items or [])
    ]

    destination = Address.from_dict(order.shipping_address)
    if not destination.email and order.customer_email:
        destination.email = order.customer_email

    return Shipment(
        order_id=str(order.id),
        vendor_id=order.vendor_id,
        origin=Address.from_dict(order.pickup_address),
        destination=destination,
        weight_kg=_positive(package.get("weight_kg"), DEFAULT_WEIGHT_KG),
        length_cm=_positive(package.get("length_cm"), DEFAULT_SIDE_CM),
        width_cm=_positive(package.get("width_cm"), DEFAULT_SIDE_CM),
        height_cm=_positive(package.get("height_cm"), DEFAULT_SIDE_CM),
        declared_value=Decimal(str(order.total_amount or 0)),
        payment_mode=(order.payment_mode or "PREPAID").upper(),
        items=items,
    )
