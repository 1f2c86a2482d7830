"""
Pricing Engine: splits a carrier's base cost between vendor and retailer.

Each party pays a configured percentage of the base cost (its share). On top
of the share a hidden cap is added, picked from the party's slab table by the
size of the share. Identities on the party's exclusion list pay the plain
share.

Worked example (share 50%, slab {min: 0, max: 100, percent: 10}):
    base 100 -> share 50 -> cap 5 -> charged 55
    same identity on the exclusion list -> charged 50
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

from marketship.schemas.pricing import PricingConfig, PartyType

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _share(base_cost: Decimal, party_type: str, config: PricingConfig) -> Decimal:
    return base_cost * (config.share_percent(party_type) / HUNDRED)


def calculate_share_and_cap(
    base_cost: Any,
    party_type: str,
    user_identity: Optional[Any] = None,
    config: Optional[PricingConfig] = None,
) -> Decimal:
    """
    Amount a party is charged for a shipment with the given base cost.

    Slabs are scanned in ascending `min` order and both boundaries are
    inclusive, so a share sitting exactly on a boundary shared by two slabs
    takes the lower slab (first match wins).
    """
    config = config or PricingConfig.from_settings()
    base_cost = Decimal(str(base_cost or 0))
    if base_cost <= 0:
        return Decimal("0.00")

    share = _share(base_cost, party_type, config)

    if config.is_excluded(party_type, user_identity):
        return quantize_money(share)

    for slab in config.slabs(party_type):
        if slab.matches(share):
            cap = share * (slab.percent / HUNDRED)
            return quantize_money(share + cap)

    return quantize_money(share)


def retailer_cap_amount(base_cost: Any, config: Optional[PricingConfig] = None) -> Decimal:
    """Hidden cap the retailer would pay on top of its share (no exclusions applied)."""
    config = config or PricingConfig.from_settings()
    base_cost = Decimal(str(base_cost or 0))
    if base_cost <= 0:
        return Decimal("0.00")
    retailer_price = calculate_share_and_cap(base_cost, PartyType.RETAILER, None, config)
    retailer_share = quantize_money(_share(base_cost, PartyType.RETAILER, config))
    return max(Decimal("0.00"), retailer_price - retailer_share)


@dataclass(frozen=True)
class BookingCosts:
    """Costs captured at booking time and read back by RTO settlement."""
    vendor_charge: Decimal
    base_cost: Decimal
    retailer_cap: Decimal


def booking_costs(
    base_cost: Any,
    vendor_identity: Optional[Any] = None,
    config: Optional[PricingConfig] = None,
) -> BookingCosts:
    config = config or PricingConfig.from_settings()
    base = quantize_money(Decimal(str(base_cost or 0)))
    costs = BookingCosts(
        vendor_charge=calculate_share_and_cap(base, PartyType.VENDOR, vendor_identity, config),
        base_cost=base,
        retailer_cap=retailer_cap_amount(base, config),
    )
    logger.debug(f"Booking costs for base {base}: {costs}")
    return costs
