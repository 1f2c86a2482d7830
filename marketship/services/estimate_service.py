"""
Pre-checkout shipping estimates.

Vendor estimate: price spread across zones for one package, quoted against
one hub pincode per zone and cached per (vendor, origin, slab).

Checkout quote: the retailer's price for a single cart, taken from the first
carrier in priority order that returns a usable rate.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketship.core.exceptions import NoViableCarrier
from marketship.schemas.pricing import PricingConfig, PartyType
from marketship.services.carrier_selector import BalanceAwareSelector, build_candidates, cheapest
from marketship.services.carriers.base import CarrierAdapter
from marketship.services.carriers.registry import get_enabled_carriers
from marketship.services.carriers.types import Address, LineItem, Shipment
from marketship.services.estimate_cache import EstimateCache
from marketship.services.pricing_engine import calculate_share_and_cap
from marketship.services.rate_aggregator import RateAggregator
from marketship.services.slab_engine import WeightSlab, classify
from marketship.services.zone_resolver import ZoneResolver

logger = logging.getLogger(__name__)

ESTIMATE_DECLARED_VALUE = Decimal("1000")


@dataclass
class VendorEstimate:
    slab: WeightSlab
    min_price: Optional[Decimal]
    max_price: Optional[Decimal]
    zones: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    cached: bool = False


@dataclass
class CheckoutQuote:
    carrier: str
    courier_name: str
    base_cost: Decimal
    retailer_price: Decimal
    zone: str = ""
    estimated_days: Optional[int] = None


class EstimateService:
    """Service for vendor estimates and checkout quotes."""

    def __init__(
        self,
        db: AsyncSession,
        carriers: Optional[Callable[[], Mapping[str, CarrierAdapter]]] = None,
        pricing_config: Optional[PricingConfig] = None,
        cache: Optional[EstimateCache] = None,
    ):
        self.db = db
        self.cache = cache or EstimateCache(db)
        self.aggregator = RateAggregator()
        self.selector = BalanceAwareSelector()
        self.zones = ZoneResolver()
        self._carriers = carriers or get_enabled_carriers
        self.pricing_config = pricing_config

    def _config(self) -> PricingConfig:
        return self.pricing_config or PricingConfig.from_settings()

    # ==================== VENDOR ESTIMATE ====================

    async def estimate_for_vendor(
        self,
        vendor_id: str,
        origin_pincode: str,
        weight_kg: float,
        length_cm: float,
        width_cm: float,
        height_cm: float,
        vendor_identity: Optional[str] = None,
        refresh: bool = False,
    ) -> VendorEstimate:
        weight_slab = classify(weight_kg, length_cm, width_cm, height_cm)

        if not refresh:
            entry = await self.cache.get(vendor_id, origin_pincode, weight_slab.slab)
            if entry:
                return VendorEstimate(weight_slab, entry.min_price, entry.max_price, entry.zone_data, cached=True)

        config = self._config()
        carriers = self._carriers()
        labels = self.zones.zone_labels()
        zones: Dict[str, Dict[str, Any]] = {}

        for zone, destination in self.zones.zone_table(origin_pincode).items():
            shipment = Shipment(
                order_id=f"EST-{uuid.uuid4().hex[:12]}",
                vendor_id=vendor_id,
                origin=Address(pincode=origin_pincode),
                destination=Address(pincode=destination),
                weight_kg=weight_slab.slab,
                declared_value=ESTIMATE_DECLARED_VALUE,
                items=[LineItem(name="Estimate Item", sku="EST-1", price=ESTIMATE_DECLARED_VALUE)],
            )
            quotes = await self.aggregator.collect(shipment, carriers)
            try:
                selection = await self.selector.select(shipment, quotes, carriers, book=False)
            except NoViableCarrier:
                logger.warning(f"No estimate for zone {zone} (origin {origin_pincode}, slab {weight_slab.slab})")
                continue

            quote = selection.quote
            zones[zone] = {
                "label": labels.get(zone, zone),
                "pincode": destination,
                "carrier": quote.carrier,
                "courier_name": quote.courier_name,
                "base_cost": str(quote.base_cost),
                "price": str(calculate_share_and_cap(quote.base_cost, PartyType.VENDOR, vendor_identity, config)),
                "estimated_days": quote.estimated_days,
            }

        if not zones:
            return VendorEstimate(weight_slab, None, None, {}, cached=False)

        prices = [Decimal(z["price"]) for z in zones.values()]
        min_price, max_price = min(prices), max(prices)

        await self.cache.set(vendor_id, origin_pincode, weight_slab.slab, min_price, max_price, zones)
        await self.db.commit()

        return VendorEstimate(weight_slab, min_price, max_price, zones, cached=False)

    # ==================== CHECKOUT QUOTE ====================

    async def checkout_quote(
        self,
        origin: Address,
        destination: Address,
        weight_kg: float,
        length_cm: float,
        width_cm: float,
        height_cm: float,
        declared_value: Decimal,
        payment_mode: str = "PREPAID",
        retailer_identity: Optional[str] = None,
    ) -> Optional[CheckoutQuote]:
        """First carrier (in priority order) with a positive quote wins; later carriers are fallbacks."""
        shipment = Shipment(
            order_id=f"CHK-{uuid.uuid4().hex[:12]}",
            vendor_id="",
            origin=origin,
            destination=destination,
            weight_kg=weight_kg,
            length_cm=length_cm,
            width_cm=width_cm,
            height_cm=height_cm,
            declared_value=Decimal(str(declared_value)),
            payment_mode=payment_mode.upper(),
        )

        for code, adapter in self._carriers().items():
            quotes = await self.aggregator.collect(shipment, {code: adapter})
            best = cheapest(build_candidates(quotes, {code: 0}, frozenset()))
            if best is None or best.quote.base_cost <= 0:
                continue

            quote = best.quote
            return CheckoutQuote(
                carrier=quote.carrier,
                courier_name=quote.courier_name,
                base_cost=quote.base_cost,
                retailer_price=calculate_share_and_cap(
                    quote.base_cost, PartyType.RETAILER, retailer_identity, self._config()
                ),
                zone=quote.zone,
                estimated_days=quote.estimated_days,
            )

        logger.info(f"No checkout quote for {origin.pincode} -> {destination.pincode}")
        return None
