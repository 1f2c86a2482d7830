"""
Pricing configuration snapshot.

PricingConfig is built once per invocation (normally from settings) and
passed explicitly to the pricing engine, so a calculation never reads global
state half-way through.
"""
from decimal import Decimal
from typing import Optional, Tuple, FrozenSet, Iterable, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketship.config import Settings, settings as default_settings


class PartyType:
    VENDOR = "vendor"
    RETAILER = "retailer"


def normalize_identity(identity: Any) -> str:
    return str(identity or "").strip().lower()


class PricingSlab(BaseModel):
    """
    Hidden cap tier: shares between min and max (both inclusive) get an extra
    `percent` on top. max=None means unbounded.
    """
    model_config = ConfigDict(frozen=True)

    min: Decimal = Decimal("0")
    max: Optional[Decimal] = None
    percent: Decimal = Decimal("0")

    @field_validator("max", mode="before")
    @classmethod
    def blank_max_is_unbounded(cls, v):
        return None if v in ("", None) else v

    def matches(self, amount: Decimal) -> bool:
        return self.min <= amount and (self.max is None or amount <= self.max)


class PricingConfig(BaseModel):
    """Immutable pricing options for both parties."""
    model_config = ConfigDict(frozen=True)

    vendor_share_percent: Decimal = Decimal("50")
    retailer_share_percent: Decimal = Decimal("50")
    vendor_slabs: Tuple[PricingSlab, ...] = Field(default_factory=tuple)
    retailer_slabs: Tuple[PricingSlab, ...] = Field(default_factory=tuple)
    vendor_exclusions: FrozenSet[str] = Field(default_factory=frozenset)
    retailer_exclusions: FrozenSet[str] = Field(default_factory=frozenset)

    @field_validator("vendor_slabs", "retailer_slabs", mode="after")
    @classmethod
    def sort_slabs(cls, v: Tuple[PricingSlab, ...]) -> Tuple[PricingSlab, ...]:
        # Stable sort: slabs sharing a min keep their configured order
        return tuple(sorted(v, key=lambda slab: slab.min))

    @field_validator("vendor_exclusions", "retailer_exclusions", mode="before")
    @classmethod
    def normalize_exclusions(cls, v: Iterable[Any]) -> FrozenSet[str]:
        return frozenset(normalize_identity(item) for item in (v or []) if normalize_identity(item))

    def share_percent(self, party_type: str) -> Decimal:
        return self.vendor_share_percent if party_type == PartyType.VENDOR else self.retailer_share_percent

    def slabs(self, party_type: str) -> Tuple[PricingSlab, ...]:
        return self.vendor_slabs if party_type == PartyType.VENDOR else self.retailer_slabs

    def is_excluded(self, party_type: str, identity: Any) -> bool:
        key = normalize_identity(identity)
        if not key:
            return False
        exclusions = self.vendor_exclusions if party_type == PartyType.VENDOR else self.retailer_exclusions
        return key in exclusions

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PricingConfig":
        settings = settings or default_settings
        return cls(
            vendor_share_percent=Decimal(str(settings.VENDOR_SHIPPING_SHARE_PERCENT)),
            retailer_share_percent=Decimal(str(settings.RETAILER_SHIPPING_SHARE_PERCENT)),
            vendor_slabs=tuple(PricingSlab(**slab) for slab in settings.VENDOR_HIDDEN_CAP_SLABS),
            retailer_slabs=tuple(PricingSlab(**slab) for slab in settings.RETAILER_HIDDEN_CAP_SLABS),
            vendor_exclusions=settings.EXCLUDED_VENDOR_IDENTITIES,
            retailer_exclusions=settings.EXCLUDED_RETAILER_IDENTITIES,
        )
