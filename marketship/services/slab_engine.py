"""
Weight slab classification.

Carriers bill the larger of the dead weight and the volumetric weight,
rounded up to the next half kilogram. Estimates and the estimate cache are
keyed on that half-kilogram slab.
"""
import hashlib
import math
from dataclasses import dataclass

VOLUMETRIC_DIVISOR = 5000
SLAB_STEP_PER_KG = 2  # half-kilogram slabs
MAX_SLAB_KG = 10.0  # packaging category limit


@dataclass(frozen=True)
class WeightSlab:
    dead_weight: float
    volumetric_weight: float
    chargeable_weight: float
    slab: float

    def to_dict(self) -> dict:
        return {
            "dead_weight": self.dead_weight,
            "volumetric_weight": self.volumetric_weight,
            "chargeable_weight": self.chargeable_weight,
            "slab": self.slab,
        }


def calculate_volumetric_weight(length_cm: float, width_cm: float, height_cm: float) -> float:
    """Calculate volumetric weight from dimensions."""
    return (length_cm * width_cm * height_cm) / VOLUMETRIC_DIVISOR


def classify(dead_weight: float, length_cm: float, width_cm: float, height_cm: float) -> WeightSlab:
    """
    Classify a package into its billing slab.

    The slab is taken from the unrounded chargeable weight; the reported
    volumetric and chargeable weights are rounded to 3 decimals.
    """
    dead_weight = float(dead_weight or 0)
    volumetric = calculate_volumetric_weight(float(length_cm or 0), float(width_cm or 0), float(height_cm or 0))
    chargeable = max(dead_weight, volumetric)

    slab = math.ceil(chargeable * SLAB_STEP_PER_KG) / SLAB_STEP_PER_KG
    slab = min(slab, MAX_SLAB_KG)

    return WeightSlab(
        dead_weight=dead_weight,
        volumetric_weight=round(volumetric, 3),
        chargeable_weight=round(chargeable, 3),
        slab=slab,
    )


def slab_key(slab: float) -> str:
    """Slab formatted to 2 decimals, as stored in the estimate cache."""
    return f"{float(slab):.2f}"


def cache_key(vendor_id: str, origin_pincode: str, slab: float) -> str:
    """Stable composite key for an estimate (vendor, origin, slab)."""
    raw = f"{vendor_id}_{origin_pincode}_{slab_key(slab)}"
    return hashlib.md5(raw.encode()).hexdigest()
