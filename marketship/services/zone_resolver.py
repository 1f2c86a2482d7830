"""Coarse shipping zones and the hub pincodes used to estimate them."""
from typing import Dict, Optional

from marketship.config import settings

LOCAL_ZONE = "LOCAL"

# One representative hub per zone. Estimating against these five points
# bounds carrier calls per estimate at the cost of geographic accuracy.
ZONE_HUB_PINCODES: Dict[str, str] = {
    "A": "110001",  # Delhi
    "B": "400001",  # Mumbai
    "C": "560001",  # Bengaluru
    "D": "700001",  # Kolkata
    "E": "799001",  # Agartala
}

ZONE_LABELS: Dict[str, str] = {
    "A": "North (Delhi NCR)",
    "B": "West (Mumbai)",
    "C": "South (Bengaluru)",
    "D": "East (Kolkata)",
    "E": "North East (Agartala)",
}


class ZoneResolver:
    """
    Maps an origin/destination pincode pair to a shipping zone.

    Only an exact pincode match is resolved (to LOCAL); every other pair
    falls back to the configured default zone. Carriers report their own
    zone on each quote, which is what pricing actually uses.
    """

    def __init__(self, default_zone: Optional[str] = None):
        self.default_zone = default_zone or settings.ESTIMATE_DEFAULT_ZONE

    def resolve(self, origin: str, destination: str) -> str:
        if str(origin).strip() == str(destination).strip():
            return LOCAL_ZONE
        return self.default_zone

    def zone_table(self, origin: Optional[str] = None) -> Dict[str, str]:
        """Representative destination pincode per zone."""
        return dict(ZONE_HUB_PINCODES)

    def zone_labels(self) -> Dict[str, str]:
        return dict(ZONE_LABELS)
