"""
Carrier registry.

The order of CARRIER_CLASSES is the carrier priority: it breaks ties between
equally priced quotes and decides which carrier a checkout quote tries first.
"""
import logging
from typing import Dict, List, Optional, Type

from marketship.config import settings
from marketship.services.carriers.base import CarrierAdapter
from marketship.services.carriers.bigship import BigShipAdapter
from marketship.services.carriers.shiprocket import ShiprocketAdapter

logger = logging.getLogger(__name__)

CARRIER_CLASSES: List[Type[CarrierAdapter]] = [
    ShiprocketAdapter,
    BigShipAdapter,
]


def _is_enabled(adapter_cls: Type[CarrierAdapter]) -> bool:
    return bool(getattr(settings, f"{adapter_cls.code.upper()}_ENABLED", False))


def get_enabled_carriers() -> Dict[str, CarrierAdapter]:
    """Fresh adapter instances for every enabled carrier, in priority order."""
    carriers = {cls.code: cls() for cls in CARRIER_CLASSES if _is_enabled(cls)}
    if not carriers:
        logger.warning("No carriers enabled; shipping quotes will be empty")
    return carriers


def get_carrier(code: str) -> Optional[CarrierAdapter]:
    """Adapter for a carrier tag stored on an order, enabled or not."""
    for cls in CARRIER_CLASSES:
        if cls.code == code:
            return cls()
    return None
