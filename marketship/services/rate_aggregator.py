"""Collects quotes from every enabled carrier for one shipment."""
import logging
from typing import Dict, List, Mapping

from marketship.core.exceptions import AdapterDataError, CarrierAPIError
from marketship.services.carriers.base import CarrierAdapter
from marketship.services.carriers.types import Shipment, RateQuote

logger = logging.getLogger(__name__)


class RateAggregator:
    """
    Fan-out over carriers, one call at a time.

    A carrier that raises or returns anything other than a list of RateQuote
    contributes an empty list; one misbehaving carrier never fails the
    whole collection.
    """

    async def collect(
        self,
        shipment: Shipment,
        carriers: Mapping[str, CarrierAdapter],
    ) -> Dict[str, List[RateQuote]]:
        quotes: Dict[str, List[RateQuote]] = {}

        for code, adapter in carriers.items():
            try:
                quotes[code] = self._validate(code, await adapter.quote(shipment))
            except AdapterDataError as e:
                logger.warning(f"{e}. Treating as no quotes.")
                quotes[code] = []
            except CarrierAPIError as e:
                logger.warning(f"Quote request to {code} failed: {e}. Treating as no quotes.")
                quotes[code] = []

            logger.info(f"Found {len(quotes[code])} rates for {code} (order {shipment.order_id})")

        return quotes

    @staticmethod
    def _validate(code: str, response) -> List[RateQuote]:
        if not isinstance(response, list):
            raise AdapterDataError(code, f"expected a list of quotes, got {type(response).__name__}")
        if not all(isinstance(q, RateQuote) for q in response):
            raise AdapterDataError(code, "quote list contains non-RateQuote entries")
        return response
