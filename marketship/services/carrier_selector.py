"""
Balance-aware carrier selection.

Carrier wallets are prepaid. A quote is only useful if the carrier can fund
it, and balances can change between the check and the booking call, so
selection is a two-stage process:

1. Proactive: a carrier whose balance is below its own cheapest quote is
   excluded before any booking is attempted.
2. Reactive: if booking fails with a balance error, the carrier is excluded
   and the next cheapest quote is tried.

Every balance failure excludes one more carrier, so with N carriers the loop
runs at most N + 1 rounds.
"""
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from marketship.core.exceptions import (
    BalanceInsufficient,
    BookingFatalError,
    CarrierAPIError,
    NoViableCarrier,
)
from marketship.services.carriers.base import CarrierAdapter
from marketship.services.carriers.types import BookingHandle, RateQuote, Shipment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A quote with its tie-break position: carrier priority, then the carrier's own quote order."""
    quote: RateQuote
    carrier_priority: int
    quote_position: int

    @property
    def sort_key(self) -> Tuple[Decimal, int, int]:
        return (self.quote.base_cost, self.carrier_priority, self.quote_position)


@dataclass
class Selection:
    """Outcome of a selection run."""
    quote: RateQuote
    adapter: CarrierAdapter
    shipment: Shipment
    handle: Optional[BookingHandle]
    rounds: int
    excluded: FrozenSet[str]


def build_candidates(
    quotes: Mapping[str, List[RateQuote]],
    priority: Mapping[str, int],
    excluded: FrozenSet[str],
) -> Tuple[Candidate, ...]:
    return tuple(
        Candidate(quote=quote, carrier_priority=priority[code], quote_position=position)
        for code, carrier_quotes in quotes.items()
        if code not in excluded and code in priority
        for position, quote in enumerate(carrier_quotes)
    )


def cheapest(candidates: Tuple[Candidate, ...]) -> Optional[Candidate]:
    if not candidates:
        return None
    return min(candidates, key=lambda c: c.sort_key)


class BalanceAwareSelector:
    """Picks the cheapest funded quote and books it."""

    async def check_balances(
        self,
        quotes: Mapping[str, List[RateQuote]],
        carriers: Mapping[str, CarrierAdapter],
    ) -> FrozenSet[str]:
        """Carriers that cannot fund even their cheapest quote."""
        excluded = set()
        for code, adapter in carriers.items():
            carrier_quotes = quotes.get(code) or []
            if not carrier_quotes:
                continue

            balance = await adapter.wallet_balance()
            local_best = min(q.base_cost for q in carrier_quotes)
            logger.info(f"Carrier {code} balance: {balance} (best rate: {local_best})")

            if balance < local_best:
                logger.warning(f"Excluding carrier {code}: balance {balance} below best rate {local_best}")
                excluded.add(code)
        return frozenset(excluded)

    async def select(
        self,
        shipment: Shipment,
        quotes: Mapping[str, List[RateQuote]],
        carriers: Mapping[str, CarrierAdapter],
        book: bool = True,
    ) -> Selection:
        """
        Select (and by default book) the cheapest funded quote.

        Raises:
            NoViableCarrier: no quote left after exclusions
            BookingFatalError: booking failed for a reason other than balance
        """
        priority: Dict[str, int] = {code: index for index, code in enumerate(carriers)}
        excluded = await self.check_balances(quotes, carriers)
        rounds = 0

        while True:
            rounds += 1
            candidates = build_candidates(quotes, priority, excluded)
            winner = cheapest(candidates)

            if winner is None:
                logger.warning(f"No viable carrier for order {shipment.order_id} (excluded: {sorted(excluded)})")
                raise NoViableCarrier(excluded)

            quote = winner.quote
            adapter = carriers[quote.carrier]
            chosen = replace(
                shipment,
                carrier=quote.carrier,
                courier_name=quote.courier_name,
                courier_id=quote.courier_id,
            )
            logger.info(
                f"Winner for order {shipment.order_id}: {quote.courier_name} on {quote.carrier} "
                f"(cost: {quote.base_cost}, round {rounds})"
            )

            if not book:
                return Selection(quote, adapter, chosen, None, rounds, excluded)

            try:
                handle = await adapter.book(chosen)
            except (CarrierAPIError, BalanceInsufficient) as e:
                if isinstance(e, BalanceInsufficient) or adapter.is_balance_error(e):
                    logger.warning(f"Balance error booking on {quote.carrier}, excluding and retrying: {e}")
                    excluded = excluded | {quote.carrier}
                    continue
                raise BookingFatalError("book", str(e), quote.carrier) from e

            return Selection(quote, adapter, chosen, handle, rounds, excluded)
