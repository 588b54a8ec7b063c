"""
Market Context Registry

Ordered per-market state kept for the lifetime of the process. Identity,
configuration and alert parameters are fixed at bootstrap; only the book
sides are replaced, once per successful snapshot.
"""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from solders.pubkey import Pubkey

from config.ids import PerpMarketConfig
from config.params import PerpAlertParams
from core.accounts import BookSide, LotConverter, PerpMarket
from utils.exceptions import SnapshotAssemblyError


@dataclass
class MarketContext:
    market_name: str
    market_index: int
    config: PerpMarketConfig
    market: PerpMarket
    params: PerpAlertParams
    converter: LotConverter
    bids: BookSide
    asks: BookSide

    @property
    def bids_address(self) -> Pubkey:
        return self.market.bids

    @property
    def asks_address(self) -> Pubkey:
        return self.market.asks


class MarketRegistry:
    """Ordered collection of MarketContext, in configuration order"""

    def __init__(self, contexts: Optional[Sequence[MarketContext]] = None):
        self._contexts: List[MarketContext] = list(contexts or [])

    def add(self, context: MarketContext) -> None:
        if self.get(context.market_name) is not None:
            raise ValueError(f"Market {context.market_name} registered twice")
        self._contexts.append(context)

    def get(self, market_name: str) -> Optional[MarketContext]:
        for context in self._contexts:
            if context.market_name == market_name:
                return context
        return None

    def __iter__(self) -> Iterator[MarketContext]:
        return iter(self._contexts)

    def __len__(self) -> int:
        return len(self._contexts)

    def __getitem__(self, index: int) -> MarketContext:
        return self._contexts[index]

    def bids_addresses(self) -> List[Pubkey]:
        return [context.bids_address for context in self._contexts]

    def asks_addresses(self) -> List[Pubkey]:
        return [context.asks_address for context in self._contexts]

    def replace_books(self, bids: Sequence[BookSide], asks: Sequence[BookSide]) -> None:
        """
        Swap in freshly decoded book sides for every market.

        Lengths are checked before anything is assigned, so the registry is
        either fully updated or left untouched.
        """
        if len(bids) != len(self._contexts) or len(asks) != len(self._contexts):
            raise SnapshotAssemblyError(
                "Book sides do not match the registered markets",
                details={
                    'markets': len(self._contexts),
                    'bids': len(bids),
                    'asks': len(asks),
                }
            )
        for context, bid_side, ask_side in zip(self._contexts, bids, asks):
            context.bids = bid_side
            context.asks = ask_side
