"""
Typed Account Structures

In-memory representations of the Mango v3 / Serum accounts the monitor reads.
Instances are produced by core.layouts from raw account bytes and are treated
as immutable snapshots, with one exception: the auxiliary open-orders slots of
a MangoAccount, which the snapshot assembler fills in after decoding.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from itertools import islice
from typing import Iterator, List, Optional
import struct
import time

from solders.pubkey import Pubkey

from config.constants import MAX_BOOK_NODES
from utils.exceptions import DecodeError
from utils.helpers import is_zero_key, safe_decimal_divide


class AccountKind(Enum):
    """Which decoder applies to a remote account"""
    GROUP = 'group'
    CACHE = 'cache'
    ACCOUNT = 'account'
    OPEN_ORDERS = 'open_orders'
    PERP_MARKET = 'perp_market'
    BOOK_SIDE = 'book_side'


@dataclass(frozen=True)
class AccountRef:
    """A remote address tagged with the decoder that applies to it"""
    address: Pubkey
    kind: AccountKind


@dataclass(frozen=True)
class FetchedAccount:
    """One entry of a batched fetch; data is None when the account does not exist"""
    address: Pubkey
    data: Optional[bytes]

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class MetaData:
    data_type: int
    version: int
    is_initialized: bool


# ============================================================================
# LOT CONVERSION
# ============================================================================

@dataclass(frozen=True)
class LotConverter:
    """
    Converts native perp-market lots into UI units.

    price = price_lots * quote_lot_size * 10^base_decimals / (base_lot_size * 10^quote_decimals)
    size  = base_lots * base_lot_size / 10^base_decimals
    """
    base_decimals: int
    quote_decimals: int
    base_lot_size: int
    quote_lot_size: int

    def price_lots_to_ui(self, price_lots: int) -> float:
        numerator = Decimal(price_lots) * self.quote_lot_size * (Decimal(10) ** self.base_decimals)
        denominator = Decimal(self.base_lot_size) * (Decimal(10) ** self.quote_decimals)
        return float(safe_decimal_divide(numerator, denominator))

    def base_lots_to_ui(self, base_lots: int) -> float:
        numerator = Decimal(base_lots) * self.base_lot_size
        return float(safe_decimal_divide(numerator, Decimal(10) ** self.base_decimals))


# ============================================================================
# MANGO GROUP
# ============================================================================

@dataclass(frozen=True)
class TokenInfo:
    mint: Pubkey
    root_bank: Pubkey
    decimals: int


@dataclass(frozen=True)
class PerpMarketInfo:
    perp_market: Pubkey
    maker_fee: Decimal
    taker_fee: Decimal
    base_lot_size: int
    quote_lot_size: int


@dataclass(frozen=True)
class MangoGroup:
    address: Pubkey
    meta: MetaData
    num_oracles: int
    tokens: List[TokenInfo]
    spot_markets: List[Pubkey]
    perp_markets: List[PerpMarketInfo]
    oracles: List[Pubkey]
    admin: Pubkey
    dex_program_id: Pubkey
    mango_cache: Pubkey
    valid_interval: int


# ============================================================================
# MANGO CACHE
# ============================================================================

@dataclass(frozen=True)
class PriceCache:
    price: Decimal
    last_update: int


@dataclass(frozen=True)
class RootBankCache:
    deposit_index: Decimal
    borrow_index: Decimal
    last_update: int


@dataclass(frozen=True)
class PerpMarketCache:
    long_funding: Decimal
    short_funding: Decimal
    last_update: int


@dataclass(frozen=True)
class MangoCache:
    """Price and index caches of a group, valid at the moment of fetch"""
    address: Pubkey
    meta: MetaData
    price_cache: List[PriceCache]
    root_bank_cache: List[RootBankCache]
    perp_market_cache: List[PerpMarketCache]

    def get_price(self, market_index: int) -> Decimal:
        return self.price_cache[market_index].price


# ============================================================================
# SERUM OPEN ORDERS
# ============================================================================

@dataclass(frozen=True)
class OpenOrders:
    address: Pubkey
    market: Pubkey
    owner: Pubkey
    base_token_free: int
    base_token_total: int
    quote_token_free: int
    quote_token_total: int
    free_slot_bits: int
    is_bid_bits: int
    referrer_rebates_accrued: int

    @property
    def open_order_count(self) -> int:
        """Number of occupied order slots (a set bit in free_slot_bits is a free slot)"""
        return 128 - bin(self.free_slot_bits).count('1')


# ============================================================================
# MANGO ACCOUNT
# ============================================================================

@dataclass(frozen=True)
class PerpAccount:
    base_position: int
    quote_position: Decimal
    bids_quantity: int
    asks_quantity: int
    taker_base: int
    taker_quote: int
    mngo_accrued: int


@dataclass
class MangoAccount:
    """
    Owner account snapshot.

    spot_open_orders holds one reference per spot market (zero key = empty);
    spot_open_orders_accounts holds the decoded OpenOrders for the same slot,
    or None when it was not fetched.
    """
    address: Pubkey
    meta: MetaData
    mango_group: Pubkey
    owner: Pubkey
    in_margin_basket: List[bool]
    num_in_margin_basket: int
    spot_open_orders: List[Pubkey]
    perp_accounts: List[PerpAccount]
    msrm_amount: int
    being_liquidated: bool
    is_bankrupt: bool
    name: str
    advanced_orders_key: Pubkey
    not_upgradable: bool
    delegate: Pubkey
    spot_open_orders_accounts: List[Optional[OpenOrders]] = field(default_factory=list)

    def __post_init__(self):
        if not self.spot_open_orders_accounts:
            self.spot_open_orders_accounts = [None] * len(self.spot_open_orders)

    def get_open_orders_keys_in_basket(self) -> List[Optional[Pubkey]]:
        """Slot-aligned references; slots outside the margin basket read as None"""
        return [
            key if in_basket else None
            for key, in_basket in zip(self.spot_open_orders, self.in_margin_basket)
        ]

    def in_basket_open_orders(self) -> List[Pubkey]:
        """Non-empty open-orders references of in-basket slots, in slot order"""
        return [
            key for key in self.get_open_orders_keys_in_basket()
            if not is_zero_key(key)
        ]

    def slot_of(self, open_orders_key: Pubkey) -> Optional[int]:
        """Slot index holding this open-orders reference, matched by identity"""
        for index, key in enumerate(self.spot_open_orders):
            if key == open_orders_key and not is_zero_key(key):
                return index
        return None


# ============================================================================
# PERP MARKET
# ============================================================================

@dataclass(frozen=True)
class PerpMarket:
    address: Pubkey
    meta: MetaData
    mango_group: Pubkey
    bids: Pubkey
    asks: Pubkey
    event_queue: Pubkey
    quote_lot_size: int
    base_lot_size: int


# ============================================================================
# ORDER BOOK SIDE
# ============================================================================

NODE_SIZE = 88

NODE_TAG_INNER = 1
NODE_TAG_LEAF = 2

# tag, prefix_len, key, children[2]
_INNER_NODE = struct.Struct('<II16sII')
# tag, owner_slot, order_type, version, time_in_force, key, owner,
# quantity, client_order_id, best_initial, timestamp
_LEAF_NODE = struct.Struct('<IBBBB16s32sqQqQ')


@dataclass(frozen=True)
class BookOrder:
    """One resting order of a book side, in UI units with the raw lots alongside"""
    order_id: int
    owner: Pubkey
    owner_slot: int
    side: str
    price: float
    price_lots: int
    size: float
    quantity: int
    client_order_id: int
    time_in_force: int
    timestamp: int


@dataclass(frozen=True)
class BookSide:
    """
    One side of a perp order book.

    Nodes are kept as raw bytes and decoded while iterating (their structure
    is checked once by check_tree at decode time); every call to
    iter() walks the critbit tree again from the root, best price first
    (highest for bids, lowest for asks). Orders whose time in force has
    elapsed are skipped.
    """
    address: Pubkey
    meta: MetaData
    is_bids: bool
    bump_index: int
    free_list_len: int
    free_list_head: int
    root_node: int
    leaf_count: int
    nodes: bytes
    converter: LotConverter

    def __iter__(self) -> Iterator[BookOrder]:
        return self.items()

    def __len__(self) -> int:
        return self.leaf_count

    def items(self, now: Optional[float] = None) -> Iterator[BookOrder]:
        now_ts = int(time.time() if now is None else now)
        side = 'buy' if self.is_bids else 'sell'
        for raw in self._leaves():
            order = self._leaf(raw, side)
            if order.time_in_force and now_ts >= order.timestamp + order.time_in_force:
                continue
            yield order

    def check_tree(self) -> None:
        """
        Walk every node reachable from the root once.

        Raises:
            DecodeError: On an unknown node tag, an out-of-range index or a cycle
        """
        for _ in self._leaves():
            pass

    def top(self, count: int, now: Optional[float] = None) -> List[BookOrder]:
        """The best `count` orders, without walking the rest of the tree"""
        return list(islice(self.items(now), count))

    def _leaves(self) -> Iterator[bytes]:
        """Raw leaf nodes in book order"""
        if self.leaf_count == 0:
            return

        stack = [self.root_node]
        seen = set()
        while stack:
            index = stack.pop()
            if index in seen:
                raise DecodeError(
                    f"Book side tree revisits node {index}",
                    kind=AccountKind.BOOK_SIDE.value,
                    details={'address': str(self.address), 'index': index}
                )
            seen.add(index)
            raw = self._node(index)
            tag = struct.unpack_from('<I', raw)[0]

            if tag == NODE_TAG_INNER:
                _, _, _, left, right = _INNER_NODE.unpack_from(raw)
                # Pushed last is visited first
                if self.is_bids:
                    stack.extend((left, right))
                else:
                    stack.extend((right, left))
            elif tag == NODE_TAG_LEAF:
                yield raw
            else:
                raise DecodeError(
                    f"Unexpected node tag {tag} at index {index}",
                    kind=AccountKind.BOOK_SIDE.value,
                    details={'address': str(self.address), 'index': index}
                )

    def _node(self, index: int) -> bytes:
        if not 0 <= index < MAX_BOOK_NODES:
            raise DecodeError(
                f"Node index {index} out of range",
                kind=AccountKind.BOOK_SIDE.value,
                details={'address': str(self.address)}
            )
        start = index * NODE_SIZE
        return self.nodes[start:start + NODE_SIZE]

    def _leaf(self, raw: bytes, side: str) -> BookOrder:
        (_, owner_slot, _order_type, _version, time_in_force, key_bytes, owner_bytes,
         quantity, client_order_id, _best_initial, timestamp) = _LEAF_NODE.unpack_from(raw)
        key = int.from_bytes(key_bytes, 'little', signed=True)
        price_lots = key >> 64
        return BookOrder(
            order_id=key,
            owner=Pubkey.from_bytes(owner_bytes),
            owner_slot=owner_slot,
            side=side,
            price=self.converter.price_lots_to_ui(price_lots),
            price_lots=price_lots,
            size=self.converter.base_lots_to_ui(quantity),
            quantity=quantity,
            client_order_id=client_order_id,
            time_in_force=time_in_force,
            timestamp=timestamp,
        )
