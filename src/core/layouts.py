"""
Binary Layout Decoders

Decodes raw Mango v3 and Serum account bytes into the typed structures of
core.accounts. Decoders are pure: same bytes in, same structure out, and a
DecodeError whenever the bytes do not match the layout of the requested kind.

Layout reference (little-endian, packed):
    MetaData        data_type u8, version u8, is_initialized u8, padding 5
    I80F48          signed 128-bit fixed point, 48 fractional bits
"""

from decimal import Decimal
from typing import Optional
import struct

from solders.pubkey import Pubkey

from config.constants import (
    BOOK_SIDE_SIZE,
    DATA_TYPE_ASKS,
    DATA_TYPE_BIDS,
    DATA_TYPE_MANGO_ACCOUNT,
    DATA_TYPE_MANGO_CACHE,
    DATA_TYPE_MANGO_GROUP,
    DATA_TYPE_PERP_MARKET,
    INFO_LEN,
    MANGO_ACCOUNT_SIZE,
    MANGO_CACHE_SIZE,
    MANGO_GROUP_SIZE,
    MAX_PAIRS,
    MAX_PERP_OPEN_ORDERS,
    MAX_TOKENS,
    OPEN_ORDERS_SIZE,
    SERUM_HEAD,
    SERUM_TAIL,
)
from core.accounts import (
    AccountKind,
    BookSide,
    LotConverter,
    MangoAccount,
    MangoCache,
    MangoGroup,
    MetaData,
    OpenOrders,
    PerpAccount,
    PerpMarket,
    PerpMarketCache,
    PerpMarketInfo,
    PriceCache,
    RootBankCache,
    TokenInfo,
)
from utils.exceptions import DecodeError


I80F48_SCALE = Decimal(2 ** 48)

PERP_MARKET_HEADER_SIZE = 152
BOOK_SIDE_HEADER_SIZE = 40


class _Reader:
    """Sequential little-endian reader over one account's bytes"""

    def __init__(self, data: bytes, kind: AccountKind):
        self._data = data
        self._offset = 0
        self._kind = kind

    @property
    def offset(self) -> int:
        return self._offset

    def _unpack(self, fmt: str):
        try:
            values = struct.unpack_from(fmt, self._data, self._offset)
        except struct.error as e:
            raise DecodeError(
                f"Truncated {self._kind.value} account at offset {self._offset}",
                kind=self._kind.value,
                actual_size=len(self._data),
                original_error=e
            ) from e
        self._offset += struct.calcsize(fmt)
        return values[0]

    def u8(self) -> int:
        return self._unpack('<B')

    def bool(self) -> bool:
        return self._unpack('<B') != 0

    def u32(self) -> int:
        return self._unpack('<I')

    def u64(self) -> int:
        return self._unpack('<Q')

    def i64(self) -> int:
        return self._unpack('<q')

    def u128(self) -> int:
        return int.from_bytes(self.raw(16), 'little', signed=False)

    def i80f48(self) -> Decimal:
        value = int.from_bytes(self.raw(16), 'little', signed=True)
        return Decimal(value) / I80F48_SCALE

    def pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self.raw(32))

    def raw(self, length: int) -> bytes:
        end = self._offset + length
        if end > len(self._data):
            raise DecodeError(
                f"Truncated {self._kind.value} account at offset {self._offset}",
                kind=self._kind.value,
                actual_size=len(self._data)
            )
        chunk = bytes(self._data[self._offset:end])
        self._offset = end
        return chunk

    def skip(self, length: int) -> None:
        self.raw(length)

    def meta(self) -> MetaData:
        meta = MetaData(
            data_type=self.u8(),
            version=self.u8(),
            is_initialized=self.bool(),
        )
        self.skip(5)
        return meta


def _check_size(data: bytes, kind: AccountKind, expected: int, exact: bool = True) -> None:
    if data is None:
        raise DecodeError(f"No data for {kind.value} account", kind=kind.value)
    too_small = len(data) < expected
    if too_small or (exact and len(data) != expected):
        raise DecodeError(
            f"Unexpected {kind.value} account size {len(data)}, expected {expected}",
            kind=kind.value,
            expected_size=expected,
            actual_size=len(data)
        )


def _check_meta(meta: MetaData, kind: AccountKind, *data_types: int) -> None:
    if meta.data_type not in data_types:
        raise DecodeError(
            f"Data type {meta.data_type} is not a {kind.value} account",
            kind=kind.value,
            details={'data_type': meta.data_type, 'expected': list(data_types)}
        )
    if not meta.is_initialized:
        raise DecodeError(f"{kind.value} account is not initialized", kind=kind.value)


# ============================================================================
# DECODERS
# ============================================================================

def decode_mango_group(address: Pubkey, data: bytes) -> MangoGroup:
    kind = AccountKind.GROUP
    _check_size(data, kind, MANGO_GROUP_SIZE)
    r = _Reader(data, kind)
    meta = r.meta()
    _check_meta(meta, kind, DATA_TYPE_MANGO_GROUP)

    num_oracles = r.u64()

    tokens = []
    for _ in range(MAX_TOKENS):
        mint, root_bank, decimals = r.pubkey(), r.pubkey(), r.u8()
        r.skip(7)
        tokens.append(TokenInfo(mint=mint, root_bank=root_bank, decimals=decimals))

    spot_markets = []
    for _ in range(MAX_PAIRS):
        spot_markets.append(r.pubkey())
        r.skip(5 * 16)  # asset/liab weights, liquidation fee

    perp_markets = []
    for _ in range(MAX_PAIRS):
        perp_market = r.pubkey()
        r.skip(5 * 16)
        perp_markets.append(PerpMarketInfo(
            perp_market=perp_market,
            maker_fee=r.i80f48(),
            taker_fee=r.i80f48(),
            base_lot_size=r.i64(),
            quote_lot_size=r.i64(),
        ))

    oracles = [r.pubkey() for _ in range(MAX_PAIRS)]

    r.u64()      # signer_nonce
    r.pubkey()   # signer_key
    admin = r.pubkey()
    dex_program_id = r.pubkey()
    mango_cache = r.pubkey()
    valid_interval = r.u64()

    return MangoGroup(
        address=address,
        meta=meta,
        num_oracles=num_oracles,
        tokens=tokens,
        spot_markets=spot_markets,
        perp_markets=perp_markets,
        oracles=oracles,
        admin=admin,
        dex_program_id=dex_program_id,
        mango_cache=mango_cache,
        valid_interval=valid_interval,
    )


def decode_mango_cache(address: Pubkey, data: bytes) -> MangoCache:
    kind = AccountKind.CACHE
    _check_size(data, kind, MANGO_CACHE_SIZE)
    r = _Reader(data, kind)
    meta = r.meta()
    _check_meta(meta, kind, DATA_TYPE_MANGO_CACHE)

    price_cache = [
        PriceCache(price=r.i80f48(), last_update=r.u64())
        for _ in range(MAX_PAIRS)
    ]
    root_bank_cache = [
        RootBankCache(deposit_index=r.i80f48(), borrow_index=r.i80f48(), last_update=r.u64())
        for _ in range(MAX_TOKENS)
    ]
    perp_market_cache = [
        PerpMarketCache(long_funding=r.i80f48(), short_funding=r.i80f48(), last_update=r.u64())
        for _ in range(MAX_PAIRS)
    ]

    return MangoCache(
        address=address,
        meta=meta,
        price_cache=price_cache,
        root_bank_cache=root_bank_cache,
        perp_market_cache=perp_market_cache,
    )


def decode_mango_account(address: Pubkey, data: bytes) -> MangoAccount:
    kind = AccountKind.ACCOUNT
    _check_size(data, kind, MANGO_ACCOUNT_SIZE)
    r = _Reader(data, kind)
    meta = r.meta()
    _check_meta(meta, kind, DATA_TYPE_MANGO_ACCOUNT)

    mango_group = r.pubkey()
    owner = r.pubkey()
    in_margin_basket = [r.bool() for _ in range(MAX_PAIRS)]
    num_in_margin_basket = r.u8()
    r.skip(2 * MAX_TOKENS * 16)  # deposits, borrows
    spot_open_orders = [r.pubkey() for _ in range(MAX_PAIRS)]

    perp_accounts = []
    for _ in range(MAX_PAIRS):
        base_position = r.i64()
        quote_position = r.i80f48()
        r.skip(2 * 16)  # long/short settled funding
        perp_accounts.append(PerpAccount(
            base_position=base_position,
            quote_position=quote_position,
            bids_quantity=r.i64(),
            asks_quantity=r.i64(),
            taker_base=r.i64(),
            taker_quote=r.i64(),
            mngo_accrued=r.u64(),
        ))

    # order_market, order_side, orders, client_order_ids
    r.skip(MAX_PERP_OPEN_ORDERS * (1 + 1 + 16 + 8))
    msrm_amount = r.u64()
    being_liquidated = r.bool()
    is_bankrupt = r.bool()
    name = r.raw(INFO_LEN).rstrip(b'\x00').decode('utf-8', errors='replace')
    advanced_orders_key = r.pubkey()
    not_upgradable = r.bool()
    delegate = r.pubkey()

    return MangoAccount(
        address=address,
        meta=meta,
        mango_group=mango_group,
        owner=owner,
        in_margin_basket=in_margin_basket,
        num_in_margin_basket=num_in_margin_basket,
        spot_open_orders=spot_open_orders,
        perp_accounts=perp_accounts,
        msrm_amount=msrm_amount,
        being_liquidated=being_liquidated,
        is_bankrupt=is_bankrupt,
        name=name,
        advanced_orders_key=advanced_orders_key,
        not_upgradable=not_upgradable,
        delegate=delegate,
    )


def decode_open_orders(address: Pubkey, data: bytes) -> OpenOrders:
    kind = AccountKind.OPEN_ORDERS
    _check_size(data, kind, OPEN_ORDERS_SIZE)
    if not (data.startswith(SERUM_HEAD) and data.endswith(SERUM_TAIL)):
        raise DecodeError("Missing serum account padding", kind=kind.value)

    r = _Reader(data, kind)
    r.skip(len(SERUM_HEAD))
    r.u64()  # account_flags
    market = r.pubkey()
    owner = r.pubkey()
    base_token_free = r.u64()
    base_token_total = r.u64()
    quote_token_free = r.u64()
    quote_token_total = r.u64()
    free_slot_bits = r.u128()
    is_bid_bits = r.u128()
    r.skip(128 * 16 + 128 * 8)  # orders, client_ids
    referrer_rebates_accrued = r.u64()

    return OpenOrders(
        address=address,
        market=market,
        owner=owner,
        base_token_free=base_token_free,
        base_token_total=base_token_total,
        quote_token_free=quote_token_free,
        quote_token_total=quote_token_total,
        free_slot_bits=free_slot_bits,
        is_bid_bits=is_bid_bits,
        referrer_rebates_accrued=referrer_rebates_accrued,
    )


def decode_perp_market(address: Pubkey, data: bytes) -> PerpMarket:
    """Decodes the header of a perp market: book addresses and lot sizes"""
    kind = AccountKind.PERP_MARKET
    _check_size(data, kind, PERP_MARKET_HEADER_SIZE, exact=False)
    r = _Reader(data, kind)
    meta = r.meta()
    _check_meta(meta, kind, DATA_TYPE_PERP_MARKET)

    return PerpMarket(
        address=address,
        meta=meta,
        mango_group=r.pubkey(),
        bids=r.pubkey(),
        asks=r.pubkey(),
        event_queue=r.pubkey(),
        quote_lot_size=r.i64(),
        base_lot_size=r.i64(),
    )


def decode_book_side(address: Pubkey, data: bytes, converter: LotConverter) -> BookSide:
    kind = AccountKind.BOOK_SIDE
    _check_size(data, kind, BOOK_SIDE_SIZE)
    r = _Reader(data, kind)
    meta = r.meta()
    _check_meta(meta, kind, DATA_TYPE_BIDS, DATA_TYPE_ASKS)

    side = BookSide(
        address=address,
        meta=meta,
        is_bids=meta.data_type == DATA_TYPE_BIDS,
        bump_index=r.u64(),
        free_list_len=r.u64(),
        free_list_head=r.u32(),
        root_node=r.u32(),
        leaf_count=r.u64(),
        nodes=bytes(data[BOOK_SIDE_HEADER_SIZE:]),
        converter=converter,
    )
    side.check_tree()
    return side


_DECODERS = {
    AccountKind.GROUP: decode_mango_group,
    AccountKind.CACHE: decode_mango_cache,
    AccountKind.ACCOUNT: decode_mango_account,
    AccountKind.OPEN_ORDERS: decode_open_orders,
    AccountKind.PERP_MARKET: decode_perp_market,
}


def decode(kind: AccountKind, address: Pubkey, data: Optional[bytes],
           converter: Optional[LotConverter] = None):
    """
    Decode raw account bytes according to `kind`.

    Book sides additionally need the LotConverter of their market.

    Raises:
        DecodeError: If data is missing or does not match the layout
    """
    if data is None:
        raise DecodeError(
            f"Account {address} does not exist",
            kind=kind.value,
            details={'address': str(address)}
        )
    if kind is AccountKind.BOOK_SIDE:
        if converter is None:
            raise DecodeError("Book side decoding needs a lot converter", kind=kind.value)
        return decode_book_side(address, data, converter)
    return _DECODERS[kind](address, data)
