"""
Tests for Binary Layout Decoders and Book Iteration
"""

import pytest
import struct
from decimal import Decimal

import builders
from builders import CACHE_KEY, GROUP_KEY, OWNER_KEY, UNIT_CONVERTER, ZERO, order, pk
from config.constants import DATA_TYPE_MANGO_ACCOUNT, MANGO_ACCOUNT_SIZE
from core.accounts import AccountKind, LotConverter
from core.layouts import (
    BOOK_SIDE_HEADER_SIZE,
    decode,
    decode_book_side,
    decode_mango_account,
    decode_mango_cache,
    decode_mango_group,
    decode_open_orders,
    decode_perp_market,
)
from utils.exceptions import DecodeError


class TestFixedLayouts:
    """Group, cache, account, open orders and perp market headers"""

    def test_group_exposes_cache_address(self):
        """Test the group's mango_cache is read from its fixed offset"""
        group = decode_mango_group(GROUP_KEY, builders.mango_group(CACHE_KEY, dex_program_id=pk(9)))

        assert group.address == GROUP_KEY
        assert group.mango_cache == CACHE_KEY
        assert group.dex_program_id == pk(9)
        assert group.num_oracles == 3
        assert len(group.perp_markets) == 15

    def test_cache_prices(self):
        """Test I80F48 prices are decoded to Decimal"""
        cache = decode_mango_cache(CACHE_KEY, builders.mango_cache({3: 101.5}))

        assert cache.get_price(3) == Decimal('101.5')
        assert cache.get_price(0) == Decimal(0)
        assert cache.price_cache[3].last_update == 1003

    def test_account_fields(self):
        """Test owner, name and open orders slots of an account"""
        data = builders.mango_account(
            GROUP_KEY, OWNER_KEY,
            spot_open_orders={2: pk(30), 7: pk(31)},
            in_basket=[2],
            name='main',
            delegate=pk(8),
        )
        account = decode_mango_account(pk(3), data)

        assert account.mango_group == GROUP_KEY
        assert account.owner == OWNER_KEY
        assert account.name == 'main'
        assert account.delegate == pk(8)
        assert account.spot_open_orders[2] == pk(30)
        assert account.spot_open_orders[0] == ZERO
        assert account.in_margin_basket[2] is True
        assert account.in_margin_basket[7] is False
        assert account.spot_open_orders_accounts == [None] * 15

    def test_in_basket_open_orders_filters_zero_and_out_of_basket(self):
        """Test only in-basket, non-zero references are requested"""
        data = builders.mango_account(
            GROUP_KEY, OWNER_KEY,
            spot_open_orders={1: pk(30), 4: pk(31), 9: pk(32)},
            in_basket=[1, 9, 12],
        )
        account = decode_mango_account(pk(3), data)

        assert account.in_basket_open_orders() == [pk(30), pk(32)]
        keys = account.get_open_orders_keys_in_basket()
        assert keys[4] is None
        assert keys[12] == ZERO
        assert account.slot_of(pk(32)) == 9
        assert account.slot_of(pk(99)) is None

    def test_open_orders(self):
        """Test serum open orders balances"""
        oo = decode_open_orders(pk(30), builders.open_orders(pk(40), pk(3), base_free=7, quote_free=9))

        assert oo.market == pk(40)
        assert oo.owner == pk(3)
        assert oo.base_token_free == 7
        assert oo.quote_token_total == 9
        assert oo.open_order_count == 0

    def test_open_orders_without_padding_rejected(self):
        """Test the serum head/tail markers are required"""
        data = b'xxxxx' + builders.open_orders(pk(40), pk(3))[5:]

        with pytest.raises(DecodeError, match="padding"):
            decode_open_orders(pk(30), data)

    def test_perp_market_header(self):
        """Test book addresses and lot sizes"""
        data = builders.perp_market(GROUP_KEY, pk(10), pk(11), pk(12), quote_lot_size=10, base_lot_size=100)
        market = decode_perp_market(pk(100), data)

        assert market.bids == pk(10)
        assert market.asks == pk(11)
        assert market.event_queue == pk(12)
        assert market.quote_lot_size == 10
        assert market.base_lot_size == 100


class TestDecodeErrors:
    """Size and data type validation"""

    def test_wrong_size(self):
        """Test a truncated account is rejected with both sizes"""
        data = builders.mango_account(GROUP_KEY, OWNER_KEY)[:-1]

        with pytest.raises(DecodeError) as exc_info:
            decode(AccountKind.ACCOUNT, pk(3), data)

        assert exc_info.value.expected_size == MANGO_ACCOUNT_SIZE
        assert exc_info.value.actual_size == MANGO_ACCOUNT_SIZE - 1

    def test_wrong_data_type(self):
        """Test a blob of the right size but another kind is rejected"""
        data = builders.mango_group(CACHE_KEY, data_type=DATA_TYPE_MANGO_ACCOUNT)

        with pytest.raises(DecodeError, match="not a group"):
            decode(AccountKind.GROUP, GROUP_KEY, data)

    def test_uninitialized(self):
        """Test accounts with is_initialized unset are rejected"""
        data = builders.meta(7, initialized=False) + builders.mango_cache()[8:]

        with pytest.raises(DecodeError, match="not initialized"):
            decode(AccountKind.CACHE, CACHE_KEY, data)

    def test_missing_data(self):
        """Test None data raises instead of returning an empty structure"""
        with pytest.raises(DecodeError, match="does not exist"):
            decode(AccountKind.CACHE, CACHE_KEY, None)

    def test_book_side_needs_converter(self):
        """Test book sides cannot be decoded without lot sizes"""
        with pytest.raises(DecodeError, match="converter"):
            decode(AccountKind.BOOK_SIDE, pk(10), builders.book_side([]))


class TestBookSide:
    """Critbit traversal, ordering and expiry"""

    def test_bids_best_price_first(self):
        """Test bids iterate from the highest price down"""
        orders = [order(100, 1), order(105, 2), order(95, 3), order(110, 4), order(101, 5)]
        bids = decode_book_side(pk(10), builders.book_side(orders, is_bids=True), UNIT_CONVERTER)

        prices = [o.price_lots for o in bids]

        assert prices == [110, 105, 101, 100, 95]
        assert len(bids) == 5
        assert all(o.side == 'buy' for o in bids)

    def test_asks_best_price_first(self):
        """Test asks iterate from the lowest price up"""
        orders = [order(100, 1), order(105, 2), order(95, 3), order(110, 4)]
        asks = decode_book_side(pk(11), builders.book_side(orders, is_bids=False), UNIT_CONVERTER)

        assert [o.price_lots for o in asks] == [95, 100, 105, 110]
        assert all(o.side == 'sell' for o in asks)

    def test_iteration_is_restartable(self):
        """Test each iteration walks the tree again from the root"""
        bids = decode_book_side(pk(10), builders.book_side([order(1, 1), order(2, 1)]), UNIT_CONVERTER)

        assert list(bids) == list(bids)

    def test_empty_book(self):
        """Test an empty side yields nothing"""
        bids = decode_book_side(pk(10), builders.book_side([]), UNIT_CONVERTER)

        assert list(bids) == []
        assert bids.top(50) == []

    def test_single_leaf(self):
        """Test a root that is itself a leaf"""
        bids = decode_book_side(pk(10), builders.book_side([order(7, 3, owner=pk(50))]), UNIT_CONVERTER)

        (only,) = list(bids)
        assert only.owner == pk(50)
        assert only.price == 7.0
        assert only.size == 3.0

    def test_top_is_bounded(self):
        """Test top() stops after the requested count"""
        orders = [order(100 + i, 1) for i in range(60)]
        bids = decode_book_side(pk(10), builders.book_side(orders), UNIT_CONVERTER)

        top = bids.top(50)

        assert len(top) == 50
        assert top[0].price_lots == 159
        assert top[-1].price_lots == 110

    def test_expired_orders_skipped(self):
        """Test orders past their time in force are not yielded"""
        orders = [
            order(100, 1, time_in_force=10, timestamp=1000),
            order(99, 2, time_in_force=0, timestamp=1000),
            order(98, 3, time_in_force=60, timestamp=1000),
        ]
        bids = decode_book_side(pk(10), builders.book_side(orders), UNIT_CONVERTER)

        live = [o.price_lots for o in bids.items(now=1030)]

        assert live == [99, 98]

    def test_lot_conversion(self):
        """Test price and size are converted with the market lot sizes"""
        converter = LotConverter(base_decimals=9, quote_decimals=6, base_lot_size=10_000_000, quote_lot_size=100)
        bids = decode_book_side(pk(10), builders.book_side([order(1500, 25)]), converter)

        (only,) = list(bids)

        # 1500 * 100 * 1e9 / (1e7 * 1e6) = 15.0 ; 25 * 1e7 / 1e9 = 0.25
        assert only.price == pytest.approx(15.0)
        assert only.size == pytest.approx(0.25)
        assert only.quantity == 25

    def test_unknown_node_tag(self):
        """Test a corrupt node is rejected when the side is decoded, not on first iteration"""
        with pytest.raises(DecodeError, match="node tag 7"):
            decode_book_side(
                pk(10), builders.book_side([order(1, 1), order(2, 1)], corrupt_tag=True), UNIT_CONVERTER
            )

    def test_cycle_rejected(self):
        """Test an inner node pointing back at the root"""
        data = bytearray(builders.book_side([order(1, 1), order(2, 1)]))
        # root is inner node 0; its right child sits 28 bytes into the node
        struct.pack_into('<I', data, BOOK_SIDE_HEADER_SIZE + 28, 0)

        with pytest.raises(DecodeError, match="revisits node 0"):
            decode_book_side(pk(10), bytes(data), UNIT_CONVERTER)

    def test_child_index_out_of_range(self):
        """Test a child index past the node array"""
        data = bytearray(builders.book_side([order(1, 1), order(2, 1)]))
        struct.pack_into('<I', data, BOOK_SIDE_HEADER_SIZE + 24, 5000)

        with pytest.raises(DecodeError, match="out of range"):
            decode_book_side(pk(10), bytes(data), UNIT_CONVERTER)
