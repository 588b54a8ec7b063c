"""
Snapshot Assembler

Loads the group cache, the watched account, its in-basket open-orders
accounts and both book sides of every registered market with a single
batched fetch, then decodes everything into one Snapshot.

Request layout (one getMultipleAccounts round trip):

    [cache, account] + [open orders ...] + [bids per market] + [asks per market]
     fixed position     matched by address  fixed position     fixed position

The open-orders group is variable length: the response may omit or reorder
its entries, so they are matched back to account slots by address. Every
other entry is interpreted positionally and must echo the requested address.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence
import time

from solders.pubkey import Pubkey

from config.constants import FETCH_BACKOFF_BASE_SEC, FETCH_BACKOFF_MAX_SEC, FETCH_MAX_ATTEMPTS
from core.accounts import AccountKind, AccountRef, FetchedAccount, MangoAccount, MangoCache, MangoGroup
from core.layouts import decode
from core.market_context import MarketRegistry
from utils.exceptions import SnapshotAssemblyError
from utils.helpers import call_with_backoff
from utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Snapshot:
    cache: MangoCache
    account: MangoAccount
    fetched_at: float
    slot: Optional[int]
    account_count: int
    open_orders_loaded: int


class SnapshotAssembler:
    """
    Orchestrates fetcher and decoders for one iteration.

    The fetcher is any object exposing
    `async get_multiple_accounts(addresses) -> List[FetchedAccount]`.
    """

    def __init__(
        self,
        fetcher,
        group: MangoGroup,
        registry: MarketRegistry,
        max_attempts: int = FETCH_MAX_ATTEMPTS,
        backoff_base_sec: float = FETCH_BACKOFF_BASE_SEC,
        backoff_max_sec: float = FETCH_BACKOFF_MAX_SEC,
    ):
        self.fetcher = fetcher
        self.group = group
        self.registry = registry
        self.max_attempts = max_attempts
        self.backoff_base_sec = backoff_base_sec
        self.backoff_max_sec = backoff_max_sec

    def build_request(self, previous_account: MangoAccount) -> List[AccountRef]:
        """Ordered refs of one batched fetch, based on the previous account"""
        refs = [
            AccountRef(self.group.mango_cache, AccountKind.CACHE),
            AccountRef(previous_account.address, AccountKind.ACCOUNT),
        ]
        refs.extend(
            AccountRef(key, AccountKind.OPEN_ORDERS)
            for key in previous_account.in_basket_open_orders()
        )
        refs.extend(AccountRef(key, AccountKind.BOOK_SIDE) for key in self.registry.bids_addresses())
        refs.extend(AccountRef(key, AccountKind.BOOK_SIDE) for key in self.registry.asks_addresses())
        return refs

    async def load(self, previous_account: MangoAccount) -> Snapshot:
        """
        Fetch and decode a fresh snapshot.

        On success every market's book sides are replaced with the ones from
        this fetch. On any failure the registry is left untouched and the
        error propagates to the caller.

        Raises:
            RpcError: If the batched fetch fails
            SnapshotAssemblyError: If the response does not line up with the request
            DecodeError: If any account fails to decode
        """
        refs = self.build_request(previous_account)
        addresses = [ref.address for ref in refs]
        requested_open_orders = [ref.address for ref in refs if ref.kind is AccountKind.OPEN_ORDERS]

        fetched = await call_with_backoff(
            lambda: self.fetcher.get_multiple_accounts(addresses),
            max_attempts=self.max_attempts,
            base_delay=self.backoff_base_sec,
            max_delay=self.backoff_max_sec,
            operation='getMultipleAccounts',
        )
        fetched_at = time.time()

        head, open_orders_entries, bid_entries, ask_entries = self._split(
            refs, fetched, len(requested_open_orders)
        )

        cache_entry, account_entry = head
        cache = decode(AccountKind.CACHE, cache_entry.address, cache_entry.data)
        account = decode(AccountKind.ACCOUNT, account_entry.address, account_entry.data)

        loaded = self._attach_open_orders(account, open_orders_entries, requested_open_orders)

        bids = [
            decode(AccountKind.BOOK_SIDE, entry.address, entry.data, converter=context.converter)
            for context, entry in zip(self.registry, bid_entries)
        ]
        asks = [
            decode(AccountKind.BOOK_SIDE, entry.address, entry.data, converter=context.converter)
            for context, entry in zip(self.registry, ask_entries)
        ]

        # Everything decoded; only now touch the registry
        self.registry.replace_books(bids, asks)

        return Snapshot(
            cache=cache,
            account=account,
            fetched_at=fetched_at,
            slot=getattr(self.fetcher, 'last_slot', None),
            account_count=len(fetched),
            open_orders_loaded=loaded,
        )

    def _split(
        self,
        refs: Sequence[AccountRef],
        fetched: Sequence[FetchedAccount],
        open_orders_count: int,
    ):
        """Cut the response into its four groups, validating the fixed ones by address"""
        market_count = len(self.registry)
        fixed_count = 2 + 2 * market_count

        if not fixed_count <= len(fetched) <= fixed_count + open_orders_count:
            raise SnapshotAssemblyError(
                f"Fetched {len(fetched)} accounts for a request of {len(refs)}",
                error_code='RESPONSE_LENGTH_MISMATCH',
                details={'requested': len(refs), 'received': len(fetched)}
            )

        head = list(fetched[:2])
        tail = list(fetched[len(fetched) - 2 * market_count:])
        middle = list(fetched[2:len(fetched) - 2 * market_count])

        expected_head = refs[:2]
        expected_tail = refs[len(refs) - 2 * market_count:]
        for ref, entry in zip(list(expected_head) + list(expected_tail), head + tail):
            self._check_fixed(ref, entry)

        return head, middle, tail[:market_count], tail[market_count:]

    @staticmethod
    def _check_fixed(ref: AccountRef, entry: FetchedAccount) -> None:
        if entry.address != ref.address:
            raise SnapshotAssemblyError(
                f"Expected {ref.kind.value} account {ref.address}, got {entry.address}",
                error_code='RESPONSE_ORDER_MISMATCH',
                details={'expected': str(ref.address), 'received': str(entry.address)}
            )
        if entry.data is None:
            raise SnapshotAssemblyError(
                f"{ref.kind.value} account {ref.address} does not exist",
                error_code='ACCOUNT_MISSING',
                details={'address': str(ref.address)}
            )

    @staticmethod
    def _attach_open_orders(
        account: MangoAccount,
        entries: Sequence[FetchedAccount],
        requested: Sequence[Pubkey],
    ) -> int:
        """Decode open-orders entries into the account slot with the same address"""
        requested_set = set(requested)
        loaded = 0
        for entry in entries:
            if entry.address not in requested_set:
                raise SnapshotAssemblyError(
                    f"Unrequested open orders account {entry.address} in response",
                    error_code='UNEXPECTED_ACCOUNT',
                    details={'address': str(entry.address)}
                )
            if entry.data is None:
                logger.debug(f"Open orders account {entry.address} not found, slot left empty")
                continue

            slot = account.slot_of(entry.address)
            if slot is None:
                logger.warning(
                    f"Open orders account {entry.address} is no longer referenced by "
                    f"{account.address}, skipping"
                )
                continue

            account.spot_open_orders_accounts[slot] = decode(
                AccountKind.OPEN_ORDERS, entry.address, entry.data
            )
            loaded += 1
        return loaded
