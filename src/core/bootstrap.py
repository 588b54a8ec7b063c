"""
Bootstrap

One-time setup before the poll loop starts: read the input files, connect to
the cluster, load the group and the watched account, and build the market
registry with its first pair of book sides. Nothing here is retried; any
error is fatal and surfaces as ConfigurationError or RpcError.
"""

from dataclasses import dataclass
from typing import List

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from config.constants import MANGO_ACCOUNT_SIZE
from config.ids import GroupConfig, IdsConfig, load_ids
from config.keypair import load_keypair
from config.params import MonitorParams, load_params
from config.settings import MonitorSettings
from core.accounts import AccountKind, LotConverter, MangoAccount, MangoGroup
from core.layouts import decode
from core.market_context import MarketContext, MarketRegistry
from core.rpc_client import SolanaRpcClient
from utils.exceptions import ConfigurationError, DataValidationError
from utils.helpers import parse_pubkey
from utils.logger import get_logger


logger = get_logger(__name__)

# Byte offsets inside a MangoAccount used for getProgramAccounts filters
ACCOUNT_GROUP_OFFSET = 8
ACCOUNT_OWNER_OFFSET = 40


@dataclass
class MonitorContext:
    settings: MonitorSettings
    params: MonitorParams
    ids: IdsConfig
    group_config: GroupConfig
    keypair: Keypair
    rpc: SolanaRpcClient
    group: MangoGroup
    account: MangoAccount
    registry: MarketRegistry

    @property
    def owner(self) -> Pubkey:
        return self.keypair.pubkey()


async def load_mango_group(rpc: SolanaRpcClient, address: Pubkey) -> MangoGroup:
    fetched = await rpc.get_account_info(address)
    if not fetched.exists:
        raise ConfigurationError(
            f"Mango group {address} not found on chain", error_code='GROUP_NOT_FOUND'
        )
    return decode(AccountKind.GROUP, address, fetched.data)


async def load_mango_account_with_pubkey(
    rpc: SolanaRpcClient,
    group: MangoGroup,
    owner: Pubkey,
    address: Pubkey,
) -> MangoAccount:
    """
    Load an account by address.

    The account must exist and belong to the group. Since the monitor is read
    only, an account owned by someone else is accepted with a warning.
    """
    fetched = await rpc.get_account_info(address)
    if not fetched.exists:
        raise ConfigurationError(
            f"Mango account {address} not found", error_code='ACCOUNT_NOT_FOUND'
        )

    account = decode(AccountKind.ACCOUNT, address, fetched.data)
    if account.mango_group != group.address:
        raise ConfigurationError(
            f"Mango account {address} belongs to group {account.mango_group}, not {group.address}",
            error_code='ACCOUNT_WRONG_GROUP'
        )
    if account.owner != owner and account.delegate != owner:
        logger.warning(
            f"Mango account {address} is owned by {account.owner}, not by keypair {owner}"
        )
    return account


async def load_mango_account_with_name(
    rpc: SolanaRpcClient,
    group: MangoGroup,
    owner: Pubkey,
    name: str,
    program_id: Pubkey,
) -> MangoAccount:
    """Find the owner's account in the group whose name matches"""
    filters = [
        {'dataSize': MANGO_ACCOUNT_SIZE},
        {'memcmp': {'offset': ACCOUNT_GROUP_OFFSET, 'bytes': str(group.address)}},
        {'memcmp': {'offset': ACCOUNT_OWNER_OFFSET, 'bytes': str(owner)}},
    ]
    fetched = await rpc.get_program_accounts(program_id, filters)

    matches = [
        account
        for account in (
            decode(AccountKind.ACCOUNT, entry.address, entry.data)
            for entry in fetched if entry.exists
        )
        if account.name == name
    ]
    if not matches:
        raise ConfigurationError(
            f"No Mango account named '{name}' for owner {owner}",
            error_code='ACCOUNT_NOT_FOUND',
            details={'owner_accounts': len(fetched)}
        )
    if len(matches) > 1:
        logger.warning(
            f"{len(matches)} accounts named '{name}', using {matches[0].address}"
        )
    return matches[0]


async def resolve_account(
    rpc: SolanaRpcClient,
    group: MangoGroup,
    group_config: GroupConfig,
    owner: Pubkey,
    params: MonitorParams,
) -> MangoAccount:
    """Pick the selector from params: the account name wins over the address"""
    if params.mango_account_name:
        return await load_mango_account_with_name(
            rpc, group, owner, params.mango_account_name, group_config.mango_program_id
        )
    if params.mango_account_pubkey:
        try:
            address = parse_pubkey(params.mango_account_pubkey, 'mangoAccountPubkey')
        except DataValidationError as e:
            raise ConfigurationError(
                e.message, error_code='INVALID_ACCOUNT_PUBKEY', original_error=e
            ) from e
        return await load_mango_account_with_pubkey(rpc, group, owner, address)

    raise ConfigurationError(
        "Please add mangoAccountName or mangoAccountPubkey to params file",
        error_code='NO_ACCOUNT_SELECTOR'
    )


async def build_registry(
    rpc: SolanaRpcClient,
    group_config: GroupConfig,
    params: MonitorParams,
) -> MarketRegistry:
    """
    One MarketContext per configured asset, in params order.

    Perp market headers are fetched in one batch, then every bid and ask side
    in a second one.
    """
    if not params.assets:
        raise ConfigurationError("No markets configured", error_code='NO_MARKETS')

    configs = []
    for base_symbol in params.assets:
        market_config = group_config.get_perp_market_by_base_symbol(base_symbol)
        if market_config is None:
            raise ConfigurationError(
                f"No perp market for {base_symbol} in group {group_config.name}",
                error_code='UNKNOWN_MARKET'
            )
        configs.append((base_symbol, market_config))

    market_entries = await rpc.get_multiple_accounts([c.public_key for _, c in configs])
    markets = []
    for (base_symbol, market_config), entry in zip(configs, market_entries):
        if not entry.exists:
            raise ConfigurationError(
                f"Perp market {market_config.name} ({entry.address}) not found",
                error_code='MARKET_NOT_FOUND'
            )
        markets.append(decode(AccountKind.PERP_MARKET, entry.address, entry.data))

    book_keys: List[Pubkey] = [m.bids for m in markets] + [m.asks for m in markets]
    book_entries = await rpc.get_multiple_accounts(book_keys)
    count = len(markets)

    registry = MarketRegistry()
    for i, ((base_symbol, market_config), market) in enumerate(zip(configs, markets)):
        converter = LotConverter(
            base_decimals=market_config.base_decimals,
            quote_decimals=market_config.quote_decimals,
            base_lot_size=market.base_lot_size,
            quote_lot_size=market.quote_lot_size,
        )
        bids_entry, asks_entry = book_entries[i], book_entries[count + i]
        registry.add(MarketContext(
            market_name=market_config.name,
            market_index=market_config.market_index,
            config=market_config,
            market=market,
            params=params.assets[base_symbol].perp,
            converter=converter,
            bids=decode(AccountKind.BOOK_SIDE, bids_entry.address, bids_entry.data, converter),
            asks=decode(AccountKind.BOOK_SIDE, asks_entry.address, asks_entry.data, converter),
        ))
        logger.info(
            f"Market {market_config.name}: enabled={params.assets[base_symbol].perp.enabled}, "
            f"threshold={params.assets[base_symbol].perp.threshold_size}"
        )
    return registry


async def bootstrap(settings: MonitorSettings) -> MonitorContext:
    """
    Build everything the poll loop needs.

    The returned context owns an initialized RPC client; the caller closes it.

    Raises:
        ConfigurationError: Bad input files, unknown group, market or account
        RpcError: If the cluster cannot be reached
    """
    params = load_params(settings.params_path)
    keypair = load_keypair(settings.keypair)
    ids = load_ids(settings.ids_path)

    group_config = ids.get_group_with_name(params.group)
    if group_config is None:
        raise ConfigurationError(f"Group {params.group} not found", error_code='UNKNOWN_GROUP')

    endpoint_url = settings.endpoint_url or ids.cluster_url(group_config.cluster)
    rpc = SolanaRpcClient(
        endpoint_url,
        commitment=settings.commitment,
        timeout_sec=settings.rpc_timeout_sec,
    )
    await rpc.initialize()

    try:
        group = await load_mango_group(rpc, group_config.public_key)
        account = await resolve_account(rpc, group, group_config, keypair.pubkey(), params)
        registry = await build_registry(rpc, group_config, params)
    except Exception:
        await rpc.close()
        raise

    logger.info(
        f"Bootstrapped group {group_config.name} on {group_config.cluster}: "
        f"account {account.address} ({account.name or 'unnamed'}), {len(registry)} markets"
    )
    return MonitorContext(
        settings=settings,
        params=params,
        ids=ids,
        group_config=group_config,
        keypair=keypair,
        rpc=rpc,
        group=group,
        account=account,
        registry=registry,
    )
