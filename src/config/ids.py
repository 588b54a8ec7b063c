"""
Group Registry

Loads the ids file that maps a group name to its cluster, program ids and
perp markets (same shape as the Mango client's ids.json, trimmed to the
fields the monitor uses).
"""

from typing import Annotated, Any, Dict, List, Optional
import json

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from solders.pubkey import Pubkey

from config.constants import CLUSTER_URLS
from utils.exceptions import ConfigurationError, DataValidationError
from utils.helpers import parse_pubkey


def _to_pubkey(value: Any) -> Pubkey:
    try:
        return parse_pubkey(value)
    except DataValidationError as e:
        raise ValueError(e.message) from e


PubkeyField = Annotated[Pubkey, BeforeValidator(_to_pubkey)]


class PerpMarketConfig(BaseModel):
    model_config = ConfigDict(extra='ignore', frozen=True, arbitrary_types_allowed=True)

    name: str
    public_key: PubkeyField = Field(validation_alias=AliasChoices('publicKey', 'public_key'))
    base_symbol: str = Field(validation_alias=AliasChoices('baseSymbol', 'base_symbol'))
    base_decimals: int = Field(validation_alias=AliasChoices('baseDecimals', 'base_decimals'), ge=0)
    quote_decimals: int = Field(validation_alias=AliasChoices('quoteDecimals', 'quote_decimals'), ge=0)
    market_index: int = Field(validation_alias=AliasChoices('marketIndex', 'market_index'), ge=0)


class GroupConfig(BaseModel):
    model_config = ConfigDict(extra='ignore', frozen=True, arbitrary_types_allowed=True)

    name: str
    cluster: str
    public_key: PubkeyField = Field(validation_alias=AliasChoices('publicKey', 'public_key'))
    mango_program_id: PubkeyField = Field(
        validation_alias=AliasChoices('mangoProgramId', 'mango_program_id')
    )
    serum_program_id: PubkeyField = Field(
        validation_alias=AliasChoices('serumProgramId', 'serum_program_id')
    )
    perp_markets: List[PerpMarketConfig] = Field(
        default_factory=list,
        validation_alias=AliasChoices('perpMarkets', 'perp_markets')
    )

    def get_perp_market_by_base_symbol(self, base_symbol: str) -> Optional[PerpMarketConfig]:
        for market in self.perp_markets:
            if market.base_symbol == base_symbol:
                return market
        return None


class IdsConfig(BaseModel):
    model_config = ConfigDict(extra='ignore', frozen=True)

    cluster_urls: Dict[str, str] = Field(default_factory=lambda: dict(CLUSTER_URLS))
    groups: List[GroupConfig] = Field(default_factory=list)

    def get_group_with_name(self, name: str) -> Optional[GroupConfig]:
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def cluster_url(self, cluster: str) -> str:
        url = self.cluster_urls.get(cluster) or CLUSTER_URLS.get(cluster)
        if not url:
            raise ConfigurationError(
                f"No RPC url for cluster {cluster}", error_code='UNKNOWN_CLUSTER'
            )
        return url


def load_ids(path: str) -> IdsConfig:
    """
    Read and validate the group registry.

    Raises:
        ConfigurationError: If the file is missing, not JSON or invalid
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Ids file not found: {path}", error_code='IDS_NOT_FOUND', original_error=e
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot read ids file {path}: {e}", error_code='IDS_INVALID', original_error=e
        ) from e

    try:
        return IdsConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid ids file {path}",
            error_code='IDS_INVALID',
            details={'errors': e.errors(include_url=False)},
            original_error=e
        ) from e
