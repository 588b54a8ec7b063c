"""
Params File Loader

The params file (JSON, selected with PARAMS=<file>) names the group, the
account to watch, the poll interval and, per base symbol, the alert settings
of its perp market:

    {
        "group": "mainnet.1",
        "interval": 10000,
        "mangoAccountName": "main",
        "assets": {
            "SOL": {"perp": {"isCheck": true, "thresholdSize": 1200}}
        }
    }
"""

from typing import Dict, Optional
import json

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from config.constants import DEFAULT_INTERVAL_MS
from utils.exceptions import ConfigurationError
from utils.logger import get_logger


logger = get_logger(__name__)


class PerpAlertParams(BaseModel):
    """Alert settings of one perp market; unknown fields are rejected"""

    model_config = ConfigDict(extra='forbid', frozen=True)

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices('enabled', 'isCheck'),
        description="Scan this market for large orders"
    )

    threshold_size: float = Field(
        validation_alias=AliasChoices('thresholdSize', 'threshold_size'),
        description="Orders strictly larger than this size (UI units) raise an alert",
        ge=0.0
    )


class AssetParams(BaseModel):
    model_config = ConfigDict(extra='ignore', frozen=True)

    perp: PerpAlertParams


class MonitorParams(BaseModel):
    model_config = ConfigDict(extra='ignore', frozen=True)

    group: str = Field(min_length=1)

    interval: int = Field(
        default=DEFAULT_INTERVAL_MS,
        description="Pause between iterations (milliseconds)",
        gt=0
    )

    mango_account_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices('mangoAccountName', 'mango_account_name')
    )

    mango_account_pubkey: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices('mangoAccountPubkey', 'mango_account_pubkey')
    )

    assets: Dict[str, AssetParams] = Field(default_factory=dict)

    @field_validator('assets')
    @classmethod
    def validate_assets(cls, v: Dict[str, AssetParams]) -> Dict[str, AssetParams]:
        if not v:
            raise ValueError("at least one asset must be configured")
        return v

    @property
    def interval_sec(self) -> float:
        return self.interval / 1000.0


def load_params(path: str) -> MonitorParams:
    """
    Read and validate a params file.

    Raises:
        ConfigurationError: If the file is missing, not JSON or invalid
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Params file not found: {path}", error_code='PARAMS_NOT_FOUND', original_error=e
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot read params file {path}: {e}", error_code='PARAMS_INVALID', original_error=e
        ) from e

    try:
        params = MonitorParams.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid params file {path}",
            error_code='PARAMS_INVALID',
            details={'errors': e.errors(include_url=False)},
            original_error=e
        ) from e

    logger.info(
        f"Loaded params from {path}: group={params.group}, "
        f"interval={params.interval}ms, assets={list(params.assets)}"
    )
    return params
