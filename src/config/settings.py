"""
Runtime Configuration for the Mango Owner Monitor

pydantic-settings based configuration. Every field can be overridden from the
environment (or a .env file) using the upper-cased field name, plus the short
legacy names used by the original scripts (PARAMS, KEYPAIR, ENDPOINT_URL).

Usage:
    from config.settings import get_settings

    settings = get_settings()
    timeout = settings.rpc_timeout_sec

    # Override via environment:
    # export RPC_TIMEOUT_SEC=10
"""

import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field, field_validator

from config.constants import (
    DEFAULT_COMMITMENT,
    DEFAULT_IDS_PATH,
    DEFAULT_KEYPAIR_PATH,
    DEFAULT_PARAMS_FILE,
    FETCH_BACKOFF_BASE_SEC,
    FETCH_BACKOFF_MAX_SEC,
    FETCH_MAX_ATTEMPTS,
    LOG_FILE_PATH,
    LOG_LEVEL,
    PARAMS_DIR,
    RPC_TIMEOUT_SEC,
    SCAN_DEPTH,
    STRUCTURED_LOGGING,
)


class MonitorSettings(BaseSettings):
    """
    Monitor Configuration

    All parameters can be overridden via environment variables.
    Example: PARAMS=btc.json ENDPOINT_URL=https://my-rpc python src/main.py
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
        frozen=True,
    )

    # ============================================================================
    # INPUT FILES
    # ============================================================================

    params: str = Field(
        default=DEFAULT_PARAMS_FILE,
        validation_alias=AliasChoices('params', 'params_file'),
        description="Params file name, resolved inside params_dir"
    )

    params_dir: str = Field(
        default=PARAMS_DIR,
        description="Directory holding the JSON params files"
    )

    keypair: str = Field(
        default=DEFAULT_KEYPAIR_PATH,
        validation_alias=AliasChoices('keypair', 'keypair_path'),
        description="Solana CLI keypair file identifying the account owner"
    )

    ids_path: str = Field(
        default=DEFAULT_IDS_PATH,
        description="Group registry file (cluster urls, groups, perp markets)"
    )

    # ============================================================================
    # RPC
    # ============================================================================

    endpoint_url: Optional[str] = Field(
        default=None,
        description="RPC endpoint; overrides the cluster url of the group"
    )

    commitment: str = Field(
        default=DEFAULT_COMMITMENT,
        description="Commitment level for every read"
    )

    rpc_timeout_sec: float = Field(
        default=RPC_TIMEOUT_SEC,
        description="Total timeout of one RPC round trip (seconds)",
        gt=0.0,
        le=300.0
    )

    fetch_max_attempts: int = Field(
        default=FETCH_MAX_ATTEMPTS,
        description="""
        Attempts of the batched fetch inside one iteration.
        1 keeps the plain behaviour: a failed fetch fails the iteration and
        the next poll interval is the retry.
        """,
        ge=1,
        le=10
    )

    fetch_backoff_base_sec: float = Field(
        default=FETCH_BACKOFF_BASE_SEC,
        description="First delay between fetch attempts (doubles each attempt)",
        ge=0.0
    )

    fetch_backoff_max_sec: float = Field(
        default=FETCH_BACKOFF_MAX_SEC,
        description="Cap of the delay between fetch attempts",
        ge=0.0
    )

    # ============================================================================
    # SCANNING
    # ============================================================================

    scan_depth: int = Field(
        default=SCAN_DEPTH,
        description="Number of best resting orders inspected per book side",
        ge=1,
        le=1024
    )

    # ============================================================================
    # LOGGING
    # ============================================================================

    log_level: str = Field(default=LOG_LEVEL)

    log_file: str = Field(
        default=LOG_FILE_PATH,
        description="Rotating log file; empty string disables file logging"
    )

    structured_logging: bool = Field(default=STRUCTURED_LOGGING)

    # ============================================================================
    # VALIDATORS
    # ============================================================================

    @field_validator('commitment')
    @classmethod
    def validate_commitment(cls, v: str) -> str:
        """Only the three Solana commitment levels are accepted"""
        if v not in ('processed', 'confirmed', 'finalized'):
            raise ValueError(f"Unknown commitment: {v}")
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def params_path(self) -> str:
        """Full path of the params file (absolute names are used as given)"""
        return os.path.join(self.params_dir, self.params)

    def model_post_init(self, __context):
        """Validate backoff bounds after all fields are set"""
        if self.fetch_backoff_base_sec > self.fetch_backoff_max_sec:
            raise ValueError(
                f"fetch_backoff_base_sec ({self.fetch_backoff_base_sec}) exceeds "
                f"fetch_backoff_max_sec ({self.fetch_backoff_max_sec})"
            )


# Singleton instance
_settings: Optional[MonitorSettings] = None


def get_settings() -> MonitorSettings:
    """
    Get singleton settings instance.

    Returns:
        MonitorSettings: Configured settings instance
    """
    global _settings
    if _settings is None:
        _settings = MonitorSettings()
    return _settings


def reload_settings() -> MonitorSettings:
    """
    Force reload settings from environment.

    Returns:
        MonitorSettings: New settings instance
    """
    global _settings
    _settings = MonitorSettings()
    return _settings


__all__ = ['get_settings', 'reload_settings', 'MonitorSettings']
