"""
Configuration Constants for the Mango Owner Monitor

This module centralizes the static constants of the monitor: Solana RPC
defaults, Mango v3 account layout sizes, scan parameters and logging.

Key Principles:
- Single source of truth for static values
- All constants are Final (immutable)
- Runtime overrides go through config.settings (environment / .env)
"""

from typing import Final, Dict
import os


# ============================================================================
# 1. FILE LOCATIONS
# ============================================================================

# Project root (two levels above src/config)
PROJECT_ROOT: Final[str] = os.path.dirname(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
)

# Directory holding the JSON params files (selected with PARAMS=<file>)
PARAMS_DIR: Final[str] = os.path.join(PROJECT_ROOT, 'params')
DEFAULT_PARAMS_FILE: Final[str] = 'default.json'

# Group registry (ids.json shape: cluster urls, groups, perp markets)
DEFAULT_IDS_PATH: Final[str] = os.path.join(PROJECT_ROOT, 'ids.json')

# Solana CLI keypair location
DEFAULT_KEYPAIR_PATH: Final[str] = os.path.join(
    os.path.expanduser('~'), '.config', 'solana', 'id.json'
)


# ============================================================================
# 2. SOLANA RPC CONFIGURATION
# ============================================================================

CLUSTER_URLS: Final[Dict[str, str]] = {
    'mainnet': 'https://api.mainnet-beta.solana.com',
    'devnet': 'https://api.devnet.solana.com',
}

# Commitment used for every read
DEFAULT_COMMITMENT: Final[str] = 'processed'

# Request timeout for RPC calls (seconds)
RPC_TIMEOUT_SEC: Final[float] = 30.0

# getMultipleAccounts accepts at most 100 keys per call; larger requests are
# split into several calls sent together as one JSON-RPC batch
MAX_KEYS_PER_CALL: Final[int] = 100

# Fetch retries inside one iteration (1 = no retry, the poll interval is the retry)
FETCH_MAX_ATTEMPTS: Final[int] = 1
FETCH_BACKOFF_BASE_SEC: Final[float] = 0.5
FETCH_BACKOFF_MAX_SEC: Final[float] = 10.0


# ============================================================================
# 3. MANGO V3 LAYOUT CONSTANTS
# ============================================================================

MAX_TOKENS: Final[int] = 16
MAX_PAIRS: Final[int] = MAX_TOKENS - 1
MAX_PERP_OPEN_ORDERS: Final[int] = 64
MAX_BOOK_NODES: Final[int] = 1024
INFO_LEN: Final[int] = 32

# Metadata data_type byte of each Mango account kind
DATA_TYPE_MANGO_GROUP: Final[int] = 0
DATA_TYPE_MANGO_ACCOUNT: Final[int] = 1
DATA_TYPE_MANGO_CACHE: Final[int] = 7
DATA_TYPE_PERP_MARKET: Final[int] = 4
DATA_TYPE_BIDS: Final[int] = 5
DATA_TYPE_ASKS: Final[int] = 6

# Account sizes in bytes
MANGO_GROUP_SIZE: Final[int] = 6032
MANGO_ACCOUNT_SIZE: Final[int] = 4296
MANGO_CACHE_SIZE: Final[int] = 1608
BOOK_SIDE_SIZE: Final[int] = 90152
OPEN_ORDERS_SIZE: Final[int] = 3228

# Serum account padding ("serum" head, "padding" tail)
SERUM_HEAD: Final[bytes] = b'serum'
SERUM_TAIL: Final[bytes] = b'padding'


# ============================================================================
# 4. ALERT SCANNING
# ============================================================================

# Only the best N resting orders of a book side are inspected
SCAN_DEPTH: Final[int] = 50

# Default poll interval when the params file omits it (milliseconds)
DEFAULT_INTERVAL_MS: Final[int] = 10_000


# ============================================================================
# 5. LOGGING CONFIGURATION
# ============================================================================

# Logging level: 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'
LOG_LEVEL: Final[str] = 'INFO'

# Path to log file (ensure write permissions)
LOG_FILE_PATH: Final[str] = 'logs/owner_monitor.log'

# Maximum log file size in bytes (rotate after this size)
MAX_LOG_FILE_SIZE: Final[int] = 20 * 1024 * 1024

# Number of backup log files to keep
LOG_BACKUP_COUNT: Final[int] = 5

# Enable JSON structured logging in the file handler
STRUCTURED_LOGGING: Final[bool] = True
