"""Solana CLI keypair loading"""

import json
import os

from solders.keypair import Keypair

from utils.exceptions import ConfigurationError
from utils.logger import get_logger


logger = get_logger(__name__)


def load_keypair(path: str) -> Keypair:
    """
    Load a keypair file written by `solana-keygen` (JSON array of 64 ints).

    The monitor never signs anything; the keypair only identifies the owner
    whose accounts are resolved by name.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = os.path.expanduser(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            secret = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Keypair file not found: {path}", error_code='KEYPAIR_NOT_FOUND', original_error=e
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot read keypair file {path}: {e}", error_code='KEYPAIR_INVALID', original_error=e
        ) from e

    if not isinstance(secret, list) or len(secret) != 64:
        raise ConfigurationError(
            f"Keypair file {path} must hold a JSON array of 64 bytes",
            error_code='KEYPAIR_INVALID'
        )

    try:
        keypair = Keypair.from_bytes(bytes(secret))
    except Exception as e:
        raise ConfigurationError(
            f"Invalid keypair in {path}: {e}", error_code='KEYPAIR_INVALID', original_error=e
        ) from e

    logger.info(f"Loaded keypair for owner {keypair.pubkey()}")
    return keypair
