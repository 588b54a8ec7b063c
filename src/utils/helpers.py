"""
Validators and Helper Utilities for the Mango Owner Monitor

Provides:
- Public key parsing and validation (base58)
- Safe decimal arithmetic for lot conversion
- Chunking for batched RPC requests
- Capped exponential backoff for coroutines
"""

from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, TypeVar, Union
from decimal import Decimal, ROUND_DOWN
import asyncio

from solders.pubkey import Pubkey

from utils.logger import get_logger
from utils.exceptions import DataValidationError


logger = get_logger(__name__)

T = TypeVar('T')

# The all-zero key marks an empty account slot
ZERO_KEY: Pubkey = Pubkey.default()


# ============================================================================
# 1. PUBLIC KEY VALIDATION
# ============================================================================

def parse_pubkey(value: Union[str, bytes, Pubkey], field: str = 'address') -> Pubkey:
    """
    Parse a base58 string (or 32 raw bytes) into a Pubkey.

    Args:
        value: base58 string, 32 bytes or an existing Pubkey
        field: Name of the field being parsed (for error details)

    Returns:
        Parsed Pubkey

    Raises:
        DataValidationError: If the value is not a valid public key
    """
    if isinstance(value, Pubkey):
        return value

    try:
        if isinstance(value, (bytes, bytearray)):
            if len(value) != 32:
                raise ValueError(f"expected 32 bytes, got {len(value)}")
            return Pubkey.from_bytes(bytes(value))
        if isinstance(value, str):
            return Pubkey.from_string(value.strip())
    except Exception as e:
        raise DataValidationError(
            f"Invalid public key for {field}",
            error_code='INVALID_PUBKEY',
            details={'field': field, 'value': str(value)},
            original_error=e
        ) from e

    raise DataValidationError(
        f"Public key for {field} must be str or bytes, got {type(value).__name__}",
        error_code='INVALID_PUBKEY',
        details={'field': field}
    )


def is_zero_key(key: Optional[Pubkey]) -> bool:
    """True for an empty slot (None or the all-zero key)"""
    return key is None or key == ZERO_KEY


# ============================================================================
# 2. SAFE MATHEMATICAL OPERATIONS
# ============================================================================

def safe_decimal_divide(
    numerator: Union[int, float, Decimal],
    denominator: Union[int, float, Decimal],
    decimals: Optional[int] = None
) -> Decimal:
    """
    Safely divide two numbers with proper decimal handling.

    Args:
        numerator: Dividend
        denominator: Divisor
        decimals: Decimal places to round down to (None keeps full precision)

    Returns:
        Result as Decimal

    Raises:
        ValueError: If denominator is zero
    """
    if denominator == 0:
        raise ValueError("Cannot divide by zero")

    result = Decimal(str(numerator)) / Decimal(str(denominator))
    if decimals is None:
        return result
    return result.quantize(
        Decimal(10) ** -decimals,
        rounding=ROUND_DOWN
    )


# ============================================================================
# 3. BATCHING
# ============================================================================

def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most `size` items, preserving order"""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


# ============================================================================
# 4. ASYNC RETRY
# ============================================================================

async def call_with_backoff(
    factory: Callable[[], Awaitable[T]],
    max_attempts: int = 1,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    operation: str = 'operation',
) -> T:
    """
    Await a coroutine produced by `factory`, retrying with capped exponential backoff.

    Args:
        factory: Zero-argument callable returning a fresh awaitable per attempt
        max_attempts: Total attempts (1 = no retry)
        base_delay: Delay before the second attempt (seconds)
        max_delay: Upper bound of any single delay (seconds)
        operation: Name used in log lines

    Returns:
        The awaited result of the first successful attempt

    Raises:
        The exception of the last attempt
    """
    delay = base_delay
    last_error: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return await factory()
        except Exception as e:
            last_error = e
            if attempt < max_attempts - 1:
                logger.warning(
                    f"{operation} attempt {attempt + 1} failed, retrying in {delay}s",
                    extra={
                        'operation': operation,
                        'attempt': attempt + 1,
                        'max_attempts': max_attempts,
                        'error': str(e)
                    }
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)

    if max_attempts > 1:
        logger.error(
            f"{operation} failed after {max_attempts} attempts",
            extra={'operation': operation, 'attempts': max_attempts}
        )
    raise last_error
