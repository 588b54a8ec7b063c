"""
Custom Exception Classes for the Mango Owner Monitor

Provides a hierarchy of specific exceptions so the poll loop can tell fatal
bootstrap problems apart from iteration-scoped failures.

Exception Hierarchy:
├── MonitorError (Base)
│   ├── ConfigurationError          (fatal, bootstrap only)
│   ├── RpcError
│   │   ├── RpcTimeoutError
│   │   └── InvalidResponseError
│   ├── DataValidationError
│   │   └── DecodeError
│   └── SnapshotAssemblyError
"""

from typing import Optional, Dict, Any


class MonitorError(Exception):
    """
    Base exception for all monitor errors.
    All other exceptions inherit from this.
    Enables catching all monitor errors with: except MonitorError
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize monitor error with structured information.

        Args:
            message: Human-readable error message
            error_code: Error code for classification (e.g., 'ACCOUNT_NOT_FOUND')
            details: Additional context dict
            original_error: Original exception that caused this (for error chaining)
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        error_str = f"{self.__class__.__name__}: {self.message}"
        if self.error_code:
            error_str += f" (Code: {self.error_code})"
        if self.details:
            error_str += f" | Details: {self.details}"
        return error_str


# ============================================================================
# CONFIGURATION & BOOTSTRAP ERRORS
# ============================================================================

class ConfigurationError(MonitorError):
    """
    Raised when configuration is invalid or incomplete.
    Examples: unknown group name, missing account selector, no markets,
    unreadable keypair or params file
    Action: Fix configuration and restart the monitor
    """
    pass


# ============================================================================
# RPC & NETWORK ERRORS
# ============================================================================

class RpcError(MonitorError):
    """
    Base exception for JSON-RPC errors.
    Includes HTTP status code and response data for debugging.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Any] = None,
        **kwargs
    ):
        self.status_code = status_code
        self.response_data = response_data
        super().__init__(message, **kwargs)


class RpcTimeoutError(RpcError):
    """
    Raised when an RPC request times out.
    Recovered at the iteration boundary; the next iteration retries.
    """
    pass


class InvalidResponseError(RpcError):
    """
    Raised when an RPC response cannot be parsed or has the wrong shape.
    Examples: missing 'result', wrong number of accounts, bad base64 payload
    """
    pass


# ============================================================================
# DATA & DECODING ERRORS
# ============================================================================

class DataValidationError(MonitorError):
    """
    Raised when data validation fails.
    Examples: invalid base58 public key, negative lot size
    """
    pass


class DecodeError(DataValidationError):
    """
    Raised when account bytes do not match the expected layout for a kind.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        expected_size: Optional[int] = None,
        actual_size: Optional[int] = None,
        **kwargs
    ):
        self.kind = kind
        self.expected_size = expected_size
        self.actual_size = actual_size
        super().__init__(message, **kwargs)


class SnapshotAssemblyError(MonitorError):
    """
    Raised when a batched fetch response cannot be mapped back onto the
    requested addresses (length mismatch, reordered or missing fixed entry).
    """
    pass
