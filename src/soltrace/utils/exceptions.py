"""
Custom exceptions for soltrace.

This module provides a hierarchy of exceptions for the stages of the
debugging pipeline, the classification of raw node failures into that
hierarchy, and the scrubbing of secrets from messages that leave the
process.
"""

import asyncio
import json
import re
from typing import Any, Dict, Optional

import aiohttp


_URL_PATTERN = re.compile(r'https?://[^\s]+')
_KEY_PATTERN = re.compile(r'[a-zA-Z0-9]{40,}')


def sanitize_error_message(message: str) -> str:
    """
    Remove URLs and API-key-like tokens from an error message.

    URLs are replaced first, then any remaining long alphanumeric run.
    """
    if not message:
        return message
    message = _URL_PATTERN.sub('[REDACTED_URL]', message)
    return _KEY_PATTERN.sub('[REDACTED_KEY]', message)


class SoltraceError(Exception):
    """
    Base exception for all soltrace errors.

    Attributes:
        message: Human-readable error message
        details: Additional context as key-value pairs
        error_code: Error code for programmatic handling
        status_code: HTTP status used by the service layer
        user_message: Message safe to show to an end user
    """

    status_code = 500
    default_code = None
    default_user_message = 'An unexpected error occurred'

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        user_message: Optional[str] = None
    ):
        self.message = message
        self.details = details or {}
        self.error_code = error_code or self.default_code or self.__class__.__name__
        self.user_message = user_message or self.default_user_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error": True,
            "type": self.error_code,
            "message": sanitize_error_message(self.message),
            **self.details
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


class InvalidRequestError(SoltraceError):
    """Raised when a debug request does not match either input shape."""

    status_code = 400
    default_code = 'INVALID_REQUEST'
    default_user_message = 'Invalid request'

    def __init__(self, message: str, **kwargs):
        super().__init__(message, kwargs, user_message=message)


# ============================================================================
# Acquisition Errors
# ============================================================================

class AcquisitionError(SoltraceError):
    """Raised when a trace cannot be obtained from the node."""

    status_code = 502
    default_code = 'ACQUISITION_ERROR'
    default_user_message = 'Failed to obtain a trace from the node'

    def __init__(self, message: str, **kwargs):
        super().__init__(message, kwargs)


class RpcConnectionError(AcquisitionError):
    """Raised when the node cannot be reached."""

    status_code = 503
    default_code = 'RPC_CONNECTION_ERROR'
    default_user_message = 'Could not connect to the network RPC endpoint'


class RpcTimeoutError(AcquisitionError):
    """Raised when a node call exceeds its timeout."""

    status_code = 504
    default_code = 'RPC_TIMEOUT'
    default_user_message = 'The network RPC endpoint timed out'


class DebugNotSupportedError(AcquisitionError):
    """Raised when the node does not expose the debug tracing API."""

    status_code = 400
    default_code = 'DEBUG_NOT_SUPPORTED'
    default_user_message = 'Debug tracing is not supported on this network'


class TransactionNotFoundError(AcquisitionError):
    """Raised when the transaction is unknown to the node."""

    status_code = 404
    default_code = 'TRANSACTION_NOT_FOUND'
    default_user_message = 'Transaction not found'

    def __init__(self, tx_hash: str, **kwargs):
        super().__init__(f"Transaction not found: {tx_hash}", tx_hash=tx_hash, **kwargs)


class MalformedTraceError(AcquisitionError):
    """Raised when the node returns a trace that cannot describe the transaction."""

    default_code = 'MALFORMED_TRACE'
    default_user_message = 'The node returned a malformed trace'


# ============================================================================
# Resolution Errors
# ============================================================================

class ResolutionError(SoltraceError):
    """Base class for contract resolution errors."""

    default_code = 'RESOLUTION_ERROR'
    default_user_message = 'Failed to resolve contract'

    def __init__(self, message: str, contract_address: Optional[str] = None, **kwargs):
        details = {}
        if contract_address:
            details["contract_address"] = contract_address
        details.update(kwargs)
        super().__init__(message, details)
        self.contract_address = contract_address


class ContractNotVerifiedError(ResolutionError):
    """Raised when a registry has no verified source for an address."""

    status_code = 404
    default_code = 'CONTRACT_NOT_VERIFIED'
    default_user_message = 'Contract is not verified'

    def __init__(self, address: str, registry: str, **kwargs):
        super().__init__(
            f"Contract {address} not found on {registry}",
            contract_address=address,
            registry=registry,
            **kwargs
        )
        self.registry = registry


class RegistryError(ResolutionError):
    """Raised when a verification registry fails for any other reason."""

    status_code = 502
    default_code = 'REGISTRY_ERROR'


# ============================================================================
# Compilation Errors
# ============================================================================

class CompilationError(SoltraceError):
    """
    Raised when a verified contract cannot be compiled into debug data.

    The category tells operators which of the known failure modes occurred.
    """

    VERSION_MISMATCH = 'version-mismatch'
    MISSING_SOURCE = 'missing-source'
    SYNTAX_ERROR = 'syntax-error'
    PRAGMA_DETECTION_FAILURE = 'pragma-detection-failure'
    EMPTY_DEBUG_OUTPUT = 'empty-debug-output'
    COMPILER_FAILURE = 'compiler-failure'

    default_code = 'CONTRACT_COMPILATION_ERROR'
    default_user_message = 'Failed to compile contract'

    def __init__(
        self,
        message: str,
        category: str = COMPILER_FAILURE,
        contract_address: Optional[str] = None,
        **kwargs
    ):
        details = {"category": category}
        if contract_address:
            details["contract_address"] = contract_address
        details.update(kwargs)
        super().__init__(message, details)
        self.category = category
        self.contract_address = contract_address


# ============================================================================
# Classification
# ============================================================================

_TIMEOUT_MARKERS = ('timeout', 'timed out', 'etimedout')
_CONNECTION_MARKERS = ('econnrefused', 'enotfound', 'failed to connect', 'connection')
_DEBUG_MARKERS = ('debug_tracetransaction', 'debug_tracecall', 'method not found')
_NOT_FOUND_MARKERS = ('transaction not found', 'could not be found')


def classify_rpc_error(exc: BaseException, tx_hash: Optional[str] = None) -> AcquisitionError:
    """
    Map a raw node or network failure onto the acquisition error classes.

    Args:
        exc: The exception raised by the transport or the node
        tx_hash: Transaction being traced, if any

    Returns:
        A sanitized AcquisitionError subclass instance
    """
    if isinstance(exc, AcquisitionError):
        return exc

    raw = sanitize_error_message(format_exception_message(exc))
    text = raw.lower()

    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)) or \
            any(marker in text for marker in _TIMEOUT_MARKERS):
        return RpcTimeoutError(f"RPC request timed out: {raw}")
    if isinstance(exc, (aiohttp.ClientConnectionError, ConnectionError)) or \
            any(marker in text for marker in _CONNECTION_MARKERS):
        return RpcConnectionError(f"Failed to connect to RPC: {raw}")
    if any(marker in text for marker in _DEBUG_MARKERS) or \
            ('debug' in text and 'not supported' in text):
        return DebugNotSupportedError(f"Debug tracing not supported: {raw}")
    if any(marker in text for marker in _NOT_FOUND_MARKERS):
        return TransactionNotFoundError(tx_hash or 'unknown')
    return AcquisitionError(raw or type(exc).__name__)


# ============================================================================
# Error Formatting Utilities
# ============================================================================

def format_exception_message(e: BaseException) -> str:
    """
    Extract a clean error message from any exception.

    web3 RPC errors carry the node's ``{'code': ..., 'message': ...}`` dict
    as their first argument.
    """
    if getattr(e, 'args', None):
        first_arg = e.args[0]
        if isinstance(first_arg, dict):
            return str(first_arg.get('message', e))
        return str(first_arg)
    return str(e)


def format_error(e: Exception, json_mode: bool = False) -> str:
    """
    Format an exception for display.

    Args:
        e: The exception to format
        json_mode: If True, output as JSON; otherwise use colored text

    Returns:
        Formatted error string
    """
    from soltrace.utils.colors import error

    if isinstance(e, SoltraceError):
        return e.to_json() if json_mode else error(sanitize_error_message(e.message))

    message = sanitize_error_message(format_exception_message(e))
    if json_mode:
        return json.dumps(format_error_json(message, type(e).__name__), indent=2)
    return error(message)


def format_error_json(
    message: str,
    error_type: str = "Error",
    **kwargs
) -> Dict[str, Any]:
    """
    Create a standardized error JSON structure.

    Args:
        message: Error message
        error_type: Error type/code
        **kwargs: Additional fields to include

    Returns:
        Dictionary suitable for JSON output
    """
    return {
        "error": True,
        "type": error_type,
        "message": sanitize_error_message(message),
        **kwargs
    }
