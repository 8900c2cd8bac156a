"""
Utilities module for soltrace.

Provides exception handling, logging and terminal colors.
"""

from .exceptions import (
    SoltraceError,
    InvalidRequestError,
    AcquisitionError,
    RpcConnectionError,
    RpcTimeoutError,
    DebugNotSupportedError,
    TransactionNotFoundError,
    MalformedTraceError,
    ResolutionError,
    ContractNotVerifiedError,
    RegistryError,
    CompilationError,
    classify_rpc_error,
    sanitize_error_message,
    format_error,
    format_error_json,
    format_exception_message,
)
from .logging import setup_logging, get_logger, TRACE
from .colors import Colors, SUPPORTS_COLOR, error, success, warning, info, bold, dim

__all__ = [
    # Exceptions
    'SoltraceError',
    'InvalidRequestError',
    'AcquisitionError',
    'RpcConnectionError',
    'RpcTimeoutError',
    'DebugNotSupportedError',
    'TransactionNotFoundError',
    'MalformedTraceError',
    'ResolutionError',
    'ContractNotVerifiedError',
    'RegistryError',
    'CompilationError',
    'classify_rpc_error',
    'sanitize_error_message',
    # Formatting
    'format_error',
    'format_error_json',
    'format_exception_message',
    # Logging
    'setup_logging',
    'get_logger',
    'TRACE',
    # Colors
    'Colors',
    'SUPPORTS_COLOR',
    'error', 'success', 'warning', 'info', 'bold', 'dim',
]
