"""
Contract resolution: bytecode, verification status, ABI and sources.

- ContractResolver: per-chain registry selection and concurrent resolution
- SourcifyLoader / BlockscoutLoader: verification registry clients
"""

from .models import Contract, RegistryResult, SourceFile
from .registry import RegistryLoader
from .sourcify import SourcifyLoader
from .blockscout import BlockscoutLoader, extract_sources
from .contract_resolver import ContractResolver

__all__ = [
    'Contract',
    'RegistryResult',
    'SourceFile',
    'RegistryLoader',
    'SourcifyLoader',
    'BlockscoutLoader',
    'extract_sources',
    'ContractResolver',
]
