"""
Compiler module for soltrace.

Materializes verified sources and compiles them with ethdebug output.
"""

from .config import CompilerConfig, SolcOutput, DEBUG_DIR_NAME
from .contract_compiler import (
    CompilationResult,
    CompilationStatus,
    CompilationSummary,
    CompiledContract,
    ContractCompiler,
    clean_source_content,
    write_sources,
)
from .debug_dirs import ETHDebugSpec, verify_debug_directories

__all__ = [
    'CompilerConfig',
    'SolcOutput',
    'DEBUG_DIR_NAME',
    'CompilationResult',
    'CompilationStatus',
    'CompilationSummary',
    'CompiledContract',
    'ContractCompiler',
    'clean_source_content',
    'write_sources',
    'ETHDebugSpec',
    'verify_debug_directories',
]
