"""
Core tracing and debugger assembly for soltrace.

- trace_types: normalized call frames and flattening
- tracing_client: trace acquisition from a node
- call_maps / debugger: payload assembly
- pipeline: end-to-end orchestration
"""

from .trace_types import (
    FlatTraceCall,
    Step,
    TraceCall,
    TraceLog,
    TraceType,
    flatten_trace_call,
    normalize_trace_call,
    unique_contract_addresses,
)
from .tracing_client import TraceResult, TracingClient, TransactionInfo
from .call_maps import CallMaps, ContractCall, FunctionCall, build_call_maps
from .debugger import DebuggerInfo, assemble_debugger_info
from .pipeline import DebugPipeline, DebugRequest, DebugResult, RunState, SimulationResult

__all__ = [
    'FlatTraceCall',
    'Step',
    'TraceCall',
    'TraceLog',
    'TraceType',
    'flatten_trace_call',
    'normalize_trace_call',
    'unique_contract_addresses',
    'TraceResult',
    'TracingClient',
    'TransactionInfo',
    'CallMaps',
    'ContractCall',
    'FunctionCall',
    'build_call_maps',
    'DebuggerInfo',
    'assemble_debugger_info',
    'DebugPipeline',
    'DebugRequest',
    'DebugResult',
    'RunState',
    'SimulationResult',
]
