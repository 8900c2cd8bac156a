"""
Parsers module for soltrace.

This module contains the parsers for compiler debug output:
- ETHDebug (solc >= 0.8.29)
- Source maps (legacy solc)
- Offset to line/column conversion
"""

from .locations import (
    CodeLocation,
    LineIndex,
    Position,
    offset_to_code_location,
    parse_source_mapping,
)
from .ethdebug import DebugCallContract, ETHDebugParser
from .source_map import (
    SourceMapEntry,
    SourceMapParser,
    build_pc_to_instruction_map,
    load_debug_info,
    parse_srcmap,
)

__all__ = [
    'CodeLocation',
    'LineIndex',
    'Position',
    'offset_to_code_location',
    'parse_source_mapping',
    'DebugCallContract',
    'ETHDebugParser',
    'SourceMapEntry',
    'SourceMapParser',
    'build_pc_to_instruction_map',
    'load_debug_info',
    'parse_srcmap',
]
