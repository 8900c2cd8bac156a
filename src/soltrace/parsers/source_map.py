"""
Source Map Parser for Legacy Solidity Compilers (<0.8.29)

Parses srcmap-runtime from combined.json output.
Format specification: https://docs.soliditylang.org/en/latest/internals/source_mappings.html

Each srcmap entry is `s:l:f:j:m` where:
- s = byte offset in source file
- l = length in bytes
- f = source file index
- j = jump type (i=into function, o=out of function, -=regular)
- m = modifier depth

Entries are separated by `;`. Empty fields inherit from previous entry.
Entries are per instruction, not per byte, so PUSH data has to be skipped
when mapping them back to program counters.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from soltrace.parsers.ethdebug import DebugCallContract, ETHDebugParser, read_json, read_source_text
from soltrace.utils.logging import get_logger

logger = get_logger('parsers')

PUSH1 = 0x60
PUSH32 = 0x7f


@dataclass
class SourceMapEntry:
    """Single source mapping entry."""
    offset: int          # s
    length: int          # l
    file_index: int      # f (-1 = no source)
    jump_type: str       # j
    modifier_depth: int  # m

    def is_valid(self) -> bool:
        return self.file_index >= 0 and self.offset >= 0


def build_pc_to_instruction_map(bytecode: bytes) -> Dict[int, int]:
    """Map each instruction's byte offset to its instruction index."""
    pc_to_idx = {}
    pc = 0
    instr_idx = 0
    while pc < len(bytecode):
        pc_to_idx[pc] = instr_idx
        opcode = bytecode[pc]
        if PUSH1 <= opcode <= PUSH32:
            pc += 1 + (opcode - PUSH1 + 1)
        else:
            pc += 1
        instr_idx += 1
    return pc_to_idx


def parse_srcmap(srcmap: str) -> List[SourceMapEntry]:
    """Expand a compressed srcmap into one entry per instruction."""
    if not srcmap:
        return []

    entries = []
    previous = ['0', '0', '-1', '-', '0']
    for part in srcmap.split(';'):
        fields = part.split(':') if part else []
        current = [
            fields[i] if i < len(fields) and fields[i].strip() else previous[i]
            for i in range(5)
        ]
        entries.append(SourceMapEntry(
            offset=int(current[0]),
            length=int(current[1]),
            file_index=int(current[2]),
            jump_type=current[3],
            modifier_depth=int(current[4]),
        ))
        previous = current
    return entries


def _strip_hex(code: str) -> str:
    return code[2:] if code.startswith('0x') else code


class SourceMapParser:
    """Parser for srcmap-runtime from combined.json."""

    def __init__(self, debug_dir: Union[str, Path], source_root: Optional[Union[str, Path]] = None):
        self.debug_dir = Path(debug_dir)
        self.source_root = Path(source_root) if source_root else self.debug_dir.parent

    def select_contract(self, contracts: Dict[str, Any], contract_name: Optional[str]) -> Tuple[str, Dict[str, Any]]:
        """Pick ``path:Name`` by name, falling back to the only contract with runtime code."""
        with_code = [(key, data) for key, data in contracts.items() if data.get('bin-runtime')]
        if contract_name:
            for key, data in with_code:
                if key.rsplit(':', 1)[-1] == contract_name:
                    return key, data
        if not with_code:
            raise ValueError("No contract found with runtime bytecode in combined.json")
        if contract_name and len(with_code) > 1:
            raise ValueError(f"No contract named {contract_name} in combined.json")
        return with_code[0]

    def load(self, contract_name: Optional[str] = None) -> DebugCallContract:
        """
        Build a DebugCallContract from ``combined.json``.

        Raises:
            FileNotFoundError: If combined.json is missing
            ValueError: If no usable contract is found
        """
        combined_file = self.debug_dir / 'combined.json'
        if not combined_file.exists():
            raise FileNotFoundError(f"combined.json not found in {self.debug_dir}")

        data = read_json(combined_file)
        contracts = data.get('contracts', {})
        source_list = data.get('sourceList', [])
        if not contracts:
            raise ValueError("No contracts found in combined.json")

        key, contract_data = self.select_contract(contracts, contract_name)
        srcmap = contract_data.get('srcmap-runtime', '')
        if not srcmap:
            raise ValueError(f"No srcmap-runtime found for contract {key}")

        bytecode = bytes.fromhex(_strip_hex(contract_data['bin-runtime']))
        entries = parse_srcmap(srcmap)
        pc_to_source = {}
        for pc, instr_idx in build_pc_to_instruction_map(bytecode).items():
            if instr_idx >= len(entries):
                break
            entry = entries[instr_idx]
            if entry.is_valid() and entry.file_index < len(source_list):
                pc_to_source[pc] = f"{entry.offset}:{entry.length}:{entry.file_index}"

        source_paths = dict(enumerate(source_list))
        sources = {}
        for index, path in source_paths.items():
            text = read_source_text(self.source_root, path)
            if text is not None:
                sources[index] = text

        abi = contract_data.get('abi', [])
        if isinstance(abi, str):
            abi = json.loads(abi)

        return DebugCallContract(
            pc_to_source_mappings=pc_to_source,
            sources=sources,
            source_paths=source_paths,
            abi=abi,
            name=key.rsplit(':', 1)[-1],
        )


def load_debug_info(debug_dir: Union[str, Path], contract_name: Optional[str] = None,
                    source_root: Optional[Union[str, Path]] = None) -> DebugCallContract:
    """
    Load debug info from directory, automatically selecting parser.

    First tries ETHDebug (for solc >= 0.8.29), then falls back to srcmap (legacy).
    """
    debug_dir = Path(debug_dir)

    if (debug_dir / 'ethdebug.json').exists():
        return ETHDebugParser(debug_dir, source_root).load(contract_name)

    if (debug_dir / 'combined.json').exists():
        return SourceMapParser(debug_dir, source_root).load(contract_name)

    raise FileNotFoundError(
        f"No debug info found in {debug_dir}. "
        f"Expected ethdebug.json (solc >= 0.8.29) or combined.json (legacy solc)."
    )
