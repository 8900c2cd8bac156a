"""
ETHDebug Parser for Solidity Compilers (>=0.8.29)

Reads the ``debug/`` directory written by ``solc --ethdebug --ethdebug-runtime``:

- ``ethdebug.json`` lists the compilation sources as ``{id, path}``
- ``<Name>_ethdebug-runtime.json`` holds one entry per runtime instruction;
  ``context.code`` gives the source id and byte range of that instruction
- ``<Name>.abi`` is the contract ABI

The result is a DebugCallContract: pc -> ``"offset:length:sourceId"`` plus the
source texts and ABI needed to turn those into code locations.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from soltrace.parsers.locations import CodeLocation, LineIndex, offset_to_code_location, parse_source_mapping
from soltrace.utils.logging import get_logger

logger = get_logger('parsers')


@dataclass
class DebugCallContract:
    """Per-contract source mapping derived from compiler output."""
    pc_to_source_mappings: Dict[int, str]
    sources: Dict[int, str]                                      # source id -> text
    source_paths: Dict[int, str] = field(default_factory=dict)   # source id -> path
    abi: List[Dict[str, Any]] = field(default_factory=list)
    name: str = ''
    _line_indexes: Dict[int, LineIndex] = field(default_factory=dict, repr=False, compare=False)

    def location_at(self, pc: int) -> Optional[CodeLocation]:
        """Source span executed at ``pc``, if the compiler mapped one."""
        mapping = self.pc_to_source_mappings.get(pc)
        parsed = parse_source_mapping(mapping) if mapping else None
        if parsed is None:
            return None
        offset, length, source_id = parsed
        source = self.sources.get(source_id)
        if source is None:
            return None
        index = self._line_indexes.get(source_id)
        if index is None:
            index = self._line_indexes[source_id] = LineIndex(source)
        return offset_to_code_location(
            source, offset, length, self.source_paths.get(source_id, str(source_id)), index
        )

    def source_code(self) -> Dict[str, str]:
        """Path -> text for every source with known content."""
        return {
            self.source_paths.get(source_id, str(source_id)): text
            for source_id, text in sorted(self.sources.items())
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pcToSourceMappings': {str(pc): m for pc, m in sorted(self.pc_to_source_mappings.items())},
            'sources': {str(i): text for i, text in sorted(self.sources.items())},
            'abi': self.abi,
        }


def read_json(path: Path) -> Any:
    with open(path, encoding='utf-8') as f:
        return json.load(f)


def read_source_text(source_root: Path, path: str) -> Optional[str]:
    candidate = Path(source_root) / path.lstrip('/')
    if not candidate.is_file():
        return None
    with open(candidate, encoding='utf-8', errors='replace') as f:
        return f.read()


def load_abi_file(debug_dir: Path, contract_name: str) -> List[Dict[str, Any]]:
    abi_file = Path(debug_dir) / f"{contract_name}.abi"
    if not abi_file.exists():
        return []
    try:
        abi = read_json(abi_file)
    except json.JSONDecodeError:
        logger.warning(f"Invalid ABI file {abi_file}")
        return []
    return abi if isinstance(abi, list) else []


class ETHDebugParser:
    """Parser for ethdebug debug directories."""

    def __init__(self, debug_dir: Union[str, Path], source_root: Optional[Union[str, Path]] = None):
        self.debug_dir = Path(debug_dir)
        # Sources are compiled with the contract directory as working directory
        self.source_root = Path(source_root) if source_root else self.debug_dir.parent

    def load_sources(self) -> Dict[int, str]:
        """Source id -> path from ``ethdebug.json``."""
        ethdebug_file = self.debug_dir / 'ethdebug.json'
        if not ethdebug_file.exists():
            raise FileNotFoundError(f"ethdebug.json not found in {self.debug_dir}")
        data = read_json(ethdebug_file)
        compilation = data.get('compilation', data)
        return {
            int(source['id']): source['path']
            for source in compilation.get('sources', [])
            if 'id' in source and 'path' in source
        }

    def runtime_file(self, contract_name: Optional[str]) -> Path:
        if contract_name:
            candidate = self.debug_dir / f"{contract_name}_ethdebug-runtime.json"
            if candidate.exists():
                return candidate
        candidates = sorted(self.debug_dir.glob('*_ethdebug-runtime.json'))
        if not candidates:
            raise FileNotFoundError(f"No *_ethdebug-runtime.json in {self.debug_dir}")
        if contract_name and len(candidates) > 1:
            raise FileNotFoundError(
                f"No runtime program named {contract_name} among {len(candidates)} in {self.debug_dir}"
            )
        if contract_name:
            logger.debug(f"No runtime program named {contract_name}, using {candidates[0].name}")
        return candidates[0]

    @staticmethod
    def instruction_mapping(instruction: Dict[str, Any]) -> Optional[str]:
        code = (instruction.get('context') or {}).get('code')
        if not code:
            return None
        source_id = (code.get('source') or {}).get('id')
        source_range = code.get('range') or {}
        if source_id is None or 'offset' not in source_range:
            return None
        return f"{int(source_range['offset'])}:{int(source_range.get('length', 0))}:{int(source_id)}"

    def load(self, contract_name: Optional[str] = None) -> DebugCallContract:
        """
        Build the DebugCallContract for one compiled contract.

        Raises:
            FileNotFoundError: If the debug directory lacks ethdebug output
        """
        source_paths = self.load_sources()
        runtime_file = self.runtime_file(contract_name)
        program = read_json(runtime_file)
        name = contract_name or runtime_file.name[:-len('_ethdebug-runtime.json')]

        pc_to_source: Dict[int, str] = {}
        for instruction in program.get('instructions', []):
            mapping = self.instruction_mapping(instruction)
            if mapping is not None and 'offset' in instruction:
                pc_to_source[int(instruction['offset'])] = mapping

        sources: Dict[int, str] = {}
        for source_id, path in source_paths.items():
            text = read_source_text(self.source_root, path)
            if text is None:
                logger.debug(f"Source {path} not found under {self.source_root}")
                continue
            sources[source_id] = text

        logger.debug(f"{name}: {len(pc_to_source)} mapped instructions, {len(sources)} sources")
        return DebugCallContract(
            pc_to_source_mappings=pc_to_source,
            sources=sources,
            source_paths=source_paths,
            abi=load_abi_file(self.debug_dir, name),
            name=name,
        )
