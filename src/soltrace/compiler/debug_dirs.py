"""
Compiled debug directories.

A successfully compiled contract is described by an ethdebug spec
``address:name:path``. This module checks that the directories those
specs point at actually hold debug artifacts.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from soltrace.utils.logging import get_logger

logger = get_logger('compiler')


@dataclass
class ETHDebugSpec:
    """A compiled contract's debug directory."""
    address: str
    path: str
    name: Optional[str] = None

    def __post_init__(self):
        if not self.address.startswith('0x'):
            raise ValueError(f"Address must start with '0x': {self.address}")
        if not self.path:
            raise ValueError("Path cannot be empty")

    def format(self) -> str:
        if self.name:
            return f"{self.address}:{self.name}:{self.path}"
        return f"{self.address}:{self.path}"


@dataclass
class DebugDirectoryInfo:
    exists: bool
    file_count: int
    files: List[str]
    path: str


@dataclass
class DebugDirectoryReport:
    """Outcome of checking a set of debug directories."""
    valid: List[ETHDebugSpec] = field(default_factory=list)
    invalid: List[ETHDebugSpec] = field(default_factory=list)
    details: Dict[str, DebugDirectoryInfo] = field(default_factory=dict)


def inspect_debug_directory(path: Path) -> DebugDirectoryInfo:
    path = Path(path)
    if not path.is_dir():
        return DebugDirectoryInfo(exists=False, file_count=0, files=[], path=str(path))
    files = sorted(p.name for p in path.iterdir())
    return DebugDirectoryInfo(exists=True, file_count=len(files), files=files[:10], path=str(path))


def verify_debug_directories(specs: List[ETHDebugSpec]) -> DebugDirectoryReport:
    """Split specs into those whose directory exists and is non-empty, and the rest."""
    report = DebugDirectoryReport()
    for spec in specs:
        info = inspect_debug_directory(Path(spec.path))
        report.details[spec.path] = info
        if info.exists and info.file_count > 0:
            logger.debug(f"Debug dir {spec.format()}: {info.file_count} files")
            report.valid.append(spec)
        else:
            logger.warning(
                f"Debug dir {'is empty' if info.exists else 'does not exist'}: {spec.path}"
            )
            report.invalid.append(spec)
    return report
