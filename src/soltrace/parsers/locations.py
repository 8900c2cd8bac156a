"""
Byte offsets to line/column spans.

Compiler source maps count UTF-8 bytes, so positions are computed over the
encoded source. Lines and columns are 1-based.
"""

from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Position:
    line: int
    col: int

    def to_dict(self) -> Dict[str, int]:
        return {'line': self.line, 'col': self.col}


@dataclass(frozen=True)
class CodeLocation:
    start: Position
    end: Position
    file_path: str

    def to_dict(self) -> Dict[str, Any]:
        return {'start': self.start.to_dict(), 'end': self.end.to_dict(), 'filePath': self.file_path}


class LineIndex:
    """Newline positions of one source text."""

    def __init__(self, source: str):
        self.data = source.encode('utf-8')
        self.line_starts: List[int] = [0]
        for i, byte in enumerate(self.data):
            if byte == 0x0A:
                self.line_starts.append(i + 1)

    def position(self, offset: int) -> Position:
        offset = max(0, min(offset, len(self.data)))
        line = bisect_right(self.line_starts, offset)
        return Position(line=line, col=offset - self.line_starts[line - 1] + 1)


def offset_to_code_location(source: str, offset: int, length: int, file_path: str,
                            index: Optional[LineIndex] = None) -> CodeLocation:
    """Span of ``source[offset:offset + length]`` as a CodeLocation."""
    index = index or LineIndex(source)
    return CodeLocation(
        start=index.position(offset),
        end=index.position(offset + max(length, 0)),
        file_path=file_path,
    )


def parse_source_mapping(mapping: str) -> Optional[Tuple[int, int, int]]:
    """``"start:length:fileIndex"`` -> tuple, or None when the entry has no source."""
    try:
        offset, length, file_index = (int(part) for part in mapping.split(':')[:3])
    except ValueError:
        return None
    if offset < 0 or file_index < 0:
        return None
    return offset, length, file_index
