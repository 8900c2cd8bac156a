"""
JSON Serialization for soltrace output
"""
import json
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from hexbytes import HexBytes


def to_serializable(obj: Any) -> Any:
    """Convert non-serializable objects to JSON-serializable format."""
    if hasattr(obj, 'to_dict'):
        return to_serializable(obj.to_dict())
    if isinstance(obj, HexBytes):
        return obj.to_0x_hex()
    if isinstance(obj, (bytes, bytearray)):
        return '0x' + bytes(obj).hex()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, Mapping):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_serializable(item) for item in obj]
    if hasattr(obj, '__dict__'):
        return to_serializable(vars(obj))
    return obj


def dumps(obj: Any, indent: int = 2) -> str:
    return json.dumps(to_serializable(obj), indent=indent)
