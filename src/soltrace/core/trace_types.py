"""
Trace data model and normalization.

Converts the node's loosely typed ``callTracer`` frames into TraceCall
trees, flattens them into pre-order sequences and derives the set of
contracts a trace touches.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from eth_utils import to_checksum_address


class TraceType(str, Enum):
    """Kind of a trace frame."""
    CALL = 'CALL'
    CALLCODE = 'CALLCODE'
    DELEGATECALL = 'DELEGATECALL'
    STATICCALL = 'STATICCALL'
    CREATE = 'CREATE'
    CREATE2 = 'CREATE2'
    SELFDESTRUCT = 'SELFDESTRUCT'
    INTERNALCALL = 'INTERNALCALL'

    @classmethod
    def parse(cls, value: Union[str, 'TraceType']) -> 'TraceType':
        if isinstance(value, TraceType):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown trace frame type: {value!r}") from None

    @property
    def is_internal(self) -> bool:
        return self is TraceType.INTERNALCALL

    @property
    def is_create(self) -> bool:
        return self in (TraceType.CREATE, TraceType.CREATE2)

    @property
    def call_type(self) -> str:
        """Entry point call type as shown by the debugger."""
        if self in (TraceType.DELEGATECALL, TraceType.CALLCODE):
            return 'Delegate'
        return 'Call'


@dataclass
class TraceLog:
    """A log emitted inside a frame."""
    address: str
    topics: List[str]
    data: str
    position: int  # index among the frame's subcalls at emission time

    def to_dict(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'topics': list(self.topics),
            'data': self.data,
            'position': hex(self.position),
        }


@dataclass
class TraceCall:
    """
    One normalized frame of a call trace.

    ``calls`` holds the child frames in execution order. ``output`` always
    starts with ``0x``; numeric fields are Python ints.
    """
    type: TraceType
    from_address: Optional[str]
    to: Optional[str]
    value: Optional[int]
    gas: int
    gas_used: int
    input: str
    output: str = '0x'
    error: Optional[str] = None
    revert_reason: Optional[str] = None
    is_reverted_frame: bool = False
    logs: List[TraceLog] = field(default_factory=list)
    calls: List['TraceCall'] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.is_reverted_frame or bool(self.error)

    def to_dict(self) -> Dict[str, Any]:
        """Render back into the node's wire shape (hex quantities, camelCase keys)."""
        result = {
            'type': self.type.value,
            'from': self.from_address,
            'to': self.to,
            'value': hex(self.value) if self.value is not None else None,
            'gas': hex(self.gas),
            'gasUsed': hex(self.gas_used),
            'input': self.input,
            'output': self.output,
            'isRevertedFrame': self.is_reverted_frame,
            'logs': [log.to_dict() for log in self.logs],
            'calls': [call.to_dict() for call in self.calls],
        }
        if self.error is not None:
            result['error'] = self.error
        if self.revert_reason is not None:
            result['revertReason'] = self.revert_reason
        return {key: value for key, value in result.items() if value is not None}


@dataclass
class FlatTraceCall:
    """A frame in the flattened, pre-order view of a trace."""
    index: int
    depth: int
    parent_index: Optional[int]
    call: TraceCall                     # copy; internal frames carry inherited addresses
    children: List[int] = field(default_factory=list)

    @property
    def call_id(self) -> int:
        """Debugger call ids are 1-based flattened positions."""
        return self.index + 1


@dataclass
class Step:
    """An executed instruction attributed to a flattened frame."""
    pc: int
    trace_call_index: int

    def to_dict(self) -> Dict[str, int]:
        return {'pc': self.pc, 'traceCallIndex': self.trace_call_index}


# =============================================================================
# Normalization
# =============================================================================

def to_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Convert a hex quantity, decimal string or int into an int."""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith('0x'):
        return int(text, 16) if len(text) > 2 else 0
    return int(text)


def normalize_hex_data(value: Optional[str]) -> str:
    """Byte strings default to ``0x`` and always carry the prefix."""
    if not value:
        return '0x'
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    if value.startswith('0x') or value.startswith('0X'):
        return '0x' + value[2:]
    return '0x' + value


def normalize_address(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return to_checksum_address(value)


def normalize_trace_log(raw: Dict[str, Any]) -> TraceLog:
    return TraceLog(
        address=normalize_address(raw.get('address')),
        topics=list(raw.get('topics') or []),
        data=normalize_hex_data(raw.get('data')),
        position=to_int(raw.get('position'), 0),
    )


def normalize_trace_call(raw: Union[Dict[str, Any], TraceCall]) -> TraceCall:
    """
    Build a TraceCall tree from a raw frame.

    Already normalized input is accepted and returned unchanged in value,
    so the function can be applied to its own output.
    """
    if isinstance(raw, TraceCall):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        raise ValueError(f"Trace frame must be a mapping, got {type(raw).__name__}")

    return TraceCall(
        type=TraceType.parse(raw.get('type', 'CALL')),
        from_address=normalize_address(raw.get('from')),
        to=normalize_address(raw.get('to')),
        value=to_int(raw.get('value'), None),
        gas=to_int(raw.get('gas'), 0),
        gas_used=to_int(raw.get('gasUsed'), 0),
        input=normalize_hex_data(raw.get('input')),
        output=normalize_hex_data(raw.get('output')),
        error=raw.get('error') or None,
        revert_reason=raw.get('revertReason') or None,
        is_reverted_frame=bool(raw.get('isRevertedFrame', False)),
        logs=[normalize_trace_log(log) for log in raw.get('logs') or []],
        calls=[normalize_trace_call(call) for call in raw.get('calls') or []],
    )


# =============================================================================
# Flattening
# =============================================================================

def flatten_trace_call(root: TraceCall) -> List[FlatTraceCall]:
    """
    Flatten a trace tree into depth-first pre-order.

    Internal frames take ``from``/``to`` from their nearest external
    ancestor. Iterative so deep traces cannot hit the recursion limit.
    """
    flat: List[FlatTraceCall] = []
    # (frame, depth, parent index, enclosing external frame)
    stack = [(root, 0, None, None)]

    while stack:
        frame, depth, parent_index, external = stack.pop()
        if frame.type.is_internal and external is not None:
            frame = replace(frame, from_address=external.from_address, to=external.to)
        else:
            external = frame

        index = len(flat)
        flat.append(FlatTraceCall(index=index, depth=depth, parent_index=parent_index, call=frame))
        if parent_index is not None:
            flat[parent_index].children.append(index)

        for child in reversed(frame.calls):
            stack.append((child, depth + 1, index, external))

    return flat


def unique_contract_addresses(flat: Iterable[FlatTraceCall]) -> List[str]:
    """Distinct ``to`` addresses in first-occurrence order."""
    seen = set()
    addresses = []
    for entry in flat:
        address = entry.call.to
        if address and address not in seen:
            seen.add(address)
            addresses.append(address)
    return addresses
