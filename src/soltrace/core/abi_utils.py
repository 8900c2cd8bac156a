"""
ABI decoding for call frames.

Decoding never raises: an unknown selector yields the raw selector as the
function name, and a parameter that cannot be decoded is rendered as
``<undecoded>`` without affecting its siblings.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from eth_abi import decode
from eth_abi.exceptions import DecodingError, ParseError
from eth_abi.grammar import parse as parse_abi_type
from eth_hash.auto import keccak
from eth_utils import to_checksum_address

from soltrace.utils.logging import get_logger

logger = get_logger('abi')

UNDECODED = '<undecoded>'

ERROR_SELECTOR = '0x08c379a0'   # Error(string)
PANIC_SELECTOR = '0x4e487b71'   # Panic(uint256)


class _Undecoded:
    """Marker for a parameter that failed to decode."""

    def __repr__(self):
        return UNDECODED


UNDECODED_VALUE = _Undecoded()


@dataclass
class DecodedCall:
    function_name: str
    args: Optional[List[Any]]
    abi_function: Optional[Dict[str, Any]] = None


@dataclass
class DecodedParameter:
    name: str
    type_name: str
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'typeName': self.type_name, 'value': self.value}


def format_abi_type(abi_input: Dict[str, Any]) -> str:
    """Canonical type of an ABI parameter, expanding tuples."""
    abi_type = abi_input['type']
    if abi_type.startswith('tuple'):
        components = abi_input.get('components', [])
        return f"({','.join(format_abi_type(comp) for comp in components)}){abi_type[len('tuple'):]}"
    return abi_type


def function_signature(abi_function: Dict[str, Any]) -> str:
    inputs = abi_function.get('inputs', [])
    return f"{abi_function['name']}({','.join(format_abi_type(inp) for inp in inputs)})"


def function_selector(abi_function: Dict[str, Any]) -> str:
    return '0x' + keccak(function_signature(abi_function).encode()).hex()[:8]


def find_abi_function(abi: Sequence[Dict[str, Any]], selector: str) -> Optional[Dict[str, Any]]:
    selector = selector.lower()
    for item in abi or []:
        if item.get('type', 'function') == 'function' and 'name' in item:
            if function_selector(item) == selector:
                return item
    return None


def _hex_to_bytes(data: str) -> bytes:
    data = data[2:] if data.startswith('0x') else data
    return bytes.fromhex(data)


def _placeholder_type(type_str: str) -> str:
    """A type occupying the same head slots but decoding any bit pattern."""
    abi_type = parse_abi_type(type_str)
    if abi_type.is_dynamic:
        return 'uint256'
    if '(' not in type_str and '[' not in type_str:
        return 'bytes32'
    return type_str


def decode_parameters(types: List[str], data: bytes) -> List[Any]:
    """
    Decode ABI-encoded values one parameter at a time.

    Failed parameters come back as ``UNDECODED_VALUE``.
    """
    if not types:
        return []
    try:
        return list(decode(types, data))
    except (DecodingError, ParseError, ValueError, TypeError, OverflowError) as e:
        logger.debug(f"Bulk decode of ({','.join(types)}) failed: {e}")

    values: List[Any] = []
    for i, type_str in enumerate(types):
        try:
            trial_types = [type_str if j == i else _placeholder_type(t) for j, t in enumerate(types)]
            values.append(decode(trial_types, data)[i])
        except (DecodingError, ParseError, ValueError, TypeError, OverflowError):
            values.append(UNDECODED_VALUE)
    return values


def decode_function_data_safe(abi: Sequence[Dict[str, Any]], data: str) -> DecodedCall:
    """Decode calldata; unknown selectors keep the raw 4-byte selector as name."""
    selector = data[:10]
    abi_function = find_abi_function(abi, selector) if len(data) >= 10 else None
    if abi_function is None:
        return DecodedCall(function_name=selector, args=None)

    try:
        payload = _hex_to_bytes(data[10:])
    except ValueError:
        return DecodedCall(function_name=abi_function['name'], args=None, abi_function=abi_function)

    types = [format_abi_type(inp) for inp in abi_function.get('inputs', [])]
    return DecodedCall(
        function_name=abi_function['name'],
        args=decode_parameters(types, payload),
        abi_function=abi_function,
    )


def decode_function_result_safe(abi_function: Optional[Dict[str, Any]], data: str) -> Optional[List[Any]]:
    """Decode return data for a function, or None when there is nothing to decode against."""
    if abi_function is None:
        return None
    outputs = abi_function.get('outputs', [])
    if not outputs:
        return []
    try:
        payload = _hex_to_bytes(data)
    except ValueError:
        return [UNDECODED_VALUE] * len(outputs)
    if not payload:
        return [UNDECODED_VALUE] * len(outputs)
    return decode_parameters([format_abi_type(out) for out in outputs], payload)


def _struct_name(param: Dict[str, Any]) -> str:
    internal_type = param.get('internalType') or ''
    if internal_type.startswith('struct '):
        return internal_type.split(' ', 1)[1].rsplit('.', 1)[-1].split('[', 1)[0]
    return ''


def _format_parameter(value: Any, param: Dict[str, Any]) -> str:
    internal_type = param.get('internalType') or param['type']
    if internal_type.startswith('struct '):
        type_name = internal_type.split(' ', 1)[1]
    else:
        type_name = internal_type
    name = f" {param['name']}" if param.get('name') else ''
    return f"{type_name}{name}: {format_abi_parameter_value(value, param)}"


def format_abi_parameter_value(value: Any, param: Dict[str, Any]) -> str:
    """Render a decoded value the way the debugger displays it."""
    if value is UNDECODED_VALUE:
        return UNDECODED

    abi_type = param['type']
    if abi_type.endswith(']'):
        element_type = abi_type[:abi_type.rindex('[')]
        internal_type = param.get('internalType')
        element = dict(param, type=element_type)
        if internal_type and internal_type.endswith(']'):
            element['internalType'] = internal_type[:internal_type.rindex('[')]
        return f"[{', '.join(format_abi_parameter_value(item, element) for item in value)}]"

    if abi_type == 'tuple':
        components = param.get('components', [])
        fields = ', '.join(_format_parameter(item, comp) for comp, item in zip(components, value))
        return f"{_struct_name(param)}({{ {fields} }})"

    if abi_type == 'string':
        return f'"{value}"'
    if abi_type == 'bool':
        return 'true' if value else 'false'
    if abi_type == 'address':
        try:
            return to_checksum_address(value)
        except (ValueError, TypeError):
            return str(value)
    if abi_type.startswith('bytes') and isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    return str(value)


def decode_revert_reason(output: str) -> Optional[str]:
    """Reason carried by ``Error(string)`` or ``Panic(uint256)`` return data."""
    if not output or len(output) < 10:
        return None
    selector = output[:10].lower()
    try:
        payload = _hex_to_bytes(output[10:])
        if selector == ERROR_SELECTOR:
            return decode(['string'], payload)[0]
        if selector == PANIC_SELECTOR:
            return f"Panic(0x{decode(['uint256'], payload)[0]:02x})"
    except (DecodingError, ValueError, OverflowError):
        return None
    return None


def decoded_parameters(params: Sequence[Dict[str, Any]], values: Optional[List[Any]]) -> List[DecodedParameter]:
    if values is None:
        return []
    return [
        DecodedParameter(
            name=param.get('name') or '',
            type_name=param['type'],
            value=format_abi_parameter_value(value, param),
        )
        for param, value in zip(params, values)
    ]
