"""
Debugger payload assembly.

Merges executed steps, per-contract source mappings and the call maps into
the structure consumed by the step-through debugger. Call ownership comes
from the call maps; nothing about calls is recomputed here.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from soltrace.core.call_maps import CallMaps
from soltrace.core.trace_types import FlatTraceCall, Step
from soltrace.parsers.ethdebug import DebugCallContract
from soltrace.utils.logging import get_logger

logger = get_logger('debugger')


@dataclass
class DebuggerTraceEntry:
    pc: int
    location_index: int
    contract_call_id: int
    function_call_id: Optional[int]
    fp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'withLocation': {
                'sierraIndex': self.pc,
                'pcIndex': self.pc,
                'locationIndex': self.location_index,
                'results': [],
                'arguments': [],
                'argumentsDecoded': [],
                'resultsDecoded': [],
                'contractCallId': self.contract_call_id,
                'fp': self.fp,
                'functionCallId': self.function_call_id,
            }
        }


@dataclass
class ClassDebuggerData:
    """Source locations of the pcs one contract executed."""
    locations: Dict[int, List[Dict[str, Any]]] = field(default_factory=dict)
    source_code: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sierraStatementsToCairoInfo': {
                str(pc): {'cairoLocations': locations} for pc, locations in sorted(self.locations.items())
            },
            'sourceCode': self.source_code,
        }


@dataclass
class DebuggerInfo:
    call_maps: CallMaps
    classes: Dict[str, ClassDebuggerData] = field(default_factory=dict)
    trace: List[DebuggerTraceEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = self.call_maps.to_dict()
        result['simulationDebuggerData'] = {
            'classesDebuggerData': {address: data.to_dict() for address, data in self.classes.items()},
            'debuggerTrace': [entry.to_dict() for entry in self.trace],
        }
        return result


def _step_owner(step: Step, flat: List[FlatTraceCall], call_maps: CallMaps) -> Optional[Tuple[int, Optional[int], int]]:
    """(contractCallId, functionCallId, fp) of the frame a step executed in."""
    if not 0 <= step.trace_call_index < len(flat):
        return None
    call_id = flat[step.trace_call_index].call_id

    function_call = call_maps.function_calls.get(call_id)
    if function_call is not None:
        return function_call.contract_call_id, function_call.call_id, function_call.fp

    contract_call = call_maps.contract_calls.get(call_id)
    if contract_call is None:
        return None
    return contract_call.call_id, contract_call.function_call_id, 0


def assemble_debugger_info(
    flat: List[FlatTraceCall],
    steps: List[Step],
    debug_contracts: Mapping[str, DebugCallContract],
    call_maps: CallMaps,
) -> DebuggerInfo:
    """
    Build the debugger payload.

    Args:
        flat: Flattened trace the steps and call maps refer to
        steps: Executed instructions in order
        debug_contracts: Source mappings of successfully compiled contracts
        call_maps: Output of build_call_maps for the same trace
    """
    info = DebuggerInfo(call_maps=call_maps)

    for contract_call in call_maps.contract_calls.values():
        available = contract_call.entry_point.code_address in debug_contracts
        contract_call.call_debugger_data_available = available
    for function_call in call_maps.function_calls.values():
        owner = call_maps.contract_calls.get(function_call.contract_call_id)
        function_call.debugger_data_available = bool(owner and owner.call_debugger_data_available)

    misses = 0
    for step in steps:
        owner = _step_owner(step, flat, call_maps)
        if owner is None:
            continue
        contract_call_id, function_call_id, fp = owner
        address = call_maps.contract_calls[contract_call_id].entry_point.code_address
        debug_contract = debug_contracts.get(address)
        if debug_contract is None:
            continue

        location = debug_contract.location_at(step.pc)
        if location is None:
            misses += 1
            continue

        data = info.classes.get(address)
        if data is None:
            data = info.classes[address] = ClassDebuggerData(source_code=debug_contract.source_code())
        if step.pc not in data.locations:
            data.locations[step.pc] = [location.to_dict()]

        step_index = len(info.trace)
        info.trace.append(DebuggerTraceEntry(
            pc=step.pc,
            location_index=0,
            contract_call_id=contract_call_id,
            function_call_id=function_call_id,
            fp=fp,
        ))

        contract_call = call_maps.contract_calls[contract_call_id]
        if contract_call.debugger_trace_step_index is None:
            contract_call.debugger_trace_step_index = step_index
        function_call = call_maps.function_calls.get(function_call_id) if function_call_id else None
        if function_call is not None and function_call.debugger_trace_step_index is None:
            function_call.debugger_trace_step_index = step_index

    logger.debug(f"Debugger trace: {len(info.trace)} located steps, {misses} without source mapping")
    return info
