"""
Call maps for the step-through debugger.

Every flattened frame becomes either a ContractCall (external frames) or a
FunctionCall (INTERNALCALL frames), keyed by ``flattened index + 1``.
Contract calls form a tree through their nearest external ancestors;
function calls form a tree per contract call through their nearest
internal ancestors.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from soltrace.core.abi_utils import (
    DecodedCall,
    DecodedParameter,
    decode_function_data_safe,
    decode_function_result_safe,
    decode_revert_reason,
    decoded_parameters,
)
from soltrace.core.trace_types import FlatTraceCall, TraceCall, TraceType
from soltrace.resolution.models import Contract


@dataclass
class EntryPoint:
    code_address: Optional[str]
    storage_address: Optional[str]
    caller_address: Optional[str]
    entry_point_type: str
    entry_point_selector: str
    calldata: List[str]
    call_type: str
    initial_gas: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'classHash': '',
            'codeAddress': self.code_address,
            'entryPointType': self.entry_point_type,
            'entryPointSelector': self.entry_point_selector,
            'calldata': self.calldata,
            'storageAddress': self.storage_address,
            'callerAddress': self.caller_address,
            'callType': self.call_type,
            'initialGas': self.initial_gas,
        }


@dataclass
class ContractCall:
    call_id: int
    parent_call_id: int
    nesting_level: int
    entry_point: EntryPoint
    result: Dict[str, Any]
    contract_name: str
    entry_point_name: str
    arguments_names: List[str] = field(default_factory=list)
    arguments_types: List[str] = field(default_factory=list)
    calldata_decoded: List[DecodedParameter] = field(default_factory=list)
    result_types: List[str] = field(default_factory=list)
    decoded_result: List[DecodedParameter] = field(default_factory=list)
    children_call_ids: List[int] = field(default_factory=list)
    function_call_id: Optional[int] = None
    is_reverted_frame: bool = False
    error_message: Optional[str] = None
    is_deepest_panic_result: bool = False
    call_debugger_data_available: bool = False
    debugger_trace_step_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'callId': self.call_id,
            'parentCallId': self.parent_call_id,
            'childrenCallIds': list(self.children_call_ids),
            'functionCallId': self.function_call_id,
            'eventCallIds': [],
            'entryPoint': self.entry_point.to_dict(),
            'result': self.result,
            'argumentsNames': self.arguments_names,
            'argumentsTypes': self.arguments_types,
            'calldataDecoded': [p.to_dict() for p in self.calldata_decoded],
            'resultTypes': self.result_types,
            'decodedResult': [
                {'name': p.name, 'typeName': p.type_name, 'value': [p.value], 'internalIODecoded': None}
                for p in self.decoded_result
            ],
            'contractName': self.contract_name,
            'entryPointName': self.entry_point_name,
            'isErc20Token': False,
            'classHash': '',
            'isRevertedFrame': self.is_reverted_frame,
            'errorMessage': self.error_message,
            'isDeepestPanicResult': self.is_deepest_panic_result,
            'nestingLevel': self.nesting_level,
            'callDebuggerDataAvailable': self.call_debugger_data_available,
            'debuggerTraceStepIndex': self.debugger_trace_step_index,
            'isHidden': False,
        }


def _io_entries(params: List[DecodedParameter]) -> List[Dict[str, Any]]:
    return [{'typeName': p.type_name, 'value': [p.value], 'internalIODecoded': None} for p in params]


@dataclass
class FunctionCall:
    call_id: int
    parent_call_id: int
    contract_call_id: int
    fn_name: str
    fp: int
    arguments: List[DecodedParameter] = field(default_factory=list)
    results: List[DecodedParameter] = field(default_factory=list)
    children_call_ids: List[int] = field(default_factory=list)
    is_reverted_frame: bool = False
    error_message: Optional[str] = None
    is_deepest_panic_result: bool = False
    debugger_data_available: bool = False
    debugger_trace_step_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'callId': self.call_id,
            'parentCallId': self.parent_call_id,
            'childrenCallIds': list(self.children_call_ids),
            'contractCallId': self.contract_call_id,
            'eventCallIds': [],
            'fnName': self.fn_name,
            'fp': self.fp,
            'isRevertedFrame': self.is_reverted_frame,
            'errorMessage': self.error_message,
            'isDeepestPanicResult': self.is_deepest_panic_result,
            'results': _io_entries(self.results),
            'resultsDecoded': _io_entries(self.results),
            'arguments': _io_entries(self.arguments),
            'argumentsDecoded': _io_entries(self.arguments),
            'debuggerDataAvailable': self.debugger_data_available,
            'debuggerTraceStepIndex': self.debugger_trace_step_index,
            'isHidden': False,
        }


@dataclass
class CallMaps:
    contract_calls: Dict[int, ContractCall] = field(default_factory=dict)
    function_calls: Dict[int, FunctionCall] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'contractCallsMap': {str(k): v.to_dict() for k, v in self.contract_calls.items()},
            'functionCallsMap': {str(k): v.to_dict() for k, v in self.function_calls.items()},
        }


def error_message_for(call: TraceCall) -> Optional[str]:
    """Most specific failure description of a frame."""
    if call.revert_reason:
        return call.revert_reason
    if not call.failed:
        return None
    return decode_revert_reason(call.output) or call.error


def result_for(call: TraceCall, reverted: bool) -> Dict[str, Any]:
    if reverted:
        return {'Failure': {'Panic': {'panicData': [call.output]}}}
    return {'Success': {'retData': [call.output]}}


def _reverted_frames(flat: List[FlatTraceCall]) -> Dict[int, bool]:
    """
    Failed frames plus the ancestors their revert unwound through.

    Unwinding stops at the first external frame that did not fail itself,
    since that frame caught the revert. Internal frames have no outcome of
    their own and follow the external frame that owns them.
    """
    reverted = {entry.index: False for entry in flat}
    for entry in flat:
        if not entry.call.failed:
            continue
        reverted[entry.index] = True
        parent = entry.parent_index
        while parent is not None and not reverted[parent]:
            ancestor = flat[parent]
            if ancestor.call.type.is_internal:
                owner = _external_ancestor(flat, ancestor)
                if owner is not None and not owner.call.failed:
                    break
            elif not ancestor.call.failed:
                break
            reverted[parent] = True
            parent = ancestor.parent_index
    return reverted


def _deepest_failures(flat: List[FlatTraceCall]) -> List[int]:
    """Failed frames with no failed descendant."""
    has_failed_descendant = set()
    for entry in flat:
        if not entry.call.failed:
            continue
        parent = entry.parent_index
        while parent is not None and parent not in has_failed_descendant:
            has_failed_descendant.add(parent)
            parent = flat[parent].parent_index
    return [
        entry.index for entry in flat
        if entry.call.failed and entry.index not in has_failed_descendant
    ]


def _external_ancestor(flat: List[FlatTraceCall], entry: FlatTraceCall) -> Optional[FlatTraceCall]:
    parent = entry.parent_index
    while parent is not None:
        if not flat[parent].call.type.is_internal:
            return flat[parent]
        parent = flat[parent].parent_index
    return None


def _decode(call: TraceCall, contract: Optional[Contract]) -> tuple:
    abi = contract.abi if contract else []
    decoded: DecodedCall = decode_function_data_safe(abi, call.input)
    outputs = decode_function_result_safe(decoded.abi_function, call.output) if not call.failed else None
    return decoded, outputs


def build_call_maps(
    flat: List[FlatTraceCall],
    contracts: Mapping[str, Contract],
    contract_names: Optional[Mapping[str, str]] = None,
) -> CallMaps:
    """
    Build the contract and function call maps of a flattened trace.

    Args:
        flat: Pre-order frames from flatten_trace_call
        contracts: Resolved contracts by checksummed address
        contract_names: Display names by address (defaults to Contract.name)
    """
    contract_names = dict(contract_names or {})
    reverted = _reverted_frames(flat)
    deepest = set(_deepest_failures(flat))
    maps = CallMaps()

    for entry in flat:
        call = entry.call
        contract = contracts.get(call.to) if call.to else None
        name = contract_names.get(call.to) or (contract.name if contract else '') or ''
        decoded, outputs = _decode(call, contract)
        abi_function = decoded.abi_function or {}
        inputs = abi_function.get('inputs', [])
        output_params = abi_function.get('outputs', [])
        is_reverted = reverted[entry.index]
        error_message = error_message_for(call)
        if is_reverted and error_message is None:
            error_message = 'Reverted by a nested call'

        external = _external_ancestor(flat, entry)

        if call.type.is_internal:
            parent = flat[entry.parent_index] if entry.parent_index is not None else None
            parent_call_id = parent.call_id if parent is not None and parent.call.type.is_internal else 0
            contract_call_id = external.call_id if external else 0
            fp = 0
            cursor = parent
            while cursor is not None and cursor.call.type.is_internal:
                fp += 1
                cursor = flat[cursor.parent_index] if cursor.parent_index is not None else None

            maps.function_calls[entry.call_id] = FunctionCall(
                call_id=entry.call_id,
                parent_call_id=parent_call_id,
                contract_call_id=contract_call_id,
                fn_name=f"{name}::{decoded.function_name}" if name else decoded.function_name,
                fp=fp,
                arguments=decoded_parameters(inputs, decoded.args),
                results=decoded_parameters(output_params, outputs),
                is_reverted_frame=is_reverted,
                error_message=error_message,
                is_deepest_panic_result=entry.index in deepest,
            )
            if parent_call_id:
                maps.function_calls[parent_call_id].children_call_ids.append(entry.call_id)
            elif contract_call_id and maps.contract_calls[contract_call_id].function_call_id is None:
                maps.contract_calls[contract_call_id].function_call_id = entry.call_id
            continue

        nesting_level = 0
        ancestor = external
        while ancestor is not None:
            nesting_level += 1
            ancestor = _external_ancestor(flat, ancestor)

        maps.contract_calls[entry.call_id] = ContractCall(
            call_id=entry.call_id,
            parent_call_id=external.call_id if external else 0,
            nesting_level=nesting_level,
            entry_point=EntryPoint(
                code_address=call.to,
                storage_address=call.from_address if call.type is TraceType.DELEGATECALL else call.to,
                caller_address=call.from_address,
                entry_point_type='CONSTRUCTOR' if call.type.is_create else 'EXTERNAL',
                entry_point_selector=call.input[:10],
                calldata=[call.input],
                call_type=call.type.call_type,
                initial_gas=call.gas,
            ),
            result=result_for(call, is_reverted),
            contract_name=name,
            entry_point_name=decoded.function_name,
            arguments_names=[inp.get('name') or '' for inp in inputs],
            arguments_types=[inp['type'] for inp in inputs],
            calldata_decoded=decoded_parameters(inputs, decoded.args),
            result_types=[out['type'] for out in output_params],
            decoded_result=decoded_parameters(output_params, outputs),
            is_reverted_frame=is_reverted,
            error_message=error_message,
            is_deepest_panic_result=entry.index in deepest,
        )
        if external is not None:
            maps.contract_calls[external.call_id].children_call_ids.append(entry.call_id)

    return maps
