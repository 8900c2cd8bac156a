from eth_abi import encode
from eth_utils import to_checksum_address

from soltrace.core.call_maps import build_call_maps
from soltrace.core.trace_types import flatten_trace_call, normalize_trace_call
from soltrace.resolution.models import Contract

from trace_builders import ALICE, ORACLE, TOKEN, VAULT, frame

TRANSFER = {
    'type': 'function',
    'name': 'transfer',
    'inputs': [{'name': 'to', 'type': 'address'}, {'name': 'amount', 'type': 'uint256'}],
    'outputs': [{'name': '', 'type': 'bool'}],
}
RECIPIENT = '0x' + 'ab' * 20
TRANSFER_CALLDATA = '0xa9059cbb' + encode(['address', 'uint256'], [RECIPIENT, 500]).hex()
TRUE_OUTPUT = '0x' + encode(['bool'], [True]).hex()
REVERT_OUTPUT = '0x08c379a0' + encode(['string'], ['too low']).hex()


def contracts(**names):
    addresses = {'token': TOKEN, 'vault': VAULT, 'oracle': ORACLE}
    return {
        to_checksum_address(addresses[key]): Contract(
            address=to_checksum_address(addresses[key]), name=name, abi=[TRANSFER], verified=True
        )
        for key, name in names.items()
    }


def maps_for(raw, resolved):
    return build_call_maps(flatten_trace_call(normalize_trace_call(raw)), resolved)


def test_single_transfer_call():
    maps = maps_for(frame(input_=TRANSFER_CALLDATA, output=TRUE_OUTPUT), contracts(token='Token'))

    assert list(maps.contract_calls) == [1]
    assert maps.function_calls == {}
    data = maps.to_dict()['contractCallsMap']['1']
    assert data['entryPointName'] == 'transfer'
    assert data['contractName'] == 'Token'
    assert data['argumentsTypes'] == ['address', 'uint256']
    assert data['argumentsNames'] == ['to', 'amount']
    assert [p['value'] for p in data['calldataDecoded']] == [to_checksum_address(RECIPIENT), '500']
    assert data['result'] == {'Success': {'retData': [TRUE_OUTPUT]}}
    assert data['decodedResult'][0]['value'] == ['true']
    assert data['entryPoint']['entryPointSelector'] == '0xa9059cbb'
    assert data['entryPoint']['callerAddress'] == to_checksum_address(ALICE)
    assert data['isRevertedFrame'] is False
    assert data['errorMessage'] is None
    assert data['parentCallId'] == 0
    assert data['nestingLevel'] == 0


def test_unknown_contract_uses_selector():
    maps = maps_for(frame(input_=TRANSFER_CALLDATA), {})
    call = maps.contract_calls[1]
    assert call.entry_point_name == '0xa9059cbb'
    assert call.contract_name == ''
    assert call.calldata_decoded == []


def test_deep_revert_propagates_to_ancestors():
    raw = frame(input_=TRANSFER_CALLDATA, error='execution reverted', calls=[
        frame(from_=TOKEN, to=VAULT, input_=TRANSFER_CALLDATA, error='execution reverted', calls=[
            frame('INTERNALCALL', from_=None, to=None, input_=TRANSFER_CALLDATA, calls=[
                frame(from_=VAULT, to=ORACLE, input_=TRANSFER_CALLDATA,
                      error='execution reverted', output=REVERT_OUTPUT),
            ]),
        ]),
    ])
    maps = maps_for(raw, contracts(token='Token', vault='Vault', oracle='Oracle'))

    root, middle, deepest = (maps.contract_calls[i] for i in (1, 2, 4))
    internal = maps.function_calls[3]
    assert deepest.is_reverted_frame and deepest.is_deepest_panic_result
    assert deepest.error_message == 'too low'
    assert deepest.result == {'Failure': {'Panic': {'panicData': [REVERT_OUTPUT]}}}
    assert deepest.decoded_result == []
    for ancestor in (root, middle):
        assert ancestor.is_reverted_frame
        assert not ancestor.is_deepest_panic_result
        assert ancestor.error_message == 'execution reverted'
        assert 'Failure' in ancestor.result
    assert internal.is_reverted_frame
    assert internal.error_message == 'Reverted by a nested call'
    assert not internal.is_deepest_panic_result
    assert [c.nesting_level for c in (root, middle, deepest)] == [0, 1, 2]
    assert root.children_call_ids == [2]
    assert middle.children_call_ids == [4]
    assert deepest.parent_call_id == 2


def test_caught_revert_marks_only_failed_branch():
    raw = frame(calls=[
        frame(from_=TOKEN, to=VAULT, error='execution reverted'),
        frame(from_=TOKEN, to=ORACLE),
    ])
    maps = maps_for(raw, {})
    assert maps.contract_calls[2].is_reverted_frame
    assert maps.contract_calls[2].error_message == 'execution reverted'
    assert not maps.contract_calls[3].is_reverted_frame
    root = maps.contract_calls[1]
    assert not root.is_reverted_frame
    assert root.error_message is None
    assert root.result == {'Success': {'retData': ['0x']}}


def test_revert_caught_inside_internal_function_stops_at_its_contract():
    raw = frame(calls=[
        frame(from_=TOKEN, to=VAULT, calls=[
            frame('INTERNALCALL', from_=None, to=None, calls=[
                frame(from_=VAULT, to=ORACLE, error='execution reverted'),
            ]),
        ]),
    ])
    maps = maps_for(raw, {})

    assert maps.contract_calls[4].is_reverted_frame
    assert maps.contract_calls[4].is_deepest_panic_result
    assert not maps.function_calls[3].is_reverted_frame
    assert maps.function_calls[3].error_message is None
    for call_id in (1, 2):
        assert not maps.contract_calls[call_id].is_reverted_frame
        assert 'Success' in maps.contract_calls[call_id].result


def test_internal_calls_become_function_calls():
    raw = frame(input_=TRANSFER_CALLDATA, calls=[
        frame('INTERNALCALL', from_=None, to=None, input_=TRANSFER_CALLDATA, calls=[
            frame('INTERNALCALL', from_=None, to=None, input_=TRANSFER_CALLDATA),
            frame(from_=TOKEN, to=VAULT),
        ]),
        frame('STATICCALL', from_=TOKEN, to=ORACLE),
    ])
    maps = maps_for(raw, contracts(token='Token'))

    assert sorted(maps.contract_calls) == [1, 4, 5]
    assert sorted(maps.function_calls) == [2, 3]

    outer, inner = maps.function_calls[2], maps.function_calls[3]
    assert (outer.parent_call_id, outer.contract_call_id, outer.fp) == (0, 1, 0)
    assert (inner.parent_call_id, inner.contract_call_id, inner.fp) == (2, 1, 1)
    assert outer.children_call_ids == [3]
    assert outer.fn_name == 'Token::transfer'

    root = maps.contract_calls[1]
    assert root.function_call_id == 2
    assert root.children_call_ids == [4, 5]
    assert maps.contract_calls[4].parent_call_id == 1
    assert maps.contract_calls[4].nesting_level == 1


def test_delegatecall_and_create_entry_points():
    raw = frame(calls=[
        frame('DELEGATECALL', from_=TOKEN, to=VAULT),
        frame('CREATE', from_=TOKEN, to=ORACLE),
    ])
    maps = maps_for(raw, {})
    delegate = maps.contract_calls[2].entry_point
    assert delegate.storage_address == to_checksum_address(TOKEN)
    assert delegate.call_type == 'Delegate'
    assert maps.contract_calls[3].entry_point.entry_point_type == 'CONSTRUCTOR'


def test_to_dict_uses_string_keys():
    data = maps_for(frame(), {}).to_dict()
    assert set(data) == {'contractCallsMap', 'functionCallsMap'}
    assert list(data['contractCallsMap']) == ['1']
