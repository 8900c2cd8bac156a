from eth_abi import encode
from eth_utils import to_checksum_address

from soltrace.core.abi_utils import (
    UNDECODED,
    UNDECODED_VALUE,
    decode_function_data_safe,
    decode_function_result_safe,
    decode_parameters,
    decode_revert_reason,
    decoded_parameters,
    find_abi_function,
    format_abi_parameter_value,
    function_selector,
    function_signature,
)

RECIPIENT = '0x' + 'ab' * 20

TRANSFER = {
    'type': 'function',
    'name': 'transfer',
    'inputs': [{'name': 'to', 'type': 'address'}, {'name': 'amount', 'type': 'uint256'}],
    'outputs': [{'name': '', 'type': 'bool'}],
}
SUBMIT = {
    'type': 'function',
    'name': 'submit',
    'inputs': [
        {
            'name': 'order',
            'type': 'tuple',
            'internalType': 'struct Market.Order',
            'components': [
                {'name': 'maker', 'type': 'address', 'internalType': 'address'},
                {'name': 'amount', 'type': 'uint256', 'internalType': 'uint256'},
            ],
        },
        {'name': 'ids', 'type': 'uint256[]'},
    ],
    'outputs': [],
}
ABI = [TRANSFER, SUBMIT, {'type': 'event', 'name': 'Transfer', 'inputs': []}]


def test_signatures_and_selectors():
    assert function_signature(TRANSFER) == 'transfer(address,uint256)'
    assert function_selector(TRANSFER) == '0xa9059cbb'
    assert function_signature(SUBMIT) == 'submit((address,uint256),uint256[])'
    assert find_abi_function(ABI, '0xA9059CBB') is TRANSFER
    assert find_abi_function(ABI, '0xdeadbeef') is None


def test_decode_transfer_calldata():
    data = '0xa9059cbb' + encode(['address', 'uint256'], [RECIPIENT, 10 ** 18]).hex()

    decoded = decode_function_data_safe(ABI, data)

    assert decoded.function_name == 'transfer'
    assert decoded.abi_function is TRANSFER
    params = decoded_parameters(TRANSFER['inputs'], decoded.args)
    assert [p.to_dict() for p in params] == [
        {'name': 'to', 'typeName': 'address', 'value': to_checksum_address(RECIPIENT)},
        {'name': 'amount', 'typeName': 'uint256', 'value': str(10 ** 18)},
    ]


def test_unknown_selector_keeps_raw_selector():
    decoded = decode_function_data_safe(ABI, '0xdeadbeef' + '00' * 32)
    assert decoded.function_name == '0xdeadbeef'
    assert decoded.args is None
    assert decode_function_data_safe(ABI, '0x').function_name == '0x'


def test_one_bad_parameter_does_not_hide_siblings():
    payload = bytearray(encode(['string', 'uint256'], ['hi', 5]))
    payload[0:32] = b'\xff' * 32   # string offset points far outside the data

    values = decode_parameters(['string', 'uint256'], bytes(payload))

    assert values[0] is UNDECODED_VALUE
    assert values[1] == 5


def test_truncated_calldata_marks_every_parameter():
    decoded = decode_function_data_safe(ABI, '0xa9059cbb' + '00' * 10)
    assert decoded.function_name == 'transfer'
    assert decoded.args == [UNDECODED_VALUE, UNDECODED_VALUE]
    assert [p.value for p in decoded_parameters(TRANSFER['inputs'], decoded.args)] == [UNDECODED, UNDECODED]


def test_struct_and_array_rendering():
    data = '0x' + function_selector(SUBMIT)[2:] + encode(
        ['(address,uint256)', 'uint256[]'], [(RECIPIENT, 7), [1, 2, 3]]
    ).hex()

    decoded = decode_function_data_safe(ABI, data)
    params = decoded_parameters(SUBMIT['inputs'], decoded.args)

    assert params[0].value == f"Order({{ address maker: {to_checksum_address(RECIPIENT)}, uint256 amount: 7 }})"
    assert params[1].value == '[1, 2, 3]'


def test_scalar_rendering():
    assert format_abi_parameter_value('hello', {'type': 'string'}) == '"hello"'
    assert format_abi_parameter_value(True, {'type': 'bool'}) == 'true'
    assert format_abi_parameter_value(b'\x01\x02', {'type': 'bytes'}) == '0x0102'
    assert format_abi_parameter_value(-3, {'type': 'int8'}) == '-3'


def test_decode_function_result():
    assert decode_function_result_safe(None, '0x01') is None
    assert decode_function_result_safe(SUBMIT, '0x') == []
    assert decode_function_result_safe(TRANSFER, '0x' + encode(['bool'], [True]).hex()) == [True]
    assert decode_function_result_safe(TRANSFER, '0x') == [UNDECODED_VALUE]


def test_decode_revert_reason():
    error = '0x08c379a0' + encode(['string'], ['insufficient balance']).hex()
    panic = '0x4e487b71' + encode(['uint256'], [0x11]).hex()
    assert decode_revert_reason(error) == 'insufficient balance'
    assert decode_revert_reason(panic) == 'Panic(0x11)'
    assert decode_revert_reason('0x08c379a0' + '00') is None
    assert decode_revert_reason('0x12345678') is None
    assert decode_revert_reason('0x') is None
