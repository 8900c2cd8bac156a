import json

import pytest
from eth_abi import encode
from eth_utils import to_checksum_address

from soltrace.config import ChainConfig, TraceConfig
from soltrace.core.pipeline import DebugPipeline, DebugRequest, RunState
from soltrace.core.serializer import dumps
from soltrace.core.trace_types import Step, normalize_trace_call
from soltrace.core.tracing_client import TraceResult, TransactionInfo
from soltrace.resolution.models import Contract, SourceFile
from soltrace.scratch import ScratchSpace
from soltrace.utils.exceptions import InvalidRequestError, TransactionNotFoundError

from solc_fakes import FakeSolc
from trace_builders import ALICE, TOKEN, VAULT, frame

TX_HASH = '0x' + 'ab' * 32
TOKEN_ADDRESS = to_checksum_address(TOKEN)
VAULT_ADDRESS = to_checksum_address(VAULT)
TRANSFER = {
    'type': 'function',
    'name': 'transfer',
    'inputs': [{'name': 'to', 'type': 'address'}, {'name': 'amount', 'type': 'uint256'}],
    'outputs': [{'name': '', 'type': 'bool'}],
}
CALLDATA = '0xa9059cbb' + encode(['address', 'uint256'], [VAULT, 42]).hex()


def verified(address, name, source):
    return Contract(
        address=address,
        bytecode='0x6080',
        name=name,
        abi=[TRANSFER],
        sources=[SourceFile(f'{name}.sol', source)],
        verified=True,
        verification_source='sourcify',
        metadata={'settings': {'compilationTarget': {f'{name}.sol': name}}},
    )


class FakeNode:
    def __init__(self, trace, steps=(), chain_id=10, error=None):
        self.trace = trace
        self.steps = list(steps)
        self.chain_id = chain_id
        self.error = error
        self.calls = []

    def _result(self, with_steps):
        if self.error:
            raise self.error
        transaction = TransactionInfo(block_number=7, timestamp=1700000000, nonce=1,
                                      from_address=to_checksum_address(ALICE), to=TOKEN_ADDRESS,
                                      tx_hash=TX_HASH)
        return TraceResult(self.trace, transaction, self.steps if with_steps else [])

    async def trace_transaction(self, tx_hash, with_steps=True):
        self.calls.append(('trace_transaction', tx_hash, with_steps))
        return self._result(with_steps)

    async def trace_call(self, to, calldata, from_address, block_number=None, with_steps=True):
        self.calls.append(('trace_call', to, calldata, from_address, block_number, with_steps))
        return self._result(with_steps)

    async def get_chain_id(self):
        return self.chain_id


class FakeResolver:
    def __init__(self, contracts):
        self.contracts = contracts
        self.requested = None
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    async def resolve_contracts(self, addresses, chain_id):
        self.requested = (list(addresses), chain_id)
        return {a: self.contracts.get(a) or Contract(address=a) for a in addresses}


def make_pipeline(tmp_path, node, contracts, config=None):
    resolver = FakeResolver(contracts)
    urls = []

    def tracing_client_factory(rpc_url, timeout):
        urls.append(rpc_url)
        return node

    pipeline = DebugPipeline(
        config or TraceConfig(scratch_root=str(tmp_path)),
        compiler=FakeSolc(),
        tracing_client_factory=tracing_client_factory,
        resolver_factory=lambda n, c: resolver,
    )
    return pipeline, resolver, urls


@pytest.fixture
def two_contract_trace():
    return normalize_trace_call(frame(input_=CALLDATA, calls=[
        frame(from_=TOKEN, to=VAULT, input_=CALLDATA),
    ]))


async def test_one_contract_compiles_one_fails(tmp_path, two_contract_trace):
    node = FakeNode(two_contract_trace, steps=[Step(0, 0), Step(0, 1), Step(5, 1), Step(2, 0)])
    contracts = {
        TOKEN_ADDRESS: verified(TOKEN_ADDRESS, 'Token', 'pragma solidity ^0.8.20;\ncontract Token {}\n'),
        VAULT_ADDRESS: verified(VAULT_ADDRESS, 'Vault', 'pragma solidity ^0.8.20;\ncontract Vault { FAIL }\n'),
    }
    pipeline, resolver, _ = make_pipeline(tmp_path, node, contracts)

    result = await pipeline.run(DebugRequest(rpc_url='http://node.invalid', tx_hash=TX_HASH))

    assert result.state is RunState.DONE
    assert result.run.states == [
        RunState.ACQUIRING, RunState.NORMALIZING, RunState.RESOLVING_CONTRACTS,
        RunState.COMPILING, RunState.ASSEMBLING, RunState.DONE,
    ]
    assert resolver.requested == ([TOKEN_ADDRESS, VAULT_ADDRESS], 10)
    assert resolver.closed

    payload = json.loads(dumps(result))
    classes = payload['simulationDebuggerData']['classesDebuggerData']
    assert list(classes) == [TOKEN_ADDRESS]
    assert [e['withLocation']['contractCallId'] for e in payload['simulationDebuggerData']['debuggerTrace']] == [1]

    token_call, vault_call = payload['contractCallsMap']['1'], payload['contractCallsMap']['2']
    assert token_call['callDebuggerDataAvailable'] is True
    assert token_call['debuggerTraceStepIndex'] == 0
    assert vault_call['entryPointName'] == 'transfer'
    assert vault_call['callDebuggerDataAvailable'] is False
    assert vault_call['debuggerTraceStepIndex'] is None

    summary = payload['compilationSummary']
    assert summary['successfulCompilations'] == 1
    assert summary['failedCompilations'] == 1
    assert payload['transaction']['chainId'] == '10'
    assert any(VAULT_ADDRESS in message for message in payload['diagnostics'])


async def test_unverified_contracts_still_get_call_maps(tmp_path, two_contract_trace):
    pipeline, _, _ = make_pipeline(tmp_path, FakeNode(two_contract_trace, steps=[Step(0, 0)]), {})

    result = await pipeline.run(DebugRequest(rpc_url='http://node.invalid', tx_hash=TX_HASH, chain_id=1))

    payload = result.to_dict()
    assert payload['simulationDebuggerData']['debuggerTrace'] == []
    assert set(payload['contractCallsMap']) == {'1', '2'}
    assert payload['compilationSummary']['totalContracts'] == 0
    assert payload['transaction']['chainId'] == '1'


async def test_simulate_skips_compilation(tmp_path, two_contract_trace):
    node = FakeNode(two_contract_trace)
    contracts = {TOKEN_ADDRESS: verified(TOKEN_ADDRESS, 'Token', 'contract Token {}')}
    pipeline, _, _ = make_pipeline(tmp_path, node, contracts)
    request = DebugRequest(rpc_url='http://node.invalid', to=TOKEN, calldata=CALLDATA, from_address=ALICE)

    result = await pipeline.simulate(request)

    assert node.calls[0][0] == 'trace_call'
    assert node.calls[0][-1] is False
    assert pipeline.compiler.invocations == []
    assert list(tmp_path.iterdir()) == []
    payload = result.to_dict()
    assert payload['executionResult'] == {'executionStatus': 'SUCCEEDED'}
    assert payload['contractCallsMap']['1']['entryPointName'] == 'transfer'
    assert payload['contractCallsMap']['1']['contractName'] == 'Token'
    assert payload['simulationDebuggerData'] == {'classesDebuggerData': {}, 'debuggerTrace': []}
    assert payload['chainId'] == '10'


async def test_acquisition_failure_propagates(tmp_path, two_contract_trace):
    node = FakeNode(two_contract_trace, error=TransactionNotFoundError(TX_HASH))
    pipeline, _, _ = make_pipeline(tmp_path, node, {})

    with pytest.raises(TransactionNotFoundError):
        await pipeline.run(DebugRequest(rpc_url='http://node.invalid', tx_hash=TX_HASH))
    assert list(tmp_path.iterdir()) == []


async def test_rpc_url_comes_from_chain_config(tmp_path, two_contract_trace):
    config = TraceConfig(scratch_root=str(tmp_path))
    config.chains[1] = ChainConfig(1, 'Ethereum', rpc_url='http://configured.invalid')
    pipeline, _, urls = make_pipeline(tmp_path, FakeNode(two_contract_trace), {}, config=config)

    await pipeline.simulate(DebugRequest(chain_id=1, tx_hash=TX_HASH))
    assert urls == ['http://configured.invalid']

    with pytest.raises(InvalidRequestError):
        await pipeline.simulate(DebugRequest(chain_id=5, tx_hash=TX_HASH))


def test_request_validation():
    with pytest.raises(InvalidRequestError):
        DebugRequest(tx_hash='0x1234')
    with pytest.raises(InvalidRequestError):
        DebugRequest(to=TOKEN, calldata='0x')
    with pytest.raises(InvalidRequestError):
        DebugRequest(to='0xnope', calldata='0x', from_address=ALICE)
    with pytest.raises(InvalidRequestError):
        DebugRequest(to=TOKEN, calldata='xyz', from_address=ALICE)

    request = DebugRequest(to=TOKEN.lower(), calldata='a9059cbb', from_address=ALICE)
    assert request.is_simulation
    assert request.to == TOKEN_ADDRESS
    assert request.calldata == '0xa9059cbb'
    assert DebugRequest(tx_hash='ab' * 32).tx_hash == TX_HASH


def test_request_from_dict_accepts_both_key_styles():
    camel = DebugRequest.from_dict({'rpcUrl': 'http://x', 'chainId': '0xa', 'txHash': TX_HASH})
    snake = DebugRequest.from_dict({'rpc_url': 'http://x', 'chain_id': 10, 'tx_hash': TX_HASH})
    assert camel == snake
    assert camel.chain_id == 10

    call = DebugRequest.from_dict({'to': TOKEN, 'data': CALLDATA, 'from': ALICE, 'blockNumber': '100'})
    assert call.block_number == 100
    assert call.calldata == CALLDATA

    with pytest.raises(InvalidRequestError):
        DebugRequest.from_dict({'chainId': 'ten', 'txHash': TX_HASH})
    with pytest.raises(InvalidRequestError):
        DebugRequest.from_dict(['not', 'a', 'mapping'])


async def test_unreadable_debug_output_marks_contract_failed(tmp_path, two_contract_trace, monkeypatch):
    def unreadable(debug_dir, name, source_root):
        raise ValueError('truncated ethdebug program')

    monkeypatch.setattr('soltrace.core.pipeline.load_debug_info', unreadable)
    token = verified(TOKEN_ADDRESS, 'Token', 'pragma solidity ^0.8.20;\ncontract Token {}\n')
    pipeline, _, _ = make_pipeline(tmp_path, FakeNode(two_contract_trace, steps=[Step(0, 0)]),
                                   {TOKEN_ADDRESS: token})

    result = await pipeline.run(DebugRequest(rpc_url='http://node.invalid', tx_hash=TX_HASH))

    assert token.compilation_status == 'failed'
    assert 'truncated ethdebug program' in token.compilation_error
    summary = result.compilation_summary
    assert (summary.successful_compilations, summary.failed_compilations) == (0, 1)
    assert summary.status_for(TOKEN_ADDRESS).error == token.compilation_error
    assert result.to_dict()['simulationDebuggerData']['debuggerTrace'] == []
