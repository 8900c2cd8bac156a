import os
import time

import pytest
from aiohttp import test_utils

from soltrace import __version__
from soltrace.config import TraceConfig
from soltrace.scratch import ScratchSpace, ScratchSweeper
from soltrace.server import create_app
from soltrace.utils.exceptions import RpcConnectionError, TransactionNotFoundError

TX_HASH = '0x' + 'ab' * 32


class FakeResult:
    def __init__(self, payload):
        self.payload = payload

    def to_dict(self):
        return self.payload


class FakeCompiler:
    def __init__(self):
        self.checked = False

    async def verify_solc_version(self):
        self.checked = True
        return {'supported': True, 'version': '0.8.30', 'error': None}


class FakePipeline:
    """Records requests and replays a canned result or error."""

    def __init__(self, scratch):
        self.scratch = scratch
        self.compiler = FakeCompiler()
        self.requests = []
        self.error = None

    async def _respond(self, kind, request):
        self.requests.append((kind, request))
        if self.error:
            raise self.error
        return FakeResult({'kind': kind, 'txHash': request.tx_hash})

    async def run(self, request):
        return await self._respond('debug', request)

    async def simulate(self, request):
        return await self._respond('simulate', request)


@pytest.fixture
def pipeline(tmp_path):
    return FakePipeline(ScratchSpace(tmp_path))


@pytest.fixture
async def client(pipeline):
    sweeper = ScratchSweeper(pipeline.scratch, interval=3600, max_age=3600)
    app = create_app(TraceConfig(), pipeline=pipeline, sweeper=sweeper)
    client = test_utils.TestClient(test_utils.TestServer(app))
    await client.start_server()
    yield client
    await client.close()


async def test_health_reports_running_sweeper(client, pipeline):
    response = await client.get('/health')
    assert response.status == 200
    body = await response.json()
    assert body == {'status': 'healthy', 'version': __version__, 'sweeperRunning': True}
    assert response.headers['Access-Control-Allow-Origin'] == '*'
    assert pipeline.compiler.checked


async def test_info_lists_endpoints(client):
    body = await (await client.get('/')).json()
    assert body['name'] == 'soltrace'
    assert 'POST /v1/debug-transaction' in body['endpoints']


async def test_debug_transaction(client, pipeline):
    response = await client.post('/v1/debug-transaction', json={'txHash': TX_HASH, 'rpcUrl': 'http://node'})
    assert response.status == 200
    assert await response.json() == {'kind': 'debug', 'txHash': TX_HASH}
    kind, request = pipeline.requests[0]
    assert kind == 'debug'
    assert request.rpc_url == 'http://node'


async def test_simulate_transaction(client, pipeline):
    response = await client.post('/v1/simulate-transaction', json={'tx_hash': TX_HASH, 'chainId': 10})
    assert response.status == 200
    assert (await response.json())['kind'] == 'simulate'
    assert pipeline.requests[0][1].chain_id == 10


async def test_invalid_json_is_rejected(client, pipeline):
    response = await client.post('/v1/debug-transaction', data='{not json',
                                 headers={'Content-Type': 'application/json'})
    assert response.status == 400
    body = await response.json()
    assert body['error'] == 'INVALID_REQUEST'
    assert pipeline.requests == []


async def test_request_validation_errors_are_400(client):
    response = await client.post('/v1/debug-transaction', json={'to': '0x1234'})
    assert response.status == 400
    body = await response.json()
    assert body['error'] == 'INVALID_REQUEST'
    assert 'txHash' in body['message']


async def test_pipeline_errors_map_to_status_and_are_sanitized(client, pipeline):
    pipeline.error = RpcConnectionError('Could not connect to https://rpc.example/v2/secretkey')
    response = await client.post('/v1/debug-transaction', json={'txHash': TX_HASH, 'rpcUrl': 'http://node'})
    assert response.status == 503
    body = await response.json()
    assert body['error'] == 'RPC_CONNECTION_ERROR'
    assert body['message'] == 'Could not connect to the network RPC endpoint'
    assert 'secretkey' not in body['detail']
    assert '[REDACTED_URL]' in body['detail']


async def test_not_found_maps_to_404(client, pipeline):
    pipeline.error = TransactionNotFoundError(TX_HASH)
    response = await client.post('/v1/simulate-transaction', json={'txHash': TX_HASH, 'rpcUrl': 'http://node'})
    assert response.status == 404
    assert (await response.json())['error'] == 'TRANSACTION_NOT_FOUND'


async def test_unexpected_errors_are_500(client, pipeline):
    pipeline.error = RuntimeError('boom')
    response = await client.post('/v1/debug-transaction', json={'txHash': TX_HASH, 'rpcUrl': 'http://node'})
    assert response.status == 500
    body = await response.json()
    assert body == {'error': 'INTERNAL_ERROR', 'message': 'An unexpected error occurred'}


async def test_cleanup_removes_stale_runs(client, pipeline):
    stale = pipeline.scratch.create_run_dir()
    fresh = pipeline.scratch.create_run_dir()
    old = time.time() - 600
    os.utime(stale, (old, old))

    response = await client.post('/v1/cleanup', json={'maxAge': 300})
    assert response.status == 200
    assert await response.json() == {'removed': 1, 'directories': [stale.name]}
    assert not stale.exists()
    assert fresh.exists()


async def test_cleanup_query_parameter(client, pipeline):
    run_dir = pipeline.scratch.create_run_dir()
    old = time.time() - 10
    os.utime(run_dir, (old, old))

    response = await client.get('/v1/cleanup', params={'maxAge': '0'})
    assert (await response.json())['removed'] == 1

    response = await client.get('/v1/cleanup', params={'maxAge': 'soon'})
    assert response.status == 400
