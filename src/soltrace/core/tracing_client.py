"""
Trace acquisition from an EVM node.

Wraps the node's ``debug_traceTransaction``/``debug_traceCall`` methods
(``callTracer`` for the call tree, the default struct logger for executed
program counters) and the ``eth_*`` lookups needed to describe the
transaction. Every failure leaves this module as a classified
AcquisitionError.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import BlockNotFound, TransactionNotFound

from soltrace.core.trace_types import (
    FlatTraceCall,
    Step,
    TraceCall,
    TraceType,
    flatten_trace_call,
    normalize_trace_call,
    to_int,
)
from soltrace.utils.exceptions import (
    DebugNotSupportedError,
    MalformedTraceError,
    TransactionNotFoundError,
    classify_rpc_error,
)
from soltrace.utils.logging import get_logger

logger = get_logger('tracing')

CALL_TRACER_OPTIONS = {'tracer': 'callTracer', 'tracerConfig': {'withLog': True}}
STRUCT_LOGGER_OPTIONS = {
    'disableStorage': True,
    'disableStack': True,
    'enableMemory': False,
    'enableReturnData': False,
}

# Opcodes that open a new frame in the callTracer tree
FRAME_OPCODES = frozenset(['CALL', 'CALLCODE', 'DELEGATECALL', 'STATICCALL', 'CREATE', 'CREATE2'])


@dataclass
class TransactionInfo:
    """Transaction metadata reported alongside a trace."""
    block_number: int
    timestamp: int
    nonce: int
    from_address: str
    to: Optional[str]
    tx_hash: Optional[str] = None
    type: str = '0x0'
    transaction_index: int = 0
    total_transactions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'txHash': self.tx_hash,
            'blockNumber': self.block_number,
            'blockTimestamp': self.timestamp,
            'nonce': self.nonce,
            'senderAddress': self.from_address,
            'to': self.to,
            'transactionType': self.type,
            'transactionIndexInBlock': self.transaction_index,
            'totalTransactionsInBlock': self.total_transactions,
        }


@dataclass
class TraceResult:
    """Normalized call tree plus executed steps and transaction metadata."""
    trace_call: TraceCall
    transaction: TransactionInfo
    steps: List[Step] = field(default_factory=list)

    @property
    def flat(self) -> List[FlatTraceCall]:
        return flatten_trace_call(self.trace_call)


def _frame_children(flat: List[FlatTraceCall], index: int) -> List[int]:
    """Children of a frame that were opened by a call opcode, in order."""
    children = []
    for child in flat[index].children:
        kind = flat[child].call.type
        if kind.is_internal:
            children.extend(_frame_children(flat, child))
        elif kind is not TraceType.SELFDESTRUCT:
            children.append(child)
    return children


def attribute_steps(struct_logs: List[Dict[str, Any]], flat: List[FlatTraceCall]) -> List[Step]:
    """
    Assign every struct-log entry to the flattened frame that executed it.

    The frame tree is walked in lock-step with the log: a call opcode
    consumes the next child frame, which becomes current only if the next
    entry is one level deeper. Calls into accounts without code consume
    their frame without ever executing in it.
    """
    if not flat:
        return []

    steps: List[Step] = []
    stack = [0]
    cursors: Dict[int, int] = {}
    children_cache: Dict[int, List[int]] = {}

    for position, entry in enumerate(struct_logs):
        depth = int(entry.get('depth', 1))
        while len(stack) > max(depth, 1):
            stack.pop()
        current = stack[-1]
        steps.append(Step(pc=int(entry['pc']), trace_call_index=current))

        if entry.get('op') not in FRAME_OPCODES:
            continue

        if current not in children_cache:
            children_cache[current] = _frame_children(flat, current)
        children = children_cache[current]
        cursor = cursors.get(current, 0)
        if cursor >= len(children):
            continue
        cursors[current] = cursor + 1

        following = struct_logs[position + 1] if position + 1 < len(struct_logs) else None
        if following is not None and int(following.get('depth', 1)) == depth + 1:
            stack.append(children[cursor])

    return steps


class TracingClient:
    """
    Obtains raw traces from a node over JSON-RPC.

    Args:
        rpc_url: Node endpoint. Never included in raised messages.
        timeout: Per-request timeout in seconds
        w3: Pre-built AsyncWeb3 instance (mainly for tests)
    """

    def __init__(self, rpc_url: str, timeout: float = 30.0, w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={'timeout': aiohttp.ClientTimeout(total=timeout)}
        ))

    async def _call(self, awaitable, tx_hash: Optional[str] = None):
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except TransactionNotFound as e:
            raise TransactionNotFoundError(tx_hash or 'unknown') from e
        except BlockNotFound as e:
            raise MalformedTraceError(f"Block not found: {e}") from e
        except Exception as e:
            raise classify_rpc_error(e, tx_hash) from e

    async def _request(self, method: str, params: List[Any], tx_hash: Optional[str] = None) -> Any:
        logger.debug(f"RPC {method}")
        response = await self._call(self.w3.provider.make_request(method, params), tx_hash)
        if response.get('error'):
            error = response['error']
            message = error.get('message', str(error)) if isinstance(error, dict) else str(error)
            logger.debug(f"RPC {method} failed")
            raise classify_rpc_error(RuntimeError(message), tx_hash)
        return response.get('result')

    async def get_code(self, address: str) -> bytes:
        return bytes(await self._call(self.w3.eth.get_code(address)))

    async def get_storage_at(self, address: str, slot: int) -> bytes:
        return bytes(await self._call(self.w3.eth.get_storage_at(address, slot)))

    async def eth_call(self, to: str, data: str) -> bytes:
        return bytes(await self._call(self.w3.eth.call({'to': to, 'data': data})))

    async def get_chain_id(self) -> int:
        return int(await self._call(self.w3.eth.chain_id))

    async def _get_block(self, block_identifier):
        return await self._call(self.w3.eth.get_block(block_identifier))

    def _check_trace(self, raw: Any, what: str) -> None:
        if not raw or not isinstance(raw, dict) or to_int(raw.get('gas'), 0) == 0:
            raise DebugNotSupportedError(
                f"Node returned no call trace for {what}; the debug API may be disabled"
            )

    async def trace_transaction(self, tx_hash: str, with_steps: bool = True) -> TraceResult:
        """Replay a mined transaction and return its call tree."""
        if not tx_hash.startswith('0x'):
            tx_hash = '0x' + tx_hash

        tx = await self._call(self.w3.eth.get_transaction(tx_hash), tx_hash)
        if tx is None:
            raise TransactionNotFoundError(tx_hash)
        block = await self._get_block(tx['blockNumber'])

        raw = await self._request('debug_traceTransaction', [tx_hash, CALL_TRACER_OPTIONS], tx_hash)
        self._check_trace(raw, tx_hash)
        trace_call = normalize_trace_call(raw)
        if tx.get('to') is None and not trace_call.type.is_create:
            raise MalformedTraceError(
                f"Transaction {tx_hash} has no recipient but its trace root is {trace_call.type.value}",
                tx_hash=tx_hash
            )

        steps: List[Step] = []
        if with_steps:
            struct = await self._request('debug_traceTransaction', [tx_hash, STRUCT_LOGGER_OPTIONS], tx_hash)
            steps = attribute_steps((struct or {}).get('structLogs', []), flatten_trace_call(trace_call))
        logger.debug(f"Traced {tx_hash}: {len(steps)} steps")

        tx_type = tx.get('type', 0)
        transaction = TransactionInfo(
            tx_hash=tx_hash,
            block_number=int(tx['blockNumber']),
            timestamp=int(block['timestamp']),
            nonce=int(tx['nonce']),
            from_address=tx['from'],
            to=tx.get('to'),
            type=tx_type if isinstance(tx_type, str) else hex(tx_type),
            transaction_index=int(tx.get('transactionIndex') or 0),
            total_transactions=len(block.get('transactions', [])),
        )
        return TraceResult(trace_call=trace_call, transaction=transaction, steps=steps)

    async def trace_call(
        self,
        to: str,
        calldata: str,
        from_address: str,
        block_number: Optional[int] = None,
        with_steps: bool = True
    ) -> TraceResult:
        """Trace a hypothetical call against the given block (latest by default)."""
        block_id = hex(block_number) if block_number is not None else 'latest'
        block = await self._get_block(block_number if block_number is not None else 'latest')
        call = {'from': from_address, 'to': to, 'data': calldata}

        raw = await self._request('debug_traceCall', [call, block_id, CALL_TRACER_OPTIONS])
        self._check_trace(raw, f"call to {to}")
        trace_call = normalize_trace_call(raw)

        steps: List[Step] = []
        if with_steps:
            struct = await self._request('debug_traceCall', [call, block_id, STRUCT_LOGGER_OPTIONS])
            steps = attribute_steps((struct or {}).get('structLogs', []), flatten_trace_call(trace_call))

        nonce = await self._call(self.w3.eth.get_transaction_count(from_address, block_id))
        transaction = TransactionInfo(
            block_number=int(block['number']),
            timestamp=int(block['timestamp']),
            nonce=int(nonce),
            from_address=from_address,
            to=to,
            type='0x2',
            transaction_index=len(block.get('transactions', [])),
            total_transactions=len(block.get('transactions', [])) + 1,
        )
        return TraceResult(trace_call=trace_call, transaction=transaction, steps=steps)
