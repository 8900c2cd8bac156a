"""
Debug pipeline orchestration.

A run moves through ACQUIRING -> NORMALIZING -> RESOLVING_CONTRACTS ->
COMPILING -> ASSEMBLING -> DONE. Only a failure to obtain the trace (or an
unrecoverable error such as an unusable scratch directory) ends in FAILED;
per-contract resolution and compilation problems are recorded as
diagnostics and the run continues.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from eth_utils import is_address, is_hex, to_checksum_address

from soltrace.compiler.config import CompilerConfig
from soltrace.compiler.contract_compiler import CompilationSummary, ContractCompiler
from soltrace.config import TraceConfig
from soltrace.core.call_maps import CallMaps, build_call_maps
from soltrace.core.debugger import DebuggerInfo, assemble_debugger_info
from soltrace.core.trace_types import TraceCall, flatten_trace_call, to_int, unique_contract_addresses
from soltrace.core.tracing_client import TraceResult, TracingClient, TransactionInfo
from soltrace.parsers.ethdebug import DebugCallContract
from soltrace.parsers.source_map import load_debug_info
from soltrace.resolution.contract_resolver import ContractResolver
from soltrace.resolution.models import Contract
from soltrace.scratch import ScratchSpace
from soltrace.utils.exceptions import InvalidRequestError
from soltrace.utils.logging import get_logger

logger = get_logger('pipeline')


class RunState(str, Enum):
    ACQUIRING = 'ACQUIRING'
    NORMALIZING = 'NORMALIZING'
    RESOLVING_CONTRACTS = 'RESOLVING_CONTRACTS'
    COMPILING = 'COMPILING'
    ASSEMBLING = 'ASSEMBLING'
    DONE = 'DONE'
    FAILED = 'FAILED'


@dataclass
class DebugRequest:
    """
    A validated debug request.

    Either ``tx_hash`` (replay a mined transaction) or ``to``/``calldata``/
    ``from_address`` (trace a hypothetical call, optionally at ``block_number``).
    """
    rpc_url: Optional[str] = None
    chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    to: Optional[str] = None
    calldata: Optional[str] = None
    from_address: Optional[str] = None
    block_number: Optional[int] = None

    @property
    def is_simulation(self) -> bool:
        return self.tx_hash is None

    def __post_init__(self):
        if self.tx_hash is not None:
            if not (is_hex(self.tx_hash) and len(self.tx_hash.removeprefix('0x')) == 64):
                raise InvalidRequestError(f"Invalid transaction hash: {self.tx_hash}")
            if not self.tx_hash.startswith('0x'):
                self.tx_hash = '0x' + self.tx_hash
            return

        missing = [name for name, value in (('to', self.to), ('calldata', self.calldata),
                                            ('from', self.from_address)) if not value]
        if missing:
            raise InvalidRequestError(
                f"Request needs either txHash or to, calldata and from (missing: {', '.join(missing)})"
            )
        for name, value in (('to', self.to), ('from', self.from_address)):
            if not is_address(value):
                raise InvalidRequestError(f"Invalid {name} address: {value}")
        if not is_hex(self.calldata):
            raise InvalidRequestError("calldata must be hex encoded")
        self.to = to_checksum_address(self.to)
        self.from_address = to_checksum_address(self.from_address)
        if not self.calldata.startswith('0x'):
            self.calldata = '0x' + self.calldata

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'DebugRequest':
        """Build a request from API-style keys (camelCase or snake_case)."""
        if not isinstance(data, Mapping):
            raise InvalidRequestError("Request body must be a JSON object")

        def pick(*keys):
            for key in keys:
                if data.get(key) not in (None, ''):
                    return data[key]
            return None

        try:
            chain_id = to_int(pick('chainId', 'chain_id'), None)
            block_number = to_int(pick('blockNumber', 'block_number'), None)
        except ValueError as e:
            raise InvalidRequestError(f"Invalid numeric field: {e}") from e

        return cls(
            rpc_url=pick('rpcUrl', 'rpc_url'),
            chain_id=chain_id,
            tx_hash=pick('txHash', 'tx_hash'),
            to=pick('to'),
            calldata=pick('calldata', 'data'),
            from_address=pick('from', 'from_address'),
            block_number=block_number,
        )


@dataclass
class PipelineRun:
    """States visited by one run and the diagnostics it collected."""
    states: List[RunState] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def state(self) -> Optional[RunState]:
        return self.states[-1] if self.states else None

    def advance(self, state: RunState) -> None:
        logger.debug(f"Pipeline state: {state.value}")
        self.states.append(state)


@dataclass
class DebugResult:
    debugger_info: DebuggerInfo
    compilation_summary: CompilationSummary
    transaction: TransactionInfo
    contracts: Dict[str, Contract]
    chain_id: int
    run: PipelineRun

    @property
    def state(self) -> RunState:
        return self.run.state

    def to_dict(self) -> Dict[str, Any]:
        result = self.debugger_info.to_dict()
        result['compilationSummary'] = self.compilation_summary.to_dict()
        result['transaction'] = dict(self.transaction.to_dict(), chainId=str(self.chain_id))
        result['diagnostics'] = list(self.run.diagnostics)
        return result


@dataclass
class SimulationResult:
    """Call maps of a trace without compiled debug data."""
    call_maps: CallMaps
    trace_call: TraceCall
    transaction: TransactionInfo
    chain_id: int
    run: PipelineRun

    def to_dict(self) -> Dict[str, Any]:
        result = self.call_maps.to_dict()
        result.update({
            'simulationDebuggerData': {'classesDebuggerData': {}, 'debuggerTrace': []},
            'executionResult': {
                'executionStatus': 'REVERTED' if self.trace_call.failed else 'SUCCEEDED'
            },
            'chainId': str(self.chain_id),
        })
        result.update(self.transaction.to_dict())
        return result


def _default_tracing_client(rpc_url: str, timeout: float) -> TracingClient:
    return TracingClient(rpc_url, timeout=timeout)


def _default_resolver(node, config: TraceConfig) -> ContractResolver:
    return ContractResolver(node, config)


class DebugPipeline:
    """
    Composes acquisition, resolution, compilation and assembly.

    Args:
        config: Runtime configuration
        scratch: Scratch space for compilation (defaults to ``config.scratch_root``)
        compiler: solc wrapper (defaults to ``config.solc_path``)
        tracing_client_factory: ``(rpc_url, timeout) -> TracingClient``
        resolver_factory: ``(node, config) -> ContractResolver``
    """

    def __init__(
        self,
        config: TraceConfig,
        scratch: Optional[ScratchSpace] = None,
        compiler: Optional[CompilerConfig] = None,
        tracing_client_factory: Optional[Callable[[str, float], Any]] = None,
        resolver_factory: Optional[Callable[[Any, TraceConfig], Any]] = None,
    ):
        self.config = config
        self.scratch = scratch or ScratchSpace(config.scratch_root)
        self.compiler = compiler or CompilerConfig(config.solc_path)
        self.tracing_client_factory = tracing_client_factory or _default_tracing_client
        self.resolver_factory = resolver_factory or _default_resolver

    def _rpc_url(self, request: DebugRequest) -> str:
        if request.rpc_url:
            return request.rpc_url
        if request.chain_id is not None:
            rpc_url = self.config.chain(request.chain_id).rpc_url
            if rpc_url:
                return rpc_url
        raise InvalidRequestError(
            f"RPC URL is required for chain {request.chain_id}; "
            f"every chain needs an RPC endpoint with debug methods enabled"
        )

    async def _acquire(self, request: DebugRequest, node, with_steps: bool) -> TraceResult:
        if request.is_simulation:
            return await node.trace_call(
                request.to, request.calldata, request.from_address, request.block_number,
                with_steps=with_steps
            )
        return await node.trace_transaction(request.tx_hash, with_steps=with_steps)

    async def _front(self, request: DebugRequest, run: PipelineRun, with_steps: bool):
        """Acquisition, normalization and resolution shared by run() and simulate()."""
        run.advance(RunState.ACQUIRING)
        node = self.tracing_client_factory(self._rpc_url(request), self.config.rpc_timeout)
        trace, chain_id = await asyncio.gather(
            self._acquire(request, node, with_steps),
            self._chain_id(request, node),
        )

        run.advance(RunState.NORMALIZING)
        flat = flatten_trace_call(trace.trace_call)
        addresses = unique_contract_addresses(flat)
        logger.info(f"Trace has {len(flat)} frames across {len(addresses)} contracts")

        run.advance(RunState.RESOLVING_CONTRACTS)
        async with self.resolver_factory(node, self.config) as resolver:
            contracts = await resolver.resolve_contracts(addresses, chain_id)
        for contract in contracts.values():
            if contract.resolution_error:
                run.diagnostics.append(f"Contract {contract.address}: {contract.resolution_error}")
        return trace, flat, contracts, chain_id

    @staticmethod
    async def _chain_id(request: DebugRequest, node) -> int:
        if request.chain_id is not None:
            return request.chain_id
        return await node.get_chain_id()

    async def _load_debug_contracts(self, compiled, contracts: Dict[str, Contract], run: PipelineRun,
                                    summary: CompilationSummary) -> Dict[str, DebugCallContract]:
        debug_contracts = {}
        for item in compiled:
            try:
                debug_contracts[item.address] = await asyncio.to_thread(
                    load_debug_info, item.debug_dir, item.name, item.source_dir
                )
            except (OSError, ValueError, KeyError) as e:
                message = f"Contract {item.address}: unreadable debug output ({e})"
                logger.warning(message)
                run.diagnostics.append(message)
                summary.mark_failed(contracts[item.address], message)
                summary.successful_compilations -= 1
                summary.failed_compilations += 1
        return debug_contracts

    async def run(self, request: DebugRequest) -> DebugResult:
        """
        Produce the debugger payload for a request.

        Raises:
            AcquisitionError: When no trace could be obtained (state FAILED)
            InvalidRequestError: When no RPC endpoint is known
        """
        run = PipelineRun()
        try:
            trace, flat, contracts, chain_id = await self._front(request, run, with_steps=True)

            run.advance(RunState.COMPILING)
            run_dir = self.scratch.create_run_dir()
            compiler = ContractCompiler(self.compiler, self.config.strict_version_check)
            compilation = await compiler.compile_contracts(list(contracts.values()), run_dir)
            run.diagnostics.extend(compilation.summary.compilation_errors)
            debug_contracts = await self._load_debug_contracts(
                compilation.compiled, contracts, run, compilation.summary
            )

            run.advance(RunState.ASSEMBLING)
            call_maps = build_call_maps(flat, contracts)
            debugger_info = assemble_debugger_info(flat, trace.steps, debug_contracts, call_maps)
        except Exception:
            run.advance(RunState.FAILED)
            raise

        run.advance(RunState.DONE)
        return DebugResult(
            debugger_info=debugger_info,
            compilation_summary=compilation.summary,
            transaction=trace.transaction,
            contracts=contracts,
            chain_id=chain_id,
            run=run,
        )

    async def simulate(self, request: DebugRequest) -> SimulationResult:
        """Single-pass conversion: call maps with decoded calls, no compilation."""
        run = PipelineRun()
        try:
            trace, flat, contracts, chain_id = await self._front(request, run, with_steps=False)
            run.advance(RunState.ASSEMBLING)
            call_maps = build_call_maps(flat, contracts)
        except Exception:
            run.advance(RunState.FAILED)
            raise

        run.advance(RunState.DONE)
        return SimulationResult(
            call_maps=call_maps,
            trace_call=trace.trace_call,
            transaction=trace.transaction,
            chain_id=chain_id,
            run=run,
        )
