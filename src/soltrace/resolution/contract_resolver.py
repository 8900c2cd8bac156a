"""
Contract resolution.

Turns every address a trace touches into a Contract record: on-chain
bytecode, verification status, ABI and verified sources. Addresses are
resolved concurrently and independently; a failure for one address only
makes that contract unverified.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

import aiohttp

from soltrace.config import BLOCKSCOUT, SOURCIFY, TraceConfig
from soltrace.resolution.blockscout import BlockscoutLoader
from soltrace.resolution.models import Contract, RegistryResult
from soltrace.resolution.proxy import detect_proxy_implementation
from soltrace.resolution.registry import RegistryLoader
from soltrace.resolution.sourcify import SourcifyLoader
from soltrace.utils.exceptions import (
    ContractNotVerifiedError,
    ResolutionError,
    format_exception_message,
    sanitize_error_message,
)
from soltrace.utils.logging import get_logger

logger = get_logger('resolution')


class ContractResolver:
    """
    Resolves contracts for one chain.

    Args:
        node: TracingClient used for ``eth_getCode`` and proxy slots
        config: Runtime configuration (registry URLs, per-chain backend)
        session: Shared HTTP session; created and owned by the resolver
                 when omitted (use ``async with``)
        loaders: Explicit ``{backend: loader}`` map, mainly for tests
    """

    def __init__(
        self,
        node,
        config: TraceConfig,
        session: Optional[aiohttp.ClientSession] = None,
        loaders: Optional[Dict[str, RegistryLoader]] = None
    ):
        self.node = node
        self.config = config
        self.session = session
        self._owns_session = session is None
        self._loaders = loaders

    async def __aenter__(self) -> 'ContractResolver':
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.registry_timeout)
            )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None

    def loaders_for_chain(self, chain_id: int) -> List[RegistryLoader]:
        """Registries to try for a chain: the configured backend first, the other second."""
        if self._loaders is not None:
            available = dict(self._loaders)
        else:
            available = {SOURCIFY: SourcifyLoader(self.session, self.config.sourcify_url)}
            chain = self.config.chain(chain_id)
            if chain.explorer_url:
                available[BLOCKSCOUT] = BlockscoutLoader(self.session, chain.explorer_url)

        preferred = self.config.chain(chain_id).verification
        if preferred not in available:
            logger.warning(f"No {preferred} endpoint configured for chain {chain_id}, using fallback registry")
        order = [preferred] + [name for name in (SOURCIFY, BLOCKSCOUT) if name != preferred]
        return [available[name] for name in order if name in available]

    async def lookup(self, address: str, chain_id: int) -> Tuple[Optional[RegistryResult], Optional[str]]:
        """
        Query registries in order.

        Moves to the next registry only when the current one reports the
        contract as not verified; any other registry failure propagates.
        """
        for loader in self.loaders_for_chain(chain_id):
            try:
                return await loader.load(address, chain_id), loader.name
            except ContractNotVerifiedError:
                logger.debug(f"{address} not verified on {loader.name}")
        return None, None

    async def fetch_contract(self, address: str, chain_id: int) -> Contract:
        """Resolve one address."""
        code = await self.node.get_code(address)
        contract = Contract(address=address, bytecode='0x' + code.hex())
        if not contract.has_code:
            logger.debug(f"{address} has no code")
            return contract

        result, source = await self.lookup(address, chain_id)
        if result is not None:
            contract.name = result.name
            contract.sources = result.sources
            contract.abi = result.abi
            contract.metadata = result.metadata
            contract.compiler_version = result.compiler_version
            contract.evm_version = result.evm_version
            contract.optimizer_runs = result.optimizer_runs
            contract.verified = bool(result.sources)
            contract.verification_source = source
            logger.info(f"Resolved {result.name or address} via {source}")

        implementation = await detect_proxy_implementation(self.node, address, contract.bytecode)
        if implementation and implementation != address:
            contract.implementation_address = implementation
            try:
                impl_result, _ = await self.lookup(implementation, chain_id)
            except ResolutionError as e:
                logger.warning(f"Could not resolve implementation {implementation}: {e.message}")
                impl_result = None
            if impl_result is not None and impl_result.abi:
                contract.abi = impl_result.abi
                contract.name = contract.name or impl_result.name

        return contract

    async def resolve_contracts(self, addresses: Iterable[str], chain_id: int) -> Dict[str, Contract]:
        """
        Resolve many addresses concurrently.

        Every address gets a Contract; failures become unverified records
        carrying a sanitized ``resolution_error``.
        """
        addresses = list(addresses)
        results = await asyncio.gather(
            *(self.fetch_contract(address, chain_id) for address in addresses),
            return_exceptions=True
        )

        contracts: Dict[str, Contract] = {}
        for address, result in zip(addresses, results):
            if isinstance(result, Exception):
                message = sanitize_error_message(format_exception_message(result))
                logger.warning(f"Resolution failed for {address}: {message}")
                result = Contract(address=address, resolution_error=message)
            elif isinstance(result, BaseException):
                raise result
            contracts[address] = result
        return contracts
