"""
Sourcify loader.

Uses the v2 lookup ``GET {base}/v2/contract/{chainId}/{address}?fields=all``
which returns the solc metadata document together with every source file.
"""

from typing import Any, Dict, List

from soltrace.resolution.models import RegistryResult, SourceFile, strip_sourcify_prefix
from soltrace.resolution.registry import RegistryLoader, logger
from soltrace.utils.exceptions import ContractNotVerifiedError, RegistryError

DEFAULT_SOURCIFY_URL = 'https://sourcify.dev/server'


def parse_sources(raw_sources: Any) -> List[SourceFile]:
    """Sources come as ``{path: {content}}``; older servers send a list of ``{path, content}``."""
    files = []
    if isinstance(raw_sources, dict):
        for path, entry in raw_sources.items():
            content = entry.get('content') if isinstance(entry, dict) else entry
            if isinstance(content, str):
                files.append(SourceFile(strip_sourcify_prefix(path), content))
    elif isinstance(raw_sources, list):
        for entry in raw_sources:
            path = entry.get('path') or entry.get('name')
            if path and isinstance(entry.get('content'), str):
                files.append(SourceFile(strip_sourcify_prefix(path), entry['content']))
    return files


def contract_name_from_metadata(metadata: Dict[str, Any]) -> str:
    """devdoc ``@title`` first, then the compilation target's contract name."""
    title = ((metadata.get('output') or {}).get('devdoc') or {}).get('title')
    if title:
        return title
    target = (metadata.get('settings') or {}).get('compilationTarget') or {}
    return next(iter(target.values()), '')


class SourcifyLoader(RegistryLoader):
    """Resolves contracts through a Sourcify server."""

    name = 'sourcify'

    def __init__(self, session, base_url: str = DEFAULT_SOURCIFY_URL):
        super().__init__(session, base_url)

    async def load(self, address: str, chain_id: int) -> RegistryResult:
        url = f"{self.base_url}/v2/contract/{chain_id}/{address}"
        try:
            status, data = await self._get_json(url, params={'fields': 'all'})
        except RegistryError as e:
            # Browsers report CORS rejections of unknown contracts this way
            if 'failed to fetch' in e.message.lower():
                raise ContractNotVerifiedError(address, self.name) from e
            raise

        if status == 404:
            raise ContractNotVerifiedError(address, self.name)
        if status >= 400 or not isinstance(data, dict):
            raise RegistryError(f"Sourcify lookup failed with HTTP {status}", contract_address=address)

        metadata = data.get('metadata') or {}
        sources = parse_sources(data.get('sources'))
        if not sources:
            raise ContractNotVerifiedError(address, self.name)

        settings = metadata.get('settings') or {}
        abi = data.get('abi') or (metadata.get('output') or {}).get('abi') or []
        logger.debug(f"Sourcify returned {len(sources)} sources for {address}")

        return RegistryResult(
            abi=abi,
            sources=sources,
            metadata=metadata,
            name=contract_name_from_metadata(metadata),
            compiler_version=(metadata.get('compiler') or {}).get('version'),
            evm_version=settings.get('evmVersion'),
            optimizer_runs=(settings.get('optimizer') or {}).get('runs'),
        )
