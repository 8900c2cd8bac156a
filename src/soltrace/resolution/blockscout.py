"""
Blockscout loader.

Blockscout deployments disagree on where verified sources live in the
``/api/v2/smart-contracts/{address}`` response, so extraction is an ordered
list of strategies; the first one yielding at least one file wins. When the
main response yields nothing, the Etherscan-compatible source-code endpoint
is queried as a last strategy.
"""

import json
from typing import Any, Dict, List, Optional

from soltrace.resolution.models import RegistryResult, SourceFile, synthesize_metadata
from soltrace.resolution.registry import RegistryLoader, logger
from soltrace.utils.exceptions import ContractNotVerifiedError, RegistryError


def _normalize_version(version: Optional[str]) -> Optional[str]:
    if not version:
        return None
    return version[1:] if version.startswith('v') else version


def _parse_standard_json(text: str) -> Optional[Dict[str, Any]]:
    """Parse standard-JSON input, including Etherscan's double-brace wrapping."""
    stripped = text.strip()
    if not stripped.startswith('{'):
        return None
    if stripped.startswith('{{') and stripped.endswith('}}'):
        stripped = stripped[1:-1]
    try:
        parsed = json.loads(stripped)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _sources_from_mapping(mapping: Dict[str, Any]) -> List[SourceFile]:
    files = []
    for path, entry in mapping.items():
        content = entry.get('content') if isinstance(entry, dict) else entry
        if isinstance(content, str) and content:
            files.append(SourceFile(path, content))
    return files


def _sources_from_list(entries: Any, path_keys, content_keys) -> List[SourceFile]:
    files = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        path = next((entry[key] for key in path_keys if entry.get(key)), None)
        content = next((entry[key] for key in content_keys if isinstance(entry.get(key), str)), None)
        if path and content:
            files.append(SourceFile(path, content))
    return files


# =============================================================================
# Extraction strategies
# =============================================================================

class ExtractionStrategy:
    """One way of finding source files in a registry response."""

    name = 'strategy'

    def extract(self, data: Dict[str, Any]) -> List[SourceFile]:
        raise NotImplementedError


class DirectFieldsStrategy(ExtractionStrategy):
    """``source_code`` holds the main file's text, ``file_path`` its path."""

    name = 'direct-fields'

    def extract(self, data):
        source_code = data.get('source_code')
        if not isinstance(source_code, str) or not source_code.strip():
            return []
        if _parse_standard_json(source_code) is not None:
            return []
        path = data.get('file_path') or f"{data.get('name') or 'Contract'}.sol"
        files = [SourceFile(path, source_code)]
        files.extend(_sources_from_list(
            data.get('additional_sources'), ('file_path', 'path', 'name'), ('source_code', 'content')
        ))
        return files


class NestedSourceCodeStrategy(ExtractionStrategy):
    """``source_code`` is an object (or JSON text) mapping paths to contents."""

    name = 'nested-source-code'

    def extract(self, data):
        source_code = data.get('source_code')
        if isinstance(source_code, str):
            source_code = _parse_standard_json(source_code)
        if not isinstance(source_code, dict):
            return []
        if isinstance(source_code.get('sources'), dict):
            return _sources_from_mapping(source_code['sources'])
        return _sources_from_mapping(source_code)


class FilesArrayStrategy(ExtractionStrategy):
    """``files`` is a list of ``{path|name, content|source_code}``."""

    name = 'files-array'

    def extract(self, data):
        return _sources_from_list(
            data.get('files'), ('path', 'file_path', 'name'), ('content', 'source_code')
        )


class AdditionalSourcesStrategy(ExtractionStrategy):
    """Only ``additional_sources`` carries files."""

    name = 'additional-sources'

    def extract(self, data):
        return _sources_from_list(
            data.get('additional_sources'), ('file_path', 'path', 'name'), ('source_code', 'content')
        )


class SourceCodeEndpointStrategy(ExtractionStrategy):
    """Etherscan-compatible ``getsourcecode`` response (``result[0]``)."""

    name = 'source-code-endpoint'

    def extract(self, data):
        result = self.first_result(data)
        if not result:
            return []
        source_code = result.get('SourceCode') or ''
        standard = _parse_standard_json(source_code)
        if standard is not None:
            return _sources_from_mapping(standard.get('sources', standard))
        if not source_code.strip():
            return []
        path = result.get('FileName') or f"{result.get('ContractName') or 'Contract'}.sol"
        files = [SourceFile(path, source_code)]
        files.extend(_sources_from_list(
            result.get('AdditionalSources'), ('Filename', 'FileName'), ('SourceCode',)
        ))
        return files

    @staticmethod
    def first_result(data: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(data, dict):
            return None
        result = data.get('result')
        if isinstance(result, list) and result and isinstance(result[0], dict):
            return result[0]
        return None


RESPONSE_STRATEGIES = (
    DirectFieldsStrategy(),
    NestedSourceCodeStrategy(),
    FilesArrayStrategy(),
    AdditionalSourcesStrategy(),
)


def extract_sources(data: Dict[str, Any], strategies=RESPONSE_STRATEGIES):
    """Return ``(strategy name, files)`` for the first strategy that finds files."""
    for strategy in strategies:
        files = strategy.extract(data)
        if files:
            return strategy.name, files
    return None, []


# =============================================================================
# Loader
# =============================================================================

class BlockscoutLoader(RegistryLoader):
    """Resolves contracts through a Blockscout explorer's v2 API."""

    name = 'blockscout'

    async def _fetch_source_code_endpoint(self, address: str) -> Optional[Dict[str, Any]]:
        status, data = await self._get_json(
            f"{self.base_url}/api",
            params={'module': 'contract', 'action': 'getsourcecode', 'address': address}
        )
        return data if status < 400 else None

    async def load(self, address: str, chain_id: int) -> RegistryResult:
        status, data = await self._get_json(f"{self.base_url}/api/v2/smart-contracts/{address}")
        if status == 404:
            raise ContractNotVerifiedError(address, self.name)
        if status >= 400 or not isinstance(data, dict):
            raise RegistryError(f"Blockscout lookup failed with HTTP {status}", contract_address=address)

        strategy, sources = extract_sources(data)
        fallback: Dict[str, Any] = {}
        if not sources:
            endpoint = SourceCodeEndpointStrategy()
            response = await self._fetch_source_code_endpoint(address)
            sources = endpoint.extract(response) if response else []
            fallback = endpoint.first_result(response) or {}
            strategy = endpoint.name if sources else None

        if not sources:
            raise ContractNotVerifiedError(address, self.name)
        logger.debug(f"Blockscout sources for {address} found via {strategy} ({len(sources)} files)")

        abi = data.get('abi') or fallback.get('ABI') or []
        if isinstance(abi, str):
            try:
                abi = json.loads(abi)
            except ValueError:
                abi = []

        name = data.get('name') or fallback.get('ContractName') or ''
        compiler_version = _normalize_version(data.get('compiler_version') or fallback.get('CompilerVersion'))
        settings = data.get('compiler_settings') or {}
        evm_version = data.get('evm_version') or settings.get('evmVersion') or fallback.get('EVMVersion')
        if evm_version == 'default':
            evm_version = None
        optimizer = settings.get('optimizer') or {}
        optimizer_enabled = bool(data.get('optimization_enabled', optimizer.get('enabled', False))
                                 or fallback.get('OptimizationUsed') == '1')
        runs = data.get('optimization_runs') or optimizer.get('runs') or fallback.get('Runs')
        runs = int(runs) if runs not in (None, '') else None

        metadata = data.get('metadata')
        if not isinstance(metadata, dict) or not metadata.get('settings'):
            metadata = synthesize_metadata(
                sources,
                name,
                compiler_version=compiler_version,
                evm_version=evm_version,
                optimizer_enabled=optimizer_enabled,
                optimizer_runs=runs,
                abi=abi,
            )

        return RegistryResult(
            abi=abi,
            sources=sources,
            metadata=metadata,
            name=name,
            compiler_version=compiler_version,
            evm_version=evm_version,
            optimizer_runs=runs,
        )
