"""
Data classes shared by the verification registries and the resolver.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def compilation_target_of(metadata: Dict[str, Any]) -> Optional[str]:
    """Path of the main source named by a metadata document."""
    target = (metadata.get('settings') or {}).get('compilationTarget') or {}
    return next(iter(target), None)


@dataclass
class SourceFile:
    """One verified source file, keyed by its compiler-facing path."""
    path: str
    content: str


@dataclass
class RegistryResult:
    """What a verification registry knows about one address."""
    abi: List[Dict[str, Any]]
    sources: List[SourceFile]
    metadata: Dict[str, Any]            # solc metadata document (real or synthesized)
    name: str = ''
    compiler_version: Optional[str] = None
    evm_version: Optional[str] = None
    optimizer_runs: Optional[int] = None

    @property
    def compilation_target(self) -> Optional[str]:
        return compilation_target_of(self.metadata)


@dataclass
class Contract:
    """
    A contract address resolved for one pipeline run.

    ``verified`` is true only when a registry returned at least one source
    file. Unverified records keep an empty ABI.
    """
    address: str
    bytecode: str = '0x'
    name: str = ''
    sources: List[SourceFile] = field(default_factory=list)
    abi: List[Dict[str, Any]] = field(default_factory=list)
    verified: bool = False
    verification_source: Optional[str] = None   # sourcify | blockscout
    metadata: Dict[str, Any] = field(default_factory=dict)
    compiler_version: Optional[str] = None
    evm_version: Optional[str] = None
    optimizer_runs: Optional[int] = None
    implementation_address: Optional[str] = None
    compilation_status: Optional[str] = None     # success | failed
    compilation_error: Optional[str] = None
    resolution_error: Optional[str] = None

    @property
    def has_code(self) -> bool:
        return self.bytecode not in ('', '0x', None)

    @property
    def compilation_target(self) -> Optional[str]:
        return compilation_target_of(self.metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'name': self.name,
            'verified': self.verified,
            'verificationSource': self.verification_source,
            'compilerVersion': self.compiler_version,
            'implementationAddress': self.implementation_address,
            'compilationStatus': self.compilation_status,
            'compilationError': self.compilation_error,
            'sources': [{'path': source.path, 'content': source.content} for source in self.sources],
            'abi': self.abi,
        }


_SOURCIFY_PREFIX = re.compile(
    r'^/?(?:contracts/)?(?:full_match|partial_match)/\d+/0x[0-9a-fA-F]{40}/(?:sources/)?'
)


def strip_sourcify_prefix(path: str) -> str:
    """Drop the repository prefix Sourcify puts in front of source paths."""
    return _SOURCIFY_PREFIX.sub('', path)


def synthesize_metadata(
    sources: List[SourceFile],
    name: str,
    compiler_version: Optional[str] = None,
    evm_version: Optional[str] = None,
    optimizer_enabled: bool = False,
    optimizer_runs: Optional[int] = None,
    abi: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """
    Build a minimal solc metadata document for registries that do not ship one.

    The compilation target is the source declaring ``contract <name>``,
    falling back to a file named after the contract, then the first file.
    """
    target = None
    declaration = re.compile(rf'\b(?:abstract\s+)?contract\s+{re.escape(name)}\b') if name else None
    if declaration:
        target = next((s.path for s in sources if declaration.search(s.content)), None)
        if target is None:
            target = next((s.path for s in sources if s.path.rsplit('/', 1)[-1] == f'{name}.sol'), None)
    if target is None and sources:
        target = sources[0].path

    settings: Dict[str, Any] = {
        'optimizer': {'enabled': optimizer_enabled, 'runs': optimizer_runs or 200},
        'compilationTarget': {target: name} if target else {},
    }
    if evm_version:
        settings['evmVersion'] = evm_version

    return {
        'compiler': {'version': compiler_version or ''},
        'language': 'Solidity',
        'output': {'abi': abi or []},
        'settings': settings,
        'sources': {source.path: {} for source in sources},
        'version': 1,
    }
