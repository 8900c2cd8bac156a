"""
Compilation of verified contracts into debug artifacts.

Each verified contract is materialized under ``<run dir>/<address>/`` and
compiled there; contracts are processed one after another to bound the
number of concurrent compiler processes. Failures are recorded per
contract and never abort the batch.
"""

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

import aiofiles

from soltrace.compiler.config import CompilerConfig
from soltrace.compiler.debug_dirs import ETHDebugSpec, verify_debug_directories
from soltrace.compiler.versions import (
    clean_solc_version,
    find_pragma_directive,
    is_nightly_build,
    is_solc_version_compatible,
    requires_strict_version,
    supports_ethdebug,
)
from soltrace.resolution.models import Contract, SourceFile
from soltrace.scratch import ScratchSpace
from soltrace.utils.exceptions import CompilationError
from soltrace.utils.logging import get_logger

logger = get_logger('compiler')

_INVISIBLE_CHARS = re.compile('[\u200B-\u200D\uFEFF]')
_SYNTAX_MARKERS = ('ParserError', 'SyntaxError', 'DeclarationError', 'TypeError')
_MISSING_SOURCE_MARKERS = ('File not found', 'not found', 'No such file')


@dataclass
class CompiledContract:
    """A contract whose debug directory is ready for parsing."""
    address: str
    name: str
    source_dir: Path
    debug_dir: Path
    legacy: bool = False  # combined.json source maps instead of ethdebug

    @property
    def spec(self) -> ETHDebugSpec:
        return ETHDebugSpec(address=self.address, name=self.name or None, path=str(self.debug_dir))


@dataclass
class CompilationStatus:
    address: str
    status: str                     # success | failed
    error: Optional[str] = None
    verification_source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'address': self.address, 'status': self.status}
        if self.error:
            result['error'] = self.error
        if self.verification_source:
            result['verificationSource'] = self.verification_source
        return result


@dataclass
class CompilationSummary:
    total_contracts: int = 0
    successful_compilations: int = 0
    failed_compilations: int = 0
    compilation_errors: List[str] = field(default_factory=list)
    contract_statuses: List[CompilationStatus] = field(default_factory=list)

    def status_for(self, address: str) -> Optional[CompilationStatus]:
        return next((s for s in self.contract_statuses if s.address == address), None)

    def mark_failed(self, contract: Contract, error: str) -> None:
        """Record a contract that compiled but left no usable debug output."""
        contract.compilation_status = 'failed'
        contract.compilation_error = error
        status = self.status_for(contract.address)
        if status is not None:
            status.status, status.error = 'failed', error
        self.compilation_errors.append(error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalContracts': self.total_contracts,
            'successfulCompilations': self.successful_compilations,
            'failedCompilations': self.failed_compilations,
            'compilationErrors': list(self.compilation_errors),
            'contractStatuses': [status.to_dict() for status in self.contract_statuses],
        }


@dataclass
class CompilationResult:
    compiled: List[CompiledContract]
    summary: CompilationSummary
    run_dir: Path


def clean_source_content(content: str) -> str:
    """Strip BOM and zero-width characters, normalize line endings to LF."""
    if content.startswith('\ufeff'):
        content = content[1:]
    content = _INVISIBLE_CHARS.sub('', content)
    return content.replace('\r\n', '\n').replace('\r', '\n')


def resolve_source_path(contract_dir: Path, source_path: str) -> Path:
    """
    Map a registry source path into the contract directory.

    Raises:
        CompilationError: If the path would escape the directory
    """
    relative = PurePosixPath(source_path.lstrip('/'))
    if '..' in relative.parts or not relative.parts:
        raise CompilationError(
            f"Refusing to write source outside the workspace: {source_path}",
            category=CompilationError.MISSING_SOURCE
        )
    return Path(contract_dir).joinpath(*relative.parts)


async def _write_source(contract_dir: Path, source: SourceFile) -> Path:
    destination = resolve_source_path(contract_dir, source.path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(destination, mode='w', encoding='utf-8', newline='') as f:
        await f.write(clean_source_content(source.content))
    return destination


async def write_sources(contract_dir: Path, sources: List[SourceFile]) -> List[Path]:
    """Write all sources and return once every write has completed."""
    Path(contract_dir).mkdir(parents=True, exist_ok=True)
    return list(await asyncio.gather(*(_write_source(contract_dir, source) for source in sources)))


def categorize_failure(stderr: str, version_mismatch: bool, pragma: Optional[str]) -> str:
    if version_mismatch:
        return CompilationError.VERSION_MISMATCH
    if pragma is None:
        return CompilationError.PRAGMA_DETECTION_FAILURE
    if any(marker in stderr for marker in _SYNTAX_MARKERS):
        return CompilationError.SYNTAX_ERROR
    if any(marker in stderr for marker in _MISSING_SOURCE_MARKERS):
        return CompilationError.MISSING_SOURCE
    return CompilationError.COMPILER_FAILURE


class ContractCompiler:
    """
    Compiles verified contracts with the local solc.

    Args:
        compiler: solc wrapper
        strict_version_check: Refuse to compile when the pragma does not
            accept the local compiler version (otherwise only logged)
    """

    def __init__(self, compiler: CompilerConfig, strict_version_check: bool = False):
        self.compiler = compiler
        self.strict_version_check = strict_version_check

    async def _check_version(self, contract: Contract, pragma: Optional[str]) -> bool:
        """Log compilation risks; returns True when the pragma rejects the local compiler."""
        solc_version = await self.compiler.get_version()
        if is_nightly_build(solc_version):
            logger.warning(f"Using nightly build {solc_version}; exact pragmas may not match")
        if pragma is None:
            logger.warning(f"{contract.address}: no pragma solidity directive found")
            return False

        if requires_strict_version(pragma) and not supports_ethdebug(solc_version):
            logger.warning(
                f"{contract.address}: ethdebug output needs solc 0.8.29+, "
                f"local compiler is {clean_solc_version(solc_version)}"
            )

        if is_solc_version_compatible(pragma, solc_version):
            return False

        message = f"Solc version {solc_version} is not compatible with pragma {pragma}"
        if self.strict_version_check:
            raise CompilationError(
                message, category=CompilationError.VERSION_MISMATCH, contract_address=contract.address
            )
        logger.warning(f"{contract.address}: {message}; compiling anyway")
        return True

    async def compile_contract(self, contract: Contract, contract_dir: Path) -> CompiledContract:
        """
        Compile one verified contract into ``contract_dir/debug``.

        Raises:
            CompilationError: With the failure category set
        """
        sources = [source for source in contract.sources if source.path]
        if not sources:
            raise CompilationError(
                "No source files", category=CompilationError.MISSING_SOURCE,
                contract_address=contract.address
            )
        target = contract.compilation_target
        if not target or target not in {source.path for source in sources}:
            raise CompilationError(
                f"Missing metadata or compilation target ({target or 'none'})",
                category=CompilationError.MISSING_SOURCE,
                contract_address=contract.address
            )

        await write_sources(contract_dir, sources)

        main_first = sorted(sources, key=lambda source: source.path != target)
        pragma = find_pragma_directive(main_first)
        version_mismatch = await self._check_version(contract, pragma)

        result = await self.compiler.compile_with_ethdebug(target.lstrip('/'), contract_dir)
        if result['returncode'] != 0:
            stderr = result['stderr'].strip()
            first_line = stderr.splitlines()[0] if stderr else f"solc exited with {result['returncode']}"
            raise CompilationError(
                f"Compilation failed - {first_line}",
                category=categorize_failure(stderr, version_mismatch, pragma),
                contract_address=contract.address
            )
        if not result['success']:
            raise CompilationError(
                "Debug directory is empty after compilation",
                category=CompilationError.EMPTY_DEBUG_OUTPUT,
                contract_address=contract.address
            )

        # Debug artifacts are named after the compilation target, never the NatSpec title
        name = contract.metadata['settings']['compilationTarget'][target] or contract.name
        logger.info(f"Compiled {name or contract.address} ({len(result['files'])} debug files)")
        return CompiledContract(
            address=contract.address,
            name=name,
            source_dir=Path(contract_dir),
            debug_dir=Path(result['output_dir']),
            legacy=result['legacy'],
        )

    async def compile_contracts(self, contracts: List[Contract], run_dir: Path) -> CompilationResult:
        """
        Compile every verified contract, sequentially.

        Unverified contracts are skipped. Each contract's
        ``compilation_status``/``compilation_error`` is updated in place.
        """
        verified = [contract for contract in contracts if contract.verified]
        compiled: List[CompiledContract] = []
        summary = CompilationSummary(total_contracts=len(verified))

        for contract in verified:
            try:
                result = await self.compile_contract(contract, ScratchSpace.contract_dir(run_dir, contract.address))
            except CompilationError as e:
                error = f"Contract {contract.address}: {e.message}"
                logger.warning(f"{error} [{e.category}]")
                contract.compilation_status = 'failed'
                contract.compilation_error = error
                summary.compilation_errors.append(error)
                summary.contract_statuses.append(
                    CompilationStatus(contract.address, 'failed', error, contract.verification_source)
                )
                continue

            contract.compilation_status = 'success'
            compiled.append(result)
            summary.contract_statuses.append(
                CompilationStatus(contract.address, 'success', None, contract.verification_source)
            )

        report = verify_debug_directories([c.spec for c in compiled])
        invalid = {spec.address for spec in report.invalid}
        for contract in verified:
            if contract.address in invalid:
                summary.mark_failed(
                    contract, f"Contract {contract.address}: debug directory missing after compilation"
                )
        compiled = [c for c in compiled if c.address not in invalid]

        summary.successful_compilations = len(compiled)
        summary.failed_compilations = summary.total_contracts - len(compiled)
        if verified and not compiled:
            logger.error("All verified contracts failed to compile; debug data will not be available")
        elif verified:
            logger.info(f"Compiled {len(compiled)} of {len(verified)} verified contracts")

        return CompilationResult(compiled=compiled, summary=summary, run_dir=Path(run_dir))
