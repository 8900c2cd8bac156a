"""
solc invocation.

CompilerConfig knows where the compiler lives, which version it is and
which flags produce debug output for that version. Compilers with
ethdebug support get the IR pipeline with ethdebug artifacts; older ones
fall back to a ``combined.json`` carrying runtime source maps.
"""

import asyncio
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from soltrace.compiler.versions import parse_solc_version_output, supports_ethdebug
from soltrace.utils.exceptions import CompilationError
from soltrace.utils.logging import get_logger

logger = get_logger('compiler')

DEBUG_DIR_NAME = 'debug'


@dataclass
class SolcOutput:
    """Result of one solc process."""
    returncode: int
    stdout: str
    stderr: str


class CompilerConfig:
    """
    Settings and process handling for the local solc binary.

    Args:
        solc_path: solc executable
        timeout: Seconds before a compiler process is considered hung
    """

    def __init__(self, solc_path: str = 'solc', timeout: Optional[float] = 300.0):
        self.solc_path = solc_path
        self.timeout = timeout
        self._version: Optional[str] = None

    async def run_solc(self, args: List[str], cwd: Optional[Path] = None) -> SolcOutput:
        """Run solc with the given arguments."""
        logger.debug(f"Running solc: {' '.join([self.solc_path, *args])}")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.solc_path,
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise CompilationError(f"Cannot run {self.solc_path}: {e}") from e

        try:
            out, err = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise CompilationError(f"solc did not finish within {self.timeout}s") from e

        return SolcOutput(
            returncode=proc.returncode,
            stdout=out.decode('utf-8', errors='replace'),
            stderr=err.decode('utf-8', errors='replace'),
        )

    async def get_version(self) -> str:
        """Version reported by ``solc --version`` (cached)."""
        if self._version is None:
            output = await self.run_solc(['--version'])
            version = parse_solc_version_output(output.stdout)
            if output.returncode != 0 or not version:
                raise CompilationError(f"Could not determine solc version: {output.stderr.strip()}")
            self._version = version
        return self._version

    async def verify_solc_version(self) -> Dict[str, Any]:
        """Report whether the local compiler can emit ethdebug output."""
        try:
            version = await self.get_version()
        except CompilationError as e:
            return {'supported': False, 'version': None, 'error': e.message}
        if supports_ethdebug(version):
            return {'supported': True, 'version': version}
        return {
            'supported': False,
            'version': version,
            'error': f"solc {version} has no ethdebug support (0.8.29 or newer required)",
        }

    @staticmethod
    def ethdebug_args(compilation_target: str, output_dir: str) -> List[str]:
        return [
            '--via-ir',
            '--debug-info', 'ethdebug',
            '--ethdebug',
            '--ethdebug-runtime',
            '--bin',
            '--abi',
            '--overwrite',
            '-o', output_dir,
            compilation_target,
        ]

    @staticmethod
    def legacy_args(compilation_target: str, output_dir: str) -> List[str]:
        return [
            '--combined-json', 'bin-runtime,srcmap-runtime,abi',
            '--overwrite',
            '-o', output_dir,
            compilation_target,
        ]

    async def compile_with_ethdebug(self, compilation_target: str, cwd: Path) -> Dict[str, Any]:
        """
        Compile one target inside ``cwd`` into ``cwd/debug``.

        Returns:
            Dict with ``success``, ``output_dir``, ``files``, ``stderr``,
            ``returncode`` and ``legacy``. ``success`` requires a zero exit
            status and at least one file in the output directory.
        """
        cwd = Path(cwd)
        output_dir = cwd / DEBUG_DIR_NAME
        version = await self.get_version()
        legacy = not supports_ethdebug(version)
        if legacy:
            logger.warning(f"solc {version} has no ethdebug support, using legacy source maps")
            args = self.legacy_args(compilation_target, str(output_dir))
        else:
            args = self.ethdebug_args(compilation_target, str(output_dir))

        output = await self.run_solc(args, cwd=cwd)

        files = sorted(p.name for p in output_dir.iterdir()) if output_dir.is_dir() else []
        return {
            'success': output.returncode == 0 and bool(files),
            'output_dir': str(output_dir),
            'files': files,
            'stderr': output.stderr,
            'returncode': output.returncode,
            'legacy': legacy,
        }
