"""
Scratch space for compilation runs.

Each pipeline run writes sources and compiler output below its own
``run-<timestamp>-<suffix>`` directory. Stale run directories are removed
by age, so a sweep never needs to know which runs are still active: a run
that is writing files keeps its modification time fresh.
"""

import asyncio
import os
import secrets
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from soltrace.utils.logging import get_logger

logger = get_logger('scratch')

RUN_DIR_PREFIX = 'run-'


def latest_mtime(path: Path) -> float:
    """Newest modification time of a directory tree."""
    newest = path.stat().st_mtime
    for dirpath, dirnames, filenames in os.walk(path):
        for name in dirnames + filenames:
            try:
                newest = max(newest, os.stat(os.path.join(dirpath, name), follow_symlinks=False).st_mtime)
            except FileNotFoundError:
                continue
    return newest


class ScratchSpace:
    """Root directory holding per-run working trees."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def create_run_dir(self) -> Path:
        stamp = datetime.now().strftime('%Y%m%d%H%M%S')
        run_dir = self.root / f"{RUN_DIR_PREFIX}{stamp}-{secrets.token_hex(4)}"
        run_dir.mkdir(parents=True, exist_ok=False)
        logger.debug(f"Created run directory {run_dir}")
        return run_dir

    @staticmethod
    def contract_dir(run_dir: Path, address: str) -> Path:
        return Path(run_dir) / address

    def run_dirs(self) -> List[Path]:
        if not self.root.is_dir():
            return []
        return sorted(p for p in self.root.iterdir() if p.is_dir() and p.name.startswith(RUN_DIR_PREFIX))

    def sweep(self, max_age: float, now: Optional[float] = None) -> List[Path]:
        """
        Delete run directories older than ``max_age`` seconds.

        Safe to call repeatedly and concurrently: directories that vanish
        mid-sweep are skipped.

        Returns:
            The directories that were removed
        """
        now = time.time() if now is None else now
        removed = []
        for run_dir in self.run_dirs():
            try:
                age = now - latest_mtime(run_dir)
            except FileNotFoundError:
                continue
            if age <= max_age:
                continue
            try:
                shutil.rmtree(run_dir)
            except FileNotFoundError:
                continue
            logger.info(f"Removed stale run directory {run_dir.name} ({int(age)}s old)")
            removed.append(run_dir)
        return removed


class ScratchSweeper:
    """
    Periodic background sweep of a ScratchSpace.

    Owned by whoever runs the event loop: call ``start()`` once the loop is
    running and ``await stop()`` on shutdown.
    """

    def __init__(self, space: ScratchSpace, interval: float = 300.0, max_age: float = 300.0):
        self.space = space
        self.interval = interval
        self.max_age = max_age
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_now(self, max_age: Optional[float] = None) -> List[Path]:
        """Run one sweep off the event loop."""
        age = self.max_age if max_age is None else max_age
        return await asyncio.to_thread(self.space.sweep, age)

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                removed = await self.sweep_now()
            except OSError as e:
                logger.error(f"Scratch sweep failed: {e}")
                continue
            if removed:
                logger.info(f"Scratch sweep removed {len(removed)} directories")

    def start(self) -> None:
        if self.running:
            return
        logger.debug(f"Starting scratch sweeper (every {self.interval}s, max age {self.max_age}s)")
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
