"""
Scoped working directories.

Every conversion job owns exactly one directory for intermediate and output
files, and every upload owns a separate staging directory. Both are released
through ScopedDir.release(), which is idempotent and never raises, so cleanup
can be wired to every exit path without masking the primary error.
"""

import asyncio
import logging
import shutil
import tempfile
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from chapterbook.config import get_settings

logger = logging.getLogger(__name__)

JOB_PREFIX = "chapterbook_job_"
STAGING_PREFIX = "chapterbook_upload_"


class ScopedDir:
    """A temporary directory that is removed exactly once."""

    def __init__(self, path: Path, label: str):
        self.path = path
        self.label = label
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Remove the directory tree. Safe to call repeatedly; errors are logged."""
        with self._lock:
            if self._released:
                return
            self._released = True
        try:
            shutil.rmtree(self.path)
            logger.info(f"[WORKSPACE] Cleaned up {self.label} directory: {self.path}")
        except FileNotFoundError:
            logger.warning(f"[WORKSPACE] {self.label} directory already gone: {self.path}")
        except OSError:
            logger.exception(f"[WORKSPACE] Error cleaning up {self.label} directory: {self.path}")

    async def release_async(self) -> None:
        """Release without blocking the event loop on large trees."""
        if self._released:
            return
        await asyncio.to_thread(self.release)

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"ScopedDir({self.label}, {self.path}, {state})"


class WorkspaceManager:
    """Allocates job and upload-staging directories under one root."""

    def __init__(self, root: str | Path | None = None):
        if root is None:
            root = get_settings().work_dir_root
        self.root = Path(root) if root else None
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)

    def acquire(self, prefix: str = JOB_PREFIX, label: str = "job") -> ScopedDir:
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=self.root))
        logger.info(f"[WORKSPACE] Created {label} directory: {path}")
        return ScopedDir(path, label)

    def release(self, scoped: ScopedDir) -> None:
        scoped.release()

    @asynccontextmanager
    async def staging_scope(self) -> AsyncIterator[ScopedDir]:
        """Upload staging area, released when the block exits for any reason."""
        scoped = self.acquire(STAGING_PREFIX, "upload")
        try:
            yield scoped
        finally:
            await scoped.release_async()

    @asynccontextmanager
    async def job_scope(self) -> AsyncIterator[ScopedDir]:
        """Job working directory, released when the block exits for any reason.

        Use acquire() directly when the release has to outlive the block, as
        with streamed output.
        """
        scoped = self.acquire(JOB_PREFIX, "job")
        try:
            yield scoped
        finally:
            await scoped.release_async()
