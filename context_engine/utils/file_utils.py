"""Async file helpers used by the archive store and the health log.

Writes are atomic (sibling temp file, then rename) so a crash never leaves a
half-written archive. Writers of one archive id are serialized with an
inter-process file lock.
"""

import asyncio
from pathlib import Path

import aiofiles
import aiofiles.os
from filelock import FileLock, Timeout as FileLockTimeout

from .logger import get_logger

logger = get_logger(__name__)


class LockAcquireTimeout(Exception):
    """The archive lock was not acquired within its timeout."""
    pass


async def async_read_text(file_path: str | Path, encoding: str = "utf-8") -> str:
    """Read a file without newline translation.

    Raises:
        FileNotFoundError: If the file is missing
    """
    async with aiofiles.open(Path(file_path), mode="r", encoding=encoding, newline="") as f:
        content = await f.read()
    logger.debug("File read", extra={"path": str(file_path), "size": len(content)})
    return content


async def async_write_text(file_path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """Atomically replace a file's content, creating parent directories.

    Line endings are written as given so stored fingerprints stay valid.
    """
    target = Path(file_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    staging = target.with_name(f".{target.name}.partial")

    try:
        async with aiofiles.open(staging, mode="w", encoding=encoding, newline="") as f:
            await f.write(content)
        await aiofiles.os.replace(staging, target)
    except BaseException:
        if await aiofiles.os.path.exists(staging):
            await aiofiles.os.remove(staging)
        raise

    logger.debug("File written", extra={"path": str(target), "size": len(content)})


async def async_remove(file_path: str | Path) -> int:
    """Remove a file and return the number of bytes freed (0 if missing)."""
    path = Path(file_path)
    try:
        size = (await aiofiles.os.stat(path)).st_size
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return 0
    return size


class AsyncFileLock:
    """`async with` guard around a filelock lock file.

    Acquisition waits in a worker thread so other coroutines keep running
    while a second writer of the same id waits for the first one.
    """

    def __init__(self, lock_path: str | Path, timeout: float = 10.0) -> None:
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        # Acquired in a worker thread and released on the loop thread
        self._lock = FileLock(str(self.lock_path), thread_local=False)

    async def __aenter__(self) -> "AsyncFileLock":
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(self._lock.acquire, timeout=self.timeout)
        except FileLockTimeout as e:
            raise LockAcquireTimeout(
                f"Archive lock {self.lock_path} not acquired within {self.timeout}s"
            ) from e
        logger.debug("Archive lock acquired", extra={"lock_path": str(self.lock_path)})
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self._lock.release()
        logger.debug("Archive lock released", extra={"lock_path": str(self.lock_path)})
