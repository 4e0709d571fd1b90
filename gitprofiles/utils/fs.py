"""Crash-safe file primitives shared by the fragment store and cache.

`atomic_write_text` writes to a temporary file in the target directory,
flushes and fsyncs it, then renames it over the target, so readers see
either the old or the new complete content. `file_lock` serialises writers
across processes with ``fcntl.flock`` where available and an
``O_CREAT | O_EXCL`` lock file elsewhere.
"""

import logging
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

logger = logging.getLogger("gitprofiles.utils.fs")

try:
    import fcntl

    _HAS_FCNTL = True
except ImportError:
    fcntl = None
    _HAS_FCNTL = False


def fsync_directory(directory: Path) -> None:
    """Flush directory metadata so a completed rename survives power loss.

    No-op on platforms that cannot open directories (Windows).
    """
    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError as e:
        logger.debug("fsync of directory %s failed: %s", directory, e)
    finally:
        os.close(fd)


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """Atomically replace ``path`` with ``text``.

    Args:
        path: Target file.
        text: Complete new content.
        encoding: Text encoding.

    Raises:
        OSError: If any step fails; the target is left untouched and the
            temporary file is removed.
    """
    directory = path.parent
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="\n") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    fsync_directory(directory)
    logger.debug("Atomically wrote %s (%d chars)", path, len(text))


@contextmanager
def file_lock(
    lock_path: Path, timeout: float = 10.0, poll_interval: float = 0.05
) -> Generator[None, None, None]:
    """Hold an exclusive advisory lock on ``lock_path``.

    Args:
        lock_path: Lock file location; created if missing.
        timeout: Maximum wait when using the lock-file fallback.
        poll_interval: Sleep between fallback attempts.

    Raises:
        TimeoutError: If the fallback lock cannot be acquired in time.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    if _HAS_FCNTL:
        fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
        return

    start = time.monotonic()
    fd_fallback: Optional[int] = None
    while True:
        try:
            fd_fallback = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_RDWR)
            break
        except FileExistsError as lock_err:
            if time.monotonic() - start > timeout:
                raise TimeoutError(f"Timeout acquiring lock: {lock_path}") from lock_err
            time.sleep(poll_interval)
    try:
        yield
    finally:
        os.close(fd_fallback)
        try:
            os.unlink(lock_path)
        except FileNotFoundError:
            pass
