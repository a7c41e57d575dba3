"""Shared helpers: run deadline and replace-on-write file output."""

import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional, Union

from provision.errors import DeadlineExceeded, FilesystemError

logger = logging.getLogger(__name__)


class Deadline:
    """Wall-clock budget for a whole provisioning run.

    A Deadline created with ``seconds=None`` never expires; timeouts taken
    from it fall back to the per-request cap.
    """

    def __init__(self, seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self.clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def timeout(self, cap: Optional[float], operation: str) -> Optional[float]:
        """Timeout for the next blocking call.

        Args:
            cap: Per-call timeout (None means no per-call limit)
            operation: Description used in the error message

        Returns:
            min(cap, remaining), or None if both are unbounded

        Raises:
            DeadlineExceeded: If the deadline has already passed
        """
        remaining = self.remaining()
        if remaining is None:
            return cap
        if remaining <= 0:
            raise DeadlineExceeded(f"Deadline of {self.seconds}s exceeded before {operation}")
        if cap is None:
            return remaining
        return min(cap, remaining)


def remove_if_exists(path: Path) -> None:
    """Remove a file, ignoring a missing one."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def replace_file(path: Path, content: Union[str, bytes], mode: int = 0o644) -> Path:
    """Remove any existing file at path and create it fresh with content.

    The file is created with ``mode`` from the start, so secrets are never
    briefly world-readable.

    Raises:
        FilesystemError: On any OS-level failure
    """
    data = content.encode("utf-8") if isinstance(content, str) else content
    try:
        remove_if_exists(path)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        # umask may have stripped bits from the requested mode
        os.chmod(path, mode)
    except OSError as e:
        raise FilesystemError(f"Could not write {path}: {e}") from e

    logger.debug(f"Wrote {path} ({len(data)} bytes)")
    return path
