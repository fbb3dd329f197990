"""Cross-process exclusive file locks."""

from __future__ import annotations

import fcntl
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

POLL_INTERVAL = 0.1


@contextmanager
def exclusive_lock(path: Path, *, timeout: float, poll_interval: float = POLL_INTERVAL) -> Iterator[None]:
    """Hold an ``flock`` on ``path`` for the duration of the block.

    Raises ``TimeoutError`` if the lock is still held elsewhere after
    ``timeout`` seconds. A timeout of zero tries exactly once.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a") as handle:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise TimeoutError(f"lock {path} held for more than {timeout:g}s") from None
                time.sleep(poll_interval)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def is_locked(path: Path) -> bool:
    """Probe whether another holder currently owns the lock at ``path``."""

    if not path.exists():
        return False
    with path.open("a") as handle:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        return False
