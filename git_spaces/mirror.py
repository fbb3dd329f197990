"""The shared mirror clone each space borrows objects from."""

from __future__ import annotations

import json
import logging
import shutil
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from . import git
from .config import EffectiveConfig
from .exceptions import GitCommandError, MirrorFetchError, MirrorLockTimeout
from .fs import ensure_directory
from .locks import exclusive_lock, is_locked
from .models import MirrorHandle

logger = logging.getLogger(__name__)

STATE_FILE = "spaces-mirror.json"
LOCAL_REFSPECS = ("+refs/heads/*:refs/heads/*", "+refs/tags/*:refs/tags/*")


class MirrorManager:
    """Creates and refreshes the mirror for one repository.

    Cloning and fetching happen under an exclusive file lock scoped to the
    mirror, so concurrent processes never interleave writes to it. Reads
    (describing the mirror, cloning spaces from it) take no lock.
    """

    def __init__(self, config: EffectiveConfig) -> None:
        self.config = config
        self.path = config.mirror_path
        self.lock_path = config.mirror_lock_path

    @property
    def origin(self) -> str:
        return self.config.origin or str(self.config.repo_root)

    def exists(self) -> bool:
        return (self.path / "HEAD").is_file()

    def describe(self) -> MirrorHandle:
        state = self._read_state()
        return MirrorHandle(
            origin=self.origin,
            path=self.path,
            last_fetch=_parse_time(state.get("last_fetch")),
            fetching=is_locked(self.lock_path),
        )

    def ensure_fresh(self, *, no_fetch: bool = False) -> MirrorHandle:
        """Make sure the mirror exists and, unless ``no_fetch``, is up to date."""

        with self._locked():
            created = False
            if not self.exists():
                self._create()
                created = True
            error = None
            if not no_fetch or created:
                error = self._fetch()
        handle = self.describe()
        if error:
            return MirrorHandle(
                origin=handle.origin,
                path=handle.path,
                last_fetch=handle.last_fetch,
                fetching=handle.fetching,
                fetch_error=error,
            )
        return handle

    def force_update(self) -> MirrorHandle:
        return self.ensure_fresh(no_fetch=False)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        timeout = self.config.lock_timeout
        try:
            with exclusive_lock(self.lock_path, timeout=timeout):
                yield
        except TimeoutError as exc:
            raise MirrorLockTimeout(self.lock_path, timeout) from exc

    def _create(self) -> None:
        logger.info("Creating mirror: %s", self.path)
        ensure_directory(self.path.parent)
        if self.path.exists():
            # leftover from an interrupted clone
            shutil.rmtree(self.path)
        try:
            git.clone_mirror(self.config.repo_root, self.path)
        except GitCommandError as exc:
            shutil.rmtree(self.path, ignore_errors=True)
            raise MirrorFetchError(f"Unable to create mirror at {self.path}: {exc}", fatal=True, cause=exc) from exc
        self._write_state(origin=self.origin, created_at=_now())

    def _fetch(self) -> str | None:
        """Fetch origin and local refs. Returns an error message instead of raising."""

        errors: list[str] = []
        if self.config.origin:
            try:
                git.set_remote_url(self.path, self.config.origin)
                git.fetch(self.path, "origin", prune=True)
            except GitCommandError as exc:
                errors.append(str(exc))
        try:
            git.fetch(self.path, str(self.config.repo_root), *LOCAL_REFSPECS)
        except GitCommandError as exc:
            errors.append(str(exc))
        if errors:
            message = "\n".join(errors)
            logger.warning("Mirror fetch failed, using last fetched state of %s: %s", self.path, message)
            return message
        self._write_state(last_fetch=_now())
        return None

    def _read_state(self) -> dict[str, Any]:
        path = self.path / STATE_FILE
        if not path.is_file():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable mirror state file %s", path)
            return {}

    def _write_state(self, **updates: str) -> None:
        state = self._read_state()
        state.update(updates)
        (self.path / STATE_FILE).write_text(json.dumps(state, indent=2) + "\n", encoding="utf-8")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_time(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None
