"""Dataclasses shared across modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class Polarity(str, Enum):
    """Whether a copy rule selects or drops the paths it matches."""

    INCLUDE = "include"
    EXCLUDE = "exclude"


class RuleScope(str, Enum):
    """What a copy rule pattern is matched against."""

    FILE = "file"
    DIRECTORY = "directory"


class SpaceState(str, Enum):
    """Lifecycle states a space passes through during ``new`` and ``rm``."""

    REQUESTED = "requested"
    MIRROR_READY = "mirror-ready"
    MATERIALIZED = "materialized"
    CREATED = "created"
    PRE_HOOK_RAN = "pre-hook-ran"
    REMOVED = "removed"
    POST_HOOK_RAN = "post-hook-ran"
    FAILED = "failed"


class HookDisposition(str, Enum):
    """How the caller must treat the outcome of a lifecycle hook."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORT = "abort"


@dataclass(frozen=True)
class MirrorHandle:
    """The shared mirror clone for one origin, as last observed."""

    origin: str
    path: Path
    last_fetch: datetime | None
    fetching: bool = False
    fetch_error: str | None = None

    @property
    def present(self) -> bool:
        return self.path.is_dir()


@dataclass(frozen=True)
class Space:
    """A named working directory cloned against the mirror."""

    name: str
    path: Path
    branch: str | None
    base_ref: str | None = None
    created_at: datetime | None = None
    mirror: Path | None = None

    @property
    def dirname(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class HookFailure:
    command: str
    returncode: int


@dataclass(frozen=True)
class HookResult:
    """Outcome of running every command configured for one hook."""

    hook: str
    disposition: HookDisposition
    commands_run: int = 0
    failures: tuple[HookFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return self.disposition in (HookDisposition.SUCCESS, HookDisposition.SKIPPED)


@dataclass
class SpaceResult:
    """What a ``new`` or ``rm`` call did, including non-fatal problems."""

    space: Space
    state: SpaceState
    hooks: list[HookResult] = field(default_factory=list)
    copied: list[str] = field(default_factory=list)
    mirror: MirrorHandle | None = None

    @property
    def hook_failed(self) -> bool:
        return any(not result.ok for result in self.hooks)


@dataclass(frozen=True)
class CopyReport:
    """Files selected for one copy target."""

    target: Space
    paths: tuple[str, ...]
    dry_run: bool = False
