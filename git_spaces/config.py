"""Resolve the effective settings from layered configuration sources.

Layers, lowest precedence first: built-in defaults, the repository's
``.spacesrc`` file, ``git config``, ``SPACES_*`` environment variables and
finally overrides passed on the command line. Each layer is an immutable
``PartialConfig``; they are folded left to right. A scalar key set in a
higher layer replaces the lower value, list keys concatenate in layer order.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shlex
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import urlparse

from . import git
from .copyrules import CopyRule, is_unsafe_pattern
from .exceptions import ConfigError, CopyPatternError, GitCommandError, ValidationError
from .models import Polarity

logger = logging.getLogger(__name__)

SPACESRC = ".spacesrc"
PATTERN_FILE_MODES = ("append", "replace")
HOOK_NAMES = ("postCreate", "preRemove", "postRemove")


@dataclass(frozen=True)
class ConfigKey:
    name: str
    field: str
    env: str
    multi: bool = False
    pattern: bool = False


KEYS: tuple[ConfigKey, ...] = (
    ConfigKey("spaces.clones.dir", "clones_dir", "SPACES_CLONES_DIR"),
    ConfigKey("spaces.clones.prefix", "clones_prefix", "SPACES_CLONES_PREFIX"),
    ConfigKey("spaces.mirrors.dir", "mirrors_dir", "SPACES_MIRRORS_DIR"),
    ConfigKey("spaces.mirrors.lockTimeout", "lock_timeout", "SPACES_MIRRORS_LOCK_TIMEOUT"),
    ConfigKey("spaces.defaultBranch", "default_branch", "SPACES_DEFAULT_BRANCH"),
    ConfigKey("spaces.copy.include", "copy_include", "SPACES_COPY_INCLUDE", multi=True, pattern=True),
    ConfigKey("spaces.copy.exclude", "copy_exclude", "SPACES_COPY_EXCLUDE", multi=True, pattern=True),
    ConfigKey("spaces.copy.includeDirs", "copy_include_dirs", "SPACES_COPY_INCLUDE_DIRS", multi=True, pattern=True),
    ConfigKey("spaces.copy.excludeDirs", "copy_exclude_dirs", "SPACES_COPY_EXCLUDE_DIRS", multi=True, pattern=True),
    ConfigKey("spaces.copy.patternFiles", "pattern_file_mode", "SPACES_COPY_PATTERN_FILES"),
    ConfigKey("spaces.hook.postCreate", "hook_post_create", "SPACES_HOOK_POST_CREATE", multi=True),
    ConfigKey("spaces.hook.preRemove", "hook_pre_remove", "SPACES_HOOK_PRE_REMOVE", multi=True),
    ConfigKey("spaces.hook.postRemove", "hook_post_remove", "SPACES_HOOK_POST_REMOVE", multi=True),
)
_KEYS_BY_NAME = {key.name.lower(): key for key in KEYS}
_HOOK_FIELDS = dict(zip(HOOK_NAMES, ("hook_post_create", "hook_pre_remove", "hook_post_remove")))


def lookup_key(name: str) -> ConfigKey:
    try:
        return _KEYS_BY_NAME[name.lower()]
    except KeyError:
        raise ConfigError(f"Unknown configuration key: {name}") from None


@dataclass(frozen=True)
class PartialConfig:
    """The keys one configuration source sets, as raw strings."""

    source: str
    clones_dir: str | None = None
    clones_prefix: str | None = None
    mirrors_dir: str | None = None
    lock_timeout: str | None = None
    default_branch: str | None = None
    pattern_file_mode: str | None = None
    copy_include: tuple[str, ...] = ()
    copy_exclude: tuple[str, ...] = ()
    copy_include_dirs: tuple[str, ...] = ()
    copy_exclude_dirs: tuple[str, ...] = ()
    hook_post_create: tuple[str, ...] = ()
    hook_pre_remove: tuple[str, ...] = ()
    hook_post_remove: tuple[str, ...] = ()

    @classmethod
    def from_pairs(cls, source: str, pairs: Iterable[tuple[str, str]]) -> "PartialConfig":
        values: dict[str, Any] = {}
        for raw_key, value in pairs:
            key = _KEYS_BY_NAME.get(raw_key.lower())
            if key is None:
                logger.debug("Ignoring unknown key %s from %s", raw_key, source)
                continue
            if key.multi:
                values[key.field] = (*values.get(key.field, ()), value)
            elif value != "":
                values[key.field] = value
        partial = cls(source=source, **values)
        partial.validate()
        return partial

    def validate(self) -> None:
        for key in KEYS:
            value = getattr(self, key.field)
            if key.pattern:
                for pattern in value:
                    if is_unsafe_pattern(pattern.strip()):
                        continue
                    try:
                        CopyRule.parse(pattern, Polarity.INCLUDE)
                    except CopyPatternError as exc:
                        raise ConfigError(f"{key.name} from {self.source}: {exc}") from exc
        if self.lock_timeout is not None:
            _parse_timeout(self.lock_timeout, self.source)
        if self.pattern_file_mode is not None and self.pattern_file_mode not in PATTERN_FILE_MODES:
            raise ConfigError(
                f"spaces.copy.patternFiles from {self.source} must be one of "
                f"{', '.join(PATTERN_FILE_MODES)}, got {self.pattern_file_mode!r}"
            )


def _parse_timeout(raw: str, source: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"spaces.mirrors.lockTimeout from {source} is not a number: {raw!r}") from None
    if value < 0:
        raise ConfigError(f"spaces.mirrors.lockTimeout from {source} cannot be negative")
    return value


@dataclass(frozen=True)
class EffectiveConfig:
    """Fully resolved settings for one command invocation."""

    repo_root: Path
    origin: str | None
    identity: str
    clones_dir: Path
    clones_prefix: str
    mirrors_dir: Path
    lock_timeout: float
    default_branch: str
    pattern_file_mode: str
    copy_include: tuple[str, ...]
    copy_exclude: tuple[str, ...]
    copy_include_dirs: tuple[str, ...]
    copy_exclude_dirs: tuple[str, ...]
    hook_post_create: tuple[str, ...]
    hook_pre_remove: tuple[str, ...]
    hook_post_remove: tuple[str, ...]
    sources: Mapping[str, str]

    @property
    def mirror_path(self) -> Path:
        return self.mirrors_dir / self.identity

    @property
    def mirror_lock_path(self) -> Path:
        return self.mirrors_dir / f"{self.identity}.lock"

    def hook_commands(self, hook: str) -> tuple[str, ...]:
        try:
            return getattr(self, _HOOK_FIELDS[hook])
        except KeyError:
            raise ValidationError(f"Unknown hook: {hook}") from None

    def display_value(self, key: ConfigKey) -> str:
        value = getattr(self, key.field)
        if isinstance(value, tuple):
            return "\n".join(value)
        return str(value)


def defaults_layer() -> PartialConfig:
    return PartialConfig(
        source="default",
        clones_prefix="",
        lock_timeout="300",
        default_branch="auto",
        pattern_file_mode="append",
    )


def spacesrc_layer(repo_root: Path) -> PartialConfig:
    path = repo_root / SPACESRC
    if not path.is_file():
        return PartialConfig(source=SPACESRC)
    try:
        pairs = git.config_get_regexp(r"^spaces\.", cwd=repo_root, file=path)
    except GitCommandError as exc:
        raise ConfigError(f"Unable to parse {path}: {exc.stderr.strip() or exc}") from exc
    return PartialConfig.from_pairs(SPACESRC, pairs)


def git_layer(repo_root: Path) -> PartialConfig:
    try:
        pairs = git.config_get_regexp(r"^spaces\.", cwd=repo_root)
    except GitCommandError as exc:
        raise ConfigError(f"Unable to read git config: {exc.stderr.strip() or exc}") from exc
    return PartialConfig.from_pairs("git", pairs)


def env_layer(environ: Mapping[str, str]) -> PartialConfig:
    pairs: list[tuple[str, str]] = []
    for key in KEYS:
        raw = environ.get(key.env)
        if not raw:
            continue
        if key.multi:
            try:
                items = shlex.split(raw)
            except ValueError as exc:
                raise ConfigError(f"Unable to parse {key.env}: {exc}") from exc
            pairs.extend((key.name, item) for item in items)
        else:
            pairs.append((key.name, raw))
    return PartialConfig.from_pairs("env", pairs)


def cli_layer(overrides: Mapping[str, str | Sequence[str] | None]) -> PartialConfig:
    pairs: list[tuple[str, str]] = []
    for name, value in overrides.items():
        if value is None:
            continue
        key = lookup_key(name)
        if isinstance(value, str):
            pairs.append((key.name, value))
        else:
            pairs.extend((key.name, item) for item in value)
    return PartialConfig.from_pairs("cli", pairs)


def fold(layers: Sequence[PartialConfig]) -> tuple[dict[str, Any], dict[str, str]]:
    """Merge ``layers`` left to right, returning values and their sources."""

    merged: dict[str, Any] = {}
    sources: dict[str, list[str]] = {}
    for layer in layers:
        for key in KEYS:
            value = getattr(layer, key.field)
            if key.multi:
                if not value:
                    continue
                merged[key.field] = (*merged.get(key.field, ()), *value)
                sources.setdefault(key.name, []).append(layer.source)
            elif value is not None:
                merged[key.field] = value
                sources[key.name] = [layer.source]
    return merged, {name: ", ".join(dict.fromkeys(labels)) for name, labels in sources.items()}


def resolve(
    repo_root: Path,
    cli_overrides: Mapping[str, str | Sequence[str] | None] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> EffectiveConfig:
    layers = [
        defaults_layer(),
        spacesrc_layer(repo_root),
        git_layer(repo_root),
        env_layer(os.environ if environ is None else environ),
        cli_layer(cli_overrides or {}),
    ]
    return build_effective(repo_root, layers)


def build_effective(repo_root: Path, layers: Sequence[PartialConfig]) -> EffectiveConfig:
    merged, sources = fold(layers)
    origin = git.remote_url(repo_root)
    clones_dir = _resolve_dir(merged.get("clones_dir"), repo_root)
    mirrors_dir = _resolve_dir(merged.get("mirrors_dir"), repo_root)
    default_branch = merged.get("default_branch", "auto")
    if default_branch == "auto":
        default_branch = git.default_branch(repo_root)
    list_fields = {
        f.name: merged.get(f.name, ())
        for f in fields(PartialConfig)
        if f.name.startswith(("copy_", "hook_"))
    }
    return EffectiveConfig(
        repo_root=repo_root,
        origin=origin,
        identity=repo_identity(repo_root, origin),
        clones_dir=clones_dir or repo_root.parent / f"{repo_root.name}-clones",
        clones_prefix=merged.get("clones_prefix", ""),
        mirrors_dir=mirrors_dir or default_mirrors_root(),
        lock_timeout=_parse_timeout(merged.get("lock_timeout", "300"), sources.get("spaces.mirrors.lockTimeout", "default")),
        default_branch=default_branch,
        pattern_file_mode=merged.get("pattern_file_mode", "append"),
        sources=sources,
        **list_fields,
    )


def _resolve_dir(raw: str | None, repo_root: Path) -> Path | None:
    if not raw:
        return None
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = repo_root / path
    return path


def default_mirrors_root() -> Path:
    cache = os.environ.get("XDG_CACHE_HOME")
    base = Path(cache).expanduser() if cache else Path.home() / ".cache"
    return base / "spaces" / "mirrors"


def resolve_repo_path(repo_override: Path | None) -> Path:
    if repo_override:
        candidate = repo_override.expanduser()
        if not candidate.exists():
            raise ValidationError(f"Repository override path does not exist: {candidate}")
        cwd = candidate
    else:
        cwd = Path.cwd()
    try:
        return git.rev_parse_toplevel(cwd)
    except GitCommandError as exc:
        raise ValidationError("Current directory is not inside a git repository.") from exc


def parse_remote(remote: str) -> tuple[str, str, str] | None:
    """Split a hosted remote URL into ``(host, owner, name)``."""

    if remote.startswith("git@"):
        host_token = remote.split("@", 1)[1]
        if ":" not in host_token:
            return None
        host, path = host_token.split(":", 1)
    else:
        parsed = urlparse(remote)
        if parsed.scheme not in ("http", "https", "ssh", "git"):
            return None
        host = parsed.hostname or ""
        path = parsed.path
    parts = [part for part in path.strip("/").split("/") if part]
    if not host or len(parts) < 2:
        return None
    owner, name = parts[-2], parts[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return host, owner, name


def repo_identity(repo_root: Path, origin: str | None) -> str:
    """Stable per-origin key used to name the mirror directory."""

    parsed = parse_remote(origin) if origin else None
    if parsed:
        return "/".join(parsed)
    key = origin or str(repo_root)
    name = Path(key.rstrip("/")).name
    if name.endswith(".git"):
        name = name[: -len(".git")]
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"local/{name or 'repo'}-{digest}"
