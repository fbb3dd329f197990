"""Selective file copy: ordered include/exclude rules with last-match-wins.

Rules are evaluated per path in declared order and the last rule that
matches decides. File-scoped rules match the path itself, directory-scoped
rules match any directory above it. A path no rule matches is copied only
when the rule set holds no include rule at all.

Each pattern is a gitignore-style glob compiled with ``pathspec``, so a
pattern without a slash matches at any depth. A leading ``!`` re-includes
and a trailing ``/`` makes the rule directory-scoped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Iterable, Sequence

import pathspec

from .exceptions import CopyPatternError, FileOperationError
from .fs import copy_file
from .models import Polarity, RuleScope

if TYPE_CHECKING:
    from .config import EffectiveConfig

logger = logging.getLogger(__name__)

PATTERN_FILES = (".worktreeinclude", ".spacesinclude")


@dataclass(frozen=True)
class CopyRule:
    pattern: str
    polarity: Polarity
    scope: RuleScope
    spec: pathspec.PathSpec = field(compare=False, repr=False)

    @classmethod
    def parse(cls, raw: str, polarity: Polarity, scope: RuleScope = RuleScope.FILE) -> "CopyRule":
        text = raw.strip()
        if text.startswith("!"):
            polarity = Polarity.INCLUDE
            text = text[1:]
        if text.endswith("/"):
            scope = RuleScope.DIRECTORY
            text = text.rstrip("/")
        if text.startswith("./"):
            text = text[2:]
        if not text:
            raise CopyPatternError(raw, "pattern is empty")
        return cls(pattern=text, polarity=polarity, scope=scope, spec=compile_pattern(text))

    def matches(self, path: str) -> bool:
        if self.scope is RuleScope.FILE:
            return self.spec.match_file(path)
        return any(self.spec.match_file(parent) for parent in _parent_dirs(path))


def compile_pattern(pattern: str) -> pathspec.PathSpec:
    try:
        spec = pathspec.PathSpec.from_lines("gitwildmatch", [pattern])
    except ValueError as exc:
        raise CopyPatternError(pattern, str(exc)) from exc
    # comments and a bare "/" compile to patterns that never match
    if not spec.patterns or spec.patterns[0].include is None:
        raise CopyPatternError(pattern, "pattern matches nothing")
    return spec


def _parent_dirs(path: str) -> list[str]:
    segments = path.split("/")[:-1]
    return ["/".join(segments[: depth + 1]) for depth in range(len(segments))]


def is_unsafe_pattern(pattern: str) -> bool:
    text = pattern.lstrip("!")
    return (
        text.startswith("/")
        or text == ".."
        or text.startswith("../")
        or "/../" in text
        or text.endswith("/..")
    )


def normalize_path(path: str | PurePosixPath) -> str:
    text = PurePosixPath(path).as_posix()
    return text[2:] if text.startswith("./") else text


def plan(candidates: Iterable[str], rules: Sequence[CopyRule]) -> set[str]:
    """Return the subset of ``candidates`` the rules select."""

    rules = tuple(rules)
    default = not any(rule.polarity is Polarity.INCLUDE for rule in rules)
    selected: set[str] = set()
    for candidate in candidates:
        path = normalize_path(candidate)
        decision = default
        for rule in rules:
            if rule.matches(path):
                decision = rule.polarity is Polarity.INCLUDE
        if decision:
            selected.add(path)
    return selected


def parse_rules(patterns: Iterable[str], polarity: Polarity, scope: RuleScope = RuleScope.FILE) -> list[CopyRule]:
    rules: list[CopyRule] = []
    for raw in patterns:
        if is_unsafe_pattern(raw.strip()):
            logger.warning("Skipping unsafe copy pattern: %s", raw)
            continue
        rules.append(CopyRule.parse(raw, polarity, scope))
    return rules


def read_pattern_file(path: Path) -> list[str]:
    if not path.is_file():
        return []
    lines = []
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        lines.append(stripped)
    return lines


def load_pattern_files(root: Path) -> list[str]:
    lines: list[str] = []
    for name in PATTERN_FILES:
        lines.extend(read_pattern_file(root / name))
    return lines


def build_rules(
    config: "EffectiveConfig",
    *,
    pattern_file_lines: Sequence[str] = (),
    patterns: Sequence[str] | None = None,
) -> list[CopyRule]:
    """Assemble the ordered rule list for one copy invocation.

    Configured includes come first, then directory excludes, then file
    excludes, then pattern file lines. A `!` file exclude can therefore
    re-include a path under an excluded directory. Explicit ``patterns``
    replace the configured includes and the pattern files; configured
    excludes always apply.
    """

    if patterns is not None:
        includes: Sequence[str] = patterns
        include_dirs: Sequence[str] = ()
        file_rules: list[CopyRule] = []
    else:
        includes = config.copy_include
        include_dirs = config.copy_include_dirs
        file_rules = parse_rules(pattern_file_lines, Polarity.INCLUDE)
        if file_rules and config.pattern_file_mode == "replace":
            includes, include_dirs = (), ()
    return [
        *parse_rules(includes, Polarity.INCLUDE),
        *parse_rules(include_dirs, Polarity.INCLUDE, RuleScope.DIRECTORY),
        *parse_rules(config.copy_exclude_dirs, Polarity.EXCLUDE, RuleScope.DIRECTORY),
        *parse_rules(config.copy_exclude, Polarity.EXCLUDE),
        *file_rules,
    ]


def has_include(rules: Iterable[CopyRule]) -> bool:
    return any(rule.polarity is Polarity.INCLUDE for rule in rules)


def materialize(source_root: Path, target_root: Path, paths: Iterable[str], *, dry_run: bool = False) -> list[str]:
    """Copy the planned ``paths`` from ``source_root`` into ``target_root``."""

    copied: list[str] = []
    for rel in sorted(paths):
        source = source_root / rel
        if not (source.is_file() or source.is_symlink()):
            continue
        if dry_run:
            logger.info("[dry-run] Would copy %s", rel)
        else:
            target = target_root / rel
            try:
                copy_file(source, target)
            except OSError as exc:
                raise FileOperationError(target, f"cannot copy {rel}: {exc.strerror or exc}") from exc
            logger.info("Copied %s", rel)
        copied.append(rel)
    return copied
