"""High-level orchestration for space operations."""

from __future__ import annotations

import json
import logging
import shutil
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Sequence

from . import git, github
from .config import EffectiveConfig
from .copyrules import build_rules, has_include, load_pattern_files, materialize, plan
from .exceptions import (
    FileOperationError,
    HookError,
    SpaceAlreadyExists,
    SpaceBusy,
    SpaceNotFound,
    SpacesError,
    ValidationError,
)
from .fs import ensure_directory, is_empty_dir, sanitize_space_name, walk_files
from .hooks import HookRunner
from .locks import exclusive_lock
from .mirror import MirrorManager
from .models import CopyReport, HookDisposition, Space, SpaceResult, SpaceState

logger = logging.getLogger(__name__)

LOCKS_DIRNAME = ".spaces-locks"
METADATA_FILE = "spaces.json"
MAIN_ID = "1"


@dataclass
class SpaceManager:
    config: EffectiveConfig
    mirrors: MirrorManager = field(init=False)
    hooks: HookRunner = field(init=False)

    def __post_init__(self) -> None:
        self.mirrors = MirrorManager(self.config)
        self.hooks = HookRunner(self.config)

    def space_path(self, name: str) -> Path:
        return self.config.clones_dir / f"{self.config.clones_prefix}{sanitize_space_name(name)}"

    def new(
        self,
        name: str,
        *,
        branch: str | None = None,
        from_ref: str | None = None,
        no_fetch: bool = False,
        no_copy: bool = False,
    ) -> SpaceResult:
        """Create a space: refresh the mirror, clone, copy files, run postCreate.

        A failing postCreate hook is reported on the result; the space stays.
        """

        try:
            return self._new(name, branch=branch, from_ref=from_ref, no_fetch=no_fetch, no_copy=no_copy)
        except OSError as exc:
            _transition(name, SpaceState.FAILED)
            raise _file_error(exc, self.space_path(name)).annotate("new", name) from exc
        except SpacesError as exc:
            exc.annotate("new", name)
            _transition(name, SpaceState.FAILED)
            raise

    def _new(
        self,
        name: str,
        *,
        branch: str | None,
        from_ref: str | None,
        no_fetch: bool,
        no_copy: bool,
    ) -> SpaceResult:
        if from_ref and not branch:
            raise ValidationError("--from requires --branch")
        path = self.space_path(name)
        if path.exists():
            raise SpaceAlreadyExists(path)
        _transition(name, SpaceState.REQUESTED)
        with self._space_lock(name, path):
            mirror = self.mirrors.ensure_fresh(no_fetch=no_fetch)
            _transition(name, SpaceState.MIRROR_READY)
            base_ref = from_ref or self.config.default_branch
            if branch is None or not git.branch_exists(mirror.path, branch):
                _require_ref(mirror.path, base_ref)
            ensure_directory(self.config.clones_dir)
            try:
                path.mkdir()
            except FileExistsError:
                raise SpaceAlreadyExists(path) from None

            git.clone_with_reference(mirror.path, mirror.path, path)
            git.set_remote_url(path, self.mirrors.origin)
            self._checkout(path, mirror.path, branch, base_ref)
            space = Space(
                name=name,
                path=path,
                branch=git.current_branch(path),
                base_ref=base_ref,
                created_at=datetime.now(timezone.utc),
                mirror=mirror.path,
            )
            self._write_metadata(space)
            _transition(name, SpaceState.MATERIALIZED)
            result = SpaceResult(space=space, state=SpaceState.MATERIALIZED, mirror=mirror)

            if not no_copy:
                result.copied = self._copy_into(space)
            hook = self.hooks.run("postCreate", space)
            result.hooks.append(hook)
            if not hook.ok:
                logger.warning("postCreate hook failed; space %s was kept at %s", name, path)
            result.state = SpaceState.CREATED
            _transition(name, SpaceState.CREATED)
            return result

    def _checkout(self, path: Path, mirror: Path, branch: str | None, base_ref: str) -> None:
        if branch is None:
            if git.branch_exists(mirror, base_ref):
                git.checkout_new_branch(path, base_ref, f"origin/{base_ref}", reset=True)
            else:
                git.checkout_detached(path, base_ref)
            return
        if git.branch_exists(mirror, branch):
            git.checkout_new_branch(path, branch, f"origin/{branch}", reset=True)
            return
        start = f"origin/{base_ref}" if git.branch_exists(mirror, base_ref) else base_ref
        git.checkout_new_branch(path, branch, start)

    def _copy_into(self, space: Space) -> list[str]:
        root = self.config.repo_root
        rules = build_rules(self.config, pattern_file_lines=load_pattern_files(root))
        if not has_include(rules):
            return []
        candidates = self._exclude_clones(git.list_untracked(root))
        selected = plan(candidates, rules)
        logger.info("Copying %d file(s) into %s", len(selected), space.path)
        return materialize(root, space.path, selected)

    def _exclude_clones(self, candidates: Sequence[str]) -> list[str]:
        """Drop paths under the clones directory when it lives inside the repo."""

        try:
            nested = self.config.clones_dir.resolve().relative_to(self.config.repo_root.resolve()).as_posix()
        except ValueError:
            return list(candidates)
        return [path for path in candidates if path != nested and not path.startswith(f"{nested}/")]

    def rm(self, name: str, *, force: bool = False) -> SpaceResult:
        """Remove a space between its preRemove and postRemove hooks.

        A failing preRemove hook aborts with ``HookError`` before anything is
        deleted unless ``force`` is set.
        """

        try:
            return self._rm(name, force=force)
        except OSError as exc:
            _transition(name, SpaceState.FAILED)
            raise _file_error(exc, self.space_path(name)).annotate("rm", name) from exc
        except SpacesError as exc:
            exc.annotate("rm", name)
            _transition(name, SpaceState.FAILED)
            raise

    def _rm(self, name: str, *, force: bool) -> SpaceResult:
        _transition(name, SpaceState.REQUESTED)
        space = self.get(name)
        self._check_removable(space.path)
        with self._space_lock(name, space.path):
            if not space.path.is_dir():
                raise SpaceNotFound(name, space.path)
            pre = self.hooks.run("preRemove", space)
            result = SpaceResult(space=space, state=SpaceState.PRE_HOOK_RAN, hooks=[pre])
            _transition(name, SpaceState.PRE_HOOK_RAN)
            if pre.disposition is HookDisposition.ABORT:
                if not force:
                    raise HookError("preRemove", len(pre.failures))
                logger.warning("preRemove hook failed; continuing due to --force")

            try:
                shutil.rmtree(space.path)
            except OSError as exc:
                raise FileOperationError(space.path, f"cannot remove {space.path}: {exc.strerror or exc}") from exc
            self._lock_path(space.path).unlink(missing_ok=True)
            result.state = SpaceState.REMOVED
            _transition(name, SpaceState.REMOVED)
            logger.info("Removed space: %s", space.path)

            post = self.hooks.run("postRemove", space, cwd=self.config.repo_root)
            result.hooks.append(post)
            result.state = SpaceState.POST_HOOK_RAN
            _transition(name, SpaceState.POST_HOOK_RAN)
            return result

    def _check_removable(self, path: Path) -> None:
        clones_dir = self.config.clones_dir.resolve()
        resolved = path.resolve()
        if resolved == clones_dir or clones_dir not in resolved.parents:
            raise ValidationError(f"Refusing to remove path outside clones dir: {path}")
        if not ((path / ".git").exists() or is_empty_dir(path)):
            raise ValidationError(f"Refusing to remove non-git directory: {path}")

    def get(self, name: str) -> Space:
        path = self.space_path(name)
        if not path.is_dir():
            raise SpaceNotFound(name, path)
        return self._load_space(path)

    def list_spaces(self) -> list[Space]:
        root = self.config.clones_dir
        if not root.is_dir():
            return []
        spaces = [
            self._load_space(child)
            for child in root.iterdir()
            if child.is_dir() and child.name != LOCKS_DIRNAME and child.name.startswith(self.config.clones_prefix)
        ]
        return sorted(spaces, key=lambda space: space.name)

    def target_path(self, identifier: str) -> Path:
        """Resolve a space name, or ``1`` for the main repository, to a path."""

        if identifier == MAIN_ID:
            return self.config.repo_root
        return self.get(identifier).path

    def status(self, path: Path) -> str:
        if not path.exists():
            return "missing"
        if not (path / ".git").exists():
            return "incomplete"
        if git.current_branch(path) is None:
            return "detached"
        if git.is_dirty(path):
            return "dirty"
        return "ok"

    def copy(
        self,
        targets: Sequence[str],
        *,
        patterns: Sequence[str] | None = None,
        source: str | None = None,
        all_spaces: bool = False,
        dry_run: bool = False,
    ) -> list[CopyReport]:
        """Copy files matching the copy rules from ``source`` into other spaces."""

        try:
            return self._copy(targets, patterns=patterns, source=source, all_spaces=all_spaces, dry_run=dry_run)
        except OSError as exc:
            raise _file_error(exc, self.config.clones_dir).annotate("copy", ", ".join(targets) or None) from exc
        except SpacesError as exc:
            exc.annotate("copy", ", ".join(targets) or None)
            raise

    def _copy(
        self,
        targets: Sequence[str],
        *,
        patterns: Sequence[str] | None,
        source: str | None,
        all_spaces: bool,
        dry_run: bool,
    ) -> list[CopyReport]:
        source_path = self.target_path(source) if source else self.config.repo_root
        explicit = list(patterns) if patterns else None
        pattern_lines = () if explicit else load_pattern_files(self.config.repo_root)
        rules = build_rules(self.config, pattern_file_lines=pattern_lines, patterns=explicit)
        if not has_include(rules):
            raise ValidationError("No patterns specified. Use '-- <pattern>...' or configure spaces.copy.include")
        if all_spaces:
            spaces = self.list_spaces()
        elif targets:
            spaces = [self.get(name) for name in targets]
        else:
            raise ValidationError("Name at least one target space or pass --all.")

        selected = plan(self._exclude_clones(walk_files(source_path)), rules)
        reports: list[CopyReport] = []
        for space in spaces:
            if space.path.resolve() == source_path.resolve():
                continue
            copied = materialize(source_path, space.path, selected, dry_run=dry_run)
            reports.append(CopyReport(target=space, paths=tuple(copied), dry_run=dry_run))
        return reports

    def clean(self, *, dry_run: bool = False) -> list[Path]:
        """Remove empty directories left behind in the clones directory."""

        removed: list[Path] = []
        for space in self.list_spaces():
            if is_empty_dir(space.path):
                if not dry_run:
                    space.path.rmdir()
                removed.append(space.path)
        return removed

    def merged_spaces(self) -> list[Space]:
        """Spaces whose branch belongs to a merged GitHub pull request.

        Detached spaces, spaces on the main branch and dirty spaces are never
        returned. Requires the GitHub CLI.
        """

        if not github.gh_available():
            raise ValidationError("GitHub CLI (gh) not found on PATH")
        main_branches = {self.config.default_branch, git.current_branch(self.config.repo_root)}
        merged: list[Space] = []
        for space in self.list_spaces():
            if space.branch is None:
                logger.info("Skipping detached space %s", space.name)
                continue
            if space.branch in main_branches:
                continue
            if git.is_dirty(space.path):
                logger.info("Skipping dirty space %s", space.name)
                continue
            if github.pr_state(space.path, space.branch) == "MERGED":
                merged.append(space)
        return merged

    def _lock_path(self, path: Path) -> Path:
        return self.config.clones_dir / LOCKS_DIRNAME / f"{path.name}.lock"

    @contextmanager
    def _space_lock(self, name: str, path: Path) -> Iterator[None]:
        lock_path = self._lock_path(path)
        with ExitStack() as stack:
            try:
                stack.enter_context(exclusive_lock(lock_path, timeout=0))
            except TimeoutError as exc:
                raise SpaceBusy(name) from exc
            yield

    def _write_metadata(self, space: Space) -> None:
        payload = {
            "name": space.name,
            "branch": space.branch,
            "base_ref": space.base_ref,
            "created_at": space.created_at.isoformat() if space.created_at else None,
            "mirror": str(space.mirror) if space.mirror else None,
        }
        (space.path / ".git" / METADATA_FILE).write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    def _load_space(self, path: Path) -> Space:
        metadata: dict = {}
        metadata_path = path / ".git" / METADATA_FILE
        if metadata_path.is_file():
            try:
                metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable space metadata %s", metadata_path)
        prefix = self.config.clones_prefix
        fallback_name = path.name[len(prefix) :] if prefix and path.name.startswith(prefix) else path.name
        created = metadata.get("created_at")
        mirror = metadata.get("mirror")
        return Space(
            name=metadata.get("name") or fallback_name,
            path=path,
            branch=git.current_branch(path) if (path / ".git").exists() else None,
            base_ref=metadata.get("base_ref"),
            created_at=datetime.fromisoformat(created) if created else None,
            mirror=Path(mirror) if mirror else None,
        )


def _transition(name: str, state: SpaceState) -> None:
    logger.debug("space %s -> %s", name, state.value)


def _require_ref(mirror: Path, ref: str) -> None:
    candidates = [ref]
    if ref.startswith("origin/"):
        candidates.append(ref[len("origin/") :])
    if not any(git.resolve_commit(mirror, candidate) for candidate in candidates):
        raise ValidationError(f"Base ref not found: {ref}")


def _file_error(exc: OSError, fallback: Path) -> FileOperationError:
    path = Path(exc.filename) if exc.filename else fallback
    return FileOperationError(path, f"{exc.strerror or exc}: {path}")
