"""Thin wrappers around git CLI commands."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Iterable

from .exceptions import GitCommandError

logger = logging.getLogger(__name__)


def run_git(
    args: Iterable[str],
    *,
    cwd: Path | None = None,
    raise_on_error: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a git command and optionally raise on failure."""

    cmd = ["git", *args]
    logger.debug("running %s (cwd=%s)", " ".join(cmd), cwd)
    proc = subprocess.run(
        cmd,
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        check=False,
    )
    if raise_on_error and proc.returncode != 0:
        raise GitCommandError(cmd, proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
    return proc


def git_stdout_opt(args: Iterable[str], *, cwd: Path | None = None) -> str | None:
    """Return trimmed stdout, or ``None`` when git fails or prints nothing."""

    proc = run_git(args, cwd=cwd, raise_on_error=False)
    if proc.returncode != 0:
        return None
    return proc.stdout.strip() or None


def rev_parse_toplevel(path: Path) -> Path:
    proc = run_git(["rev-parse", "--show-toplevel"], cwd=path)
    return Path(proc.stdout.strip())


def remote_url(path: Path, remote: str = "origin") -> str | None:
    return git_stdout_opt(["remote", "get-url", remote], cwd=path)


def ref_exists(path: Path, ref: str) -> bool:
    proc = run_git(["show-ref", "--verify", "--quiet", ref], cwd=path, raise_on_error=False)
    return proc.returncode == 0


def branch_exists(path: Path, branch: str) -> bool:
    return ref_exists(path, f"refs/heads/{branch}")


def default_branch(path: Path) -> str:
    origin_head = git_stdout_opt(["symbolic-ref", "--quiet", "refs/remotes/origin/HEAD"], cwd=path)
    prefix = "refs/remotes/origin/"
    if origin_head and origin_head.startswith(prefix):
        return origin_head[len(prefix) :]
    # fallback heuristics
    for candidate in ("main", "master"):
        if ref_exists(path, f"refs/remotes/origin/{candidate}"):
            return candidate
    return current_branch(path) or "main"


def current_branch(path: Path) -> str | None:
    """Return the checked-out branch, or ``None`` on a detached HEAD."""

    return git_stdout_opt(["branch", "--show-current"], cwd=path)


def is_dirty(path: Path) -> bool:
    return bool(git_stdout_opt(["status", "--porcelain"], cwd=path))


def config_get_regexp(pattern: str, *, cwd: Path, file: Path | None = None) -> list[tuple[str, str]]:
    """Return ``(key, value)`` pairs matching ``pattern`` in git config order.

    Exit status 1 means no key matched; anything else non-zero is raised.
    """

    args = ["config"]
    if file is not None:
        args.extend(["-f", str(file)])
    args.extend(["--null", "--get-regexp", pattern])
    proc = run_git(args, cwd=cwd, raise_on_error=False)
    if proc.returncode == 1:
        return []
    if proc.returncode != 0:
        raise GitCommandError(["git", *args], proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
    pairs: list[tuple[str, str]] = []
    for record in proc.stdout.split("\0"):
        if not record:
            continue
        key, _, value = record.partition("\n")
        pairs.append((key, value))
    return pairs


def config_write(args: Iterable[str], *, cwd: Path, scope: str = "--local") -> None:
    run_git(["config", scope, *args], cwd=cwd)


def clone_mirror(source: Path | str, target: Path) -> None:
    run_git(["clone", "--mirror", str(source), str(target)])


def fetch(path: Path, remote: str, *refspecs: str, prune: bool = False) -> None:
    args = ["fetch"]
    if prune:
        args.append("--prune")
    args.append(remote)
    args.extend(refspecs)
    run_git(args, cwd=path)


def set_remote_url(path: Path, url: str, remote: str = "origin") -> None:
    run_git(["remote", "set-url", remote, url], cwd=path)


def clone_with_reference(reference: Path, source: Path | str, target: Path) -> None:
    run_git(
        [
            "clone",
            "--no-local",
            "--reference-if-able",
            str(reference),
            str(source),
            str(target),
        ]
    )


def checkout_new_branch(path: Path, branch: str, start_point: str, *, reset: bool = False) -> None:
    flag = "-B" if reset else "-b"
    run_git(["checkout", flag, branch, start_point], cwd=path)


def checkout_detached(path: Path, ref: str) -> None:
    run_git(["checkout", "--detach", ref], cwd=path)


def resolve_commit(path: Path, ref: str) -> str | None:
    return git_stdout_opt(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=path)


def list_untracked(path: Path) -> list[str]:
    """List files git does not track, ignored ones included."""

    proc = run_git(["ls-files", "-z", "--others"], cwd=path)
    return [item for item in proc.stdout.split("\0") if item]


def for_each_ref(path: Path) -> str:
    return run_git(["for-each-ref", "--format=%(objectname) %(refname)"], cwd=path).stdout


def version() -> str | None:
    return git_stdout_opt(["--version"])
