"""Thin wrappers around the GitHub CLI."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


def gh_available() -> bool:
    return shutil.which("gh") is not None


def gh_stdout_opt(args: Iterable[str], *, cwd: Path | None = None) -> str | None:
    """Return trimmed stdout, or ``None`` when gh fails or prints nothing."""

    cmd = ["gh", *args]
    logger.debug("running %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        return None
    if proc.returncode != 0:
        logger.debug("gh exited with %s: %s", proc.returncode, proc.stderr.strip())
        return None
    return proc.stdout.strip() or None


def pr_state(path: Path, branch: str) -> str | None:
    """Return the state of the merged pull request whose head is ``branch``."""

    return gh_stdout_opt(
        ["pr", "list", "--head", branch, "--state", "merged", "--json", "state", "--jq", ".[0].state"],
        cwd=path,
    )
