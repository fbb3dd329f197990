"""Filesystem helpers for git-spaces."""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path

from .exceptions import ValidationError

_UNSAFE_NAME_CHARS = re.compile(r"[/\\ :*?\"<>|#]")


def sanitize_space_name(name: str) -> str:
    """Produce the directory-safe form of a space name."""

    slug = _UNSAFE_NAME_CHARS.sub("-", name.strip()).strip("-")
    if not slug or slug in (".", "..") or "\0" in slug:
        raise ValidationError(f"Invalid space name: {name!r}")
    return slug


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def is_empty_dir(path: Path) -> bool:
    return path.is_dir() and next(path.iterdir(), None) is None


def walk_files(root: Path) -> list[str]:
    """Return every file below ``root`` as a relative POSIX path, skipping ``.git``."""

    found: list[str] = []
    for current, dirnames, filenames in os.walk(root):
        base = Path(current)
        dirnames[:] = [name for name in dirnames if name != ".git"]
        # symlinked directories are copied as links, not descended into
        linked = [name for name in dirnames if (base / name).is_symlink()]
        dirnames[:] = [name for name in dirnames if name not in linked]
        for name in [*filenames, *linked]:
            found.append((base / name).relative_to(root).as_posix())
    return sorted(found)


def copy_file(source: Path, destination: Path) -> None:
    """Copy a single file or symlink, replacing whatever is at ``destination``."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    if destination.is_symlink() or destination.is_file():
        destination.unlink()
    if source.is_symlink():
        destination.symlink_to(os.readlink(source))
    else:
        shutil.copy2(source, destination)
