"""Throwaway git repositories for tests."""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from git_spaces.config import EffectiveConfig, resolve

requires_git = unittest.skipIf(shutil.which("git") is None, "git is not installed")


def git(*args: str, cwd: Path) -> str:
    proc = subprocess.run(["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True)
    return proc.stdout.strip()


class GitRepoTestCase(unittest.TestCase):
    """Builds ``upstream.git`` plus a working clone at ``work/project``."""

    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name).resolve()
        home = self.tmp / "home"
        home.mkdir()
        env = {
            "HOME": str(home),
            "XDG_CACHE_HOME": str(self.tmp / "cache"),
            "XDG_CONFIG_HOME": str(home / ".config"),
            "GIT_CONFIG_NOSYSTEM": "1",
            "GIT_AUTHOR_NAME": "Spaces Test",
            "GIT_AUTHOR_EMAIL": "spaces@example.com",
            "GIT_COMMITTER_NAME": "Spaces Test",
            "GIT_COMMITTER_EMAIL": "spaces@example.com",
        }
        patcher = mock.patch.dict(os.environ, env)
        patcher.start()
        self.addCleanup(patcher.stop)
        for key in list(os.environ):
            if key.startswith("SPACES_"):
                del os.environ[key]

        self.upstream = self.tmp / "upstream.git"
        git("init", "--bare", str(self.upstream), cwd=self.tmp)
        seed = self.tmp / "seed"
        git("init", str(seed), cwd=self.tmp)
        (seed / "README.md").write_text("hello\n")
        (seed / ".gitignore").write_text("*.env\nnode_modules/\n")
        git("add", ".", cwd=seed)
        git("commit", "-m", "initial", cwd=seed)
        git("branch", "-M", "main", cwd=seed)
        git("remote", "add", "origin", str(self.upstream), cwd=seed)
        git("push", "origin", "main", cwd=seed)
        git("checkout", "-b", "feature", cwd=seed)
        (seed / "feature.txt").write_text("feature\n")
        git("add", ".", cwd=seed)
        git("commit", "-m", "feature", cwd=seed)
        git("push", "origin", "feature", cwd=seed)
        git("symbolic-ref", "HEAD", "refs/heads/main", cwd=self.upstream)

        (self.tmp / "work").mkdir()
        self.repo = self.tmp / "work" / "project"
        git("clone", str(self.upstream), str(self.repo), cwd=self.tmp)

    def resolve_config(self, overrides: dict | None = None, environ: dict | None = None) -> EffectiveConfig:
        return resolve(self.repo, overrides, environ={} if environ is None else environ)

    def set_config(self, key: str, value: str, *, add: bool = False) -> None:
        args = ["config", "--local"]
        if add:
            args.append("--add")
        git(*args, key, value, cwd=self.repo)

    def install_fake_gh(self, *merged_branches: str) -> Path:
        """Put a ``gh`` on PATH that reports a merged PR for ``merged_branches``."""

        bin_dir = self.tmp / "bin"
        bin_dir.mkdir(exist_ok=True)
        script = bin_dir / "gh"
        cases = "".join(f'    "{branch}") echo MERGED ;;\n' for branch in merged_branches)
        # gh pr list --head <branch> ...
        script.write_text(f'#!/bin/sh\ncase "$4" in\n{cases}esac\nexit 0\n')
        script.chmod(0o755)
        patcher = mock.patch.dict(os.environ, {"PATH": f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}"})
        patcher.start()
        self.addCleanup(patcher.stop)
        return script
