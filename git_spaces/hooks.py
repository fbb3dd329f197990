"""Run user-configured lifecycle hooks."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from .config import EffectiveConfig
from .models import HookDisposition, HookFailure, HookResult, Space

logger = logging.getLogger(__name__)

# a failure in these hooks must stop the operation before anything is destroyed
ABORTING_HOOKS = frozenset({"preRemove"})
SHELL_NOT_RUNNABLE = 127


class HookRunner:
    def __init__(self, config: EffectiveConfig, *, shell: str = "sh") -> None:
        self.config = config
        self.shell = shell

    def environment(self, space: Space) -> dict[str, str]:
        return {
            "REPO_ROOT": str(self.config.repo_root),
            "SPACE": space.name,
            "SPACE_PATH": str(space.path),
            "CLONE_PATH": str(space.path),
            "BRANCH": space.branch or "",
            "BASE_REF": space.base_ref or "",
        }

    def run(self, hook: str, space: Space, *, cwd: Path | None = None) -> HookResult:
        """Run every command configured for ``hook`` in order.

        All commands run even after one fails. The result's disposition says
        whether the caller may continue: ``FAILED`` is reported but not
        fatal, ``ABORT`` means the operation must stop.
        """

        commands = [command for command in self.config.hook_commands(hook) if command.strip()]
        if not commands:
            return HookResult(hook=hook, disposition=HookDisposition.SKIPPED)
        workdir = cwd or (space.path if space.path.is_dir() else self.config.repo_root)
        env = {**os.environ, **self.environment(space)}
        failures: list[HookFailure] = []
        for index, command in enumerate(commands, start=1):
            logger.info("Running %s hook %d: %s", hook, index, command)
            try:
                proc = subprocess.run([self.shell, "-c", command], cwd=str(workdir), env=env, check=False)
            except OSError as exc:
                logger.error("%s hook %d could not start %s: %s", hook, index, self.shell, exc)
                failures.append(HookFailure(command=command, returncode=SHELL_NOT_RUNNABLE))
                continue
            if proc.returncode != 0:
                logger.error("%s hook %d failed with exit code %d", hook, index, proc.returncode)
                failures.append(HookFailure(command=command, returncode=proc.returncode))
        if not failures:
            disposition = HookDisposition.SUCCESS
        elif hook in ABORTING_HOOKS:
            disposition = HookDisposition.ABORT
        else:
            disposition = HookDisposition.FAILED
        return HookResult(hook=hook, disposition=disposition, commands_run=len(commands), failures=tuple(failures))
