"""Custom exception hierarchy for git-spaces."""

from __future__ import annotations

from pathlib import Path


class SpacesError(RuntimeError):
    """Base error for all custom exceptions."""

    operation: str | None = None
    space: str | None = None

    def annotate(self, operation: str, space: str | None = None) -> "SpacesError":
        """Record which operation and space the error surfaced from."""

        if self.operation is None:
            self.operation = operation
            self.space = space
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if self.operation is None:
            return message
        target = f"{self.operation} {self.space}" if self.space else self.operation
        return f"{target}: {message}"


class ConfigError(SpacesError):
    """Raised when a configuration source holds a malformed value."""


class ValidationError(SpacesError):
    """Raised when user input is invalid."""


class GitCommandError(SpacesError):
    """Raised when a git invocation fails."""

    def __init__(
        self,
        command: list[str],
        returncode: int,
        *,
        stdout: str | None = None,
        stderr: str | None = None,
    ):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        message = f"git command failed (exit {returncode}): {' '.join(command)}"
        if self.stderr.strip():
            message = f"{message}\n{self.stderr.strip()}"
        super().__init__(message)


class MirrorLockTimeout(SpacesError):
    """Raised when the mirror lock cannot be acquired in time."""

    def __init__(self, lock_path: Path, timeout: float):
        self.lock_path = lock_path
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s waiting for mirror lock {lock_path}. "
            "Another spaces process is cloning or fetching this mirror."
        )


class MirrorFetchError(SpacesError):
    """Raised when the mirror cannot be created or refreshed."""

    def __init__(self, message: str, *, fatal: bool, cause: GitCommandError | None = None):
        self.fatal = fatal
        self.cause = cause
        super().__init__(message)


class CopyPatternError(SpacesError):
    """Raised when a copy pattern is not a valid glob."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid copy pattern {pattern!r}: {reason}")


class SpaceAlreadyExists(SpacesError):
    """Raised when the target space directory already exists."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Space already exists: {path}")


class SpaceNotFound(SpacesError):
    """Raised when no space directory matches the requested name."""

    def __init__(self, name: str, path: Path | None = None):
        self.name = name
        self.path = path
        super().__init__(f"Space not found: {name}")


class SpaceBusy(SpacesError):
    """Raised when another process is creating or removing the same space."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Space '{name}' is being modified by another spaces process.")


class FileOperationError(SpacesError):
    """Raised when copying into or deleting a space fails on disk."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(message)


class HookError(SpacesError):
    """Raised when a lifecycle hook fails in a way that aborts the operation."""

    def __init__(self, hook: str, failures: int):
        self.hook = hook
        self.failures = failures
        super().__init__(f"{failures} {hook} hook(s) failed")


__all__ = [
    "SpacesError",
    "ConfigError",
    "ValidationError",
    "GitCommandError",
    "MirrorLockTimeout",
    "MirrorFetchError",
    "CopyPatternError",
    "SpaceAlreadyExists",
    "SpaceNotFound",
    "SpaceBusy",
    "FileOperationError",
    "HookError",
]
