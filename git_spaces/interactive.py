"""Interactive prompt helpers built on InquirerPy."""

from __future__ import annotations

import sys
from typing import Any, Sequence

from InquirerPy import inquirer
from InquirerPy.base.control import Choice

from .exceptions import ValidationError

__all__ = ["Choice", "confirm", "fuzzy_select", "is_interactive", "text_input"]


def is_interactive() -> bool:
    return sys.stdin.isatty()


def _ensure_tty() -> None:
    if not is_interactive():
        raise ValidationError(
            "Interactive mode requires a TTY. Provide the missing arguments to run non-interactively."
        )


def fuzzy_select(message: str, choices: Sequence[Choice | str]) -> Any:
    _ensure_tty()
    return inquirer.fuzzy(message=message, choices=choices).execute()


def text_input(message: str, default: str | None = None) -> str:
    _ensure_tty()
    return inquirer.text(message=message, default=default or "").execute().strip()


def confirm(message: str, default: bool = True) -> bool:
    _ensure_tty()
    return bool(inquirer.confirm(message=message, default=default).execute())
