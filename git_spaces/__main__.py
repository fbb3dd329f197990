"""Entry point shim for `python -m git_spaces`."""

from __future__ import annotations

from git_spaces.cli import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
