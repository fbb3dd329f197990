"""Typer-based CLI for git-spaces."""

from __future__ import annotations

import json
import logging
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from typer.core import TyperCommand

from . import __version__, git
from .config import KEYS, EffectiveConfig, lookup_key, resolve, resolve_repo_path
from .exceptions import GitCommandError, SpacesError, ValidationError
from .interactive import Choice, confirm, fuzzy_select, is_interactive, text_input
from .models import Space, SpaceResult
from .spaces import SpaceManager

app = typer.Typer(help="Isolated git clones that share one local mirror", no_args_is_help=True)
mirrors_app = typer.Typer(help="Show or update the shared mirror", invoke_without_command=True)
config_app = typer.Typer(help="Inspect and change spaces configuration", no_args_is_help=True)
app.add_typer(mirrors_app, name="mirrors")
app.add_typer(config_app, name="config")
console = Console(stderr=True)

EXIT_FAILURE = 1
EXIT_HOOK_FAILED = 3
PATTERNS_META = "git_spaces.patterns"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"git-spaces {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    repo: Optional[Path] = typer.Option(
        None,
        "--repo",
        "-r",
        help="Path to the repository whose spaces should be managed.",
        file_okay=False,
    ),
    clones_dir: Optional[Path] = typer.Option(None, "--clones-dir", help="Override spaces.clones.dir."),
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Override spaces.clones.prefix."),
    mirrors_dir: Optional[Path] = typer.Option(None, "--mirrors-dir", help="Override spaces.mirrors.dir."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show additional debug information."),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the git-spaces version and exit.",
    ),
) -> None:
    _ = version  # handled via callback
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["repo_override"] = repo
    ctx.obj["overrides"] = {
        "spaces.clones.dir": str(clones_dir) if clones_dir else None,
        "spaces.clones.prefix": prefix,
        "spaces.mirrors.dir": str(mirrors_dir) if mirrors_dir else None,
    }


@app.command(help="Create a new space")
def new(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Name of the space."),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Branch to check out or create."),
    from_ref: Optional[str] = typer.Option(None, "--from", help="Starting point for a new branch."),
    no_fetch: bool = typer.Option(False, "--no-fetch", help="Use the mirror as is, without fetching."),
    no_copy: bool = typer.Option(False, "--no-copy", help="Skip copying untracked files into the space."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Never prompt."),
) -> None:
    manager = _build_manager(ctx)
    if not name:
        if yes or not is_interactive():
            _fail("Space name required.")
        name = _prompt_space_name(manager)
    with _handle_errors():
        console.print(f"[bold]Creating space:[/bold] {name}")
        result = manager.new(name, branch=branch, from_ref=from_ref, no_fetch=no_fetch, no_copy=no_copy)
    if result.mirror and result.mirror.fetch_error:
        console.print("[yellow]Mirror fetch failed; the space was created from the last fetched state.[/yellow]")
    if result.copied:
        console.print(f"Copied {len(result.copied)} file(s)")
    console.print(f"Space created: {result.space.path}")
    _exit_for_hooks(result)


@app.command("list", help="List the main repository and its spaces")
def list_(
    ctx: typer.Context,
    porcelain: bool = typer.Option(False, "--porcelain", help="Tab-separated output for scripts."),
    as_json: bool = typer.Option(False, "--json", help="Output JSON for scripting."),
) -> None:
    manager = _build_manager(ctx)
    with _handle_errors():
        spaces = manager.list_spaces()
    repo_root = manager.config.repo_root
    main_branch = git.current_branch(repo_root) or "(detached)"
    if as_json:
        data = [
            {
                "name": space.name,
                "branch": space.branch,
                "status": manager.status(space.path),
                "path": str(space.path),
                "base_ref": space.base_ref,
                "created_at": space.created_at.isoformat() if space.created_at else None,
            }
            for space in spaces
        ]
        typer.echo(json.dumps(data, indent=2))
        return
    if porcelain:
        typer.echo(f"{repo_root}\tmain\t{main_branch}\t{manager.status(repo_root)}")
        for space in spaces:
            typer.echo(f"{space.path}\t{space.name}\t{space.branch or '(detached)'}\t{manager.status(space.path)}")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Space")
    table.add_column("Branch")
    table.add_column("Status")
    table.add_column("Path")
    table.add_row("main", main_branch, manager.status(repo_root), str(repo_root))
    for space in spaces:
        table.add_row(space.name, space.branch or "(detached)", manager.status(space.path), str(space.path))
    Console().print(table)


@app.command(help="Print the path of a space (1 for the main repository)")
def go(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Space name, or 1 for the main repository."),
) -> None:
    manager = _build_manager(ctx)
    with _handle_errors():
        if name is None:
            path = _prompt_space(manager.list_spaces(), include_main=manager.config.repo_root)
        else:
            path = manager.target_path(name)
    typer.echo(str(path))


@app.command(help="Run a command inside a space")
def run(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Space name, or 1 for the main repository."),
    command: Optional[List[str]] = typer.Argument(None, help="Command to run, after '--'."),
) -> None:
    if not command:
        _fail("Usage: spaces run <space> -- <command...>")
    manager = _build_manager(ctx)
    with _handle_errors():
        path = manager.target_path(name)
    console.print(f"[bold]Running in:[/bold] {path}")
    try:
        proc = subprocess.run(command, cwd=str(path), check=False)
    except FileNotFoundError:
        _fail(f"Command not found: {command[0]}")
    raise typer.Exit(proc.returncode)


class _PatternsAfterDashCommand(TyperCommand):
    """Keep everything after ``--`` apart so it is not read as more targets."""

    def parse_args(self, ctx: typer.Context, args: list[str]) -> list[str]:
        if "--" in args:
            index = args.index("--")
            ctx.meta[PATTERNS_META] = args[index + 1 :]
            args = args[:index]
        return super().parse_args(ctx, args)


@app.command(cls=_PatternsAfterDashCommand, help="Copy files matching the copy rules into spaces")
def copy(
    ctx: typer.Context,
    names: Optional[List[str]] = typer.Argument(None, help="Target spaces; patterns follow '--'."),
    source: Optional[str] = typer.Option(None, "--from", help="Source space (defaults to the main repository)."),
    all_spaces: bool = typer.Option(False, "--all", "-a", help="Copy into every space."),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Only show what would be copied."),
) -> None:
    patterns = list(ctx.meta.get(PATTERNS_META, []))
    targets = list(names or [])
    if all_spaces and targets:
        if PATTERNS_META in ctx.meta:
            _fail("Pass target spaces or --all, not both.")
        # without '--' the positionals of --all are patterns
        patterns, targets = targets, []
    manager = _build_manager(ctx)
    with _handle_errors():
        reports = manager.copy(targets, patterns=patterns, source=source, all_spaces=all_spaces, dry_run=dry_run)
    if not reports:
        console.print("[yellow]No files copied (source and target may be the same).[/yellow]")
    for report in reports:
        verb = "Would copy" if report.dry_run else "Copied"
        console.print(f"{verb} {len(report.paths)} file(s) to {report.target.name}")
        for path in report.paths:
            console.print(f"  {path}", highlight=False)


@app.command(help="Remove one or more spaces")
def rm(
    ctx: typer.Context,
    names: Optional[List[str]] = typer.Argument(None, help="Spaces to remove."),
    force: bool = typer.Option(False, "--force", help="Remove even if the preRemove hook fails."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    manager = _build_manager(ctx)
    if not names:
        with _handle_errors():
            path = _prompt_space(manager.list_spaces())
        names = [space.name for space in manager.list_spaces() if space.path == path]
    exit_code = 0
    for name in names:
        if not yes and is_interactive() and not confirm(f"Remove space '{name}'?", default=False):
            continue
        try:
            result = manager.rm(name, force=force)
        except SpacesError as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            exit_code = EXIT_FAILURE
            continue
        console.print(f"Removed space: {result.space.path}")
        if result.hook_failed and exit_code == 0:
            exit_code = EXIT_HOOK_FAILED
    if exit_code:
        raise typer.Exit(exit_code)


@app.command(help="Remove empty space directories, and with --merged spaces whose PR was merged")
def clean(
    ctx: typer.Context,
    merged: bool = typer.Option(False, "--merged", help="Also remove spaces whose branch has a merged GitHub PR."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Only show what would be removed."),
) -> None:
    if merged and not (yes or dry_run or is_interactive()):
        _fail("clean --merged needs --yes when not run interactively.")
    manager = _build_manager(ctx)
    with _handle_errors():
        removed = manager.clean(dry_run=dry_run)
    for path in removed:
        verb = "[dry-run] Would remove" if dry_run else "Removed"
        console.print(f"{verb} empty directory: {path}", markup=False, highlight=False)
    console.print(f"Cleaned {len(removed)} director{'y' if len(removed) == 1 else 'ies'}")
    if not merged:
        return

    console.print("Checking for spaces with merged PRs...")
    with _handle_errors():
        candidates = manager.merged_spaces()
    exit_code = 0
    count = skipped = 0
    for space in candidates:
        if dry_run:
            console.print(f"[dry-run] Would remove: {space.name} ({space.path})", markup=False, highlight=False)
            count += 1
            continue
        if not yes and not confirm(f"Remove space '{space.name}'?", default=False):
            skipped += 1
            continue
        try:
            result = manager.rm(space.name)
        except SpacesError as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            exit_code = EXIT_FAILURE
            continue
        console.print(f"Removed space: {result.space.path}", highlight=False)
        count += 1
        if result.hook_failed and exit_code == 0:
            exit_code = EXIT_HOOK_FAILED
    verb = "Would remove" if dry_run else "Removed"
    console.print(f"Merged cleanup complete. {verb}: {count}, Skipped: {skipped}")
    if exit_code:
        raise typer.Exit(exit_code)


@app.command(help="Run a health check")
def doctor(ctx: typer.Context) -> None:
    version = git.version()
    console.print(f"[OK] Git: {version}" if version else "[x] Git: not found", highlight=False)
    manager = _build_manager(ctx)
    config = manager.config
    handle = manager.mirrors.describe()
    console.print(f"[OK] Clones dir: {config.clones_dir}", highlight=False)
    console.print(f"[OK] Mirror: {handle.path}", highlight=False)
    console.print(f"[OK] Mirror present: {'yes' if handle.present else 'no'}", highlight=False)
    console.print(f"[OK] Default branch: {config.default_branch}", highlight=False)


@mirrors_app.callback()
def mirrors(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is not None:
        return
    manager = _build_manager(ctx)
    handle = manager.mirrors.describe()
    typer.echo(str(handle.path))
    typer.echo(f"origin: {handle.origin}")
    typer.echo(f"status: {'present' if handle.present else 'missing'}")
    typer.echo(f"last fetch: {handle.last_fetch.isoformat() if handle.last_fetch else 'never'}")
    if handle.fetching:
        typer.echo("fetch in progress")


@mirrors_app.command("update", help="Create the mirror if needed and fetch into it")
def mirrors_update(ctx: typer.Context) -> None:
    manager = _build_manager(ctx)
    with _handle_errors():
        with console.status("Updating mirror…"):
            handle = manager.mirrors.force_update()
    if handle.fetch_error:
        _fail(f"Mirror fetch failed; kept last fetched state at {handle.path}:\n{handle.fetch_error}")
    typer.echo(f"updated: {handle.path}")


@config_app.command("list", help="Show every resolved key and where it came from")
def config_list(ctx: typer.Context) -> None:
    config = _load_config(ctx)
    for key in KEYS:
        value = config.display_value(key).replace("\n", ", ")
        source = config.sources.get(key.name, "derived")
        typer.echo(f"{key.name}={value} [{source}]")


@config_app.command("get", help="Print the resolved value of a key")
def config_get(ctx: typer.Context, key: str = typer.Argument(..., help="Configuration key.")) -> None:
    config = _load_config(ctx)
    with _handle_errors():
        value = config.display_value(lookup_key(key))
    if value:
        typer.echo(value)


@config_app.command("set", help="Set a key in git config")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    value: str = typer.Argument(...),
    global_: bool = typer.Option(False, "--global", help="Write to the global git config."),
) -> None:
    _write_config(ctx, key, [value], global_)


@config_app.command("add", help="Append a value to a list key in git config")
def config_add(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    value: str = typer.Argument(...),
    global_: bool = typer.Option(False, "--global", help="Write to the global git config."),
) -> None:
    _write_config(ctx, key, [value], global_, action="--add")


@config_app.command("unset", help="Remove a key from git config")
def config_unset(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    global_: bool = typer.Option(False, "--global", help="Write to the global git config."),
) -> None:
    _write_config(ctx, key, [], global_, action="--unset-all")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )


def _repo_root(ctx: typer.Context) -> Path:
    with _handle_errors():
        return resolve_repo_path(ctx.obj.get("repo_override"))


def _load_config(ctx: typer.Context) -> EffectiveConfig:
    repo_root = _repo_root(ctx)
    with _handle_errors():
        return resolve(repo_root, ctx.obj.get("overrides"))


def _build_manager(ctx: typer.Context) -> SpaceManager:
    return SpaceManager(_load_config(ctx))


def _write_config(ctx: typer.Context, key: str, values: list[str], global_: bool, *, action: str | None = None) -> None:
    repo_root = _repo_root(ctx)
    with _handle_errors():
        name = lookup_key(key).name
    scope = "--global" if global_ else "--local"
    args = [*([action] if action else []), name, *values]
    try:
        git.config_write(args, cwd=repo_root, scope=scope)
    except GitCommandError as exc:
        if action == "--unset-all" and exc.returncode == 5:
            _fail(f"{name} is not set ({scope.lstrip('-')})")
        _fail(str(exc))
    console.print(f"Config updated ({scope.lstrip('-')}): {' '.join(args)}", highlight=False)


def _prompt_space_name(manager: SpaceManager) -> str:
    while True:
        candidate = text_input("Space name")
        try:
            path = manager.space_path(candidate)
        except ValidationError as exc:
            console.print(f"[red]{exc}[/red]")
            continue
        if path.exists():
            console.print(f"[red]Space already exists: {path}[/red]")
            continue
        return candidate


def _prompt_space(spaces: list[Space], include_main: Path | None = None) -> Path:
    choices, lookup = _build_space_choice_data(spaces)
    if include_main is not None:
        key = str(include_main)
        choices.insert(0, Choice(value=key, name=f"main · {include_main}"))
        lookup[key] = include_main
    if not choices:
        raise ValidationError("No spaces found.")
    selection = fuzzy_select("Select space", choices)
    try:
        return lookup[str(selection)]
    except KeyError as exc:
        raise ValidationError("Selected space could not be resolved.") from exc


def _build_space_choice_data(spaces: list[Space]) -> tuple[list[Choice], dict[str, Path]]:
    """Return the choice list used for prompts plus a lookup keyed by path."""

    lookup: dict[str, Path] = {}
    path_choices: list[Choice] = []
    for space in spaces:
        key = str(space.path)
        if key in lookup:
            raise ValidationError(f"Duplicate space path detected: {key}")
        lookup[key] = space.path
        path_choices.append(Choice(value=key, name=f"{space.name} ({space.branch or 'detached'}) · {space.path}"))
    return path_choices, lookup


def _exit_for_hooks(result: SpaceResult) -> None:
    for hook in result.hooks:
        if not hook.ok:
            typer.secho(
                f"{hook.hook} hook failed ({len(hook.failures)} command(s)); the space was kept.",
                err=True,
                fg=typer.colors.YELLOW,
            )
    if result.hook_failed:
        raise typer.Exit(EXIT_HOOK_FAILED)


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except SpacesError as exc:
        _fail(str(exc))


def _fail(message: str, code: int = EXIT_FAILURE) -> NoReturn:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code)


if __name__ == "__main__":
    app()
