"""queryprep CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click

from queryprep import __version__
from queryprep.errors import ConfigError, QueryPrepError
from queryprep.infrastructure.config import OUTPUT_DIR_NAME

if TYPE_CHECKING:
    from queryprep.graph.metadata import PackageGraph

_PROJECT_OPTION = click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project root (default: current directory).",
)
_METADATA_OPTION = click.option(
    "--metadata",
    "metadata_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read `cargo metadata` JSON from a file instead of running cargo.",
)


def _fail(exc: QueryPrepError) -> NoReturn:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(2 if isinstance(exc, ConfigError) else 1)


@click.group()
@click.version_option(version=__version__, prog_name="queryprep")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """queryprep - offline query data for compile-time checked SQL."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


# ---------------------------------------------------------------------------
# prepare
# ---------------------------------------------------------------------------


@main.command(context_settings={"ignore_unknown_options": True})
@click.option("--check", is_flag=True, help="Verify committed query data is up to date.")
@click.option("--workspace", is_flag=True, help="Generate one query data directory for the workspace.")
@click.option("--database-url", default=None, help="Database URL (default: $DATABASE_URL).")
@click.option(
    "--connect-timeout",
    type=float,
    default=None,
    help="Seconds to keep retrying the database connection.",
)
@_PROJECT_OPTION
@click.argument("cargo_args", nargs=-1, type=click.UNPROCESSED)
def prepare(
    cargo_args: tuple[str, ...],
    *,
    check: bool,
    workspace: bool,
    database_url: str | None,
    connect_timeout: float | None,
    project: Path | None,
) -> None:
    """Generate query data for offline builds.

    Extra arguments after ``--`` are passed to cargo.
    """
    from rich.console import Console

    from queryprep.infrastructure.config import load_settings
    from queryprep.services.prepare import (
        check_prepare,
        create_context,
        render_check,
        run_prepare,
    )

    project_root = project or Path.cwd()
    try:
        settings = load_settings(project_root).with_overrides(
            database_url=database_url,
            connect_timeout=connect_timeout,
        )
        prep_ctx = create_context(
            project_root,
            settings,
            workspace=workspace,
            cargo_args=list(cargo_args),
        )
        if check:
            result = check_prepare(prep_ctx)
        else:
            run_prepare(prep_ctx)
    except QueryPrepError as exc:
        _fail(exc)

    if check:
        render_check(result, Console())
        if not result.ok:
            sys.exit(1)
        return

    click.echo(
        f"query data written to `{OUTPUT_DIR_NAME}` in the current directory; "
        "please check this into version control"
    )


# ---------------------------------------------------------------------------
# graph
# ---------------------------------------------------------------------------


@main.group()
def graph() -> None:
    """Inspect the package dependency graph."""


def _load_graph(project: Path | None, metadata_file: Path | None) -> PackageGraph:
    from queryprep.graph.metadata import parse_metadata
    from queryprep.infrastructure.build_tool import BuildTool
    from queryprep.infrastructure.config import load_settings

    if metadata_file is not None:
        return parse_metadata(metadata_file.read_text(encoding="utf-8"))
    project_root = project or Path.cwd()
    settings = load_settings(project_root)
    return BuildTool(settings.cargo, cwd=project_root).metadata()


@graph.command("dependents")
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="JSON output.")
@_PROJECT_OPTION
@_METADATA_OPTION
def graph_dependents(
    name: str,
    *,
    as_json: bool,
    project: Path | None,
    metadata_file: Path | None,
) -> None:
    """List every package depending (transitively) on packages named NAME."""
    from queryprep.graph.planner import marker_ids

    try:
        pkg_graph = _load_graph(project, metadata_file)
    except QueryPrepError as exc:
        _fail(exc)

    ids: set[str] = set()
    for pkg_id in marker_ids(pkg_graph, name):
        ids |= pkg_graph.all_dependents_of(pkg_id)

    rows = []
    for pkg_id in sorted(ids):
        package = pkg_graph.package(pkg_id)
        rows.append(
            {
                "id": pkg_id,
                "name": package.name if package else pkg_id,
                "workspace": pkg_graph.is_workspace_member(pkg_id),
            }
        )

    if as_json:
        click.echo(json.dumps(rows, ensure_ascii=False, indent=2))
        return

    if not rows:
        click.echo(f"No packages depend on {name}.")
        return

    from rich.console import Console
    from rich.table import Table

    table = Table(title=f"Dependents of {name}")
    table.add_column("name", style="cyan")
    table.add_column("workspace", justify="center")
    table.add_column("id", style="dim")
    for row in rows:
        table.add_row(row["name"], "yes" if row["workspace"] else "", row["id"])
    Console().print(table)


@graph.command("plan")
@click.option("--marker", default=None, help="Marker package name (default: sqlx-macros).")
@click.option("--json", "as_json", is_flag=True, help="JSON output.")
@_PROJECT_OPTION
@_METADATA_OPTION
def graph_plan(
    *,
    marker: str | None,
    as_json: bool,
    project: Path | None,
    metadata_file: Path | None,
) -> None:
    """Show which packages a workspace prepare would touch or clean."""
    from queryprep.graph.planner import plan_recompile, render_plan
    from queryprep.infrastructure.config import load_settings

    try:
        marker_name = marker or load_settings(project or Path.cwd()).marker_package
        pkg_graph = _load_graph(project, metadata_file)
    except QueryPrepError as exc:
        _fail(exc)

    action = plan_recompile(pkg_graph, marker_name)
    if as_json:
        click.echo(json.dumps(action.to_dict(), ensure_ascii=False, indent=2))
        return

    from rich.console import Console

    render_plan(action, marker_name, Console())


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


@main.group()
def cache() -> None:
    """Inspect saved query data."""


@cache.command("verify")
@click.argument(
    "directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=False,
)
def cache_verify(directory: Path | None) -> None:
    """Validate every query data file in DIRECTORY (default: ./.queryprep)."""
    from queryprep.offline.descriptor import QUERY_FILE_PREFIX, QUERY_FILE_SUFFIX
    from queryprep.offline.store import read_descriptor_file

    cache_dir = directory or Path.cwd() / OUTPUT_DIR_NAME
    if not cache_dir.is_dir():
        click.echo(f"Error: {cache_dir} not found. Run `queryprep prepare` first.", err=True)
        sys.exit(1)

    problems: list[str] = []
    checked = 0
    for path in sorted(cache_dir.glob(f"{QUERY_FILE_PREFIX}*{QUERY_FILE_SUFFIX}")):
        checked += 1
        try:
            descriptor = read_descriptor_file(path)
        except QueryPrepError as exc:
            problems.append(f"{path.name}: {exc}")
            continue
        if descriptor.file_name != path.name:
            problems.append(f"{path.name}: query text hashes to {descriptor.file_name}")

    for problem in problems:
        click.echo(f"  [ERR] {problem}")
    click.echo(f"Checked {checked} file(s), {len(problems)} problem(s).")
    if problems:
        sys.exit(1)


@cache.command("show")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def cache_show(path: Path) -> None:
    """Print one query data file."""
    from queryprep.offline.store import read_descriptor_file

    try:
        descriptor = read_descriptor_file(path)
    except QueryPrepError as exc:
        _fail(exc)

    click.echo(f"Database: {descriptor.db_name}")
    click.echo(f"Hash:     {descriptor.hash}")
    click.echo("Query:")
    click.echo(descriptor.query)
    click.echo("Describe:")
    click.echo(json.dumps(descriptor.describe, ensure_ascii=False, indent=2))
