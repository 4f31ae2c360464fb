"""Prepare orchestration: regenerate offline query data and check it is current."""

from __future__ import annotations

import filecmp
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from queryprep.errors import ConfigError, QueryPrepError
from queryprep.graph.planner import plan_recompile
from queryprep.infrastructure.build_tool import BuildTool, ensure_empty_dir
from queryprep.infrastructure.config import OUTPUT_DIR_NAME
from queryprep.infrastructure.retry import probe_database, retry_connect
from queryprep.offline.descriptor import QUERY_FILE_PREFIX, QUERY_FILE_SUFFIX

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from rich.console import Console

    from queryprep.infrastructure.config import Settings

logger = logging.getLogger(__name__)

# Generated query data for ``check`` lives under the target directory.
CHECK_DIR_NAME = "queryprep"


@dataclass
class PrepareContext:
    """Everything a prepare run needs about the project and its tooling."""

    settings: Settings
    build_tool: BuildTool
    manifest_dir: Path
    target_dir: Path
    workspace_root: Path
    workspace: bool = False
    cargo_args: list[str] = field(default_factory=list)

    @property
    def output_dir(self) -> Path:
        root = self.workspace_root if self.workspace else self.manifest_dir
        return root / OUTPUT_DIR_NAME

    @property
    def check_dir(self) -> Path:
        return self.target_dir / CHECK_DIR_NAME


@dataclass
class CheckResult:
    """Outcome of comparing committed query data against a fresh regeneration."""

    stale: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when nothing is missing or changed; stale files only warn."""
        return not self.missing and not self.changed


def create_context(
    project_root: Path,
    settings: Settings,
    *,
    workspace: bool = False,
    cargo_args: list[str] | None = None,
) -> PrepareContext:
    """Build a :class:`PrepareContext` by querying cargo in *project_root*."""
    build_tool = BuildTool(settings.cargo, cwd=project_root)
    manifest_dir = build_tool.manifest_dir()
    graph = build_tool.metadata()
    return PrepareContext(
        settings=settings,
        build_tool=build_tool,
        manifest_dir=manifest_dir,
        target_dir=graph.target_directory,
        workspace_root=graph.workspace_root,
        workspace=workspace,
        cargo_args=list(cargo_args or []),
    )


def _ensure_database(
    settings: Settings,
    probe: Callable[[str], None],
) -> None:
    url = settings.database_url
    if not url:
        msg = "DATABASE_URL must be set (environment, queryprep.yml or --database-url)"
        raise ConfigError(msg)
    retry_connect(lambda: probe(url), settings.connect_timeout)


def _setup_minimal_recompile(ctx: PrepareContext) -> None:
    """Touch or clean only the packages depending on the marker package.

    Falls back to a full ``cargo clean`` if planning or applying fails.
    """
    try:
        graph = ctx.build_tool.metadata()
        action = plan_recompile(graph, ctx.settings.marker_package)
        ctx.build_tool.apply(action)
    except QueryPrepError as exc:
        logger.warning("Failed minimal recompile setup. Cleaning entire project. Err: %s", exc)
        ctx.build_tool.clean()


def run_prepare_step(ctx: PrepareContext, cache_dir: Path) -> None:
    """Empty *cache_dir* and run a build pass that writes query data into it."""
    manifest = ctx.manifest_dir / "Cargo.toml"
    if not manifest.exists():
        msg = (
            f"Failed to read {manifest}.\n"
            "hint: This command only works in the manifest directory of a Cargo package."
        )
        raise ConfigError(msg)

    ensure_empty_dir(cache_dir)
    env = ctx.settings.build_env(cache_dir, ctx.target_dir)

    if ctx.workspace:
        _setup_minimal_recompile(ctx)
        ctx.build_tool.check(ctx.cargo_args, env)
    else:
        ctx.build_tool.rustc_check(ctx.cargo_args, env, ctx.target_dir)


def _query_files(directory: Path) -> dict[str, Path]:
    if not directory.is_dir():
        return {}
    return {
        p.name: p
        for p in directory.iterdir()
        if p.is_file()
        and p.name.startswith(QUERY_FILE_PREFIX)
        and p.name.endswith(QUERY_FILE_SUFFIX)
    }


def compare_cache_dirs(committed: Path, generated: Path) -> CheckResult:
    """Compare committed query data with a fresh regeneration.

    Files only in *committed* are stale (a warning); files only in
    *generated* are missing and files whose contents differ are changed
    (both errors).
    """
    old = _query_files(committed)
    new = _query_files(generated)
    result = CheckResult()
    for name in sorted(old.keys() - new.keys()):
        result.stale.append(name)
    for name in sorted(new.keys() - old.keys()):
        result.missing.append(name)
    for name in sorted(old.keys() & new.keys()):
        if not filecmp.cmp(old[name], new[name], shallow=False):
            result.changed.append(name)
    return result


def count_query_files(directory: Path) -> int:
    return len(_query_files(directory))


def run_prepare(
    ctx: PrepareContext,
    *,
    probe: Callable[[str], None] = probe_database,
) -> Path:
    """Regenerate query data into the project's ``.queryprep`` directory.

    Returns the output directory.
    """
    _ensure_database(ctx.settings, probe)
    output_dir = ctx.output_dir
    run_prepare_step(ctx, output_dir)
    generated = count_query_files(output_dir)
    if generated == 0:
        logger.warning(
            "no queries found; please ensure the offline feature of the query macros is enabled"
        )
    else:
        logger.info("Wrote %d query data file(s) to %s", generated, output_dir)
    return output_dir


def check_prepare(
    ctx: PrepareContext,
    *,
    probe: Callable[[str], None] = probe_database,
) -> CheckResult:
    """Regenerate query data under the target directory and compare it with ``.queryprep``."""
    _ensure_database(ctx.settings, probe)
    run_prepare_step(ctx, ctx.check_dir)
    return compare_cache_dirs(ctx.output_dir, ctx.check_dir)


def render_check(result: CheckResult, console: Console) -> None:
    """Render a :class:`CheckResult` using Rich console output."""
    if not (result.stale or result.missing or result.changed):
        console.print(f"[green]Query data in {OUTPUT_DIR_NAME} is up to date.[/green]")
        return
    for name in result.stale:
        console.print(f"  [yellow]warning:[/yellow] {name} is no longer used by any query")
    for name in result.missing:
        console.print(f"  [red]error:[/red] {name} is missing from {OUTPUT_DIR_NAME}")
    for name in result.changed:
        console.print(f"  [red]error:[/red] {name} is out of date")
    if not result.ok:
        console.print()
        console.print(f"Run `queryprep prepare` and commit the {OUTPUT_DIR_NAME} directory.")
