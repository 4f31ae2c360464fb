"""Minimal-recompile planner.

Forcing a full ``cargo clean`` whenever query macros may be stale is correct
but slow. The planner finds every package that depends (directly or
transitively) on the marker package: workspace members get their source
files touched, external packages get ``cargo clean -p``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from queryprep.graph.metadata import all_dependents_of

if TYPE_CHECKING:
    from pathlib import Path

    from rich.console import Console

    from queryprep.graph.metadata import PackageGraph, PackageId

logger = logging.getLogger(__name__)

DEFAULT_MARKER_PACKAGE = "sqlx-macros"


@dataclass
class RecompileAction:
    """Packages to clean (by name) and source files to touch."""

    clean_packages: list[str] = field(default_factory=list)
    touch_paths: list[Path] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.clean_packages and not self.touch_paths

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "clean_packages": list(self.clean_packages),
            "touch_paths": [str(p) for p in self.touch_paths],
        }


def marker_ids(graph: PackageGraph, marker_name: str) -> list[PackageId]:
    """Ids of every package named *marker_name*.

    Matches by name rather than id: the marker may be vendored or pulled in
    from more than one source.
    """
    return [pid for pid, package in graph.entries() if package.name == marker_name]


def plan_recompile(
    graph: PackageGraph,
    marker_name: str = DEFAULT_MARKER_PACKAGE,
) -> RecompileAction:
    """Compute the :class:`RecompileAction` for everything depending on *marker_name*.

    Returns an empty action when no package carries that name.
    """
    matched = marker_ids(graph, marker_name)
    if not matched:
        logger.debug("No package named %s in the graph, nothing to recompile", marker_name)
        return RecompileAction()

    dependents: set[PackageId] = set()
    for marker_id in matched:
        dependents |= all_dependents_of(graph, marker_id)

    action = RecompileAction()
    for dependent in sorted(dependents):
        package = graph.package(dependent)
        if package is None:
            continue
        if graph.is_workspace_member(dependent):
            action.touch_paths.extend(package.src_paths)
        else:
            action.clean_packages.append(package.name)

    logger.debug(
        "Planned recompile for %s: %d package(s) to clean, %d file(s) to touch",
        marker_name,
        len(action.clean_packages),
        len(action.touch_paths),
    )
    return action


def render_plan(action: RecompileAction, marker_name: str, console: Console) -> None:
    """Render a :class:`RecompileAction` using Rich console output."""
    if action.is_empty:
        console.print(f"Nothing depends on {marker_name}; no recompile needed.")
        return

    console.print(f"[bold]Recompile plan for dependents of {marker_name}:[/bold]")
    console.print()
    if action.touch_paths:
        console.print("[bold]Touch (workspace members):[/bold]")
        for path in action.touch_paths:
            console.print(f"  [green]~ {path}[/green]")
        console.print()
    if action.clean_packages:
        console.print("[bold]Clean (external packages):[/bold]")
        for name in action.clean_packages:
            console.print(f"  [yellow]- {name}[/yellow]")
        console.print()
    console.print(
        f"{len(action.touch_paths)} file(s) to touch, "
        f"{len(action.clean_packages)} package(s) to clean"
    )
