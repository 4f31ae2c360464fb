"""Package graph built from ``cargo metadata`` output.

Indexes every package by its opaque id and stores the resolved dependency
edges reversed (dependency -> dependents), so "who depends on X" is
answered without scanning the whole graph.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from queryprep.errors import MissingResolutionError, ParseError

# Package ids are opaque strings, e.g. "sqlx 0.6.0 (registry+https://...)".
PackageId = str


@dataclass(frozen=True)
class Package:
    """The minimal package information needed to plan a recompile.

    ``name`` is used for ``cargo clean -p`` of external packages while
    ``src_paths`` (one per build target) are touched for workspace members.
    """

    id: PackageId
    name: str
    src_paths: tuple[Path, ...] = ()


@dataclass(frozen=True)
class PackageGraph:
    """Packages of one project plus reversed dependency edges."""

    packages: dict[PackageId, Package]
    workspace_members: tuple[PackageId, ...]
    workspace_root: Path
    target_directory: Path
    reverse_deps: dict[PackageId, frozenset[PackageId]] = field(default_factory=dict)

    def package(self, package_id: PackageId) -> Package | None:
        return self.packages.get(package_id)

    def entries(self) -> list[tuple[PackageId, Package]]:
        """Return ``(id, package)`` pairs sorted by id."""
        return sorted(self.packages.items())

    def is_workspace_member(self, package_id: PackageId) -> bool:
        return package_id in self.workspace_members

    def dependents(self, package_id: PackageId) -> frozenset[PackageId]:
        """Immediate dependents of *package_id*."""
        return self.reverse_deps.get(package_id, frozenset())

    def all_dependents_of(self, package_id: PackageId) -> frozenset[PackageId]:
        return all_dependents_of(self, package_id)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def _require(data: Any, key: str, where: str) -> Any:
    if not isinstance(data, dict):
        msg = f"invalid cargo metadata: {where} is not an object: {data!r}"
        raise ParseError(msg)
    if key not in data:
        msg = f"invalid cargo metadata: missing '{key}' in {where}"
        raise ParseError(msg)
    return data[key]


def _as_list(value: Any, where: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        msg = f"invalid cargo metadata: {where} is not a list"
        raise ParseError(msg)
    return value


def _as_str(value: Any, where: str) -> str:
    if not isinstance(value, str):
        msg = f"invalid cargo metadata: {where} is not a string: {value!r}"
        raise ParseError(msg)
    return value


def _parse_package(raw: Any) -> Package:
    if not isinstance(raw, dict):
        msg = f"invalid cargo metadata: package entry is not an object: {raw!r}"
        raise ParseError(msg)
    package_id = _as_str(_require(raw, "id", "package"), "package id")
    name = _as_str(_require(raw, "name", f"package {package_id}"), f"name of {package_id}")
    src_paths: list[Path] = []
    for target in _as_list(raw.get("targets"), f"targets of {package_id}"):
        if not isinstance(target, dict):
            msg = f"invalid cargo metadata: malformed target in package {package_id}"
            raise ParseError(msg)
        where = f"src_path of a target of {package_id}"
        src_paths.append(Path(_as_str(_require(target, "src_path", where), where)))
    return Package(id=package_id, name=name, src_paths=tuple(src_paths))


def _reverse_edges(
    resolve: dict[str, Any],
    packages: dict[PackageId, Package],
) -> dict[PackageId, frozenset[PackageId]]:
    """Turn ``resolve.nodes[*].deps`` (dependent -> dependency) into dependency -> dependents."""
    reverse: dict[PackageId, set[PackageId]] = {}
    for node in _as_list(_require(resolve, "nodes", "resolve"), "resolve.nodes"):
        dependent = _as_str(_require(node, "id", "resolve node"), "resolve node id")
        if dependent not in packages:
            msg = f"invalid cargo metadata: resolve node '{dependent}' is not a known package"
            raise ParseError(msg)
        for dep in _as_list(node.get("deps"), f"deps of {dependent}"):
            where = f"dependency of {dependent}"
            dependency = _as_str(_require(dep, "pkg", where), where)
            if dependency not in packages:
                msg = (
                    f"invalid cargo metadata: '{dependent}' depends on unknown "
                    f"package '{dependency}'"
                )
                raise ParseError(msg)
            reverse.setdefault(dependency, set()).add(dependent)
    return {dep: frozenset(dependents) for dep, dependents in reverse.items()}


def parse_metadata(text: str) -> PackageGraph:
    """Build a :class:`PackageGraph` from ``cargo metadata --format-version=1`` text.

    Raises
    ------
    ParseError
        If *text* is not valid JSON, lacks required fields, or references
        package ids that are not listed under ``packages``.
    MissingResolutionError
        If the ``resolve`` section is absent (cargo could not resolve the
        dependency graph, e.g. a lockfile/version mismatch).
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"failed to parse cargo metadata: {exc}"
        raise ParseError(msg) from exc
    if not isinstance(data, dict):
        msg = "failed to parse cargo metadata: top level is not an object"
        raise ParseError(msg)

    packages: dict[PackageId, Package] = {}
    for raw in _as_list(_require(data, "packages", "metadata"), "packages"):
        package = _parse_package(raw)
        packages[package.id] = package

    members = tuple(
        _as_str(m, "workspace member")
        for m in _as_list(_require(data, "workspace_members", "metadata"), "workspace_members")
    )
    unknown = [m for m in members if m not in packages]
    if unknown:
        msg = f"invalid cargo metadata: unknown workspace members {unknown}"
        raise ParseError(msg)

    workspace_root = Path(
        _as_str(_require(data, "workspace_root", "metadata"), "workspace_root")
    )
    target_directory = Path(
        _as_str(_require(data, "target_directory", "metadata"), "target_directory")
    )

    resolve = data.get("resolve")
    if resolve is None:
        msg = "Resolving the dependency graph failed (old version of cargo?)"
        raise MissingResolutionError(msg)
    if not isinstance(resolve, dict):
        msg = "invalid cargo metadata: 'resolve' is not an object"
        raise ParseError(msg)

    return PackageGraph(
        packages=packages,
        workspace_members=members,
        workspace_root=workspace_root,
        target_directory=target_directory,
        reverse_deps=_reverse_edges(resolve, packages),
    )


# ---------------------------------------------------------------------------
# Dependents resolver
# ---------------------------------------------------------------------------


def all_dependents_of(graph: PackageGraph, package_id: PackageId) -> frozenset[PackageId]:
    """Return every direct and transitive dependent of *package_id*.

    Walks ``reverse_deps`` iteratively with a visited set, so malformed
    metadata containing a cycle still terminates. *package_id* itself is
    only included when the input graph leads back to it.
    """
    visited: set[PackageId] = set()
    stack = [package_id]
    while stack:
        current = stack.pop()
        for dependent in graph.dependents(current):
            if dependent not in visited:
                visited.add(dependent)
                stack.append(dependent)
    return frozenset(visited)
