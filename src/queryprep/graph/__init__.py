"""Graph domain: package metadata, dependents resolver, recompile planner."""

from queryprep.graph.metadata import (
    Package,
    PackageGraph,
    PackageId,
    all_dependents_of,
    parse_metadata,
)
from queryprep.graph.planner import (
    DEFAULT_MARKER_PACKAGE,
    RecompileAction,
    marker_ids,
    plan_recompile,
)

__all__ = [
    "DEFAULT_MARKER_PACKAGE",
    "Package",
    "PackageGraph",
    "PackageId",
    "RecompileAction",
    "all_dependents_of",
    "marker_ids",
    "parse_metadata",
    "plan_recompile",
]
