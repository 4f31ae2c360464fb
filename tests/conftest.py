"""Shared test fixtures for queryprep."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

ASSETS = Path(__file__).parent / "assets"


@pytest.fixture()
def sample_metadata_text() -> str:
    """``cargo metadata`` output of a workspace using sqlx through a library."""
    return (ASSETS / "sample_metadata.json").read_text(encoding="utf-8")


def make_metadata(
    packages: dict[str, list[str]],
    *,
    members: list[str] | None = None,
    root: str = "/ws",
    resolve: bool = True,
) -> str:
    """Build minimal ``cargo metadata`` JSON.

    *packages* maps a package name (used as its id) to the names it depends on.
    """
    data: dict[str, Any] = {
        "packages": [
            {"id": name, "name": name, "targets": [{"src_path": f"{root}/{name}/src/lib.rs"}]}
            for name in packages
        ],
        "workspace_members": members or [],
        "workspace_root": root,
        "target_directory": f"{root}/target",
    }
    if resolve:
        data["resolve"] = {
            "nodes": [
                {"id": name, "deps": [{"pkg": dep} for dep in deps]}
                for name, deps in packages.items()
            ]
        }
    return json.dumps(data)


@pytest.fixture()
def tmp_project(tmp_path: Path) -> Path:
    """Create a minimal Cargo project structure for testing."""
    (tmp_path / "Cargo.toml").write_text('[package]\nname = "app"\n', encoding="utf-8")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.rs").write_text("fn main() {}\n", encoding="utf-8")
    return tmp_path


@pytest.fixture()
def metadata_factory() -> Any:
    """Return :func:`make_metadata` for tests that build their own graphs."""
    return make_metadata
