"""Tests for queryprep.infrastructure.build_tool."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Any
from unittest import mock

import pytest

from queryprep.errors import (
    FileOperationError,
    MissingResolutionError,
    ParseError,
    ProcessFailureError,
)
from queryprep.graph.planner import RecompileAction
from queryprep.infrastructure.build_tool import (
    RECOMPILE_TRIGGER_CFG,
    BuildTool,
    ensure_empty_dir,
    recompile_trigger,
    touch_paths,
)


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> Any:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestEnsureEmptyDir:
    def test_creates_missing(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b"
        ensure_empty_dir(target)
        assert target.is_dir()

    def test_clears_existing_tree(self, tmp_path: Path) -> None:
        target = tmp_path / "cache"
        (target / "nested").mkdir(parents=True)
        (target / "query-old.json").write_text("{}", encoding="utf-8")
        (target / "nested" / "x").write_text("", encoding="utf-8")
        ensure_empty_dir(target)
        assert target.is_dir()
        assert list(target.iterdir()) == []

    def test_replaces_file(self, tmp_path: Path) -> None:
        target = tmp_path / "cache"
        target.write_text("not a dir", encoding="utf-8")
        ensure_empty_dir(target)
        assert target.is_dir()

    def test_failure_names_path(self, tmp_path: Path) -> None:
        target = tmp_path / "cache"
        with mock.patch("pathlib.Path.mkdir", side_effect=PermissionError(13, "denied")):
            with pytest.raises(FileOperationError) as exc_info:
                ensure_empty_dir(target)
        assert exc_info.value.path == target


class TestTouchPaths:
    def test_updates_mtime(self, tmp_path: Path) -> None:
        src = tmp_path / "lib.rs"
        src.write_text("", encoding="utf-8")
        os.utime(src, (1_000_000, 1_000_000))
        touch_paths([src])
        assert src.stat().st_mtime > 1_000_000

    def test_missing_file(self, tmp_path: Path) -> None:
        present = tmp_path / "a.rs"
        present.write_text("", encoding="utf-8")
        missing = tmp_path / "missing.rs"
        with pytest.raises(FileOperationError, match="Failed to update mtime") as exc_info:
            touch_paths([present, missing])
        assert exc_info.value.path == missing


class TestRecompileTrigger:
    def test_format(self) -> None:
        trigger = recompile_trigger()
        assert trigger.startswith(f'{RECOMPILE_TRIGGER_CFG}="')
        assert trigger.endswith('"')
        assert trigger.split('"')[1].isdigit()


class TestBuildTool:
    def test_metadata(self, sample_metadata_text: str) -> None:
        tool = BuildTool("cargo", cwd=Path("/ws"))
        with mock.patch("subprocess.run", return_value=_completed(stdout=sample_metadata_text)) as run:
            graph = tool.metadata()
        assert len(graph.packages) == 6
        args, kwargs = run.call_args
        assert args[0] == ["cargo", "metadata", "--format-version=1"]
        assert kwargs["cwd"] == Path("/ws")
        assert kwargs["capture_output"] is True

    def test_metadata_without_resolve(self) -> None:
        text = '{"packages": [], "workspace_members": [], "workspace_root": "/", "target_directory": "/t"}'
        with mock.patch("subprocess.run", return_value=_completed(stdout=text)):
            with pytest.raises(MissingResolutionError):
                BuildTool().metadata()

    def test_manifest_dir(self) -> None:
        with mock.patch("subprocess.run", return_value=_completed(stdout="/ws/app/Cargo.toml\n")):
            assert BuildTool().manifest_dir() == Path("/ws/app")

    def test_manifest_dir_empty_output(self) -> None:
        with mock.patch("subprocess.run", return_value=_completed(stdout="\n")):
            with pytest.raises(ParseError):
                BuildTool().manifest_dir()

    def test_nonzero_exit(self) -> None:
        with mock.patch("subprocess.run", return_value=_completed(returncode=101)):
            with pytest.raises(ProcessFailureError, match="`cargo clean -p sqlx` failed") as exc_info:
                BuildTool().clean_package("sqlx")
        assert exc_info.value.status == 101
        assert exc_info.value.command == ["cargo", "clean", "-p", "sqlx"]

    def test_executable_missing(self) -> None:
        with pytest.raises(ProcessFailureError) as exc_info:
            BuildTool("definitely-not-a-cargo-binary").clean()
        assert exc_info.value.status == 127

    def test_apply_touches_then_cleans(self, tmp_path: Path) -> None:
        src = tmp_path / "lib.rs"
        src.write_text("", encoding="utf-8")
        os.utime(src, (1_000_000, 1_000_000))
        action = RecompileAction(clean_packages=["sqlx", "other"], touch_paths=[src])
        with mock.patch("subprocess.run", return_value=_completed()) as run:
            BuildTool().apply(action)
        assert src.stat().st_mtime > 1_000_000
        commands = [c.args[0] for c in run.call_args_list]
        assert commands == [["cargo", "clean", "-p", "sqlx"], ["cargo", "clean", "-p", "other"]]

    def test_apply_aborts_on_first_clean_failure(self) -> None:
        action = RecompileAction(clean_packages=["a", "b"])
        with mock.patch("subprocess.run", return_value=_completed(returncode=1)) as run:
            with pytest.raises(ProcessFailureError):
                BuildTool().apply(action)
        assert run.call_count == 1

    def test_apply_touch_failure_runs_nothing(self, tmp_path: Path) -> None:
        action = RecompileAction(clean_packages=["a"], touch_paths=[tmp_path / "missing.rs"])
        with mock.patch("subprocess.run", return_value=_completed()) as run:
            with pytest.raises(FileOperationError):
                BuildTool().apply(action)
        run.assert_not_called()

    def test_check_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RUSTFLAGS", "-Dwarnings")
        with mock.patch("subprocess.run", return_value=_completed()) as run:
            BuildTool().check(["--features", "pg"], {"QUERYPREP_OFFLINE": "false"})
        args, kwargs = run.call_args
        assert args[0] == ["cargo", "check", "--features", "pg"]
        assert kwargs["env"]["QUERYPREP_OFFLINE"] == "false"
        assert kwargs["env"]["RUSTFLAGS"] == "-Dwarnings"
        assert kwargs["capture_output"] is False

    def test_check_does_not_invent_rustflags(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("RUSTFLAGS", raising=False)
        with mock.patch("subprocess.run", return_value=_completed()) as run:
            BuildTool().check([], {"QUERYPREP_OFFLINE": "false"})
        assert "RUSTFLAGS" not in run.call_args.kwargs["env"]

    def test_check_failure(self) -> None:
        with mock.patch("subprocess.run", return_value=_completed(returncode=101)):
            with pytest.raises(ProcessFailureError, match="cargo check"):
                BuildTool().check([], {})

    def test_rustc_check(self) -> None:
        with mock.patch("subprocess.run", return_value=_completed()) as run:
            BuildTool().rustc_check(
                ["--lib"], {"X": "1"}, Path("/ws/target"), trigger='cfg_x="1"'
            )
        args, kwargs = run.call_args
        assert args[0] == [
            "cargo",
            "rustc",
            "--lib",
            "--",
            "--emit",
            "dep-info,metadata",
            "--cfg",
            'cfg_x="1"',
        ]
        assert kwargs["env"]["CARGO_TARGET_DIR"] == "/ws/target"
        assert kwargs["env"]["X"] == "1"
