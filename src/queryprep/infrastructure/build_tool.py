"""Thin wrapper around the ``cargo`` executable.

Every command runs synchronously; a non-zero exit status becomes a
:class:`ProcessFailureError` carrying the command line.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import TYPE_CHECKING

from queryprep.errors import FileOperationError, ParseError, ProcessFailureError
from queryprep.graph.metadata import parse_metadata

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from queryprep.graph.metadata import PackageGraph
    from queryprep.graph.planner import RecompileAction

logger = logging.getLogger(__name__)

# Exit status reported when the executable itself cannot be started.
_NOT_FOUND_STATUS = 127

RECOMPILE_TRIGGER_CFG = "__queryprep_recompile_trigger"


def ensure_empty_dir(path: Path) -> None:
    """Make *path* an existing, empty directory, removing any previous contents."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
        path.mkdir(parents=True)
    except OSError as exc:
        msg = f"failed to clear directory ({exc.strerror or exc})"
        raise FileOperationError(msg, path) from exc


def touch_paths(paths: Iterable[Path]) -> None:
    """Set access and modification time of every path to now."""
    for path in paths:
        try:
            os.utime(path, None)
        except OSError as exc:
            msg = f"Failed to update mtime ({exc.strerror or exc})"
            raise FileOperationError(msg, path) from exc


def recompile_trigger() -> str:
    """A ``--cfg`` value that changes on every call, forcing rustc to rebuild."""
    millis = time.time_ns() // 1_000_000
    return f'{RECOMPILE_TRIGGER_CFG}="{millis}"'


class BuildTool:
    """Runs ``cargo`` subcommands in *cwd*."""

    def __init__(self, cargo: str = "cargo", cwd: Path | None = None) -> None:
        self.cargo = cargo
        self.cwd = cwd

    def _run(
        self,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        capture: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.cargo, *args]
        full_env = {**os.environ, **env} if env else None
        logger.info("executing %s", " ".join(command))
        try:
            result = subprocess.run(  # noqa: S603
                command,
                cwd=self.cwd,
                env=full_env,
                capture_output=capture,
                text=True,
                check=False,
            )
        except OSError as exc:
            logger.error("Could not start %s: %s", self.cargo, exc)
            raise ProcessFailureError(command, _NOT_FOUND_STATUS) from exc
        if result.returncode != 0:
            if capture and result.stderr:
                logger.error("%s", result.stderr.strip())
            raise ProcessFailureError(command, result.returncode)
        return result

    # --- metadata ---------------------------------------------------------

    def metadata_text(self) -> str:
        return self._run(["metadata", "--format-version=1"], capture=True).stdout

    def metadata(self) -> PackageGraph:
        """Fetch and parse ``cargo metadata`` for the current project."""
        return parse_metadata(self.metadata_text())

    def manifest_dir(self) -> Path:
        """Directory holding the ``Cargo.toml`` of the current package."""
        stdout = self._run(["locate-project", "--message-format=plain"], capture=True).stdout
        manifest_path = stdout.strip()
        if not manifest_path:
            msg = "`cargo locate-project` printed no manifest path"
            raise ParseError(msg)
        return Path(manifest_path).parent

    # --- recompile --------------------------------------------------------

    def clean_package(self, name: str) -> None:
        self._run(["clean", "-p", name])

    def clean(self) -> None:
        self._run(["clean"])

    def apply(self, action: RecompileAction) -> None:
        """Touch in-workspace sources, then clean each out-of-workspace package.

        Aborts on the first failure.
        """
        touch_paths(action.touch_paths)
        for name in action.clean_packages:
            self.clean_package(name)

    # --- build ------------------------------------------------------------

    def check(self, args: Sequence[str], env: Mapping[str, str]) -> None:
        """``cargo check`` over the whole workspace.

        The caller's environment, ``RUSTFLAGS`` included, is inherited
        unchanged so the check reuses the artifacts of a normal build.
        """
        self._run(["check", *args], env=env)

    def rustc_check(
        self,
        args: Sequence[str],
        env: Mapping[str, str],
        target_dir: Path,
        trigger: str | None = None,
    ) -> None:
        """Rebuild the current package only, with an always-changing ``--cfg``."""
        rustc_args = [
            "rustc",
            *args,
            "--",
            "--emit",
            "dep-info,metadata",
            "--cfg",
            trigger or recompile_trigger(),
        ]
        self._run(rustc_args, env={**env, "CARGO_TARGET_DIR": str(target_dir)})
