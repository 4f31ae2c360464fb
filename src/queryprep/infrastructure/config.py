"""Settings from CLI options, environment variables and ``queryprep.yml``.

Precedence is: explicit override > environment > config file > default.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from queryprep.errors import ConfigError
from queryprep.graph.planner import DEFAULT_MARKER_PACKAGE

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "queryprep.yml"
OUTPUT_DIR_NAME = ".queryprep"
# Per-run scratch space under the build target directory.
STAGING_DIR_NAME = "queryprep"

ENV_DATABASE_URL = "DATABASE_URL"
ENV_OFFLINE = "QUERYPREP_OFFLINE"
ENV_OFFLINE_DIR = "QUERYPREP_OFFLINE_DIR"
ENV_CARGO = "QUERYPREP_CARGO"
ENV_CONNECT_TIMEOUT = "QUERYPREP_CONNECT_TIMEOUT"
ENV_TARGET_DIR = "CARGO_TARGET_DIR"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one queryprep run."""

    database_url: str | None = None
    offline: bool = False
    offline_dir: Path | None = None
    cargo: str = "cargo"
    connect_timeout: float = 10.0
    marker_package: str = DEFAULT_MARKER_PACKAGE
    target_dir: Path | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def staging_dir(self) -> Path | None:
        """Where query data is written before being moved into place."""
        if self.target_dir is None:
            return None
        return self.target_dir / STAGING_DIR_NAME

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with every non-``None`` override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values)

    def build_env(self, offline_dir: Path, target_dir: Path | None = None) -> dict[str, str]:
        """Environment for a build pass that regenerates query data into *offline_dir*."""
        env = {ENV_OFFLINE: "false", ENV_OFFLINE_DIR: str(offline_dir)}
        if self.database_url:
            env[ENV_DATABASE_URL] = self.database_url
        if target_dir is not None:
            env[ENV_TARGET_DIR] = str(target_dir)
        return env


def parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    msg = f"{name} must be a boolean (true/false), got {value!r}"
    raise ConfigError(msg)


def _parse_timeout(value: Any, name: str) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        msg = f"{name} must be a number of seconds, got {value!r}"
        raise ConfigError(msg) from exc
    if timeout < 0:
        msg = f"{name} must not be negative, got {value!r}"
        raise ConfigError(msg)
    return timeout


def _project_path(project_root: Path, value: Any) -> Path | None:
    """Resolve a configured directory; relative paths are taken from *project_root*."""
    if not value:
        return None
    path = Path(str(value))
    if not path.is_absolute():
        path = project_root / path
    return path


def read_config_file(project_root: Path) -> dict[str, Any]:
    """Load ``queryprep.yml`` from *project_root*; missing file means empty config."""
    config_path = project_root / CONFIG_FILE_NAME
    if not config_path.is_file():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        msg = f"failed to parse {config_path}: {exc}"
        raise ConfigError(msg) from exc
    except OSError as exc:
        msg = f"failed to read {config_path}: {exc}"
        raise ConfigError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{config_path} must contain a mapping"
        raise ConfigError(msg)
    return data


def load_settings(
    project_root: Path,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve :class:`Settings` for *project_root*.

    *env* defaults to ``os.environ``.
    """
    environ = os.environ if env is None else env
    file_cfg = read_config_file(project_root)

    known = {"database_url", "offline_dir", "connect_timeout", "marker_package", "cargo"}
    extra = {k: v for k, v in file_cfg.items() if k not in known}
    if extra:
        logger.warning("Ignoring unknown keys in %s: %s", CONFIG_FILE_NAME, ", ".join(sorted(extra)))

    settings = Settings(extra=extra)

    database_url = environ.get(ENV_DATABASE_URL) or file_cfg.get("database_url")
    offline_raw = environ.get(ENV_OFFLINE)
    offline_dir_raw = environ.get(ENV_OFFLINE_DIR) or file_cfg.get("offline_dir")
    cargo = environ.get(ENV_CARGO) or file_cfg.get("cargo")
    timeout_raw = environ.get(ENV_CONNECT_TIMEOUT, file_cfg.get("connect_timeout"))
    marker = file_cfg.get("marker_package")
    target_dir_raw = environ.get(ENV_TARGET_DIR)

    offline_dir = _project_path(project_root, offline_dir_raw)
    target_dir = _project_path(project_root, target_dir_raw)

    if marker is not None and (not isinstance(marker, str) or not marker):
        msg = "marker_package must be a non-empty string"
        raise ConfigError(msg)

    return settings.with_overrides(
        database_url=str(database_url) if database_url else None,
        offline=parse_bool(offline_raw, ENV_OFFLINE) if offline_raw is not None else None,
        offline_dir=offline_dir,
        cargo=str(cargo) if cargo else None,
        connect_timeout=(
            _parse_timeout(timeout_raw, "connect_timeout") if timeout_raw is not None else None
        ),
        marker_package=marker,
        target_dir=target_dir,
    )
