"""Infrastructure domain: build tool driver, settings, connection retry."""

from queryprep.infrastructure.build_tool import (
    BuildTool,
    ensure_empty_dir,
    recompile_trigger,
    touch_paths,
)
from queryprep.infrastructure.config import (
    CONFIG_FILE_NAME,
    OUTPUT_DIR_NAME,
    Settings,
    load_settings,
)
from queryprep.infrastructure.retry import is_transient, probe_database, retry_connect

__all__ = [
    "CONFIG_FILE_NAME",
    "OUTPUT_DIR_NAME",
    "BuildTool",
    "Settings",
    "ensure_empty_dir",
    "is_transient",
    "load_settings",
    "probe_database",
    "recompile_trigger",
    "retry_connect",
    "touch_paths",
]
