"""Error taxonomy shared by the graph, cache, build and retry layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class QueryPrepError(Exception):
    """Base class for every error raised by queryprep."""


class ConfigError(QueryPrepError):
    """Raised when ``queryprep.yml`` or an environment toggle is invalid."""


# ---------------------------------------------------------------------------
# Metadata / cache parsing
# ---------------------------------------------------------------------------


class ParseError(QueryPrepError):
    """Raised for malformed build metadata or a malformed cache file."""


class MissingResolutionError(QueryPrepError):
    """Raised when build metadata carries no resolved dependency graph."""


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


class FileOperationError(QueryPrepError, OSError):
    """A filesystem operation failed; ``path`` names the offending file."""

    def __init__(self, message: str, path: Path) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


# ---------------------------------------------------------------------------
# Query data validation
# ---------------------------------------------------------------------------


class CollisionError(QueryPrepError):
    """Stored query text differs from the text that hashed to the same file."""

    def __init__(self, path: Path, expected: str, found: str) -> None:
        super().__init__(
            f"hash collision for saved query data in {path}: "
            f"expected query {expected!r}, found {found!r}"
        )
        self.path = path
        self.expected = expected
        self.found = found


class UnknownDatabaseKindError(QueryPrepError):
    """Query data names a database kind this build does not support."""

    def __init__(self, db_name: str, supported: Sequence[str] = ()) -> None:
        msg = f"query data used unknown database: {db_name!r}"
        if supported:
            msg += f" (supported: {', '.join(supported)})"
        super().__init__(msg)
        self.db_name = db_name


# ---------------------------------------------------------------------------
# External processes
# ---------------------------------------------------------------------------


class ProcessFailureError(QueryPrepError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: Sequence[str], status: int) -> None:
        super().__init__(f"`{' '.join(command)}` failed with status: {status}")
        self.command = list(command)
        self.status = status


# ---------------------------------------------------------------------------
# Database connection
# ---------------------------------------------------------------------------


class ConnectionFailedError(QueryPrepError):
    """Base for classified connection failures."""


class TransientConnectionError(ConnectionFailedError):
    """Connection kept failing with a retryable error until the time budget ran out."""


class PermanentConnectionError(ConnectionFailedError):
    """Connection failed with an error that retrying cannot fix."""
