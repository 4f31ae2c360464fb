"""Content-addressed storage for query descriptors.

Writes go to a per-call-site temporary file in a staging directory, are
fsynced, then atomically renamed to ``query-<hash>.json`` in the final
directory, so concurrent readers never observe a partial file. Reads are
validated and shared through :class:`QueryDataCache`.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from queryprep.errors import CollisionError, FileOperationError, ParseError
from queryprep.offline.descriptor import (
    ALL_KINDS,
    DatabaseKind,
    QueryDescriptor,
    descriptor_from_dict,
    hash_string,
    query_file_name,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def cache_path_for(cache_dir: Path, query: str) -> Path:
    """Final path of the descriptor for *query* inside *cache_dir*."""
    return cache_dir / query_file_name(hash_string(query))


def save_descriptor(
    descriptor: QueryDescriptor,
    staging_dir: Path,
    final_dir: Path,
    call_site: str,
) -> Path:
    """Persist *descriptor* under ``final_dir/query-<hash>.json``.

    Parameters
    ----------
    descriptor:
        Descriptor to write.
    staging_dir:
        Directory for the temporary file; created if missing.
    final_dir:
        Cache directory receiving the final file; created if missing.
    call_site:
        Token unique to the calling query occurrence (e.g. ``file:line:col``).
        Its hash names the temporary file so concurrent writers never share one.

    Returns
    -------
    Path
        The final path.

    Raises
    ------
    FileOperationError
        On any filesystem failure; nothing is left under the final name.
    """
    for directory in (staging_dir, final_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"failed to create query data directory ({exc.strerror or exc})"
            raise FileOperationError(msg, directory) from exc

    tmp_path = staging_dir / f".tmp-{query_file_name(hash_string(call_site))}"
    final_path = final_dir / descriptor.file_name

    try:
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(descriptor.to_dict(), fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        msg = f"failed to write query data ({exc.strerror or exc})"
        raise FileOperationError(msg, tmp_path) from exc

    try:
        os.replace(tmp_path, final_path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        msg = f"failed to move query data to final destination ({exc.strerror or exc})"
        raise FileOperationError(msg, final_path) from exc

    logger.debug("Saved query data %s", final_path)
    return final_path


def read_descriptor_file(
    path: Path,
    supported: frozenset[DatabaseKind] = ALL_KINDS,
    expected_query: str | None = None,
) -> QueryDescriptor:
    """Read and validate one ``query-<hash>.json`` file, bypassing any cache.

    When *expected_query* is given the stored text must match it.
    """
    try:
        raw = path.read_bytes()
    except OSError as exc:
        msg = f"failed to read query data ({exc.strerror or exc})"
        raise FileOperationError(msg, path) from exc
    try:
        data = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        msg = f"failed to parse query data {path}: not valid UTF-8 ({exc.reason})"
        raise ParseError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"failed to parse query data {path}: {exc}"
        raise ParseError(msg) from exc

    if expected_query is not None and isinstance(data, dict):
        stored = data.get("query")
        if isinstance(stored, str) and stored != expected_query:
            raise CollisionError(path, expected_query, stored)

    try:
        return descriptor_from_dict(data, supported)
    except ParseError as exc:
        msg = f"invalid query data {path}: {exc}"
        raise ParseError(msg) from exc


class QueryDataCache:
    """Per-run, thread-safe cache of descriptors loaded from disk.

    One instance is created per prepare/build run and passed to whatever
    resolves queries. Repeated loads of the same path return the identical
    descriptor object.
    """

    def __init__(self, supported_kinds: Iterable[DatabaseKind] | None = None) -> None:
        self.supported_kinds: frozenset[DatabaseKind] = (
            frozenset(supported_kinds) if supported_kinds is not None else ALL_KINDS
        )
        self._lock = threading.Lock()
        self._entries: dict[Path, QueryDescriptor] = {}

    def load(self, path: Path, expected_query: str) -> QueryDescriptor:
        """Return the descriptor stored at *path*, validating it against *expected_query*.

        Raises
        ------
        CollisionError
            If the stored query text differs, including on a cache hit.
        FileOperationError
            If the file cannot be read.
        ParseError
            If the file is not a valid descriptor.
        UnknownDatabaseKindError
            If the descriptor's database kind is not supported.
        """
        key = Path(path).absolute()
        with self._lock:
            cached = self._entries.get(key)
        if cached is not None:
            if cached.query != expected_query:
                raise CollisionError(key, expected_query, cached.query)
            return cached

        # File I/O happens outside the lock; the first insert wins.
        loaded = read_descriptor_file(key, self.supported_kinds, expected_query)
        with self._lock:
            shared = self._entries.setdefault(key, loaded)
        if shared.query != expected_query:
            raise CollisionError(key, expected_query, shared.query)
        return shared

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        with self._lock:
            return Path(path).absolute() in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
