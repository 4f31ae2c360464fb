"""Resolve the descriptor for one query occurrence during a build pass.

Online, the query is described against the live database through an
injected callable and, when an offline directory is configured, saved for
later offline builds. Offline, the descriptor is loaded from that
directory through the run's :class:`QueryDataCache`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from queryprep.errors import ConfigError, FileOperationError
from queryprep.offline.descriptor import QueryDescriptor
from queryprep.offline.store import cache_path_for, save_descriptor

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from queryprep.infrastructure.config import Settings
    from queryprep.offline.descriptor import DatabaseKind
    from queryprep.offline.store import QueryDataCache

logger = logging.getLogger(__name__)


class QueryResolver:
    """Produces a :class:`QueryDescriptor` per query occurrence."""

    def __init__(
        self,
        settings: Settings,
        cache: QueryDataCache,
        *,
        staging_dir: Path | None = None,
        describe: Callable[[str], tuple[DatabaseKind, Any]] | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.staging_dir = staging_dir
        self.describe = describe

    def resolve(
        self,
        query: str,
        call_site: str,
        expected_kind: DatabaseKind | None = None,
    ) -> QueryDescriptor:
        """Return the descriptor for *query* found at *call_site*."""
        if self.settings.offline:
            descriptor = self._load_offline(query)
        else:
            descriptor = self._describe_online(query, call_site)
        if expected_kind is not None:
            descriptor = descriptor.as_kind(expected_kind)
        return descriptor

    def _load_offline(self, query: str) -> QueryDescriptor:
        offline_dir = self.settings.offline_dir
        if offline_dir is None:
            msg = "offline mode requires an offline query directory (QUERYPREP_OFFLINE_DIR)"
            raise ConfigError(msg)
        path = cache_path_for(offline_dir, query)
        if not path.is_file():
            msg = "no saved query data found; run `queryprep prepare` to regenerate it"
            raise FileOperationError(msg, path)
        return self.cache.load(path, query)

    def _describe_online(self, query: str, call_site: str) -> QueryDescriptor:
        if self.describe is None:
            msg = "online mode requires a database to describe queries against"
            raise ConfigError(msg)
        kind, payload = self.describe(query)
        descriptor = QueryDescriptor.from_describe(kind, query, payload)

        offline_dir = self.settings.offline_dir
        if offline_dir is not None:
            staging = self.staging_dir or self.settings.staging_dir
            if staging is None:
                logger.debug("No target directory known, staging in %s", offline_dir)
                staging = offline_dir
            save_descriptor(descriptor, staging, offline_dir, call_site)
        else:
            logger.debug("No offline directory configured, not saving %s", descriptor.file_name)
        return descriptor
