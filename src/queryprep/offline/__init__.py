"""Offline query data: descriptors, content-addressed store, per-query resolution."""

from queryprep.offline.descriptor import (
    ALL_KINDS,
    DatabaseKind,
    QueryDescriptor,
    descriptor_from_dict,
    hash_string,
    query_file_name,
)
from queryprep.offline.expand import QueryResolver
from queryprep.offline.store import (
    QueryDataCache,
    cache_path_for,
    read_descriptor_file,
    save_descriptor,
)

__all__ = [
    "ALL_KINDS",
    "DatabaseKind",
    "QueryDataCache",
    "QueryDescriptor",
    "QueryResolver",
    "cache_path_for",
    "descriptor_from_dict",
    "hash_string",
    "query_file_name",
    "read_descriptor_file",
    "save_descriptor",
]
