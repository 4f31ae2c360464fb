"""Query descriptors: per-query type/shape data keyed by a hash of the query text."""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass
from typing import Any

from queryprep.errors import ParseError, UnknownDatabaseKindError

QUERY_FILE_PREFIX = "query-"
QUERY_FILE_SUFFIX = ".json"


class DatabaseKind(enum.Enum):
    """Database backends a descriptor can describe.

    The value is the ``db_name`` written to disk.
    """

    POSTGRES = "PostgreSQL"
    MYSQL = "MySQL"
    SQLITE = "SQLite"
    MSSQL = "MSSQL"

    @classmethod
    def from_db_name(cls, db_name: str) -> DatabaseKind:
        for kind in cls:
            if kind.value == db_name:
                return kind
        raise UnknownDatabaseKindError(db_name, [k.value for k in cls])


ALL_KINDS: frozenset[DatabaseKind] = frozenset(DatabaseKind)


def hash_string(text: str) -> str:
    """Hex SHA-256 digest of *text*."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def query_file_name(query_hash: str) -> str:
    return f"{QUERY_FILE_PREFIX}{query_hash}{QUERY_FILE_SUFFIX}"


@dataclass(frozen=True)
class QueryDescriptor:
    """Type/shape metadata for one query.

    ``describe`` is an opaque, backend-specific payload (columns, parameter
    types, nullability) and is never copied once a descriptor is built.
    """

    db_kind: DatabaseKind
    query: str
    hash: str
    describe: Any

    @classmethod
    def from_describe(cls, db_kind: DatabaseKind, query: str, describe: Any) -> QueryDescriptor:
        return cls(db_kind=db_kind, query=query, hash=hash_string(query), describe=describe)

    @property
    def db_name(self) -> str:
        return self.db_kind.value

    @property
    def file_name(self) -> str:
        return query_file_name(self.hash)

    def as_kind(self, kind: DatabaseKind) -> QueryDescriptor:
        """Return ``self`` if it describes a *kind* query.

        Raises
        ------
        UnknownDatabaseKindError
            If the descriptor was saved for another backend.
        """
        if self.db_kind is not kind:
            raise UnknownDatabaseKindError(self.db_name, [kind.value])
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"db_name": self.db_name, "query": self.query, "describe": self.describe}


def descriptor_from_dict(data: Any, supported: frozenset[DatabaseKind] = ALL_KINDS) -> QueryDescriptor:
    """Build a descriptor from a decoded ``query-<hash>.json`` document.

    The hash is recomputed from the stored query text.
    """
    if not isinstance(data, dict):
        msg = "query data is not a JSON object"
        raise ParseError(msg)
    for key in ("db_name", "query", "describe"):
        if key not in data:
            msg = f"query data is missing '{key}'"
            raise ParseError(msg)
    db_name = data["db_name"]
    query = data["query"]
    if not isinstance(db_name, str) or not isinstance(query, str):
        msg = "query data 'db_name' and 'query' must be strings"
        raise ParseError(msg)

    kind = DatabaseKind.from_db_name(db_name)
    if kind not in supported:
        raise UnknownDatabaseKindError(db_name, sorted(k.value for k in supported))
    return QueryDescriptor.from_describe(kind, query, data["describe"])
