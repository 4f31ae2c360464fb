"""Tests for queryprep.offline.descriptor."""

from __future__ import annotations

import hashlib

import pytest

from queryprep.errors import ParseError, UnknownDatabaseKindError
from queryprep.offline.descriptor import (
    DatabaseKind,
    QueryDescriptor,
    descriptor_from_dict,
    hash_string,
    query_file_name,
)

DESCRIBE = {
    "columns": [{"ordinal": 0, "name": "id", "type_info": "Int8"}],
    "parameters": {"Left": ["Int8"]},
    "nullable": [False],
}


class TestHashString:
    def test_sha256_hex(self) -> None:
        assert hash_string("SELECT 1") == hashlib.sha256(b"SELECT 1").hexdigest()
        assert len(hash_string("")) == 64

    def test_distinct_queries_differ(self) -> None:
        assert hash_string("SELECT 1") != hash_string("SELECT 2")

    def test_file_name(self) -> None:
        assert query_file_name("abc") == "query-abc.json"


class TestDatabaseKind:
    def test_from_db_name(self) -> None:
        assert DatabaseKind.from_db_name("PostgreSQL") is DatabaseKind.POSTGRES
        assert DatabaseKind.from_db_name("SQLite") is DatabaseKind.SQLITE

    def test_unknown_db_name(self) -> None:
        with pytest.raises(UnknownDatabaseKindError, match="Oracle") as exc_info:
            DatabaseKind.from_db_name("Oracle")
        assert exc_info.value.db_name == "Oracle"


class TestQueryDescriptor:
    def test_from_describe_computes_hash(self) -> None:
        desc = QueryDescriptor.from_describe(DatabaseKind.POSTGRES, "SELECT id FROM t", DESCRIBE)
        assert desc.hash == hash_string("SELECT id FROM t")
        assert desc.file_name == f"query-{desc.hash}.json"
        assert desc.db_name == "PostgreSQL"

    def test_as_kind_match(self) -> None:
        desc = QueryDescriptor.from_describe(DatabaseKind.MYSQL, "SELECT 1", DESCRIBE)
        assert desc.as_kind(DatabaseKind.MYSQL) is desc

    def test_as_kind_mismatch(self) -> None:
        desc = QueryDescriptor.from_describe(DatabaseKind.MYSQL, "SELECT 1", DESCRIBE)
        with pytest.raises(UnknownDatabaseKindError, match="MySQL"):
            desc.as_kind(DatabaseKind.POSTGRES)

    def test_to_dict(self) -> None:
        desc = QueryDescriptor.from_describe(DatabaseKind.SQLITE, "SELECT 1", DESCRIBE)
        assert desc.to_dict() == {"db_name": "SQLite", "query": "SELECT 1", "describe": DESCRIBE}


class TestDescriptorFromDict:
    def test_valid(self) -> None:
        desc = descriptor_from_dict({"db_name": "MSSQL", "query": "SELECT 1", "describe": DESCRIBE})
        assert desc.db_kind is DatabaseKind.MSSQL
        assert desc.hash == hash_string("SELECT 1")

    def test_not_an_object(self) -> None:
        with pytest.raises(ParseError):
            descriptor_from_dict(["db_name"])

    @pytest.mark.parametrize("missing", ["db_name", "query", "describe"])
    def test_missing_key(self, missing: str) -> None:
        data = {"db_name": "MySQL", "query": "SELECT 1", "describe": {}}
        del data[missing]
        with pytest.raises(ParseError, match=missing):
            descriptor_from_dict(data)

    def test_query_must_be_string(self) -> None:
        with pytest.raises(ParseError):
            descriptor_from_dict({"db_name": "MySQL", "query": 1, "describe": {}})

    def test_unsupported_kind(self) -> None:
        data = {"db_name": "MySQL", "query": "SELECT 1", "describe": {}}
        with pytest.raises(UnknownDatabaseKindError, match="supported: PostgreSQL"):
            descriptor_from_dict(data, frozenset({DatabaseKind.POSTGRES}))
