"""Tests for the SQL table store's search clause."""

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.dialects import postgresql

from printerp.services.table_store import SqlTableStore, like_pattern

suppliers = Table(
    "suppliers",
    MetaData(),
    Column("id", Integer, primary_key=True),
    Column("name", String),
    Column("email", String),
)


@pytest.mark.unit
class TestLikePattern:
    def test_plain_term(self):
        assert like_pattern("acme") == "%acme%"

    def test_wildcards_escaped(self):
        assert like_pattern("50%_off") == "%50\\%\\_off%"

    def test_escape_character_doubled(self):
        assert like_pattern("a\\b") == "%a\\\\b%"


@pytest.mark.unit
class TestSearchClause:
    def test_uses_escape_and_escaped_term(self):
        clause = SqlTableStore._search(suppliers, "100%", ("name", "email"))
        compiled = clause.compile(dialect=postgresql.dialect())

        assert "ESCAPE" in str(compiled)
        assert str(compiled).count("ILIKE") == 2
        assert set(compiled.params.values()) == {"%100\\%%"}

    def test_unknown_columns_skipped(self):
        assert SqlTableStore._search(suppliers, "acme", ("nickname",)) is None
