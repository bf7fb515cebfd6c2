"""Tabular data store: generic row access to the hosted backend's tables.

Callers work with plain dicts keyed by physical column names, which is what
lets the supplier codec cope with environment-specific column spellings.

Operations:
  select(table, filters, order_by, search) → list of rows
  insert(table, row)                       → inserted row
  update(table, filters, patch)            → updated row, or None
  delete(table, filters)                   → number of rows removed
  columns(table)                           → physical column names

`SqlTableStore` reflects each table once and runs every write as a single
statement in its own transaction, so an update either lands completely or
not at all.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import MetaData, Table, delete, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from printerp.middleware.exceptions import StoreError

logger = logging.getLogger(__name__)

# (term, columns): case-insensitive substring match on any of the columns
Search = tuple[str, tuple[str, ...]]

LIKE_ESCAPE = "\\"


def like_pattern(term: str) -> str:
    """Substring pattern for LIKE with the term's own wildcards matched literally."""
    escaped = (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


class TableStore(ABC):
    """Contract for the tabular data store."""

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        search: Search | None = None,
    ) -> list[dict[str, Any]]:
        """Return matching rows. `order_by` may be prefixed with "-" for descending."""

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def update(
        self, table: str, filters: dict[str, Any], patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        ...

    @abstractmethod
    async def columns(self, table: str) -> list[str]:
        ...


class SqlTableStore(TableStore):
    """TableStore over SQLAlchemy Core with reflected tables."""

    def __init__(self, engine: AsyncEngine, schema: str | None = None):
        self.engine = engine
        self.metadata = MetaData(schema=schema)
        self._tables: dict[str, Table] = {}

    async def _table(self, name: str) -> Table:
        if name not in self._tables:
            try:
                async with self.engine.connect() as conn:
                    self._tables[name] = await conn.run_sync(
                        lambda sync_conn: Table(name, self.metadata, autoload_with=sync_conn)
                    )
            except SQLAlchemyError as e:
                logger.error(f"Cannot reflect table {name}: {e}")
                raise StoreError(f"Cannot access table '{name}'") from e
        return self._tables[name]

    @staticmethod
    def _where(t: Table, filters: dict[str, Any] | None) -> list:
        return [t.c[column] == value for column, value in (filters or {}).items()]

    @staticmethod
    def _search(t: Table, term: str, columns: tuple[str, ...]):
        pattern = like_pattern(term)
        clauses = [t.c[c].ilike(pattern, escape=LIKE_ESCAPE) for c in columns if c in t.c]
        return or_(*clauses) if clauses else None

    async def select(self, table, filters=None, order_by=None, search=None):
        t = await self._table(table)
        stmt = select(t).where(*self._where(t, filters))

        if search:
            clause = self._search(t, *search)
            if clause is not None:
                stmt = stmt.where(clause)

        if order_by:
            descending = order_by.startswith("-")
            column = t.c[order_by.lstrip("-")]
            stmt = stmt.order_by(column.desc() if descending else column.asc())

        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return [dict(r._mapping) for r in result]
        except SQLAlchemyError as e:
            logger.error(f"Error selecting from {table}: {e}")
            raise StoreError(f"Failed to read {table}") from e

    async def insert(self, table, row):
        t = await self._table(table)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(insert(t).values(row).returning(*t.c))
                return dict(result.one()._mapping)
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error inserting into {table}: {e}")
            raise StoreError(f"Failed to create {table} record") from e

    async def update(self, table, filters, patch):
        t = await self._table(table)
        stmt = update(t).where(*self._where(t, filters)).values(patch).returning(*t.c)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                row = result.first()
                return dict(row._mapping) if row else None
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating {table} {filters}: {e}")
            raise StoreError(f"Failed to update {table} record") from e

    async def delete(self, table, filters):
        t = await self._table(table)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(delete(t).where(*self._where(t, filters)))
                return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error deleting from {table} {filters}: {e}")
            raise StoreError(f"Failed to delete {table} record") from e

    async def columns(self, table):
        t = await self._table(table)
        return [c.name for c in t.columns]
