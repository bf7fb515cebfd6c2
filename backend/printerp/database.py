"""Database engine.

The tables themselves belong to the hosted backend; this module only opens
connections to its Postgres.  Supplier reads and writes go through
`SqlTableStore` (see services/table_store.py), which works on reflected
tables rather than ORM models because the column spellings differ between
environments.
"""

from sqlalchemy.ext.asyncio import create_async_engine

from printerp.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=10,
    max_overflow=5,
    pool_pre_ping=True,
)
