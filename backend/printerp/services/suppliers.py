"""Supplier CRUD on top of the tabular store.

Every read goes through `SupplierCodec.from_row` and every write through
`SupplierCodec.to_row`; nothing here compares or patches raw rows.  Updates
send the whole encoded row in one request.
"""

import logging

from printerp.middleware.exceptions import ResourceNotFoundError
from printerp.schemas.supplier import Supplier, SupplierData
from printerp.services.supplier_codec import SupplierCodec
from printerp.services.table_store import TableStore

logger = logging.getLogger("printerp.suppliers")


class SupplierService:
    def __init__(self, store: TableStore, codec: SupplierCodec):
        self.store = store
        self.codec = codec

    @property
    def table(self) -> str:
        return self.codec.mapping.table

    async def list_suppliers(self) -> list[Supplier]:
        rows = await self.store.select(self.table, order_by="name")
        return [self.codec.from_row(r) for r in rows]

    async def get_supplier(self, supplier_id: int) -> Supplier:
        rows = await self.store.select(self.table, filters={"id": supplier_id})
        if not rows:
            raise ResourceNotFoundError("Supplier", supplier_id)
        return self.codec.from_row(rows[0])

    async def search_suppliers(self, query: str) -> list[Supplier]:
        """Case-insensitive substring search over name, contact person and email."""
        query = query.strip()
        if not query:
            return await self.list_suppliers()
        rows = await self.store.select(
            self.table,
            order_by="name",
            search=(query, self.codec.mapping.search_columns),
        )
        return [self.codec.from_row(r) for r in rows]

    async def create_supplier(self, data: SupplierData) -> Supplier:
        row = await self.store.insert(self.table, self.codec.to_row(data))
        logger.info(f"Created supplier {row.get('id')} ({data.name})")
        return self.codec.from_row(row)

    async def update_supplier(self, supplier_id: int, data: SupplierData) -> Supplier:
        """Replace every column of the supplier in a single write."""
        row = await self.store.update(
            self.table, {"id": supplier_id}, self.codec.to_row(data)
        )
        if row is None:
            raise ResourceNotFoundError("Supplier", supplier_id)
        logger.info(f"Updated supplier {supplier_id}")
        return self.codec.from_row(row)

    async def delete_supplier(self, supplier_id: int) -> None:
        deleted = await self.store.delete(self.table, {"id": supplier_id})
        if not deleted:
            raise ResourceNotFoundError("Supplier", supplier_id)
        logger.info(f"Deleted supplier {supplier_id}")
