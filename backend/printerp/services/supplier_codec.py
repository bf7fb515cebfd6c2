"""Supplier record codec: rich Supplier <-> narrow `suppliers` row.

The hosted table only has columns for

    id, name, <contact person>, email, phone, status, address, notes

so every other supplier attribute travels inside `notes` as one
"Label: value" line per populated field, appended after whatever the user
typed:

    Prefers delivery before 10am.

    Business Type: Company
    Tax ID: 123-456-789
    Billing Address Same: Yes
    Payment Terms: 30 Days Term
    Lead Time: 7
    Tax Exempt: No

Decoding strips the recognized lines back out, so the notes handed to the
caller are exactly what the user wrote.  The contact-person column is spelled
differently across environments; `SchemaMapping` pins the spelling once at
startup (see `resolve_schema_mapping`).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

from printerp.config import Settings
from printerp.schemas.supplier import (
    DEFAULT_BUSINESS_TYPE,
    DEFAULT_LEAD_TIME,
    DEFAULT_PAYMENT_TERMS,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    Supplier,
    SupplierData,
)
from printerp.schemas.validators import collapse_newlines

logger = logging.getLogger("printerp.suppliers")

SCHEMA_VERSION = 1
DIGITS = re.compile(r"\d+")


# ── Schema mapping ─────────────────────────────────────────────


@dataclass(frozen=True)
class SchemaMapping:
    """Physical layout of the suppliers table, resolved once at startup."""
    table: str = "suppliers"
    contact_column: str = "contactPerson"
    contact_aliases: tuple[str, ...] = ("contactPerson", "contactperson", "contact_person")
    version: int = SCHEMA_VERSION

    @property
    def contact_read_order(self) -> tuple[str, ...]:
        """Resolved column first, then the historical spellings."""
        rest = tuple(a for a in self.contact_aliases if a != self.contact_column)
        return (self.contact_column,) + rest

    @property
    def search_columns(self) -> tuple[str, ...]:
        return ("name", self.contact_column, "email")


async def resolve_schema_mapping(store, settings: Settings) -> SchemaMapping:
    """Pick the contact-person column for this environment.

    A pinned `supplier_contact_column` wins.  Otherwise the table's columns
    are inspected and the first known alias present is used.  When the table
    cannot be inspected the first alias is assumed.
    """
    aliases = tuple(settings.supplier_contact_column_aliases)
    table = settings.supplier_table

    if settings.supplier_contact_column:
        column = settings.supplier_contact_column
        if column not in aliases:
            aliases = (column,) + aliases
        return SchemaMapping(table=table, contact_column=column, contact_aliases=aliases)

    try:
        columns = await store.columns(table)
    except Exception as e:
        logger.warning(f"Could not inspect {table} columns, assuming {aliases[0]}: {e}")
        return SchemaMapping(table=table, contact_column=aliases[0], contact_aliases=aliases)

    for alias in aliases:
        if alias in columns:
            logger.info(f"Supplier contact column resolved to {alias!r}")
            return SchemaMapping(table=table, contact_column=alias, contact_aliases=aliases)

    logger.warning(
        f"None of {list(aliases)} found in {table} columns {columns}; using {aliases[0]!r}"
    )
    return SchemaMapping(table=table, contact_column=aliases[0], contact_aliases=aliases)


# ── Extended fields ────────────────────────────────────────────


def _format_bool(value: bool) -> str:
    return "Yes" if value else "No"


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("yes", "true", "1")


def _parse_lead_time(raw: str) -> int:
    match = DIGITS.search(raw)
    return int(match.group()) if match else DEFAULT_LEAD_TIME


def _parse_date(raw: str) -> date | None:
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return None


@dataclass(frozen=True)
class ExtendedField:
    attr: str
    label: str
    kind: str = "text"  # text | bool | int | date

    @property
    def prefix(self) -> str:
        return f"{self.label}: "

    def format(self, value: Any) -> str | None:
        """Return the line value, or None when the field is not populated."""
        if self.kind == "bool":
            return _format_bool(bool(value))
        if self.kind == "int":
            return str(int(value))
        if self.kind == "date":
            return value.isoformat() if value else None
        return value or None

    def parse(self, raw: str) -> Any:
        parsers: dict[str, Callable[[str], Any]] = {
            "bool": _parse_bool,
            "int": _parse_lead_time,
            "date": _parse_date,
        }
        parser = parsers.get(self.kind)
        return parser(raw) if parser else raw.strip()


# Encode order is fixed; changing it changes stored notes byte-for-byte.
EXTENDED_FIELDS: tuple[ExtendedField, ...] = (
    ExtendedField("business_type", "Business Type"),
    ExtendedField("tax_id", "Tax ID"),
    ExtendedField("industry", "Industry"),
    ExtendedField("relationship_since", "Relationship Since", "date"),
    ExtendedField("alternate_phone", "Alternate Phone"),
    ExtendedField("billing_address_same", "Billing Address Same", "bool"),
    ExtendedField("billing_address", "Billing Address"),
    ExtendedField("payment_terms", "Payment Terms"),
    ExtendedField("product_categories", "Product Categories"),
    ExtendedField("lead_time", "Lead Time", "int"),
    ExtendedField("tax_exempt", "Tax Exempt", "bool"),
)

EXTENDED_DEFAULTS: dict[str, Any] = {
    "business_type": DEFAULT_BUSINESS_TYPE,
    "tax_id": "",
    "industry": "",
    "relationship_since": None,
    "alternate_phone": "",
    "billing_address_same": True,
    "billing_address": "",
    "payment_terms": DEFAULT_PAYMENT_TERMS,
    "product_categories": "",
    "lead_time": DEFAULT_LEAD_TIME,
    "tax_exempt": False,
}


def encode_notes(user_notes: str, extended: dict[str, Any]) -> str:
    """Join user notes and the label lines into the stored notes text."""
    lines = []
    for f in EXTENDED_FIELDS:
        value = f.format(extended.get(f.attr))
        if value is not None:
            lines.append(f"{f.prefix}{value}")

    combined = f"{user_notes or ''}\n\n" + "\n".join(lines)
    return collapse_newlines(combined)


def decode_notes(notes: str | None) -> tuple[str, dict[str, Any]]:
    """Split stored notes into (user notes, extended field values).

    Only fields actually found are returned; the last occurrence of a label
    wins.
    """
    found: dict[str, Any] = {}
    kept: list[str] = []

    for line in (notes or "").replace("\r\n", "\n").split("\n"):
        for f in EXTENDED_FIELDS:
            if line.startswith(f.prefix):
                found[f.attr] = f.parse(line[len(f.prefix):])
                break
        else:
            kept.append(line)

    return collapse_newlines("\n".join(kept)), found


# ── Codec ──────────────────────────────────────────────────────


@dataclass
class SupplierCodec:
    mapping: SchemaMapping = field(default_factory=SchemaMapping)

    def to_row(self, supplier: SupplierData) -> dict[str, Any]:
        """Encode a supplier into the physical row (without id)."""
        extended = {f.attr: getattr(supplier, f.attr) for f in EXTENDED_FIELDS}
        status = STATUS_INACTIVE if supplier.status == STATUS_INACTIVE else STATUS_ACTIVE
        return {
            "name": supplier.name,
            self.mapping.contact_column: supplier.contact_person,
            "email": supplier.email,
            "phone": supplier.phone,
            "status": status,
            "address": supplier.address or None,
            "notes": encode_notes(supplier.notes, extended),
        }

    def read_contact(self, row: dict[str, Any]) -> str | None:
        for column in self.mapping.contact_read_order:
            if column in row:
                return row[column]
        return None

    def from_row(self, row: dict[str, Any]) -> Supplier:
        """Decode a physical row into a Supplier."""
        user_notes, found = decode_notes(row.get("notes"))
        extended = {**EXTENDED_DEFAULTS, **found}
        return Supplier(
            id=row["id"],
            name=row.get("name"),
            contact_person=self.read_contact(row),
            email=row.get("email"),
            phone=row.get("phone"),
            status=STATUS_INACTIVE if row.get("status") == STATUS_INACTIVE else STATUS_ACTIVE,
            address=row.get("address"),
            notes=user_notes,
            created_at=row.get("created_at") or row.get("createdAt"),
            updated_at=row.get("updated_at") or row.get("updatedAt"),
            **extended,
        )
