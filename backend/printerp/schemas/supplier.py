"""Pydantic schemas for Supplier records.

`SupplierData` is the body of create/update requests; `Supplier` adds the
identity and timestamps read back from the store.  Normalization happens
here, at construction time, so that every Supplier the codec sees is already
in canonical form and survives an encode/decode round trip unchanged.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from printerp.schemas.validators import collapse_newlines, single_line

STATUS_ACTIVE = "Active"
STATUS_INACTIVE = "Inactive"

DEFAULT_NAME = "Unnamed Supplier"
DEFAULT_CONTACT = "Unknown Contact"
DEFAULT_BUSINESS_TYPE = "Company"
DEFAULT_PAYMENT_TERMS = "30 Days Term"
DEFAULT_LEAD_TIME = 7

# What a browser writes for an unset date input
INVALID_DATE_SENTINEL = "Invalid Date"


def normalize_status(value) -> str:
    if isinstance(value, str) and value.strip().lower() == "inactive":
        return STATUS_INACTIVE
    return STATUS_ACTIVE


class SupplierData(BaseModel):
    name: str = Field(DEFAULT_NAME, max_length=255)
    contact_person: str = DEFAULT_CONTACT
    email: str = ""
    phone: str = ""
    status: str = STATUS_ACTIVE
    address: str = ""
    notes: str = ""

    # Extended fields (no dedicated column; stored in notes)
    business_type: str = DEFAULT_BUSINESS_TYPE
    tax_id: str = ""
    industry: str = ""
    relationship_since: date | None = None
    alternate_phone: str = ""
    billing_address_same: bool = True
    billing_address: str = ""
    payment_terms: str = DEFAULT_PAYMENT_TERMS
    product_categories: str = ""
    lead_time: int = Field(DEFAULT_LEAD_TIME, ge=0)
    tax_exempt: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v):
        return single_line(v) or DEFAULT_NAME

    @field_validator("contact_person", mode="before")
    @classmethod
    def _default_contact(cls, v):
        return single_line(v) or DEFAULT_CONTACT

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        return normalize_status(v)

    @field_validator(
        "email",
        "phone",
        "address",
        "tax_id",
        "industry",
        "alternate_phone",
        "billing_address",
        "product_categories",
        mode="before",
    )
    @classmethod
    def _single_line(cls, v):
        return single_line(v)

    @field_validator("business_type", mode="before")
    @classmethod
    def _default_business_type(cls, v):
        return single_line(v) or DEFAULT_BUSINESS_TYPE

    @field_validator("payment_terms", mode="before")
    @classmethod
    def _default_payment_terms(cls, v):
        return single_line(v) or DEFAULT_PAYMENT_TERMS

    @field_validator("lead_time", mode="before")
    @classmethod
    def _default_lead_time(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_LEAD_TIME
        return v

    @field_validator("billing_address_same", mode="before")
    @classmethod
    def _default_billing_same(cls, v):
        return True if v is None else v

    @field_validator("tax_exempt", mode="before")
    @classmethod
    def _default_tax_exempt(cls, v):
        return False if v is None else v

    @field_validator("relationship_since", mode="before")
    @classmethod
    def _parse_relationship_since(cls, v):
        if v is None:
            return None
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str):
            v = v.strip()
            if not v or v == INVALID_DATE_SENTINEL:
                return None
            # "2023-04-01T00:00:00.000Z" from a date picker
            return v.split("T", 1)[0]
        return v

    @field_validator("notes", mode="before")
    @classmethod
    def _normalize_notes(cls, v):
        return collapse_newlines(v)


class Supplier(SupplierData):
    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
