"""CRM-facing payloads exchanged with CRMClient implementations.

These are vendor-neutral: the SuiteDash adapter maps them to and from its own
request/response shapes.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ContactProfile(BaseModel):
    """Person to create or update in the CRM, keyed by email."""

    first_name: str
    last_name: str = ""
    email: str
    phone: str | None = None
    company: str | None = None
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("email must contain '@'")
        return value


class CrmContact(BaseModel):
    """Contact as known to the CRM after an upsert."""

    id: str
    email: str
    created: bool = False


class LineItem(BaseModel):
    """One invoice line."""

    description: str
    unit_price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)

    @property
    def amount(self) -> float:
        return round(self.unit_price * self.quantity, 2)


class CrmInvoice(BaseModel):
    """Invoice created in the CRM.

    ``is_production`` is the CRM's explicit statement about the environment
    that issued the invoice; ``None`` when the response does not say.
    """

    id: str
    payment_url: str | None = None
    total: float | None = None
    is_production: bool | None = None


class LeadCreate(BaseModel):
    """Lead attached to a freshly created contact (website enquiries)."""

    source: str = "website"
    status: str = "new"
    pillar: str | None = None
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConnectionCheck(BaseModel):
    """Result of a connectivity probe against the CRM."""

    success: bool
    message: str
    invoicing_available: bool = False
