"""Pydantic schemas for runtime-editable integration settings.

SuiteDashSettings is the effective configuration the CRM client is built
from. Until an admin saves settings it mirrors the SUITEDASH_* environment
variables; after the first save the stored row wins.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.consultancy.config import Settings

SUITEDASH_PROVIDER = "suitedash"

# Credential fields that keep their stored value when an update sends them
# blank or still masked
_SECRET_FIELDS = ("public_id", "secret_key")

# Fields that cannot be cleared; an explicit null leaves them unchanged
_REQUIRED_FIELDS = ("enabled", "api_url", "invoicing_enabled", "auto_sync")


def mask_secret(value: str, visible: int = 4) -> str:
    """'abcdef123456' -> '********3456'. Short or empty values are fully masked."""
    if not value:
        return ""
    if len(value) <= visible * 2:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]


def is_masked(value: str) -> bool:
    return value.startswith("*")


class SuiteDashSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    enabled: bool | None = None
    api_url: str | None = Field(default=None, pattern=r"^https?://\S+$", max_length=500)
    public_id: str | None = Field(default=None, max_length=200)
    secret_key: str | None = Field(default=None, max_length=500)
    invoicing_enabled: bool | None = None
    production: bool | None = None
    auto_sync: bool | None = None


class SuiteDashSettings(BaseModel):
    """Effective SuiteDash configuration plus the last connection test."""

    enabled: bool = False
    api_url: str = ""
    public_id: str = ""
    secret_key: str = ""
    invoicing_enabled: bool = False
    production: bool | None = None
    auto_sync: bool = True
    last_tested_at: datetime | None = None
    last_test_success: bool | None = None
    last_test_message: str | None = None

    @classmethod
    def from_env(cls, settings: Settings) -> SuiteDashSettings:
        return cls(
            enabled=settings.SUITEDASH_ENABLED,
            api_url=settings.SUITEDASH_API_URL,
            public_id=settings.SUITEDASH_PUBLIC_ID,
            secret_key=settings.SUITEDASH_SECRET_KEY,
            invoicing_enabled=settings.SUITEDASH_INVOICING_ENABLED,
            production=settings.SUITEDASH_PRODUCTION,
            auto_sync=settings.SUITEDASH_AUTO_SYNC,
        )

    def apply(self, update: SuiteDashSettingsUpdate) -> SuiteDashSettings:
        """Merge an admin update into these settings."""
        changes = update.model_dump(exclude_unset=True)
        for key in _REQUIRED_FIELDS:
            if changes.get(key, False) is None:
                changes.pop(key)
        for key in _SECRET_FIELDS:
            value = changes.get(key)
            if key in changes and (not value or is_masked(value)):
                changes.pop(key)
        return self.model_copy(update=changes)

    def with_test_result(
        self, success: bool, message: str, at: datetime
    ) -> SuiteDashSettings:
        return self.model_copy(
            update={
                "last_tested_at": at,
                "last_test_success": success,
                "last_test_message": message,
            }
        )
