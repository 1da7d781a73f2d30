"""Integration settings persistence model.

One row per provider. Credentials are stored as entered and only ever
returned masked by the admin API.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.consultancy.core.database import Base


class IntegrationSettingModel(Base):
    """Admin-editable connection settings for an external integration."""

    __tablename__ = "integration_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    is_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    api_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    public_id: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    secret_key: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    invoicing_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    is_production: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    auto_sync: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    last_tested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_test_success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    last_test_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
