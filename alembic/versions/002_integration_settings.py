"""Integration settings table and the CRM lead id on contact submissions.

Revision ID: 002_integration_settings
Revises: 001_initial
Create Date: 2026-10-17

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "002_integration_settings"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "integration_settings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("provider", sa.String(50), unique=True, nullable=False),
        sa.Column("is_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("api_url", sa.String(500), server_default=sa.text("''"), nullable=False),
        sa.Column("public_id", sa.String(200), server_default=sa.text("''"), nullable=False),
        sa.Column("secret_key", sa.String(500), server_default=sa.text("''"), nullable=False),
        sa.Column("invoicing_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_production", sa.Boolean(), nullable=True),
        sa.Column("auto_sync", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("last_tested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_test_success", sa.Boolean(), nullable=True),
        sa.Column("last_test_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "contact_submissions",
        sa.Column("crm_lead_id", sa.String(100), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("contact_submissions", "crm_lead_id")
    op.drop_table("integration_settings")
