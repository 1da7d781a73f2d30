"""Admin-editable integration settings, persisted per provider."""

from src.consultancy.integrations.repository import IntegrationSettingsRepository
from src.consultancy.integrations.schemas import SuiteDashSettings, SuiteDashSettingsUpdate

__all__ = [
    "IntegrationSettingsRepository",
    "SuiteDashSettings",
    "SuiteDashSettingsUpdate",
]
