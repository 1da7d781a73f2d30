"""Integration settings repository.

Follows the session_factory pattern of the other repositories: each method
opens one short transaction.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.consultancy.integrations.models import IntegrationSettingModel
from src.consultancy.integrations.schemas import SUITEDASH_PROVIDER, SuiteDashSettings

logger = structlog.get_logger(__name__)


def _model_to_settings(model: IntegrationSettingModel) -> SuiteDashSettings:
    return SuiteDashSettings(
        enabled=model.is_enabled,
        api_url=model.api_url,
        public_id=model.public_id,
        secret_key=model.secret_key,
        invoicing_enabled=model.invoicing_enabled,
        production=model.is_production,
        auto_sync=model.auto_sync,
        last_tested_at=model.last_tested_at,
        last_test_success=model.last_test_success,
        last_test_message=model.last_test_message,
    )


class IntegrationSettingsRepository:
    """Stored SuiteDash settings.

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get_suitedash(self) -> SuiteDashSettings | None:
        """The stored row, or None when settings were never saved."""
        async for session in self._session_factory():
            result = await session.execute(
                select(IntegrationSettingModel).where(
                    IntegrationSettingModel.provider == SUITEDASH_PROVIDER
                )
            )
            model = result.scalar_one_or_none()
            return _model_to_settings(model) if model is not None else None
        return None

    async def save_suitedash(self, data: SuiteDashSettings) -> SuiteDashSettings:
        """Insert or overwrite the SuiteDash row."""
        async for session in self._session_factory():
            result = await session.execute(
                select(IntegrationSettingModel).where(
                    IntegrationSettingModel.provider == SUITEDASH_PROVIDER
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                model = IntegrationSettingModel(provider=SUITEDASH_PROVIDER)
                session.add(model)

            model.is_enabled = data.enabled
            model.api_url = data.api_url
            model.public_id = data.public_id
            model.secret_key = data.secret_key
            model.invoicing_enabled = data.invoicing_enabled
            model.is_production = data.production
            model.auto_sync = data.auto_sync
            model.last_tested_at = data.last_tested_at
            model.last_test_success = data.last_test_success
            model.last_test_message = data.last_test_message

            await session.commit()
            await session.refresh(model)
            logger.info("integrations.settings_saved", provider=SUITEDASH_PROVIDER)
            return _model_to_settings(model)
        return data
