"""Periodic sync sweep.

Lightweight APScheduler wrapper that retries unsynced, failed and stranded
pending rows of every entity type on a fixed interval. It goes through the
same SyncEngine as request handlers, so the per-entity locks still apply.
Disabled unless SYNC_SWEEP_ENABLED is set. When the CRM settings change the
engine is swapped in place.

Exports:
    SyncSweepScheduler: Interval scheduler around SyncEngine.sync_pending.
"""

from __future__ import annotations

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.consultancy.sync.engine import SyncEngine
from src.consultancy.sync.schemas import BatchSyncResult, EntityType

logger = structlog.get_logger(__name__)


class SyncSweepScheduler:
    """Interval job calling SyncEngine.sync_pending for each entity type.

    A failure for one entity type is logged and does not stop the others.

    Args:
        engine: SyncEngine shared with the API.
        interval_minutes: Minutes between sweeps.
        entity_types: Types to sweep, all by default.
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval_minutes: int = 15,
        entity_types: tuple[EntityType, ...] = tuple(EntityType),
    ) -> None:
        self._engine = engine
        self._interval_minutes = max(1, interval_minutes)
        self._entity_types = entity_types
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @engine.setter
    def engine(self, engine: SyncEngine) -> None:
        """Later runs use engine; a run already in progress finishes on the old one."""
        self._engine = engine

    def start(self) -> bool:
        """Start the scheduler. Returns False if the engine's client is unconfigured."""
        if not self._engine.client.is_configured():
            logger.warning("sync_sweep.not_started", reason="CRM not configured")
            return False

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id="crm_sync_sweep",
            name="Retry unfinished CRM syncs",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._started = True
        logger.info("sync_sweep.started", interval_minutes=self._interval_minutes)
        return True

    async def run_once(self) -> dict[str, BatchSyncResult]:
        """One sweep over every configured entity type."""
        results: dict[str, BatchSyncResult] = {}
        for entity_type in self._entity_types:
            try:
                results[entity_type.value] = await self._engine.sync_pending(entity_type)
            except Exception as exc:
                logger.error(
                    "sync_sweep.entity_type_failed",
                    entity_type=entity_type.value,
                    error=str(exc),
                )
        logger.info(
            "sync_sweep.complete",
            **{k: {"synced": v.synced, "failed": v.failed} for k, v in results.items()},
        )
        return results

    def stop(self) -> None:
        """Shut down the scheduler."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("sync_sweep.stopped")


__all__ = ["SyncSweepScheduler"]
