"""CRM synchronization -- sync status lifecycle, engine, repository and sweep."""

from src.consultancy.sync.engine import EntityNotFound, SyncEngine
from src.consultancy.sync.schemas import EntityType, SyncRecord, SyncStatus, WorkflowStatus

__all__ = [
    "SyncEngine",
    "EntityNotFound",
    "EntityType",
    "SyncRecord",
    "SyncStatus",
    "WorkflowStatus",
]
