"""Storage history writer.

Every occupancy or assignment mutation appends one row; rows are never
updated or deleted.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import HistoryAction
from app.models.storage import StorageHistory

logger = logging.getLogger(__name__)


def _stringify(values: dict | None) -> dict | None:
    """JSON columns only take plain values; UUIDs and the like go in as text."""
    if values is None:
        return None
    return {
        k: v if v is None or isinstance(v, (bool, int, float, str)) else str(v)
        for k, v in values.items()
    }


class HistoryService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def record(
        self,
        *,
        laboratory_id: uuid.UUID,
        action: HistoryAction,
        actor_id: uuid.UUID | None,
        shelf_id: uuid.UUID | None = None,
        position_id: uuid.UUID | None = None,
        note: str | None = None,
        old_values: dict | None = None,
        new_values: dict | None = None,
    ) -> StorageHistory:
        entry = StorageHistory(
            id=uuid.uuid4(),
            laboratory_id=laboratory_id,
            shelf_id=shelf_id,
            position_id=position_id,
            action=action,
            actor_id=actor_id,
            note=note,
            old_values=_stringify(old_values),
            new_values=_stringify(new_values),
        )
        self.db.add(entry)

        logger.info(
            "HISTORY: actor=%s action=%s shelf=%s position=%s",
            actor_id,
            action.value,
            shelf_id,
            position_id,
        )
        return entry

    async def list_for_position(self, position_id: uuid.UUID) -> list[StorageHistory]:
        result = await self.db.execute(
            select(StorageHistory)
            .where(StorageHistory.position_id == position_id)
            .order_by(StorageHistory.timestamp.asc())
        )
        return list(result.scalars().all())

    async def list_for_shelf(self, shelf_id: uuid.UUID) -> list[StorageHistory]:
        result = await self.db.execute(
            select(StorageHistory)
            .where(StorageHistory.shelf_id == shelf_id)
            .order_by(StorageHistory.timestamp.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    def diff_values(old: dict, new: dict) -> tuple[dict, dict]:
        """Return (old_changed, new_changed) restricted to keys that differ."""
        old_changed = {}
        new_changed = {}
        for key in set(old) | set(new):
            if old.get(key) != new.get(key):
                old_changed[key] = old.get(key)
                new_changed[key] = new.get(key)
        return old_changed, new_changed
