"""Shelf store: create, reshape, regenerate and retire shelves."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    Conflict,
    DuplicateShelfLetter,
    NotFound,
    StorageError,
    StorageInUse,
)
from app.models.enums import HistoryAction
from app.models.storage import Laboratory, LabShelf, StorageHistory, StoragePosition
from app.models.values import Coordinates, ShelfDimensions, normalize_shelf_letter
from app.schemas.storage import ShelfCreate
from app.services.authorization import AuthContext, StorageAction, authorize
from app.services.history import HistoryService
from app.services.positions import PositionService, check_version
from app.services.utilization import UtilizationSummary, summarize

logger = logging.getLogger(__name__)

# Fields a shelf update may touch. None means "leave as is" except for client_id.
_UPDATABLE = (
    "shelf_letter",
    "rows",
    "columns",
    "samples_per_position",
    "x_position",
    "y_position",
    "client_id",
    "allow_client_view",
)


def _snapshot(shelf: LabShelf) -> dict:
    return {field: getattr(shelf, field) for field in _UPDATABLE}


def _unique_violation(exc: IntegrityError) -> StorageError | None:
    """Map a lost race on one of the shelf unique indexes to a domain error.

    PostgreSQL names the index, SQLite names the columns.
    """
    detail = str(exc.orig)
    if "uq_shelf_lab_number" in detail or "shelf_number" in detail:
        return Conflict(
            "Another shelf was added to this laboratory at the same time. Retry the request."
        )
    if "uq_shelf_lab_letter_active" in detail or "shelf_letter" in detail:
        return DuplicateShelfLetter("Shelf letter is already used in this laboratory.")
    return None


class ShelfService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.positions = PositionService(db)
        self.history = HistoryService(db)

    # ── Reads ─────────────────────────────────────────────────────────

    async def list_shelves(
        self, ctx: AuthContext, laboratory_id: uuid.UUID
    ) -> list[tuple[LabShelf, UtilizationSummary]]:
        authorize(ctx, StorageAction.VIEW, laboratory_id)
        await self.get_laboratory(laboratory_id)
        shelves = await self.active_shelves(laboratory_id)
        summaries = await self.positions.utilization_for_shelves([s.id for s in shelves])
        return [(s, summaries[s.id]) for s in shelves]

    async def get_shelf(
        self, ctx: AuthContext, laboratory_id: uuid.UUID, shelf_id: uuid.UUID
    ) -> tuple[LabShelf, UtilizationSummary]:
        authorize(ctx, StorageAction.VIEW, laboratory_id)
        shelf = await self.get_shelf_record(laboratory_id, shelf_id)
        summaries = await self.positions.utilization_for_shelves([shelf.id])
        return shelf, summaries[shelf.id]

    async def shelf_utilization(
        self, ctx: AuthContext, laboratory_id: uuid.UUID, shelf_id: uuid.UUID
    ) -> UtilizationSummary:
        """Strict utilization over the shelf's current positions."""
        authorize(ctx, StorageAction.VIEW, laboratory_id)
        shelf = await self.get_shelf_record(laboratory_id, shelf_id)
        result = await self.db.execute(
            select(StoragePosition.current_count, StoragePosition.capacity_per_position)
            .where(
                StoragePosition.shelf_id == shelf.id,
                StoragePosition.is_deleted == False,  # noqa: E712
            )
        )
        return summarize(result.all(), strict=True)

    async def get_shelf_history(
        self, ctx: AuthContext, laboratory_id: uuid.UUID, shelf_id: uuid.UUID
    ) -> list[StorageHistory]:
        """Audit trail for the shelf and every position on it, oldest first."""
        authorize(ctx, StorageAction.VIEW, laboratory_id)
        shelf = await self.get_shelf_record(laboratory_id, shelf_id)
        return await self.history.list_for_shelf(shelf.id)

    async def active_shelves(self, laboratory_id: uuid.UUID) -> list[LabShelf]:
        result = await self.db.execute(
            select(LabShelf)
            .where(
                LabShelf.laboratory_id == laboratory_id,
                LabShelf.is_deleted == False,  # noqa: E712
            )
            .order_by(LabShelf.shelf_number.asc())
        )
        return list(result.scalars().all())

    # ── Writes ────────────────────────────────────────────────────────

    async def create_shelf(
        self, ctx: AuthContext, laboratory_id: uuid.UUID, data: ShelfCreate
    ) -> LabShelf:
        authorize(ctx, StorageAction.ASSIGN, laboratory_id)
        await self.get_laboratory(laboratory_id)

        letter = normalize_shelf_letter(data.shelf_letter)
        dims = ShelfDimensions(data.rows, data.columns, data.samples_per_position)
        coords = Coordinates(data.x_position, data.y_position)
        await self._ensure_letter_free(laboratory_id, letter)

        shelf = LabShelf(
            id=uuid.uuid4(),
            laboratory_id=laboratory_id,
            shelf_number=await self._next_shelf_number(laboratory_id),
            shelf_letter=letter,
            rows=dims.rows,
            columns=dims.columns,
            samples_per_position=dims.samples_per_position,
            x_position=coords.x,
            y_position=coords.y,
            client_id=data.client_id,
            allow_client_view=data.allow_client_view,
            created_by=ctx.user_id,
        )
        self.db.add(shelf)
        await self._flush()

        created = await self.positions.create_positions_for_shelf(shelf)

        await self.history.record(
            laboratory_id=laboratory_id,
            action=HistoryAction.SHELF_CREATE,
            actor_id=ctx.user_id,
            shelf_id=shelf.id,
            new_values={**_snapshot(shelf), "positions_created": created},
        )
        logger.info(
            "Shelf %s (%s) created in laboratory %s with %d positions",
            shelf.shelf_letter, shelf.id, laboratory_id, created,
        )
        return shelf

    async def update_shelf(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        shelf_id: uuid.UUID,
        changes: dict,
        *,
        expected_version: int | None = None,
    ) -> LabShelf:
        """Apply a partial update.

        Reshaping validates against stored samples before anything is
        written: removed cells and a lowered per-position capacity must not
        strand samples.
        """
        authorize(ctx, StorageAction.ASSIGN, laboratory_id)
        shelf = await self.get_shelf_record(laboratory_id, shelf_id)
        check_version(shelf, expected_version, "Shelf")

        changes = {
            k: v for k, v in changes.items()
            if k in _UPDATABLE and (v is not None or k == "client_id")
        }
        if "shelf_letter" in changes:
            changes["shelf_letter"] = normalize_shelf_letter(changes["shelf_letter"])
            if changes["shelf_letter"] != shelf.shelf_letter:
                await self._ensure_letter_free(laboratory_id, changes["shelf_letter"])

        dims = ShelfDimensions(
            changes.get("rows", shelf.rows),
            changes.get("columns", shelf.columns),
            changes.get("samples_per_position", shelf.samples_per_position),
        )
        Coordinates(
            changes.get("x_position", shelf.x_position),
            changes.get("y_position", shelf.y_position),
        )

        old_values, new_values = self.history.diff_values(
            _snapshot(shelf), {**_snapshot(shelf), **changes}
        )
        if not new_values:
            return shelf

        reshaped = bool({"shelf_letter", "rows", "columns", "samples_per_position"} & set(new_values))
        if reshaped:
            await self.positions.check_reshape(shelf, dims)

        for field, value in new_values.items():
            setattr(shelf, field, value)
        await self._flush()

        if reshaped:
            counts = await self.positions.sync_positions(
                shelf, reset_capacity="samples_per_position" in new_values,
            )
            new_values = {
                **new_values,
                **{f"positions_{key}": value for key, value in counts.items()},
            }

        await self.history.record(
            laboratory_id=laboratory_id,
            action=HistoryAction.SHELF_UPDATE,
            actor_id=ctx.user_id,
            shelf_id=shelf.id,
            old_values=old_values,
            new_values=new_values,
        )
        return shelf

    async def regenerate_positions(
        self, ctx: AuthContext, laboratory_id: uuid.UUID, shelf_id: uuid.UUID
    ) -> dict:
        """Rebuild the grid from scratch; only allowed on an empty shelf."""
        authorize(ctx, StorageAction.ASSIGN, laboratory_id)
        shelf = await self.get_shelf_record(laboratory_id, shelf_id)

        stored = await self._stored_samples(shelf.id)
        if stored:
            raise StorageInUse(
                f"Shelf {shelf.shelf_letter} holds {stored} sample(s); "
                "empty it before regenerating positions."
            )

        retired = await self.positions.retire_all(shelf.id)
        created = await self.positions.create_positions_for_shelf(shelf)

        await self.history.record(
            laboratory_id=laboratory_id,
            action=HistoryAction.POSITIONS_GENERATED,
            actor_id=ctx.user_id,
            shelf_id=shelf.id,
            old_values={"positions": retired},
            new_values={"positions": created},
        )
        return {
            "shelf_id": shelf.id,
            "positions_retired": retired,
            "positions_created": created,
            "total_capacity": shelf.total_capacity,
        }

    async def delete_shelf(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        shelf_id: uuid.UUID,
        *,
        confirm: bool = False,
    ) -> LabShelf:
        authorize(ctx, StorageAction.DELETE_SHELF, laboratory_id)
        if not confirm:
            raise ValueError("Shelf deletion must be confirmed.")
        shelf = await self.get_shelf_record(laboratory_id, shelf_id)

        stored = await self._stored_samples(shelf.id)
        if stored:
            raise StorageInUse(
                f"Shelf {shelf.shelf_letter} holds {stored} sample(s) and cannot be deleted.",
                details=[{"sample_count": stored}],
            )

        retired = await self.positions.retire_all(shelf.id)
        shelf.is_deleted = True
        shelf.deleted_at = datetime.now(timezone.utc)
        await self._flush()

        await self.history.record(
            laboratory_id=laboratory_id,
            action=HistoryAction.SHELF_DELETE,
            actor_id=ctx.user_id,
            shelf_id=shelf.id,
            old_values={**_snapshot(shelf), "positions": retired},
        )
        logger.info("Shelf %s (%s) deleted by %s", shelf.shelf_letter, shelf.id, ctx.user_id)
        return shelf

    # ── Private helpers ───────────────────────────────────────────────

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise Conflict("Shelf was modified concurrently. Reload and try again.") from exc
        except IntegrityError as exc:
            error = _unique_violation(exc)
            if error is None:
                raise
            raise error from exc

    async def get_laboratory(self, laboratory_id: uuid.UUID) -> Laboratory:
        result = await self.db.execute(
            select(Laboratory).where(
                Laboratory.id == laboratory_id,
                Laboratory.is_deleted == False,  # noqa: E712
            )
        )
        lab = result.scalar_one_or_none()
        if lab is None:
            raise NotFound("Laboratory not found.")
        return lab

    async def get_shelf_record(self, laboratory_id: uuid.UUID, shelf_id: uuid.UUID) -> LabShelf:
        result = await self.db.execute(
            select(LabShelf).where(
                LabShelf.id == shelf_id,
                LabShelf.laboratory_id == laboratory_id,
                LabShelf.is_deleted == False,  # noqa: E712
            )
        )
        shelf = result.scalar_one_or_none()
        if shelf is None:
            raise NotFound("Shelf not found.")
        return shelf

    async def _ensure_letter_free(self, laboratory_id: uuid.UUID, letter: str) -> None:
        result = await self.db.execute(
            select(LabShelf.id).where(
                LabShelf.laboratory_id == laboratory_id,
                LabShelf.shelf_letter == letter,
                LabShelf.is_deleted == False,  # noqa: E712
            )
        )
        if result.first() is not None:
            raise DuplicateShelfLetter(
                f"Shelf letter {letter} is already used in this laboratory."
            )

    async def _next_shelf_number(self, laboratory_id: uuid.UUID) -> int:
        # Deleted shelves count so numbers are never reused.
        result = await self.db.execute(
            select(func.max(LabShelf.shelf_number)).where(
                LabShelf.laboratory_id == laboratory_id
            )
        )
        return (result.scalar() or 0) + 1

    async def _stored_samples(self, shelf_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(StoragePosition.current_count), 0)).where(
                StoragePosition.shelf_id == shelf_id,
                StoragePosition.is_deleted == False,  # noqa: E712
            )
        )
        return result.scalar() or 0
