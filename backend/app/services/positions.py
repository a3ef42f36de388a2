"""Position store: provisioning, occupancy, client assignment and reads."""

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.core.exceptions import (
    BatchResult,
    CapacityExceeded,
    Conflict,
    Forbidden,
    InvalidDimensions,
    NegativeOccupancy,
    NotFound,
    PartialBulkFailure,
    StorageError,
    StorageInUse,
)
from app.models.enums import HistoryAction, PositionAvailability
from app.models.storage import Laboratory, LabShelf, StorageHistory, StoragePosition
from app.models.values import ShelfDimensions
from app.services.addressing import position_code
from app.services.authorization import AuthContext, StorageAction, authorize
from app.services.history import HistoryService
from app.services.utilization import UtilizationSummary, from_totals, summarize

logger = logging.getLogger(__name__)


def effective_assignment(
    position: StoragePosition, shelf: LabShelf
) -> tuple[uuid.UUID | None, bool]:
    """Position-level assignment wins when present, else the shelf's applies."""
    if position.client_id is not None:
        return position.client_id, position.allow_client_view
    return shelf.client_id, shelf.allow_client_view


def is_visible_to_client(
    position: StoragePosition, shelf: LabShelf, client_id: uuid.UUID
) -> bool:
    assigned, allow_view = effective_assignment(position, shelf)
    if not allow_view:
        return False
    return assigned is None or assigned == client_id


def check_version(record, expected_version: int | None, label: str) -> None:
    if expected_version is not None and record.version != expected_version:
        raise Conflict(
            f"{label} was modified by someone else "
            f"(expected version {expected_version}, found {record.version}). "
            f"Reload and try again."
        )


class PositionService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.history = HistoryService(db)

    # ── Provisioning ──────────────────────────────────────────────────

    async def create_positions_for_shelf(self, shelf: LabShelf) -> int:
        """Create the missing cells of the shelf's grid. Safe to repeat."""
        dims = ShelfDimensions(shelf.rows, shelf.columns, shelf.samples_per_position)
        existing = {
            (p.row_index, p.column_number)
            for p in await self._active_positions(shelf.id)
        }

        created = 0
        for r, c in dims.cells():
            if (r, c + 1) in existing:
                continue
            self.db.add(StoragePosition(
                id=uuid.uuid4(),
                shelf_id=shelf.id,
                laboratory_id=shelf.laboratory_id,
                row_index=r,
                column_number=c + 1,
                position_code=position_code(shelf.shelf_letter, r, c),
                capacity_per_position=dims.samples_per_position,
                current_count=0,
                is_available=True,
                allow_client_view=False,
            ))
            created += 1
        if created:
            await self.db.flush()
        return created

    async def check_reshape(self, shelf: LabShelf, dims: ShelfDimensions) -> None:
        """Refuse a reshape that would drop samples or squeeze them out."""
        capacity_changed = dims.samples_per_position != shelf.samples_per_position
        blocked = []
        for p in await self._active_positions(shelf.id):
            if p.current_count == 0:
                continue
            if p.row_index >= dims.rows or p.column_number > dims.columns:
                blocked.append({"position_code": p.position_code, "reason": "removed"})
            elif capacity_changed and p.current_count > dims.samples_per_position:
                blocked.append({"position_code": p.position_code, "reason": "over_capacity"})
        if blocked:
            raise StorageInUse(
                f"{len(blocked)} occupied position(s) would be removed or overfilled. "
                "Move the samples first.",
                details=blocked,
            )

    async def sync_positions(self, shelf: LabShelf, *, reset_capacity: bool) -> dict:
        """Bring the position grid in line with the shelf definition.

        Cells outside the grid are retired, codes are rewritten after a
        letter change and new cells are provisioned. Call ``check_reshape``
        first; occupied cells are never retired here.
        """
        dims = ShelfDimensions(shelf.rows, shelf.columns, shelf.samples_per_position)
        now = datetime.now(timezone.utc)
        retired = recoded = 0

        for p in await self._active_positions(shelf.id):
            if p.row_index >= dims.rows or p.column_number > dims.columns:
                if p.current_count:
                    raise StorageInUse(f"Position {p.position_code} still holds samples.")
                p.is_deleted = True
                p.deleted_at = now
                retired += 1
                continue
            code = position_code(shelf.shelf_letter, p.row_index, p.column_number - 1)
            if p.position_code != code:
                p.position_code = code
                recoded += 1
            if reset_capacity and p.capacity_per_position != dims.samples_per_position:
                if p.current_count > dims.samples_per_position:
                    raise StorageInUse(
                        f"Position {p.position_code} holds more samples than the new capacity."
                    )
                p.capacity_per_position = dims.samples_per_position
                p.is_available = p.current_count < p.capacity_per_position

        await self._flush()
        created = await self.create_positions_for_shelf(shelf)
        return {"created": created, "retired": retired, "recoded": recoded}

    async def retire_all(self, shelf_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(StoragePosition)
            .where(
                StoragePosition.shelf_id == shelf_id,
                StoragePosition.is_deleted == False,  # noqa: E712
            )
            .values(
                is_deleted=True,
                deleted_at=datetime.now(timezone.utc),
                version=StoragePosition.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Occupancy ─────────────────────────────────────────────────────

    async def set_occupancy(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        position_id: uuid.UUID,
        delta: int,
        *,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> StoragePosition:
        """Atomically add ``delta`` samples (negative to remove)."""
        authorize(ctx, StorageAction.RECORD_OCCUPANCY, laboratory_id)
        if delta == 0:
            raise ValueError("Occupancy delta must be non-zero.")

        new_count = StoragePosition.current_count + delta
        conditions = [
            StoragePosition.id == position_id,
            StoragePosition.laboratory_id == laboratory_id,
            StoragePosition.is_deleted == False,  # noqa: E712
            new_count >= 0,
            new_count <= StoragePosition.capacity_per_position,
        ]
        if expected_version is not None:
            conditions.append(StoragePosition.version == expected_version)

        # Single conditional UPDATE: the bounds check and the write cannot
        # interleave with another writer.
        result = await self.db.execute(
            update(StoragePosition)
            .where(*conditions)
            .values(
                current_count=new_count,
                is_available=new_count < StoragePosition.capacity_per_position,
                version=StoragePosition.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        position = await self._reload(laboratory_id, position_id)

        if result.rowcount == 0:
            if position is None:
                raise NotFound("Storage position not found.")
            check_version(position, expected_version, "Storage position")
            attempted = position.current_count + delta
            if attempted < 0:
                raise NegativeOccupancy(
                    f"Cannot remove {-delta} sample(s) from {position.position_code}: "
                    f"only {position.current_count} stored."
                )
            raise CapacityExceeded(
                f"Position {position.position_code} is at "
                f"{position.current_count}/{position.capacity_per_position}; "
                f"cannot add {delta}."
            )

        await self.history.record(
            laboratory_id=laboratory_id,
            action=HistoryAction.OCCUPANCY_CHANGE,
            actor_id=ctx.user_id,
            shelf_id=position.shelf_id,
            position_id=position.id,
            note=note,
            old_values={"current_count": position.current_count - delta},
            new_values={"current_count": position.current_count, "delta": delta},
        )

        if delta > 0:
            await self._check_capacity_warning(position.shelf_id)
        return position

    # ── Client assignment ─────────────────────────────────────────────

    async def assign_client(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        position_id: uuid.UUID,
        client_id: uuid.UUID | None,
        allow_client_view: bool,
        *,
        expected_version: int | None = None,
    ) -> StoragePosition:
        authorize(ctx, StorageAction.ASSIGN, laboratory_id)
        position = await self._get_position(laboratory_id, position_id)
        return await self.update_position_fields(
            ctx,
            position,
            {"client_id": client_id, "allow_client_view": allow_client_view},
            expected_version=expected_version,
        )

    async def update_position(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        position_id: uuid.UUID,
        changes: dict,
        *,
        expected_version: int | None = None,
    ) -> StoragePosition:
        """PATCH semantics for client_id, allow_client_view and capacity."""
        authorize(ctx, StorageAction.ASSIGN, laboratory_id)
        position = await self._get_position(laboratory_id, position_id)
        return await self.update_position_fields(
            ctx, position, changes, expected_version=expected_version,
        )

    async def update_position_fields(
        self,
        ctx: AuthContext,
        position: StoragePosition,
        changes: dict,
        *,
        expected_version: int | None = None,
    ) -> StoragePosition:
        check_version(position, expected_version, "Storage position")

        capacity = changes.get("capacity_per_position")
        if capacity is not None and capacity != position.capacity_per_position:
            if not 1 <= capacity <= settings.MAX_SAMPLES_PER_POSITION:
                raise InvalidDimensions(
                    "Position capacity must be between 1 and "
                    f"{settings.MAX_SAMPLES_PER_POSITION}."
                )
            if capacity < position.current_count:
                raise StorageInUse(
                    f"Position {position.position_code} holds "
                    f"{position.current_count} sample(s); capacity cannot drop to {capacity}."
                )

        old_values = {}
        new_values = {}
        for field in ("client_id", "allow_client_view", "capacity_per_position"):
            if field not in changes:
                continue
            value = changes[field]
            if field != "client_id" and value is None:
                continue
            current = getattr(position, field)
            if value != current:
                old_values[field] = current
                setattr(position, field, value)
                new_values[field] = value

        if not new_values:
            return position

        if "capacity_per_position" in new_values:
            position.is_available = position.current_count < position.capacity_per_position
        await self._flush()

        action = (
            HistoryAction.CAPACITY_CHANGE
            if set(new_values) == {"capacity_per_position"}
            else HistoryAction.CLIENT_ASSIGNMENT
        )
        await self.history.record(
            laboratory_id=position.laboratory_id,
            action=action,
            actor_id=ctx.user_id,
            shelf_id=position.shelf_id,
            position_id=position.id,
            old_values=old_values,
            new_values=new_values,
        )
        return position

    async def bulk_assign_clients(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        position_ids: Iterable[uuid.UUID],
        client_id: uuid.UUID | None,
        allow_client_view: bool,
        *,
        atomic: bool = False,
    ) -> BatchResult:
        """Assign many positions, each inside its own savepoint.

        A failing id never undoes the others unless ``atomic`` is set, in
        which case ``PartialBulkFailure`` is raised and the caller's
        transaction must be rolled back.
        """
        authorize(ctx, StorageAction.ASSIGN, laboratory_id)
        result = BatchResult()
        for position_id in dict.fromkeys(position_ids):
            try:
                async with self.db.begin_nested():
                    position = await self._get_position(laboratory_id, position_id)
                    await self.update_position_fields(
                        ctx,
                        position,
                        {"client_id": client_id, "allow_client_view": allow_client_view},
                    )
                    label = position.position_code
            except StorageError as exc:
                result.record_failure(position_id, exc)
            else:
                result.record_success(position_id, label)

        logger.info(
            "Bulk assignment in laboratory %s: %s", laboratory_id, result.summary,
        )
        if atomic and not result.all_succeeded:
            raise PartialBulkFailure(result)
        return result

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_grid(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        shelf_id: uuid.UUID,
        availability: PositionAvailability = PositionAvailability.ALL,
    ) -> dict:
        """Shelf metadata, an R x C grid (None for ungoverned cells) and a flat list."""
        authorize(ctx, StorageAction.VIEW, laboratory_id)
        shelf = await self._get_shelf(laboratory_id, shelf_id)
        positions = await self._active_positions(shelf.id)

        if availability == PositionAvailability.AVAILABLE:
            positions = [p for p in positions if p.is_available]
        elif availability == PositionAvailability.OCCUPIED:
            positions = [p for p in positions if p.current_count > 0]

        grid: list[list[StoragePosition | None]] = [
            [None] * shelf.columns for _ in range(shelf.rows)
        ]
        for p in positions:
            if p.row_index < shelf.rows and p.column_number <= shelf.columns:
                grid[p.row_index][p.column_number - 1] = p

        return {"shelf": shelf, "grid": grid, "positions": positions}

    async def get_position_history(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        position_id: uuid.UUID,
    ) -> list[StorageHistory]:
        authorize(ctx, StorageAction.VIEW, laboratory_id)
        await self._get_position(laboratory_id, position_id)
        return await self.history.list_for_position(position_id)

    async def utilization_for_shelves(
        self, shelf_ids: list[uuid.UUID], *, strict: bool = False
    ) -> dict[uuid.UUID, UtilizationSummary]:
        """One aggregate query for many shelves; shelves without positions included."""
        if not shelf_ids:
            return {}
        result = await self.db.execute(
            select(
                StoragePosition.shelf_id,
                func.count(StoragePosition.id),
                func.sum(case((StoragePosition.current_count > 0, 1), else_=0)),
                func.sum(StoragePosition.capacity_per_position),
                func.sum(StoragePosition.current_count),
            )
            .where(
                StoragePosition.shelf_id.in_(shelf_ids),
                StoragePosition.is_deleted == False,  # noqa: E712
            )
            .group_by(StoragePosition.shelf_id)
        )
        totals = {
            shelf_id: (total, occupied or 0, capacity or 0, count or 0)
            for shelf_id, total, occupied, capacity, count in result.all()
        }
        return {
            shelf_id: from_totals(*totals.get(shelf_id, (0, 0, 0, 0)), strict=strict)
            for shelf_id in shelf_ids
        }

    async def suggest_positions(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        client_id: uuid.UUID | None,
        limit: int | None = None,
    ) -> dict:
        """Rank available positions for an incoming sample of ``client_id``.

        Scoring: +100 for a position dedicated to the client, up to +10 for
        free space (one point per 10% free), +5 for an empty position.
        Positions reserved for a different client are never suggested.
        """
        authorize(ctx, StorageAction.VIEW, laboratory_id)
        limit = limit or settings.SUGGESTION_LIMIT

        result = await self.db.execute(
            select(StoragePosition, LabShelf)
            .join(LabShelf, StoragePosition.shelf_id == LabShelf.id)
            .where(
                StoragePosition.laboratory_id == laboratory_id,
                StoragePosition.is_deleted == False,  # noqa: E712
                StoragePosition.is_available == True,  # noqa: E712
                LabShelf.is_deleted == False,  # noqa: E712
            )
            .order_by(StoragePosition.current_count.asc(), StoragePosition.position_code.asc())
        )

        scored = []
        for position, shelf in result.all():
            assigned, _ = effective_assignment(position, shelf)
            if assigned is not None and assigned != client_id:
                continue

            score = 0
            reasons = []
            if assigned is not None:
                score += 100
                reasons.append("Dedicated to this client")

            free = position.capacity_per_position - position.current_count
            free_pct = free / position.capacity_per_position * 100
            score += int(free_pct // 10)
            if free_pct > 80:
                reasons.append("Plenty of space available")
            elif free_pct > 50:
                reasons.append("Good availability")

            if position.current_count == 0:
                score += 5
                reasons.append("Empty position")

            scored.append({
                "position": position,
                "shelf_id": shelf.id,
                "shelf_letter": shelf.shelf_letter,
                "score": score,
                "reasons": reasons,
                "available_space": free,
                "is_recommended": score >= 100,
            })

        scored.sort(key=lambda s: (-s["score"], s["position"].position_code))
        top = scored[:limit]

        grouped: dict[uuid.UUID, dict] = {}
        for s in top:
            group = grouped.setdefault(s["shelf_id"], {
                "shelf_id": s["shelf_id"],
                "shelf_letter": s["shelf_letter"],
                "is_client_shelf": s["is_recommended"],
                "position_ids": [],
            })
            group["position_ids"].append(s["position"].id)

        recommendation = None
        if top:
            best = top[0]
            recommendation = {
                "position_id": best["position"].id,
                "position_code": best["position"].position_code,
                "reason": ", ".join(best["reasons"]),
            }
        return {
            "total_suggestions": len(top),
            "suggestions": top,
            "grouped_by_shelf": list(grouped.values()),
            "recommendation": recommendation,
        }

    async def client_storage_view(self, ctx: AuthContext) -> dict:
        """Read-only view of what the caller's client may see."""
        if ctx.client_id is None:
            raise Forbidden("Your account is not associated with a client.")
        client_id = ctx.client_id

        result = await self.db.execute(
            select(StoragePosition, LabShelf, Laboratory.name)
            .join(LabShelf, StoragePosition.shelf_id == LabShelf.id)
            .join(Laboratory, LabShelf.laboratory_id == Laboratory.id)
            .where(
                StoragePosition.is_deleted == False,  # noqa: E712
                LabShelf.is_deleted == False,  # noqa: E712
                or_(
                    StoragePosition.client_id == client_id,
                    StoragePosition.client_id.is_(None),
                ),
            )
            .order_by(LabShelf.shelf_number.asc(), StoragePosition.row_index.asc(),
                      StoragePosition.column_number.asc())
        )

        shelves: dict[uuid.UUID, dict] = {}
        for position, shelf, lab_name in result.all():
            if not is_visible_to_client(position, shelf, client_id):
                continue
            entry = shelves.setdefault(shelf.id, {
                "shelf": shelf,
                "laboratory_name": lab_name,
                "positions": [],
            })
            entry["positions"].append(position)

        for entry in shelves.values():
            entry["utilization"] = summarize(
                ((p.current_count, p.capacity_per_position) for p in entry["positions"]),
                strict=False,
            )

        return {
            "shelves": list(shelves.values()),
            "statistics": {
                "total_shelves": len(shelves),
                "total_positions": sum(len(e["positions"]) for e in shelves.values()),
                "total_capacity": sum(e["utilization"].total_capacity for e in shelves.values()),
                "current_count": sum(e["utilization"].current_count for e in shelves.values()),
                "laboratories": len({e["shelf"].laboratory_id for e in shelves.values()}),
            },
        }

    # ── Private helpers ───────────────────────────────────────────────

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise Conflict(
                "Storage position was modified concurrently. Reload and try again."
            ) from exc

    async def _active_positions(self, shelf_id: uuid.UUID) -> list[StoragePosition]:
        result = await self.db.execute(
            select(StoragePosition)
            .where(
                StoragePosition.shelf_id == shelf_id,
                StoragePosition.is_deleted == False,  # noqa: E712
            )
            .order_by(StoragePosition.row_index.asc(), StoragePosition.column_number.asc())
        )
        return list(result.scalars().all())

    async def _get_position(
        self, laboratory_id: uuid.UUID, position_id: uuid.UUID
    ) -> StoragePosition:
        result = await self.db.execute(
            select(StoragePosition).where(
                StoragePosition.id == position_id,
                StoragePosition.laboratory_id == laboratory_id,
                StoragePosition.is_deleted == False,  # noqa: E712
            )
        )
        position = result.scalar_one_or_none()
        if position is None:
            raise NotFound("Storage position not found.")
        return position

    async def _reload(
        self, laboratory_id: uuid.UUID, position_id: uuid.UUID
    ) -> StoragePosition | None:
        result = await self.db.execute(
            select(StoragePosition)
            .where(
                StoragePosition.id == position_id,
                StoragePosition.laboratory_id == laboratory_id,
                StoragePosition.is_deleted == False,  # noqa: E712
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_shelf(self, laboratory_id: uuid.UUID, shelf_id: uuid.UUID) -> LabShelf:
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

    async def _check_capacity_warning(self, shelf_id: uuid.UUID) -> None:
        """Log when a shelf crosses the capacity warning threshold."""
        stats = (await self.utilization_for_shelves([shelf_id]))[shelf_id]
        if stats.utilization_pct is None:
            return
        if stats.utilization_pct / 100.0 < settings.CAPACITY_WARNING_THRESHOLD:
            return
        logger.warning(
            "Shelf %s capacity warning: %.1f%% (%s/%s samples)",
            shelf_id,
            stats.utilization_pct,
            stats.current_count,
            stats.total_capacity,
        )

