"""Floor-plan layout for staff and clients: shelf footprints, render scale and batched saves."""

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.core.exceptions import BatchResult, Conflict, PartialBulkFailure, StorageError
from app.models.enums import HistoryAction
from app.models.storage import Laboratory, LabShelf
from app.models.values import Coordinates
from app.services.authorization import AuthContext, StorageAction, authorize
from app.services.history import HistoryService
from app.services.positions import check_version
from app.services.shelves import ShelfService
from app.services.utilization import combine

logger = logging.getLogger(__name__)

# Each column of a shelf takes two floor cells; every shelf is two cells deep.
CELLS_PER_COLUMN = 2
SHELF_DEPTH_CELLS = 2


@dataclass(frozen=True)
class ShelfFootprint:
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


@dataclass(frozen=True)
class ShelfPlacement:
    """Requested new coordinates for one shelf in a floor-plan save."""

    shelf_id: uuid.UUID
    coordinates: Coordinates
    version: int | None = None


def footprint_for(shelf: LabShelf) -> ShelfFootprint:
    return ShelfFootprint(
        x=shelf.x_position,
        y=shelf.y_position,
        width=shelf.columns * CELLS_PER_COLUMN,
        height=SHELF_DEPTH_CELLS,
    )


def compute_layout_scale(
    footprints: Iterable[ShelfFootprint],
    entrance: Coordinates,
    viewport_width: float,
    viewport_height: float,
    *,
    base_unit: float | None = None,
    padding: int | None = None,
    margin: float | None = None,
    min_scale: float | None = None,
    max_scale: float | None = None,
) -> float:
    """Largest scale at which every shelf and the entrance fit the viewport.

    Extent is measured in grid cells from the origin, plus ``padding``
    cells; the result is clamped to [min_scale, max_scale].
    """
    base_unit = settings.LAYOUT_BASE_UNIT if base_unit is None else base_unit
    padding = settings.LAYOUT_PADDING_CELLS if padding is None else padding
    margin = settings.LAYOUT_MARGIN if margin is None else margin
    min_scale = settings.LAYOUT_MIN_SCALE if min_scale is None else min_scale
    max_scale = settings.LAYOUT_MAX_SCALE if max_scale is None else max_scale

    if viewport_width <= 0 or viewport_height <= 0:
        raise ValueError("Viewport dimensions must be positive.")

    extent_x, extent_y = entrance.x, entrance.y
    for fp in footprints:
        extent_x = max(extent_x, fp.right)
        extent_y = max(extent_y, fp.bottom)
    extent_x += padding
    extent_y += padding

    candidates = []
    if extent_x > 0:
        candidates.append((viewport_width - margin) / (extent_x * base_unit))
    if extent_y > 0:
        candidates.append((viewport_height - margin) / (extent_y * base_unit))
    if not candidates:
        return max_scale

    return max(min_scale, min(max_scale, min(candidates)))


class LayoutService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.shelves = ShelfService(db)
        self.history = HistoryService(db)

    async def get_layout(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        viewport: tuple[float, float] | None = None,
    ) -> dict:
        authorize(ctx, StorageAction.VIEW, laboratory_id)
        lab = await self.shelves.get_laboratory(laboratory_id)
        shelves = await self.shelves.active_shelves(laboratory_id)
        summaries = await self.shelves.positions.utilization_for_shelves(
            [s.id for s in shelves]
        )

        entries = [
            {"shelf": s, "footprint": footprint_for(s), "utilization": summaries[s.id]}
            for s in shelves
        ]
        layout = {
            "laboratory": lab,
            "total_shelves": len(shelves),
            "statistics": combine(summaries.values(), strict=False),
            "shelves": entries,
            "scale": None,
        }
        if viewport is not None:
            layout["scale"] = compute_layout_scale(
                [e["footprint"] for e in entries],
                Coordinates(lab.entrance_x_position, lab.entrance_y_position),
                *viewport,
            )
        return layout

    async def client_storage_layout(self, ctx: AuthContext) -> dict:
        """Floor plans of every laboratory holding storage the caller's client may see.

        Shelf visibility follows the client storage view; utilization
        counts only the visible positions.
        """
        view = await self.shelves.positions.client_storage_view(ctx)

        grouped: dict[uuid.UUID, list[dict]] = {}
        for entry in view["shelves"]:
            shelf = entry["shelf"]
            grouped.setdefault(shelf.laboratory_id, []).append({
                "shelf": shelf,
                "footprint": footprint_for(shelf),
                "utilization": entry["utilization"],
            })

        labs = []
        if grouped:
            result = await self.db.execute(
                select(Laboratory)
                .where(Laboratory.id.in_(list(grouped)))
                .order_by(Laboratory.name.asc())
            )
            labs = list(result.scalars().all())

        laboratories = [
            {
                "laboratory": lab,
                "shelves": grouped[lab.id],
                "statistics": combine(
                    (e["utilization"] for e in grouped[lab.id]), strict=False
                ),
            }
            for lab in labs
        ]
        return {
            "laboratories": laboratories,
            "statistics": {
                "total_laboratories": len(laboratories),
                "total_shelves": view["statistics"]["total_shelves"],
                "total_capacity": view["statistics"]["total_capacity"],
                "current_count": view["statistics"]["current_count"],
            },
        }

    async def save_floor_plan(
        self,
        ctx: AuthContext,
        laboratory_id: uuid.UUID,
        entrance: Coordinates,
        placements: Iterable[ShelfPlacement],
        *,
        lab_version: int | None = None,
        atomic: bool = True,
    ) -> BatchResult:
        """Save the entrance, then every shelf placement in its own savepoint.

        A failure on the laboratory itself propagates before any shelf is
        touched. With ``atomic`` a single failed shelf raises
        ``PartialBulkFailure``; otherwise the successful subset stays and the
        per-shelf report is returned.
        """
        authorize(ctx, StorageAction.ASSIGN, laboratory_id)
        lab = await self.shelves.get_laboratory(laboratory_id)
        check_version(lab, lab_version, "Laboratory")

        old_entrance = {
            "entrance_x_position": lab.entrance_x_position,
            "entrance_y_position": lab.entrance_y_position,
        }
        lab.entrance_x_position = entrance.x
        lab.entrance_y_position = entrance.y
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise Conflict("Laboratory was modified concurrently. Reload and try again.") from exc

        result = BatchResult()
        for placement in placements:
            try:
                async with self.db.begin_nested():
                    label = await self._move_shelf(laboratory_id, placement)
            except StorageError as exc:
                result.record_failure(placement.shelf_id, exc)
            else:
                result.record_success(placement.shelf_id, label)

        if atomic and not result.all_succeeded:
            raise PartialBulkFailure(result)

        await self.history.record(
            laboratory_id=laboratory_id,
            action=HistoryAction.LAYOUT_UPDATE,
            actor_id=ctx.user_id,
            note=result.summary,
            old_values=old_entrance,
            new_values={
                "entrance_x_position": entrance.x,
                "entrance_y_position": entrance.y,
                "shelves_moved": len(result.succeeded),
            },
        )
        logger.info("Floor plan saved for laboratory %s: %s", laboratory_id, result.summary)
        return result

    async def _move_shelf(self, laboratory_id: uuid.UUID, placement: ShelfPlacement) -> str:
        shelf = await self.shelves.get_shelf_record(laboratory_id, placement.shelf_id)
        check_version(shelf, placement.version, f"Shelf {shelf.shelf_letter}")
        shelf.x_position = placement.coordinates.x
        shelf.y_position = placement.coordinates.y
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise Conflict(f"Shelf {shelf.shelf_letter} was modified concurrently.") from exc
        return shelf.shelf_letter
