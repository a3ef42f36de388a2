"""Storage endpoints: floor plan, shelves, positions, occupancy, suggestions."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import CurrentAuth
from app.database import get_db
from app.models.enums import PositionAvailability
from app.models.storage import LabShelf
from app.models.values import Coordinates
from app.schemas.storage import (
    BatchResultRead,
    BulkPositionUpdate,
    FloorPlanSave,
    LaboratoryLayoutRead,
    LayoutRead,
    LayoutShelfRead,
    OccupancyChange,
    PositionRead,
    PositionUpdate,
    RegeneratePositionsResult,
    ShelfCreate,
    ShelfDetailRead,
    ShelfFootprintRead,
    ShelfGridRead,
    ShelfRead,
    ShelfUpdate,
    StorageHistoryRead,
    SuggestionsRead,
    UtilizationRead,
)
from app.services.layout import LayoutService, ShelfPlacement
from app.services.positions import PositionService
from app.services.shelves import ShelfService
from app.services.utilization import UtilizationSummary

router = APIRouter(prefix="/laboratories/{laboratory_id}", tags=["storage"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


def _shelf_detail(shelf: LabShelf, summary: UtilizationSummary) -> dict:
    return ShelfDetailRead(
        **ShelfRead.model_validate(shelf).model_dump(),
        utilization=UtilizationRead(**summary.as_dict()),
    ).model_dump(mode="json")


# ── Floor plan ───────────────────────────────────────────────────────

@router.get("/storage-layout", response_model=dict)
async def get_storage_layout(
    laboratory_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
    viewport_width: float | None = Query(None, gt=0),
    viewport_height: float | None = Query(None, gt=0),
):
    """Laboratory entrance, shelves with footprints and utilization.

    Pass both viewport dimensions to get the render scale as well.
    """
    viewport = None
    if viewport_width is not None and viewport_height is not None:
        viewport = (viewport_width, viewport_height)
    layout = await LayoutService(db).get_layout(ctx, laboratory_id, viewport)

    lab = layout["laboratory"]
    data = LayoutRead(
        laboratory=LaboratoryLayoutRead(
            id=lab.id,
            name=lab.name,
            location=lab.location,
            entrance_x_position=lab.entrance_x_position,
            entrance_y_position=lab.entrance_y_position,
            version=lab.version,
            total_shelves=layout["total_shelves"],
            statistics=UtilizationRead(**layout["statistics"].as_dict()),
        ),
        shelves=[
            LayoutShelfRead(
                **ShelfRead.model_validate(e["shelf"]).model_dump(),
                footprint=ShelfFootprintRead(
                    x=e["footprint"].x,
                    y=e["footprint"].y,
                    width=e["footprint"].width,
                    height=e["footprint"].height,
                ),
                utilization=UtilizationRead(**e["utilization"].as_dict()),
            )
            for e in layout["shelves"]
        ],
        scale=layout["scale"],
    )
    return {"success": True, "data": data.model_dump(mode="json")}


@router.put("/storage-layout", response_model=dict)
async def save_storage_layout(
    laboratory_id: uuid.UUID,
    data: FloorPlanSave,
    db: DbSession,
    ctx: CurrentAuth,
):
    """Save entrance and shelf coordinates.

    Atomic saves either apply everything or fail with 409. Best-effort saves
    (``atomic: false``) answer 207 when some shelves failed; retry those.
    """
    result = await LayoutService(db).save_floor_plan(
        ctx,
        laboratory_id,
        Coordinates(data.entrance_x_position, data.entrance_y_position),
        [
            ShelfPlacement(
                shelf_id=p.shelf_id,
                coordinates=Coordinates(p.x_position, p.y_position),
                version=p.version,
            )
            for p in data.shelves
        ],
        lab_version=data.version,
        atomic=data.atomic,
    )
    body = {
        "success": result.all_succeeded,
        "data": BatchResultRead(**result.as_dict()).model_dump(mode="json"),
    }
    if not result.all_succeeded:
        return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=body)
    return body


# ── Shelves ──────────────────────────────────────────────────────────

@router.get("/shelves", response_model=dict)
async def list_shelves(
    laboratory_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
):
    """List active shelves with utilization."""
    rows = await ShelfService(db).list_shelves(ctx, laboratory_id)
    return {
        "success": True,
        "data": [_shelf_detail(shelf, summary) for shelf, summary in rows],
        "meta": {"total": len(rows)},
    }


@router.post("/shelves", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_shelf(
    laboratory_id: uuid.UUID,
    data: ShelfCreate,
    db: DbSession,
    ctx: CurrentAuth,
):
    """Create a shelf and provision its positions."""
    svc = ShelfService(db)
    shelf = await svc.create_shelf(ctx, laboratory_id, data)
    shelf, summary = await svc.get_shelf(ctx, laboratory_id, shelf.id)
    return {"success": True, "data": _shelf_detail(shelf, summary)}


@router.get("/shelves/{shelf_id}", response_model=dict)
async def get_shelf(
    laboratory_id: uuid.UUID,
    shelf_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
):
    shelf, summary = await ShelfService(db).get_shelf(ctx, laboratory_id, shelf_id)
    return {"success": True, "data": _shelf_detail(shelf, summary)}


@router.patch("/shelves/{shelf_id}", response_model=dict)
async def update_shelf(
    laboratory_id: uuid.UUID,
    shelf_id: uuid.UUID,
    data: ShelfUpdate,
    db: DbSession,
    ctx: CurrentAuth,
):
    """Partial update; reshaping keeps positions in sync."""
    svc = ShelfService(db)
    await svc.update_shelf(
        ctx,
        laboratory_id,
        shelf_id,
        data.model_dump(exclude_unset=True, exclude={"version"}),
        expected_version=data.version,
    )
    shelf, summary = await svc.get_shelf(ctx, laboratory_id, shelf_id)
    return {"success": True, "data": _shelf_detail(shelf, summary)}


@router.delete("/shelves/{shelf_id}", response_model=dict)
async def delete_shelf(
    laboratory_id: uuid.UUID,
    shelf_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
    confirm: bool = Query(False),
):
    """Soft-delete an empty shelf. Requires ``?confirm=true``."""
    shelf = await ShelfService(db).delete_shelf(ctx, laboratory_id, shelf_id, confirm=confirm)
    return {
        "success": True,
        "data": {"id": str(shelf.id), "message": f"Shelf {shelf.shelf_letter} deleted."},
    }


@router.get("/shelves/{shelf_id}/utilization", response_model=dict)
async def shelf_utilization(
    laboratory_id: uuid.UUID,
    shelf_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
):
    summary = await ShelfService(db).shelf_utilization(ctx, laboratory_id, shelf_id)
    return {"success": True, "data": UtilizationRead(**summary.as_dict()).model_dump(mode="json")}


@router.get("/shelves/{shelf_id}/history", response_model=dict)
async def shelf_history(
    laboratory_id: uuid.UUID,
    shelf_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
):
    entries = await ShelfService(db).get_shelf_history(ctx, laboratory_id, shelf_id)
    return {
        "success": True,
        "data": [StorageHistoryRead.model_validate(e).model_dump(mode="json") for e in entries],
    }


@router.post("/shelves/{shelf_id}/generate-positions", response_model=dict)
async def generate_positions(
    laboratory_id: uuid.UUID,
    shelf_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
):
    """Rebuild an empty shelf's positions from its definition."""
    result = await ShelfService(db).regenerate_positions(ctx, laboratory_id, shelf_id)
    return {
        "success": True,
        "data": RegeneratePositionsResult(**result).model_dump(mode="json"),
    }


@router.get("/shelves/{shelf_id}/positions", response_model=dict)
async def shelf_positions(
    laboratory_id: uuid.UUID,
    shelf_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
    availability: PositionAvailability = Query(PositionAvailability.ALL),
):
    """Shelf grid (rows x columns, null where no position) and flat list."""
    grid = await PositionService(db).get_grid(ctx, laboratory_id, shelf_id, availability)
    data = ShelfGridRead(
        shelf=ShelfRead.model_validate(grid["shelf"]),
        grid=[
            [PositionRead.model_validate(p) if p is not None else None for p in row]
            for row in grid["grid"]
        ],
        positions=[PositionRead.model_validate(p) for p in grid["positions"]],
    )
    return {"success": True, "data": data.model_dump(mode="json")}


# ── Positions ────────────────────────────────────────────────────────

@router.get("/positions/suggestions", response_model=dict)
async def suggest_positions(
    laboratory_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
    client_id: uuid.UUID | None = None,
    limit: int | None = Query(None, ge=1, le=100),
):
    """Rank available positions for an incoming sample."""
    result = await PositionService(db).suggest_positions(ctx, laboratory_id, client_id, limit)
    data = SuggestionsRead(
        total_suggestions=result["total_suggestions"],
        suggestions=[
            {**s, "position": PositionRead.model_validate(s["position"])}
            for s in result["suggestions"]
        ],
        grouped_by_shelf=result["grouped_by_shelf"],
        recommendation=result["recommendation"],
    )
    return {"success": True, "data": data.model_dump(mode="json")}


@router.patch("/positions", response_model=dict)
async def bulk_update_positions(
    laboratory_id: uuid.UUID,
    data: BulkPositionUpdate,
    db: DbSession,
    ctx: CurrentAuth,
):
    """Assign a client to many positions; 207 when some of them failed."""
    result = await PositionService(db).bulk_assign_clients(
        ctx,
        laboratory_id,
        data.position_ids,
        data.client_id,
        data.allow_client_view,
        atomic=data.atomic,
    )
    body = {
        "success": result.all_succeeded,
        "data": BatchResultRead(**result.as_dict()).model_dump(mode="json"),
    }
    if not result.all_succeeded:
        return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=body)
    return body


@router.patch("/positions/{position_id}", response_model=dict)
async def update_position(
    laboratory_id: uuid.UUID,
    position_id: uuid.UUID,
    data: PositionUpdate,
    db: DbSession,
    ctx: CurrentAuth,
):
    """Change a position's client, visibility or capacity."""
    position = await PositionService(db).update_position(
        ctx,
        laboratory_id,
        position_id,
        data.model_dump(exclude_unset=True, exclude={"version"}),
        expected_version=data.version,
    )
    return {"success": True, "data": PositionRead.model_validate(position).model_dump(mode="json")}


@router.post("/positions/{position_id}/occupancy", response_model=dict)
async def record_occupancy(
    laboratory_id: uuid.UUID,
    position_id: uuid.UUID,
    data: OccupancyChange,
    db: DbSession,
    ctx: CurrentAuth,
):
    """Add (positive delta) or remove (negative delta) samples."""
    position = await PositionService(db).set_occupancy(
        ctx,
        laboratory_id,
        position_id,
        data.delta,
        note=data.note,
        expected_version=data.version,
    )
    return {"success": True, "data": PositionRead.model_validate(position).model_dump(mode="json")}


@router.get("/positions/{position_id}/history", response_model=dict)
async def position_history(
    laboratory_id: uuid.UUID,
    position_id: uuid.UUID,
    db: DbSession,
    ctx: CurrentAuth,
):
    entries = await PositionService(db).get_position_history(ctx, laboratory_id, position_id)
    return {
        "success": True,
        "data": [StorageHistoryRead.model_validate(e).model_dump(mode="json") for e in entries],
    }
