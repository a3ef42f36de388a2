"""Client-facing read-only storage views."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import CurrentAuth
from app.database import get_db
from app.schemas.storage import (
    ClientLayoutLaboratoryRead,
    ClientLayoutShelfRead,
    ClientLayoutStatistics,
    ClientShelfView,
    ClientStorageLayoutRead,
    ClientStorageViewRead,
    ClientViewStatistics,
    PositionRead,
    ShelfFootprintRead,
    UtilizationRead,
)
from app.services.layout import LayoutService
from app.services.positions import PositionService

router = APIRouter(prefix="/clients", tags=["client-view"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


@router.get("/me/storage-view", response_model=dict)
async def my_storage_view(db: DbSession, ctx: CurrentAuth):
    """Shelves and positions the caller's client is allowed to see."""
    view = await PositionService(db).client_storage_view(ctx)
    data = ClientStorageViewRead(
        shelves=[
            ClientShelfView(
                shelf_id=e["shelf"].id,
                laboratory_id=e["shelf"].laboratory_id,
                laboratory_name=e["laboratory_name"],
                shelf_letter=e["shelf"].shelf_letter,
                shelf_number=e["shelf"].shelf_number,
                rows=e["shelf"].rows,
                columns=e["shelf"].columns,
                positions=[PositionRead.model_validate(p) for p in e["positions"]],
                utilization=UtilizationRead(**e["utilization"].as_dict()),
            )
            for e in view["shelves"]
        ],
        statistics=ClientViewStatistics(**view["statistics"]),
    )
    return {"success": True, "data": data.model_dump(mode="json")}


@router.get("/me/storage-layout", response_model=dict)
async def my_storage_layout(db: DbSession, ctx: CurrentAuth):
    """Floor plans, grouped by laboratory, of the shelves the caller's client can see."""
    layout = await LayoutService(db).client_storage_layout(ctx)
    data = ClientStorageLayoutRead(
        laboratories=[
            ClientLayoutLaboratoryRead(
                id=entry["laboratory"].id,
                name=entry["laboratory"].name,
                location=entry["laboratory"].location,
                entrance_x_position=entry["laboratory"].entrance_x_position,
                entrance_y_position=entry["laboratory"].entrance_y_position,
                shelves=[
                    ClientLayoutShelfRead(
                        shelf_id=s["shelf"].id,
                        shelf_number=s["shelf"].shelf_number,
                        shelf_letter=s["shelf"].shelf_letter,
                        rows=s["shelf"].rows,
                        columns=s["shelf"].columns,
                        x_position=s["shelf"].x_position,
                        y_position=s["shelf"].y_position,
                        footprint=ShelfFootprintRead(
                            x=s["footprint"].x,
                            y=s["footprint"].y,
                            width=s["footprint"].width,
                            height=s["footprint"].height,
                        ),
                        utilization=UtilizationRead(**s["utilization"].as_dict()),
                    )
                    for s in entry["shelves"]
                ],
                statistics=UtilizationRead(**entry["statistics"].as_dict()),
            )
            for entry in layout["laboratories"]
        ],
        statistics=ClientLayoutStatistics(**layout["statistics"]),
    )
    return {"success": True, "data": data.model_dump(mode="json")}
