"""Storage schemas: Laboratory layout, Shelf, Position, occupancy and client view."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from app.models.enums import HistoryAction, UtilizationBand


# --- Utilization ---

class UtilizationRead(BaseModel):
    total_positions: int
    occupied_positions: int
    total_capacity: int
    current_count: int
    available_capacity: int
    # None when there is no capacity to measure against
    utilization_pct: float | None
    band: UtilizationBand | None


# --- Shelf ---

class ShelfCreate(BaseModel):
    shelf_letter: str = Field(min_length=1, max_length=1)
    rows: int = Field(ge=1)
    columns: int = Field(ge=1)
    samples_per_position: int = Field(default=1, ge=1)
    x_position: int = Field(default=0, ge=0)
    y_position: int = Field(default=0, ge=0)
    client_id: uuid.UUID | None = None
    allow_client_view: bool = False


class ShelfUpdate(BaseModel):
    shelf_letter: str | None = Field(default=None, min_length=1, max_length=1)
    rows: int | None = Field(default=None, ge=1)
    columns: int | None = Field(default=None, ge=1)
    samples_per_position: int | None = Field(default=None, ge=1)
    x_position: int | None = Field(default=None, ge=0)
    y_position: int | None = Field(default=None, ge=0)
    client_id: uuid.UUID | None = None
    allow_client_view: bool | None = None
    # Version the caller last read
    version: int


class ShelfRead(BaseModel):
    id: uuid.UUID
    laboratory_id: uuid.UUID
    shelf_number: int
    shelf_letter: str
    rows: int
    columns: int
    samples_per_position: int
    total_capacity: int
    x_position: int
    y_position: int
    client_id: uuid.UUID | None
    allow_client_view: bool
    created_by: uuid.UUID | None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ShelfDetailRead(ShelfRead):
    utilization: UtilizationRead


class RegeneratePositionsResult(BaseModel):
    shelf_id: uuid.UUID
    positions_retired: int
    positions_created: int
    total_capacity: int


# --- StoragePosition ---

class PositionRead(BaseModel):
    id: uuid.UUID
    shelf_id: uuid.UUID
    laboratory_id: uuid.UUID
    row_index: int
    column_number: int
    position_code: str
    capacity_per_position: int
    current_count: int
    is_available: bool
    client_id: uuid.UUID | None
    allow_client_view: bool
    version: int

    model_config = {"from_attributes": True}


class PositionUpdate(BaseModel):
    client_id: uuid.UUID | None = None
    allow_client_view: bool | None = None
    capacity_per_position: int | None = Field(default=None, ge=1)
    version: int


class BulkPositionUpdate(BaseModel):
    position_ids: list[uuid.UUID] = Field(min_length=1, max_length=1000)
    client_id: uuid.UUID | None = None
    allow_client_view: bool = False
    atomic: bool = False


class OccupancyChange(BaseModel):
    delta: int = Field(description="Samples added (positive) or removed (negative)")
    note: str | None = Field(default=None, max_length=2000)
    version: int | None = None


class ShelfGridRead(BaseModel):
    shelf: ShelfRead
    grid: list[list[PositionRead | None]]
    positions: list[PositionRead]


class StorageHistoryRead(BaseModel):
    id: uuid.UUID
    laboratory_id: uuid.UUID
    shelf_id: uuid.UUID | None
    position_id: uuid.UUID | None
    action: HistoryAction
    actor_id: uuid.UUID | None
    note: str | None
    old_values: dict | None
    new_values: dict | None
    timestamp: datetime

    model_config = {"from_attributes": True}


# --- Batch results ---

class BatchItemRead(BaseModel):
    id: uuid.UUID
    code: str | None = None
    message: str | None = None


class BatchResultRead(BaseModel):
    summary: str
    succeeded: list[uuid.UUID]
    failed: list[BatchItemRead]


# --- Suggestions ---

class PositionSuggestion(BaseModel):
    position: PositionRead
    shelf_id: uuid.UUID
    shelf_letter: str
    score: int
    reasons: list[str]
    available_space: int
    is_recommended: bool


class SuggestionGroup(BaseModel):
    shelf_id: uuid.UUID
    shelf_letter: str
    is_client_shelf: bool
    position_ids: list[uuid.UUID]


class SuggestionRecommendation(BaseModel):
    position_id: uuid.UUID
    position_code: str
    reason: str


class SuggestionsRead(BaseModel):
    total_suggestions: int
    suggestions: list[PositionSuggestion]
    grouped_by_shelf: list[SuggestionGroup]
    recommendation: SuggestionRecommendation | None


# --- Floor plan ---

class ShelfFootprintRead(BaseModel):
    x: int
    y: int
    width: int
    height: int


class LayoutShelfRead(ShelfRead):
    footprint: ShelfFootprintRead
    utilization: UtilizationRead


class LaboratoryLayoutRead(BaseModel):
    id: uuid.UUID
    name: str
    location: str | None
    entrance_x_position: int
    entrance_y_position: int
    version: int
    total_shelves: int
    statistics: UtilizationRead


class LayoutRead(BaseModel):
    laboratory: LaboratoryLayoutRead
    shelves: list[LayoutShelfRead]
    scale: float | None = None


class ShelfPlacement(BaseModel):
    shelf_id: uuid.UUID
    x_position: int = Field(ge=0)
    y_position: int = Field(ge=0)
    version: int | None = None


class FloorPlanSave(BaseModel):
    entrance_x_position: int = Field(ge=0)
    entrance_y_position: int = Field(ge=0)
    version: int | None = None
    shelves: list[ShelfPlacement] = Field(default_factory=list)
    atomic: bool = True


# --- Client view ---

class ClientShelfView(BaseModel):
    shelf_id: uuid.UUID
    laboratory_id: uuid.UUID
    laboratory_name: str
    shelf_letter: str
    shelf_number: int
    rows: int
    columns: int
    positions: list[PositionRead]
    utilization: UtilizationRead


class ClientViewStatistics(BaseModel):
    total_shelves: int
    total_positions: int
    total_capacity: int
    current_count: int
    laboratories: int


class ClientStorageViewRead(BaseModel):
    shelves: list[ClientShelfView]
    statistics: ClientViewStatistics


class ClientLayoutShelfRead(BaseModel):
    shelf_id: uuid.UUID
    shelf_number: int
    shelf_letter: str
    rows: int
    columns: int
    x_position: int
    y_position: int
    footprint: ShelfFootprintRead
    utilization: UtilizationRead


class ClientLayoutLaboratoryRead(BaseModel):
    id: uuid.UUID
    name: str
    location: str | None
    entrance_x_position: int
    entrance_y_position: int
    shelves: list[ClientLayoutShelfRead]
    statistics: UtilizationRead


class ClientLayoutStatistics(BaseModel):
    total_laboratories: int
    total_shelves: int
    total_capacity: int
    current_count: int


class ClientStorageLayoutRead(BaseModel):
    laboratories: list[ClientLayoutLaboratoryRead]
    statistics: ClientLayoutStatistics
