"""Storage hierarchy: Laboratory, Shelf, Position, and storage history."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, BaseModel, UUIDPrimaryKeyMixin
from app.models.enums import HistoryAction

JSONType = JSON().with_variant(JSONB(), "postgresql")

# Partial unique indexes only cover live rows.
_ACTIVE_PG = text("is_deleted = false")
_ACTIVE_SQLITE = text("is_deleted = 0")


class Laboratory(BaseModel):
    __tablename__ = "laboratory"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    entrance_x_position: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    entrance_y_position: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    shelves: Mapped[list["LabShelf"]] = relationship(back_populates="laboratory")

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    __table_args__ = (
        CheckConstraint(
            "entrance_x_position >= 0 AND entrance_y_position >= 0",
            name="ck_lab_entrance_non_negative",
        ),
    )


class LabShelf(BaseModel):
    __tablename__ = "lab_shelf"

    laboratory_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("laboratory.id"), nullable=False
    )
    shelf_number: Mapped[int] = mapped_column(Integer, nullable=False)
    shelf_letter: Mapped[str] = mapped_column(String(1), nullable=False)
    rows: Mapped[int] = mapped_column(Integer, nullable=False)
    columns: Mapped[int] = mapped_column(Integer, nullable=False)
    samples_per_position: Mapped[int] = mapped_column(
        Integer, default=1, server_default="1", nullable=False
    )
    x_position: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    y_position: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    # External client directory id; null means open to all clients
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    allow_client_view: Mapped[bool] = mapped_column(
        default=False, server_default="false"
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    laboratory: Mapped["Laboratory"] = relationship(back_populates="shelves")
    positions: Mapped[list["StoragePosition"]] = relationship(back_populates="shelf")

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    __table_args__ = (
        Index("ix_shelf_laboratory", "laboratory_id"),
        CheckConstraint('"rows" >= 1 AND "columns" >= 1', name="ck_shelf_dimensions"),
        CheckConstraint("samples_per_position >= 1", name="ck_shelf_capacity"),
        Index("ix_shelf_client", "client_id"),
        Index(
            "uq_shelf_lab_letter_active",
            "laboratory_id",
            "shelf_letter",
            unique=True,
            postgresql_where=_ACTIVE_PG,
            sqlite_where=_ACTIVE_SQLITE,
        ),
        # Deleted shelves keep their number, so this index covers every row.
        Index("uq_shelf_lab_number", "laboratory_id", "shelf_number", unique=True),
    )

    @property
    def total_capacity(self) -> int:
        return self.rows * self.columns * self.samples_per_position


class StoragePosition(BaseModel):
    __tablename__ = "storage_position"

    shelf_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("lab_shelf.id"), nullable=False
    )
    laboratory_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("laboratory.id"), nullable=False
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    column_number: Mapped[int] = mapped_column(Integer, nullable=False)
    position_code: Mapped[str] = mapped_column(String(20), nullable=False)
    capacity_per_position: Mapped[int] = mapped_column(Integer, nullable=False)
    current_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    is_available: Mapped[bool] = mapped_column(
        default=True, server_default="true"
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    allow_client_view: Mapped[bool] = mapped_column(
        default=False, server_default="false"
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    shelf: Mapped["LabShelf"] = relationship(back_populates="positions")

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    __table_args__ = (
        Index("ix_position_shelf", "shelf_id"),
        Index("ix_position_laboratory", "laboratory_id"),
        Index("ix_position_code", "position_code"),
        CheckConstraint(
            "current_count >= 0 AND current_count <= capacity_per_position",
            name="ck_position_occupancy_bounds",
        ),
        Index(
            "uq_position_shelf_cell_active",
            "shelf_id",
            "row_index",
            "column_number",
            unique=True,
            postgresql_where=_ACTIVE_PG,
            sqlite_where=_ACTIVE_SQLITE,
        ),
        Index(
            "uq_position_shelf_code_active",
            "shelf_id",
            "position_code",
            unique=True,
            postgresql_where=_ACTIVE_PG,
            sqlite_where=_ACTIVE_SQLITE,
        ),
    )


class StorageHistory(UUIDPrimaryKeyMixin, Base):
    """Append-only audit trail of occupancy and assignment changes."""

    __tablename__ = "storage_history"

    laboratory_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("laboratory.id"), nullable=False
    )
    shelf_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("lab_shelf.id"), nullable=True
    )
    position_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("storage_position.id"), nullable=True
    )
    action: Mapped[HistoryAction] = mapped_column(nullable=False)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    old_values: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_history_position", "position_id"),
        Index("ix_history_shelf", "shelf_id"),
        Index("ix_history_laboratory", "laboratory_id"),
        Index("ix_history_timestamp", "timestamp"),
    )
