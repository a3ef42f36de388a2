"""Storage schema - laboratory, shelves, positions, history.

Revision ID: 001
Revises: None
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("is_deleted", sa.Boolean, server_default="false", nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # --- Laboratory ---

    op.create_table(
        "laboratory",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("location", sa.String(200), nullable=True),
        sa.Column("entrance_x_position", sa.Integer, server_default="0", nullable=False),
        sa.Column("entrance_y_position", sa.Integer, server_default="0", nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("entrance_x_position >= 0 AND entrance_y_position >= 0", name="ck_lab_entrance_non_negative"),
    )

    # --- Shelf ---

    op.create_table(
        "lab_shelf",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("laboratory_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("laboratory.id"), nullable=False),
        sa.Column("shelf_number", sa.Integer, nullable=False),
        sa.Column("shelf_letter", sa.String(1), nullable=False),
        sa.Column("rows", sa.Integer, nullable=False),
        sa.Column("columns", sa.Integer, nullable=False),
        sa.Column("samples_per_position", sa.Integer, server_default="1", nullable=False),
        sa.Column("x_position", sa.Integer, server_default="0", nullable=False),
        sa.Column("y_position", sa.Integer, server_default="0", nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("allow_client_view", sa.Boolean, server_default="false", nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        sa.CheckConstraint('"rows" >= 1 AND "columns" >= 1', name="ck_shelf_dimensions"),
        sa.CheckConstraint("samples_per_position >= 1", name="ck_shelf_capacity"),
    )
    op.create_index("ix_shelf_laboratory", "lab_shelf", ["laboratory_id"])
    op.create_index("ix_shelf_client", "lab_shelf", ["client_id"])
    op.create_index(
        "uq_shelf_lab_letter_active",
        "lab_shelf",
        ["laboratory_id", "shelf_letter"],
        unique=True,
        postgresql_where=sa.text("is_deleted = false"),
    )
    op.create_index(
        "uq_shelf_lab_number",
        "lab_shelf",
        ["laboratory_id", "shelf_number"],
        unique=True,
    )

    # --- Position ---

    op.create_table(
        "storage_position",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("shelf_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("lab_shelf.id"), nullable=False),
        sa.Column("laboratory_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("laboratory.id"), nullable=False),
        sa.Column("row_index", sa.Integer, nullable=False),
        sa.Column("column_number", sa.Integer, nullable=False),
        sa.Column("position_code", sa.String(20), nullable=False),
        sa.Column("capacity_per_position", sa.Integer, nullable=False),
        sa.Column("current_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("is_available", sa.Boolean, server_default="true", nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("allow_client_view", sa.Boolean, server_default="false", nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "current_count >= 0 AND current_count <= capacity_per_position",
            name="ck_position_occupancy_bounds",
        ),
    )
    op.create_index("ix_position_shelf", "storage_position", ["shelf_id"])
    op.create_index("ix_position_laboratory", "storage_position", ["laboratory_id"])
    op.create_index("ix_position_code", "storage_position", ["position_code"])
    op.create_index(
        "uq_position_shelf_cell_active",
        "storage_position",
        ["shelf_id", "row_index", "column_number"],
        unique=True,
        postgresql_where=sa.text("is_deleted = false"),
    )
    op.create_index(
        "uq_position_shelf_code_active",
        "storage_position",
        ["shelf_id", "position_code"],
        unique=True,
        postgresql_where=sa.text("is_deleted = false"),
    )

    # --- History ---

    op.create_table(
        "storage_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("laboratory_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("laboratory.id"), nullable=False),
        sa.Column("shelf_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("lab_shelf.id"), nullable=True),
        sa.Column("position_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("storage_position.id"), nullable=True),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("old_values", postgresql.JSONB, nullable=True),
        sa.Column("new_values", postgresql.JSONB, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_history_position", "storage_history", ["position_id"])
    op.create_index("ix_history_shelf", "storage_history", ["shelf_id"])
    op.create_index("ix_history_laboratory", "storage_history", ["laboratory_id"])
    op.create_index("ix_history_timestamp", "storage_history", ["timestamp"])


def downgrade() -> None:
    op.drop_table("storage_history")
    op.drop_table("storage_position")
    op.drop_table("lab_shelf")
    op.drop_table("laboratory")
