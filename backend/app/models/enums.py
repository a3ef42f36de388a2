"""All enum types for the storage data model."""

import enum


# --- Caller roles ---

class StaffRole(str, enum.Enum):
    GLOBAL_ADMIN = "global_admin"
    GLOBAL_QUALITY_ADMIN = "global_quality_admin"
    LAB_QUALITY_MANAGER = "lab_quality_manager"
    LAB_ASSISTANT = "lab_assistant"
    SAMPLE_INTAKE_SPECIALIST = "sample_intake_specialist"
    CLIENT = "client"


# --- Storage Enums ---

class UtilizationBand(str, enum.Enum):
    EMPTY = "empty"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    FULL = "full"


class PositionAvailability(str, enum.Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    ALL = "all"


# --- History Enums ---

class HistoryAction(str, enum.Enum):
    OCCUPANCY_CHANGE = "occupancy_change"
    CLIENT_ASSIGNMENT = "client_assignment"
    CAPACITY_CHANGE = "capacity_change"
    SHELF_CREATE = "shelf_create"
    SHELF_UPDATE = "shelf_update"
    SHELF_DELETE = "shelf_delete"
    POSITIONS_GENERATED = "positions_generated"
    LAYOUT_UPDATE = "layout_update"
