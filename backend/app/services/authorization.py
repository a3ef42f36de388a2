"""Client-assignment authorization gate.

Callers are described by an explicit ``AuthContext`` handed to every service
operation; nothing here reads ambient session state.
"""

import enum
import logging
import uuid
from dataclasses import dataclass

from app.core.exceptions import Forbidden
from app.models.enums import StaffRole

logger = logging.getLogger(__name__)

GLOBAL_ROLES = frozenset({StaffRole.GLOBAL_ADMIN, StaffRole.GLOBAL_QUALITY_ADMIN})
LAB_STAFF_ROLES = frozenset({
    StaffRole.LAB_QUALITY_MANAGER,
    StaffRole.LAB_ASSISTANT,
    StaffRole.SAMPLE_INTAKE_SPECIALIST,
})


@dataclass(frozen=True)
class AuthContext:
    user_id: uuid.UUID
    role: StaffRole
    laboratory_id: uuid.UUID | None = None
    client_id: uuid.UUID | None = None


class StorageAction(str, enum.Enum):
    VIEW = "view"
    ASSIGN = "assign"
    RECORD_OCCUPANCY = "record_occupancy"
    DELETE_SHELF = "delete_shelf"


def can_assign(
    caller_role: StaffRole,
    caller_lab_id: uuid.UUID | None,
    target_lab_id: uuid.UUID,
) -> bool:
    if caller_role in GLOBAL_ROLES:
        return True
    return (
        caller_role == StaffRole.LAB_QUALITY_MANAGER
        and caller_lab_id is not None
        and caller_lab_id == target_lab_id
    )


def can_view_lab(
    caller_role: StaffRole,
    caller_lab_id: uuid.UUID | None,
    target_lab_id: uuid.UUID,
) -> bool:
    if caller_role in GLOBAL_ROLES:
        return True
    return caller_role in LAB_STAFF_ROLES and caller_lab_id == target_lab_id


def can_record_occupancy(
    caller_role: StaffRole,
    caller_lab_id: uuid.UUID | None,
    target_lab_id: uuid.UUID,
) -> bool:
    # Same audience as viewing: any staff of the lab moves samples.
    return can_view_lab(caller_role, caller_lab_id, target_lab_id)


def can_delete_shelf(caller_role: StaffRole) -> bool:
    return caller_role in GLOBAL_ROLES


def authorize(ctx: AuthContext, action: StorageAction, target_lab_id: uuid.UUID) -> None:
    """Raise ``Forbidden`` unless ``ctx`` may perform ``action`` in the lab."""
    if action == StorageAction.ASSIGN:
        allowed = can_assign(ctx.role, ctx.laboratory_id, target_lab_id)
    elif action == StorageAction.RECORD_OCCUPANCY:
        allowed = can_record_occupancy(ctx.role, ctx.laboratory_id, target_lab_id)
    elif action == StorageAction.DELETE_SHELF:
        allowed = can_delete_shelf(ctx.role)
    else:
        allowed = can_view_lab(ctx.role, ctx.laboratory_id, target_lab_id)

    if not allowed:
        logger.info(
            "Denied %s on laboratory %s for user=%s role=%s",
            action.value, target_lab_id, ctx.user_id, ctx.role.value,
        )
        raise Forbidden("You do not have permission to perform this action.")
