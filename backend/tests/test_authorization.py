import uuid

import pytest

from app.core.exceptions import Forbidden
from app.models.enums import StaffRole
from app.services.authorization import (
    AuthContext,
    StorageAction,
    authorize,
    can_assign,
    can_delete_shelf,
    can_record_occupancy,
    can_view_lab,
)

LAB = uuid.uuid4()
OTHER = uuid.uuid4()


@pytest.mark.parametrize(
    "role, caller_lab, expected",
    [
        (StaffRole.GLOBAL_ADMIN, None, True),
        (StaffRole.GLOBAL_QUALITY_ADMIN, OTHER, True),
        (StaffRole.LAB_QUALITY_MANAGER, LAB, True),
        (StaffRole.LAB_QUALITY_MANAGER, OTHER, False),
        (StaffRole.LAB_QUALITY_MANAGER, None, False),
        (StaffRole.LAB_ASSISTANT, LAB, False),
        (StaffRole.SAMPLE_INTAKE_SPECIALIST, LAB, False),
        (StaffRole.CLIENT, LAB, False),
    ],
)
def test_can_assign(role, caller_lab, expected):
    assert can_assign(role, caller_lab, LAB) is expected


def test_lab_staff_can_view_and_move_samples_only_in_their_lab():
    for role in (StaffRole.LAB_ASSISTANT, StaffRole.SAMPLE_INTAKE_SPECIALIST):
        assert can_view_lab(role, LAB, LAB)
        assert can_record_occupancy(role, LAB, LAB)
        assert not can_view_lab(role, OTHER, LAB)
        assert not can_record_occupancy(role, OTHER, LAB)
    assert not can_view_lab(StaffRole.CLIENT, LAB, LAB)


def test_only_global_roles_delete_shelves():
    assert can_delete_shelf(StaffRole.GLOBAL_ADMIN)
    assert can_delete_shelf(StaffRole.GLOBAL_QUALITY_ADMIN)
    assert not can_delete_shelf(StaffRole.LAB_QUALITY_MANAGER)


def test_authorize_raises_forbidden():
    ctx = AuthContext(user_id=uuid.uuid4(), role=StaffRole.LAB_ASSISTANT, laboratory_id=LAB)
    authorize(ctx, StorageAction.VIEW, LAB)
    authorize(ctx, StorageAction.RECORD_OCCUPANCY, LAB)
    with pytest.raises(Forbidden):
        authorize(ctx, StorageAction.ASSIGN, LAB)
    with pytest.raises(Forbidden):
        authorize(ctx, StorageAction.DELETE_SHELF, LAB)
    with pytest.raises(Forbidden):
        authorize(ctx, StorageAction.VIEW, OTHER)
