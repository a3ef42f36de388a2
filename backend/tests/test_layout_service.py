import uuid

import pytest
from sqlalchemy import select

from app.core.exceptions import Conflict, Forbidden, NotFound, PartialBulkFailure
from app.models.enums import HistoryAction
from app.models.storage import StorageHistory
from app.models.values import Coordinates
from app.services.layout import LayoutService, ShelfFootprint, ShelfPlacement
from app.services.positions import PositionService


async def test_layout_lists_footprints_and_statistics(db, lab, admin, assistant, make_shelf):
    a = await make_shelf(shelf_letter="A", rows=2, columns=3, x_position=4, y_position=5)
    b = await make_shelf(shelf_letter="B", rows=1, columns=1, samples_per_position=5)
    positions = (await PositionService(db).get_grid(admin, lab.id, b.id))["positions"]
    await PositionService(db).set_occupancy(admin, lab.id, positions[0].id, 5)

    layout = await LayoutService(db).get_layout(assistant, lab.id)
    assert layout["laboratory"].id == lab.id
    assert layout["total_shelves"] == 2
    assert layout["scale"] is None

    entries = {e["shelf"].id: e for e in layout["shelves"]}
    assert entries[a.id]["footprint"] == ShelfFootprint(x=4, y=5, width=6, height=2)
    assert entries[b.id]["utilization"].utilization_pct == 100.0

    stats = layout["statistics"]
    assert stats.total_positions == 7
    assert stats.total_capacity == 65
    assert stats.current_count == 5


async def test_layout_scale_follows_viewport(db, lab, admin, make_shelf):
    await make_shelf(shelf_letter="A", rows=2, columns=3)
    # 6 cells wide plus 3 padding: (265 - 40) / (9 * 50) = 0.5
    layout = await LayoutService(db).get_layout(admin, lab.id, viewport=(265, 2000))
    assert layout["scale"] == pytest.approx(0.5)


async def test_empty_lab_has_no_utilization(db, lab, admin):
    layout = await LayoutService(db).get_layout(admin, lab.id)
    assert layout["total_shelves"] == 0
    assert layout["shelves"] == []
    assert layout["statistics"].utilization_pct is None


async def test_layout_of_unknown_lab(db, admin):
    with pytest.raises(NotFound):
        await LayoutService(db).get_layout(admin, uuid.uuid4())


async def test_layout_hidden_from_other_labs(db, lab, outsider):
    with pytest.raises(Forbidden):
        await LayoutService(db).get_layout(outsider, lab.id)


async def test_save_floor_plan_moves_everything(db, lab, manager, make_shelf):
    a = await make_shelf(shelf_letter="A")
    b = await make_shelf(shelf_letter="B")
    svc = LayoutService(db)

    result = await svc.save_floor_plan(
        manager,
        lab.id,
        Coordinates(1, 2),
        [
            ShelfPlacement(a.id, Coordinates(10, 0), version=a.version),
            ShelfPlacement(b.id, Coordinates(10, 4)),
        ],
        lab_version=lab.version,
    )
    assert result.all_succeeded
    assert result.summary == "2 of 2 succeeded"
    assert (lab.entrance_x_position, lab.entrance_y_position) == (1, 2)

    layout = await svc.get_layout(manager, lab.id)
    moved = {e["shelf"].id: (e["footprint"].x, e["footprint"].y) for e in layout["shelves"]}
    assert moved == {a.id: (10, 0), b.id: (10, 4)}


async def test_save_floor_plan_writes_history(db, lab, admin, make_shelf):
    a = await make_shelf(shelf_letter="A")
    await LayoutService(db).save_floor_plan(
        admin, lab.id, Coordinates(3, 3), [ShelfPlacement(a.id, Coordinates(7, 7))],
    )
    await db.flush()

    rows = (await db.execute(
        select(StorageHistory).where(StorageHistory.action == HistoryAction.LAYOUT_UPDATE)
    )).scalars().all()
    assert len(rows) == 1
    assert rows[0].new_values == {
        "entrance_x_position": 3,
        "entrance_y_position": 3,
        "shelves_moved": 1,
    }
    assert rows[0].note == "1 of 1 succeeded"


async def test_best_effort_save_keeps_the_good_shelves(db, lab, admin, make_shelf):
    a = await make_shelf(shelf_letter="A")
    missing = uuid.uuid4()
    svc = LayoutService(db)

    result = await svc.save_floor_plan(
        admin,
        lab.id,
        Coordinates(0, 0),
        [ShelfPlacement(a.id, Coordinates(8, 1)), ShelfPlacement(missing, Coordinates(2, 2))],
        atomic=False,
    )
    assert result.summary == "1 of 2 succeeded"
    assert [(f.id, f.code) for f in result.failed] == [(missing, "NOT_FOUND")]

    layout = await svc.get_layout(admin, lab.id)
    assert layout["shelves"][0]["footprint"].x == 8


async def test_atomic_save_reports_failure(db, lab, admin, make_shelf):
    a = await make_shelf(shelf_letter="A")
    with pytest.raises(PartialBulkFailure) as exc_info:
        await LayoutService(db).save_floor_plan(
            admin,
            lab.id,
            Coordinates(0, 0),
            [ShelfPlacement(a.id, Coordinates(8, 1)), ShelfPlacement(uuid.uuid4(), Coordinates(2, 2))],
        )
    assert exc_info.value.result.summary == "1 of 2 succeeded"


async def test_stale_lab_version_moves_nothing(db, lab, admin, make_shelf):
    a = await make_shelf(shelf_letter="A", x_position=1, y_position=1)
    with pytest.raises(Conflict):
        await LayoutService(db).save_floor_plan(
            admin,
            lab.id,
            Coordinates(5, 5),
            [ShelfPlacement(a.id, Coordinates(9, 9))],
            lab_version=lab.version + 1,
        )
    assert (a.x_position, a.y_position) == (1, 1)
    assert (lab.entrance_x_position, lab.entrance_y_position) == (0, 0)


async def test_stale_shelf_version_is_reported_per_shelf(db, lab, admin, make_shelf):
    a = await make_shelf(shelf_letter="A")
    b = await make_shelf(shelf_letter="B")
    result = await LayoutService(db).save_floor_plan(
        admin,
        lab.id,
        Coordinates(0, 0),
        [
            ShelfPlacement(a.id, Coordinates(4, 0), version=a.version + 3),
            ShelfPlacement(b.id, Coordinates(8, 0), version=b.version),
        ],
        atomic=False,
    )
    assert result.succeeded == [b.id]
    assert result.failed[0].code == "CONFLICT"
    assert a.x_position == 0


async def test_assistant_cannot_edit_floor_plan(db, lab, assistant):
    with pytest.raises(Forbidden):
        await LayoutService(db).save_floor_plan(assistant, lab.id, Coordinates(0, 0), [])
