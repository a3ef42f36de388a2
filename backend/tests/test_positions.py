import uuid

import pytest

from app.config import settings
from app.core.exceptions import (
    CapacityExceeded,
    Conflict,
    Forbidden,
    InvalidDimensions,
    NegativeOccupancy,
    NotFound,
    PartialBulkFailure,
    StorageInUse,
)
from app.models.enums import HistoryAction, PositionAvailability
from app.services.positions import PositionService
from app.services.utilization import utilization_pct


async def _positions(db, ctx, lab, shelf):
    return (await PositionService(db).get_grid(ctx, lab.id, shelf.id))["positions"]


@pytest.fixture
async def shelf(make_shelf):
    return await make_shelf(shelf_letter="A", rows=2, columns=3, samples_per_position=10)


@pytest.fixture
async def positions(db, lab, admin, shelf):
    return await _positions(db, admin, lab, shelf)


# ── Occupancy ─────────────────────────────────────────────────────────

async def test_fill_to_capacity_then_overflow(db, lab, admin, shelf, positions):
    svc = PositionService(db)
    p = await svc.set_occupancy(admin, lab.id, positions[0].id, 10)
    assert p.current_count == 10
    assert p.is_available is False
    assert utilization_pct(p.current_count, p.capacity_per_position) == 100.0

    with pytest.raises(CapacityExceeded):
        await svc.set_occupancy(admin, lab.id, positions[0].id, 1)
    assert (await _positions(db, admin, lab, shelf))[0].current_count == 10


async def test_remove_more_than_stored(db, lab, admin, positions):
    svc = PositionService(db)
    await svc.set_occupancy(admin, lab.id, positions[1].id, 2)
    with pytest.raises(NegativeOccupancy):
        await svc.set_occupancy(admin, lab.id, positions[1].id, -3)

    p = await svc.set_occupancy(admin, lab.id, positions[1].id, -2)
    assert p.current_count == 0
    assert p.is_available is True


async def test_occupancy_stays_within_bounds(db, lab, admin, shelf, positions):
    svc = PositionService(db)
    target = positions[2].id
    count = 0
    for delta in [3, 5, 4, -9, -8, 2, 8, 1, -10, -1]:
        try:
            p = await svc.set_occupancy(admin, lab.id, target, delta)
        except (CapacityExceeded, NegativeOccupancy):
            pass
        else:
            count += delta
            assert p.current_count == count
        current = (await _positions(db, admin, lab, shelf))[2].current_count
        assert current == count
        assert 0 <= current <= 10


async def test_zero_delta_is_rejected(db, lab, admin, positions):
    with pytest.raises(ValueError):
        await PositionService(db).set_occupancy(admin, lab.id, positions[0].id, 0)


async def test_unknown_position(db, lab, admin):
    with pytest.raises(NotFound):
        await PositionService(db).set_occupancy(admin, lab.id, uuid.uuid4(), 1)


async def test_position_of_another_lab_is_not_found(db, lab, other_lab, admin, positions):
    with pytest.raises(NotFound):
        await PositionService(db).set_occupancy(admin, other_lab.id, positions[0].id, 1)


async def test_stale_version_on_occupancy(db, lab, admin, positions):
    svc = PositionService(db)
    p = await svc.set_occupancy(admin, lab.id, positions[0].id, 1, expected_version=1)
    assert p.version == 2

    with pytest.raises(Conflict):
        await svc.set_occupancy(admin, lab.id, positions[0].id, 1, expected_version=1)
    p = await svc.set_occupancy(admin, lab.id, positions[0].id, 1, expected_version=2)
    assert p.current_count == 2


async def test_occupancy_is_recorded_in_history(db, lab, admin, assistant, positions):
    svc = PositionService(db)
    await svc.set_occupancy(assistant, lab.id, positions[0].id, 4, note="intake batch 7")
    await svc.set_occupancy(assistant, lab.id, positions[0].id, -1)

    history = await svc.get_position_history(admin, lab.id, positions[0].id)
    assert [h.action for h in history] == [HistoryAction.OCCUPANCY_CHANGE] * 2
    deltas = sorted(h.new_values["delta"] for h in history)
    assert deltas == [-1, 4]
    assert {h.actor_id for h in history} == {assistant.user_id}
    assert "intake batch 7" in {h.note for h in history}


async def test_occupancy_permissions(db, lab, outsider, client_user, positions):
    svc = PositionService(db)
    with pytest.raises(Forbidden):
        await svc.set_occupancy(outsider, lab.id, positions[0].id, 1)
    with pytest.raises(Forbidden):
        await svc.set_occupancy(client_user, lab.id, positions[0].id, 1)


async def test_forbidden_before_lookup(db, lab, outsider):
    # A denied caller never learns whether the position exists.
    with pytest.raises(Forbidden):
        await PositionService(db).set_occupancy(outsider, lab.id, uuid.uuid4(), 1)


async def test_capacity_warning_is_logged(db, lab, admin, make_shelf, caplog):
    shelf = await make_shelf(shelf_letter="W", rows=1, columns=1, samples_per_position=10)
    position = (await _positions(db, admin, lab, shelf))[0]
    with caplog.at_level("WARNING", logger="app.services.positions"):
        await PositionService(db).set_occupancy(admin, lab.id, position.id, 9)
    assert "capacity warning" in caplog.text


# ── Assignment ────────────────────────────────────────────────────────

async def test_assign_and_clear_client(db, lab, manager, positions, client_id):
    svc = PositionService(db)
    p = await svc.assign_client(manager, lab.id, positions[0].id, client_id, True)
    assert p.client_id == client_id
    assert p.allow_client_view is True

    p = await svc.assign_client(manager, lab.id, positions[0].id, None, False)
    assert p.client_id is None

    history = await svc.get_position_history(manager, lab.id, positions[0].id)
    assert [h.action for h in history] == [HistoryAction.CLIENT_ASSIGNMENT] * 2


async def test_assign_requires_quality_role(db, lab, assistant, outsider, positions, client_id):
    svc = PositionService(db)
    with pytest.raises(Forbidden):
        await svc.assign_client(assistant, lab.id, positions[0].id, client_id, True)
    with pytest.raises(Forbidden):
        await svc.assign_client(outsider, lab.id, positions[0].id, client_id, True)


async def test_assign_with_stale_version(db, lab, admin, positions, client_id):
    svc = PositionService(db)
    with pytest.raises(Conflict):
        await svc.assign_client(admin, lab.id, positions[0].id, client_id, True, expected_version=7)


async def test_update_position_capacity(db, lab, admin, positions):
    svc = PositionService(db)
    await svc.set_occupancy(admin, lab.id, positions[0].id, 5)

    with pytest.raises(StorageInUse):
        await svc.update_position(admin, lab.id, positions[0].id, {"capacity_per_position": 4})

    p = await svc.update_position(admin, lab.id, positions[0].id, {"capacity_per_position": 5})
    assert p.capacity_per_position == 5
    assert p.is_available is False

    history = await svc.get_position_history(admin, lab.id, positions[0].id)
    assert HistoryAction.CAPACITY_CHANGE in {h.action for h in history}


async def test_update_position_capacity_is_bounded(db, lab, admin, positions):
    svc = PositionService(db)
    too_many = settings.MAX_SAMPLES_PER_POSITION + 1
    with pytest.raises(InvalidDimensions):
        await svc.update_position(
            admin, lab.id, positions[0].id, {"capacity_per_position": too_many},
        )
    with pytest.raises(InvalidDimensions):
        await svc.update_position(admin, lab.id, positions[0].id, {"capacity_per_position": 0})

    p = await svc.update_position(
        admin, lab.id, positions[0].id,
        {"capacity_per_position": settings.MAX_SAMPLES_PER_POSITION},
    )
    assert p.capacity_per_position == settings.MAX_SAMPLES_PER_POSITION


async def test_update_position_ignores_unset_fields(db, lab, admin, positions, client_id):
    svc = PositionService(db)
    await svc.assign_client(admin, lab.id, positions[0].id, client_id, True)
    p = await svc.update_position(admin, lab.id, positions[0].id, {"allow_client_view": False})
    assert p.client_id == client_id
    assert p.allow_client_view is False


# ── Bulk assignment ───────────────────────────────────────────────────

async def test_bulk_reports_per_id_and_keeps_successes(db, lab, admin, shelf, positions, client_id):
    p1, p2, p3 = positions[:3]
    p2.is_deleted = True
    await db.flush()

    result = await PositionService(db).bulk_assign_clients(
        admin, lab.id, [p1.id, p2.id, p3.id], client_id, True,
    )
    assert result.succeeded == [p1.id, p3.id]
    assert [(f.id, f.code) for f in result.failed] == [(p2.id, "NOT_FOUND")]
    assert result.summary == "2 of 3 succeeded"

    current = {p.id: p for p in await _positions(db, admin, lab, shelf)}
    assert current[p1.id].client_id == client_id
    assert current[p3.id].client_id == client_id
    assert p2.id not in current


async def test_bulk_atomic_raises_with_report(db, lab, admin, positions, client_id):
    missing = uuid.uuid4()
    with pytest.raises(PartialBulkFailure) as exc_info:
        await PositionService(db).bulk_assign_clients(
            admin, lab.id, [positions[0].id, missing], client_id, True, atomic=True,
        )
    err = exc_info.value
    assert err.result.summary == "1 of 2 succeeded"
    assert err.details == [{"id": str(missing), "code": "NOT_FOUND", "message": "Storage position not found."}]
    assert "1 of 2 succeeded" in err.message


async def test_bulk_deduplicates_ids(db, lab, admin, positions, client_id):
    result = await PositionService(db).bulk_assign_clients(
        admin, lab.id, [positions[0].id, positions[0].id], client_id, False,
    )
    assert result.summary == "1 of 1 succeeded"


async def test_bulk_requires_permission(db, lab, assistant, positions, client_id):
    with pytest.raises(Forbidden):
        await PositionService(db).bulk_assign_clients(
            assistant, lab.id, [positions[0].id], client_id, True,
        )


# ── Grid ──────────────────────────────────────────────────────────────

async def test_grid_shape_and_filters(db, lab, admin, shelf, positions):
    svc = PositionService(db)
    await svc.set_occupancy(admin, lab.id, positions[0].id, 10)
    await svc.set_occupancy(admin, lab.id, positions[4].id, 3)

    full = await svc.get_grid(admin, lab.id, shelf.id)
    assert len(full["grid"]) == 2
    assert all(len(row) == 3 for row in full["grid"])
    assert full["grid"][1][1].position_code == "A-B2"

    available = await svc.get_grid(admin, lab.id, shelf.id, PositionAvailability.AVAILABLE)
    assert len(available["positions"]) == 5
    assert available["grid"][0][0] is None

    occupied = await svc.get_grid(admin, lab.id, shelf.id, PositionAvailability.OCCUPIED)
    assert [p.position_code for p in occupied["positions"]] == ["A-A1", "A-B2"]
    assert occupied["grid"][0][1] is None


async def test_grid_of_unknown_shelf(db, lab, admin):
    with pytest.raises(NotFound):
        await PositionService(db).get_grid(admin, lab.id, uuid.uuid4())


# ── Suggestions ───────────────────────────────────────────────────────

async def test_suggestions_prefer_the_clients_shelf(db, lab, admin, make_shelf, client_id):
    open_shelf = await make_shelf(shelf_letter="A", rows=1, columns=2)
    mine = await make_shelf(shelf_letter="B", rows=1, columns=2, client_id=client_id)
    theirs = await make_shelf(shelf_letter="C", rows=1, columns=2, client_id=uuid.uuid4())

    svc = PositionService(db)
    open_positions = await _positions(db, admin, lab, open_shelf)
    await svc.set_occupancy(admin, lab.id, open_positions[0].id, 10)  # full, never suggested
    mine_positions = await _positions(db, admin, lab, mine)
    await svc.set_occupancy(admin, lab.id, mine_positions[1].id, 5)

    result = await svc.suggest_positions(admin, lab.id, client_id)
    codes = [s["position"].position_code for s in result["suggestions"]]
    assert codes == ["B-A1", "B-A2", "A-A2"]
    scores = [s["score"] for s in result["suggestions"]]
    assert scores == [115, 105, 15]
    assert result["recommendation"]["position_code"] == "B-A1"
    assert result["grouped_by_shelf"][0]["shelf_id"] == mine.id
    assert result["grouped_by_shelf"][0]["is_client_shelf"] is True
    assert theirs.id not in {g["shelf_id"] for g in result["grouped_by_shelf"]}


async def test_suggestions_without_client_only_use_open_storage(db, lab, admin, make_shelf):
    await make_shelf(shelf_letter="A", rows=1, columns=1)
    await make_shelf(shelf_letter="B", rows=1, columns=1, client_id=uuid.uuid4())
    result = await PositionService(db).suggest_positions(admin, lab.id, None)
    assert [s["position"].position_code for s in result["suggestions"]] == ["A-A1"]


async def test_suggestions_respect_limit(db, lab, admin, make_shelf):
    await make_shelf(shelf_letter="A", rows=5, columns=5)
    result = await PositionService(db).suggest_positions(admin, lab.id, None, limit=7)
    assert result["total_suggestions"] == 7


async def test_suggestions_in_empty_lab(db, lab, admin):
    result = await PositionService(db).suggest_positions(admin, lab.id, None)
    assert result["suggestions"] == []
    assert result["recommendation"] is None
