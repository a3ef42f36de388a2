import pytest

from app.models.values import Coordinates
from app.services.layout import ShelfFootprint, compute_layout_scale

ORIGIN = Coordinates(0, 0)


def _scale(footprints, entrance=ORIGIN, width=500, height=500, **kw):
    kw.setdefault("base_unit", 50)
    kw.setdefault("padding", 0)
    kw.setdefault("margin", 0)
    kw.setdefault("min_scale", 0.3)
    kw.setdefault("max_scale", 1.0)
    return compute_layout_scale(footprints, entrance, width, height, **kw)


def test_shelf_exactly_filling_viewport_scales_to_one():
    assert _scale([ShelfFootprint(0, 0, 10, 10)]) == pytest.approx(1.0)


def test_shelf_twice_the_viewport_scales_to_half():
    assert _scale([ShelfFootprint(0, 0, 20, 20)]) == pytest.approx(0.5)


def test_small_layout_is_capped_at_max_scale():
    assert _scale([ShelfFootprint(0, 0, 2, 2)]) == 1.0


def test_huge_layout_is_floored_at_min_scale():
    assert _scale([ShelfFootprint(0, 0, 200, 200)]) == 0.3


def test_narrowest_axis_wins():
    # 20 cells wide needs 0.5, 10 cells tall allows 1.0
    assert _scale([ShelfFootprint(0, 0, 20, 10)]) == pytest.approx(0.5)


def test_entrance_extends_the_extent():
    assert _scale([ShelfFootprint(0, 0, 2, 2)], entrance=Coordinates(20, 0)) == pytest.approx(0.5)


def test_padding_and_margin_are_applied():
    # extent 10 + 10 padding = 20 cells; (1040 - 40) / (20 * 50) = 1.0
    assert _scale(
        [ShelfFootprint(0, 0, 10, 10)], width=1040, height=1040, padding=10, margin=40,
    ) == pytest.approx(1.0)


def test_empty_floor_plan_uses_max_scale():
    assert _scale([]) == 1.0


def test_is_deterministic():
    shelves = [ShelfFootprint(3, 4, 12, 2), ShelfFootprint(18, 1, 6, 2)]
    assert _scale(shelves, entrance=Coordinates(1, 9)) == _scale(shelves, entrance=Coordinates(1, 9))


@pytest.mark.parametrize("width, height", [(0, 500), (500, 0), (-1, 500)])
def test_non_positive_viewport_is_rejected(width, height):
    with pytest.raises(ValueError):
        _scale([ShelfFootprint(0, 0, 10, 10)], width=width, height=height)


def test_defaults_come_from_settings():
    # padding 3, margin 40, base 50: extent 13 cells -> (690 - 40) / 650 = 1.0
    assert compute_layout_scale(
        [ShelfFootprint(0, 0, 10, 10)], ORIGIN, 690, 690,
    ) == pytest.approx(1.0)
