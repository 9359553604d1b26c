import pytest

import geometry_core
from geometry_core import (
    BuildOrientation,
    analyze_mesh,
    evaluate_orientations,
    optimal_orientation,
    select_orientation,
)
from mesh_core import decode_stl
from tests.helpers_mesh import box_triangles, cube_triangles, stl_bytes


def _mesh(triangles):
    return decode_stl(stl_bytes(triangles))


def test_flat_plate_prefers_rotation_with_least_overhang():
    # 40 × 20 × 10 мм: лёжа дно 800 мм², на ребре (Y+90): 200 мм²
    mesh = _mesh(box_triangles(40.0, 20.0, 10.0))
    by_label = {c.label: c for c in evaluate_orientations(mesh)}

    assert by_label["as-is"].support_area_mm2 == pytest.approx(800.0)
    assert by_label["as-is"].height_mm == pytest.approx(10.0)
    assert by_label["+90 X"].support_area_mm2 == pytest.approx(400.0)
    assert by_label["+90 X"].height_mm == pytest.approx(20.0)
    assert by_label["+90 Y"].support_area_mm2 == pytest.approx(200.0)
    assert by_label["+90 Y"].height_mm == pytest.approx(40.0)
    assert by_label["+90 Z"].support_area_mm2 == pytest.approx(800.0)

    best = optimal_orientation(mesh)
    assert best.label == "+90 Y"
    assert best.rotation == (0.0, 90.0, 0.0)
    assert best.support_volume == pytest.approx(2.0)
    assert best.height == pytest.approx(4.0)


def test_selected_candidate_is_minimal():
    mesh = _mesh(box_triangles(13.0, 29.0, 7.0, offset=(2.0, -4.0, 1.0)))
    candidates = evaluate_orientations(mesh)
    best = select_orientation(candidates)
    for c in candidates:
        assert c.support_area_mm2 >= 0
        assert best.support_area_mm2 <= c.support_area_mm2
        if c.support_area_mm2 == best.support_area_mm2:
            assert best.height_mm <= c.height_mm


def test_cube_ties_keep_first_candidate():
    mesh = _mesh(cube_triangles(10.0))
    candidates = evaluate_orientations(mesh)
    assert {c.support_area_mm2 for c in candidates} == {100.0}
    assert {c.height_mm for c in candidates} == {10.0}
    assert optimal_orientation(mesh).label == "as-is"


def test_tie_on_support_broken_by_height():
    a = BuildOrientation("a", (0.0, 0.0, 0.0), 30.0, 50.0)
    b = BuildOrientation("b", (90.0, 0.0, 0.0), 12.0, 50.0)
    c = BuildOrientation("c", (0.0, 90.0, 0.0), 5.0, 80.0)
    assert select_orientation([a, b, c]) is b
    assert select_orientation([c, a]) is a


def test_select_orientation_requires_candidates():
    with pytest.raises(ValueError):
        select_orientation([])


def test_no_downward_faces_means_no_support():
    # одиночный треугольник лицом вверх
    tri = ((0.0, 0.0, 0.0), (10.0, 0.0, 0.0), (0.0, 10.0, 0.0))
    metrics = analyze_mesh(_mesh([tri]))
    assert metrics.optimal_orientation.support_volume == 0.0
    assert metrics.support_required is False


def test_all_candidates_evaluated_on_every_call(monkeypatch):
    calls = []
    original = geometry_core.evaluate_orientation

    def _spy(mesh, label, rotation, R):
        calls.append(label)
        return original(mesh, label, rotation, R)

    monkeypatch.setattr(geometry_core, "evaluate_orientation", _spy)
    mesh = _mesh(cube_triangles(10.0))
    analyze_mesh(mesh)
    analyze_mesh(mesh)
    assert calls == ["as-is", "+90 X", "+90 Y", "+90 Z"] * 2
