# -*- coding: utf-8 -*-
"""
geometry_core.py — анализ треугольного меша для PBF-котировки.

Что считаем (одним вызовом analyze_mesh):
- объём (tetra, см³) и площадь поверхности (см²);
- габариты (bbox, см);
- ориентацию печати: 4 кандидата (как есть, +90° X, +90° Y, +90° Z),
  минимум поддержек, при равенстве — минимальная высота;
- сложность: плотность треугольников × средний угол между соседними (по порядку хранения) нормалями.

Меш должен быть замкнутым и согласованно ориентированным; для «дырявых» мешей
объём детерминированный, но физически бессмысленный — ошибки не бросаем.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Tuple

import numpy as np

from mesh_core import TriangleMesh
from vecmath import Mat3, Vec3

# грань нависает, если её нормаль смотрит вниз круче 45°
OVERHANG_COS = math.cos(math.radians(45.0))

ORIENTATION_CANDIDATES: Tuple[Tuple[str, Tuple[float, float, float], Mat3], ...] = (
    ("as-is", (0.0, 0.0, 0.0), Mat3.identity()),
    ("+90 X", (90.0, 0.0, 0.0), Mat3.rotation("x", 90.0)),
    ("+90 Y", (0.0, 90.0, 0.0), Mat3.rotation("y", 90.0)),
    ("+90 Z", (0.0, 0.0, 90.0), Mat3.rotation("z", 90.0)),
)


# ---------- Value types ----------
@dataclass(frozen=True)
class BoundingBox:
    min_mm: Vec3
    max_mm: Vec3

    @property
    def size_mm(self) -> Vec3:
        return self.max_mm - self.min_mm

    @property
    def size_cm(self) -> Vec3:
        return self.size_mm.scale(0.1)

    @property
    def x(self) -> float:
        return self.size_cm.x

    @property
    def y(self) -> float:
        return self.size_cm.y

    @property
    def z(self) -> float:
        return self.size_cm.z

    def to_dict(self) -> dict:
        s = self.size_cm
        return {"x": s.x, "y": s.y, "z": s.z}


@dataclass(frozen=True)
class BuildOrientation:
    """
    Результат оценки одной ориентации.
    height_mm / support_area_mm2 — «сырые» значения, по ним идёт выбор;
    height (см) и support_volume (см², проекция нависающих граней) — для отчёта и цены.
    """
    label: str
    rotation: Tuple[float, float, float]
    height_mm: float
    support_area_mm2: float

    @property
    def height(self) -> float:
        return self.height_mm / 10.0

    @property
    def support_volume(self) -> float:
        return self.support_area_mm2 / 100.0

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "rotation_deg": list(self.rotation),
            "height_cm": self.height,
            "support_volume": self.support_volume,
        }


@dataclass(frozen=True)
class GeometryMetrics:
    volume: float                 # см³
    surface_area: float           # см²
    bounding_box: BoundingBox
    optimal_orientation: BuildOrientation
    complexity: float
    support_required: bool
    triangle_count: int = 0
    orientation_candidates: Tuple[BuildOrientation, ...] = field(default=(), repr=False)

    def to_dict(self) -> dict:
        return {
            "triangle_count": self.triangle_count,
            "volume_cm3": self.volume,
            "surface_area_cm2": self.surface_area,
            "bounding_box_cm": self.bounding_box.to_dict(),
            "optimal_orientation": self.optimal_orientation.to_dict(),
            "complexity": self.complexity,
            "support_required": self.support_required,
        }


# ---------- Базовая геометрия ----------
def _corners(V: np.ndarray):
    return V[:, 0], V[:, 1], V[:, 2]


def triangle_areas_mm2(V: np.ndarray) -> np.ndarray:
    if V.size == 0:
        return np.zeros(0, dtype=np.float64)
    v0, v1, v2 = _corners(V)
    return 0.5 * np.linalg.norm(np.cross(v1 - v0, v2 - v0), axis=1)


def face_normals(V: np.ndarray) -> np.ndarray:
    """Единичные нормали по вершинам (правило правой руки); для вырожденных граней — нули."""
    if V.size == 0:
        return np.zeros((0, 3), dtype=np.float64)
    v0, v1, v2 = _corners(V)
    n = np.cross(v1 - v0, v2 - v0)
    length = np.linalg.norm(n, axis=1)
    safe = np.where(length > 0, length, 1.0)
    return n / safe[:, None]


def volume_cm3(mesh: TriangleMesh) -> float:
    V = mesh.vertices
    if V.size == 0:
        return 0.0
    v0, v1, v2 = _corners(V)
    with np.errstate(invalid="ignore", over="ignore"):
        vol6 = np.einsum('ij,ij->i', v0, np.cross(v1, v2))
        vol_mm3 = abs(vol6.sum()) / 6.0
    return float(vol_mm3 / 1000.0)


def surface_area_cm2(mesh: TriangleMesh) -> float:
    if mesh.vertices.size == 0:
        return 0.0
    with np.errstate(invalid="ignore", over="ignore"):
        return float(triangle_areas_mm2(mesh.vertices).sum() / 100.0)


def bounding_box(mesh: TriangleMesh) -> BoundingBox:
    P = mesh.points()
    if P.size == 0:
        zero = Vec3(0.0, 0.0, 0.0)
        return BoundingBox(zero, zero)
    mins = P.min(axis=0); maxs = P.max(axis=0)
    return BoundingBox(Vec3(*map(float, mins)), Vec3(*map(float, maxs)))


# ---------- Ориентация печати ----------
def evaluate_orientation(mesh: TriangleMesh, label: str, rotation: Tuple[float, float, float], R: Mat3) -> BuildOrientation:
    V = mesh.vertices
    if V.size == 0:
        return BuildOrientation(label, rotation, 0.0, 0.0)
    # NaN/Inf из файла проходят насквозь без предупреждений numpy
    with np.errstate(invalid="ignore", over="ignore"):
        Vr = R.apply(V)
        z = Vr[:, :, 2]
        height = float(z.max() - z.min())

        nz = face_normals(Vr)[:, 2]
        down = nz < -OVERHANG_COS
        support = float((triangle_areas_mm2(Vr[down]) * np.abs(nz[down])).sum()) if down.any() else 0.0
    return BuildOrientation(label, rotation, height, support)


def evaluate_orientations(mesh: TriangleMesh) -> Tuple[BuildOrientation, ...]:
    """Все 4 кандидата, каждый вызов заново (без кэша)."""
    return tuple(evaluate_orientation(mesh, label, rot, R) for label, rot, R in ORIENTATION_CANDIDATES)


def select_orientation(candidates) -> BuildOrientation:
    """Минимум поддержек; при равенстве — минимум высоты; дальше — первый по порядку."""
    best = None
    for c in candidates:
        if best is None:
            best = c
            continue
        if c.support_area_mm2 < best.support_area_mm2 or (
            c.support_area_mm2 == best.support_area_mm2 and c.height_mm < best.height_mm
        ):
            best = c
    if best is None:
        raise ValueError("no orientation candidates")
    return best


def optimal_orientation(mesh: TriangleMesh) -> BuildOrientation:
    return select_orientation(evaluate_orientations(mesh))


# ---------- Сложность ----------
def mean_adjacent_normal_angle(mesh: TriangleMesh) -> float:
    """
    Средний угол (рад) между нормалью i-го и (i+1)-го треугольника в порядке хранения.
    Сумма по N-1 парам делится на N. Нулевая нормаль даёт π/2.
    """
    n_tri = mesh.triangle_count
    if n_tri == 0:
        return 0.0
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        N = face_normals(mesh.vertices)
        a, b = N[:-1], N[1:]
        denom = np.sqrt((a * a).sum(axis=1) * (b * b).sum(axis=1))
        dots = (a * b).sum(axis=1)
        cosang = np.clip(dots / denom, -1.0, 1.0)
        angles = np.where(denom == 0, math.pi / 2, np.arccos(cosang))
    return float(angles.sum() / n_tri)


def complexity_score(mesh: TriangleMesh, volume: float | None = None) -> float:
    """
    (N / volume^(2/3)) × mean_adjacent_normal_angle / 1000.
    Для volume == 0 результат inf/nan (IEEE), исключение не бросаем.
    """
    n_tri = mesh.triangle_count
    if n_tri == 0:
        return 0.0
    vol = volume_cm3(mesh) if volume is None else volume
    with np.errstate(divide="ignore", invalid="ignore"):
        density = np.float64(n_tri) / np.power(np.float64(vol), 2.0 / 3.0)
        score = density * np.float64(mean_adjacent_normal_angle(mesh)) / 1000.0
    return float(score)


# ---------- Сводный анализ ----------
def analyze_mesh(mesh: TriangleMesh) -> GeometryMetrics:
    vol = volume_cm3(mesh)
    candidates = evaluate_orientations(mesh)
    best = select_orientation(candidates)
    return GeometryMetrics(
        volume=vol,
        surface_area=surface_area_cm2(mesh),
        bounding_box=bounding_box(mesh),
        optimal_orientation=best,
        complexity=complexity_score(mesh, vol),
        support_required=best.support_volume > 0,
        triangle_count=mesh.triangle_count,
        orientation_candidates=candidates,
    )


def mesh_diagnostics_text(mesh: TriangleMesh, metrics: GeometryMetrics) -> str:
    """Текстовый диагностический блок по мешу (для --diag в CLI)."""
    bb = metrics.bounding_box
    lines = [
        f"Треугольников: {mesh.triangle_count}\n",
        f"Bbox, мм: min=({bb.min_mm.x:.3f}, {bb.min_mm.y:.3f}, {bb.min_mm.z:.3f}) "
        f"max=({bb.max_mm.x:.3f}, {bb.max_mm.y:.3f}, {bb.max_mm.z:.3f})\n",
        "Ориентации (поддержки см² | высота см):\n",
    ]
    for c in metrics.orientation_candidates:
        mark = "*" if c == metrics.optimal_orientation else " "
        lines.append(f" {mark} {c.label:<6} {c.support_volume:>10.3f} | {c.height:>8.3f}\n")
    lines.append(f"Сложность: {metrics.complexity:.4f}\n")
    lines.append("-" * 40 + "\n")
    return "".join(lines)
