# -*- coding: utf-8 -*-
"""
vecmath.py — маленькие неизменяемые типы вектор/матрица для геометрии меша.

Никакой сцены/рендера: только значения. Массовые операции над вершинами
идут через numpy (Mat3.apply), поэлементный доступ к треугольникам — через Vec3.
"""
from __future__ import annotations

import math
from typing import NamedTuple

import numpy as np


class Vec3(NamedTuple):
    x: float
    y: float
    z: float

    def __add__(self, other: "Vec3") -> "Vec3":  # type: ignore[override]
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def scale(self, k: float) -> "Vec3":
        return Vec3(self.x * k, self.y * k, self.z * k)

    def dot(self, other: "Vec3") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: "Vec3") -> "Vec3":
        return Vec3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def length(self) -> float:
        return math.sqrt(self.dot(self))

    def normalized(self) -> "Vec3":
        """Единичный вектор; для нулевого — нулевой (без исключения)."""
        n = self.length()
        if n == 0.0:
            return Vec3(0.0, 0.0, 0.0)
        return self.scale(1.0 / n)

    def angle_to(self, other: "Vec3") -> float:
        """Угол в радианах; если один из векторов нулевой — π/2."""
        denom = math.sqrt(self.dot(self) * other.dot(other))
        if denom == 0.0:
            return math.pi / 2
        c = self.dot(other) / denom
        return math.acos(max(-1.0, min(1.0, c)))


_AXES = {"x": 0, "y": 1, "z": 2}


def _exact_trig(angle_deg: float) -> tuple[float, float]:
    # кратные 90°: точные 0/±1
    q, r = divmod(float(angle_deg), 90.0)
    if r == 0.0:
        return ((1.0, 0.0), (0.0, 1.0), (-1.0, 0.0), (0.0, -1.0))[int(q) % 4]
    a = math.radians(angle_deg)
    return math.cos(a), math.sin(a)


class Mat3:
    """Неизменяемая матрица 3×3 (поворот). Вершины — row-vectors (N,3): V @ M.T."""

    __slots__ = ("_m",)

    def __init__(self, rows) -> None:
        m = np.array(rows, dtype=np.float64).reshape(3, 3)
        m.setflags(write=False)
        object.__setattr__(self, "_m", m)

    def __setattr__(self, name, value):
        raise AttributeError("Mat3 is immutable")

    @classmethod
    def identity(cls) -> "Mat3":
        return cls(np.eye(3))

    @classmethod
    def rotation(cls, axis: str, angle_deg: float) -> "Mat3":
        """Поворот вокруг оси x/y/z (правая система, против часовой при взгляде с +оси)."""
        i = _AXES[axis.lower()]
        c, s = _exact_trig(angle_deg)
        j, k = (i + 1) % 3, (i + 2) % 3
        m = np.eye(3)
        m[j, j] = c; m[j, k] = -s
        m[k, j] = s; m[k, k] = c
        return cls(m)

    @property
    def array(self) -> np.ndarray:
        return self._m

    def __matmul__(self, other: "Mat3") -> "Mat3":
        return Mat3(self._m @ other._m)

    def __eq__(self, other) -> bool:
        return isinstance(other, Mat3) and bool(np.array_equal(self._m, other._m))

    def __hash__(self) -> int:
        return hash(self._m.tobytes())

    def __repr__(self) -> str:
        return f"Mat3({self._m.tolist()!r})"

    def apply_vec(self, v: Vec3) -> Vec3:
        return Vec3(*(float(c) for c in self._m @ np.asarray(v, dtype=np.float64)))

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Поворот массива точек (..., 3). Возвращает новый массив."""
        if points.size == 0:
            return points.copy()
        return points @ self._m.T
