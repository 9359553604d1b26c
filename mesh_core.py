# -*- coding: utf-8 -*-
"""
mesh_core.py — декодер бинарного STL из байтового буфера.

Формат:
- байты 0..79   — заголовок (не интерпретируем, но сохраняем);
- байты 80..83  — u32 LE, число треугольников N;
- далее N записей по 50 байт: нормаль (3×f32), 3 вершины (9×f32), u16 атрибут.

Единственная проверка — точная длина буфера (84 + 50·N). NaN/Inf внутри записей
не фильтруются и уходят в геометрию как есть.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterator

import numpy as np

from quote_errors import FormatError
from vecmath import Vec3

HEADER_BYTES = 80
PREFIX_BYTES = HEADER_BYTES + 4
RECORD_BYTES = 50

# запись треугольника как она лежит в файле
STL_RECORD_DTYPE = np.dtype([
    ("normal", "<f4", (3,)),
    ("vertices", "<f4", (3, 3)),
    ("attr", "<u2"),
])
assert STL_RECORD_DTYPE.itemsize == RECORD_BYTES

_ASCII_STL_MESSAGE = "ASCII STL detected; export the file as Binary STL"


@dataclass(frozen=True)
class Triangle:
    v1: Vec3
    v2: Vec3
    v3: Vec3
    normal: Vec3

    @property
    def vertices(self) -> tuple[Vec3, Vec3, Vec3]:
        return (self.v1, self.v2, self.v3)


@dataclass(frozen=True, eq=False)
class TriangleMesh:
    """
    Треугольники одного буфера в порядке хранения.
    vertices: (N, 3, 3) float64, мм; normals: (N, 3) float64 — нормали из файла.
    Массивы read-only.
    """
    vertices: np.ndarray
    normals: np.ndarray
    header: bytes = b""

    def __post_init__(self) -> None:
        V = np.array(self.vertices, dtype=np.float64).reshape(-1, 3, 3)
        N = np.array(self.normals, dtype=np.float64).reshape(-1, 3)
        if V.shape[0] != N.shape[0]:
            raise ValueError(f"vertices/normals mismatch: {V.shape[0]} != {N.shape[0]}")
        V.setflags(write=False)
        N.setflags(write=False)
        object.__setattr__(self, "vertices", V)
        object.__setattr__(self, "normals", N)

    @classmethod
    def from_triangles(cls, triangles, header: bytes = b"") -> "TriangleMesh":
        tris = list(triangles)
        if not tris:
            return cls(np.zeros((0, 3, 3)), np.zeros((0, 3)), header)
        V = [[t.v1, t.v2, t.v3] for t in tris]
        N = [t.normal for t in tris]
        return cls(np.array(V, dtype=np.float64), np.array(N, dtype=np.float64), header)

    @property
    def triangle_count(self) -> int:
        return int(self.vertices.shape[0])

    def __len__(self) -> int:
        return self.triangle_count

    def __getitem__(self, i: int) -> Triangle:
        v = self.vertices[i]
        return Triangle(
            Vec3(*map(float, v[0])),
            Vec3(*map(float, v[1])),
            Vec3(*map(float, v[2])),
            Vec3(*map(float, self.normals[i])),
        )

    def __iter__(self) -> Iterator[Triangle]:
        for i in range(self.triangle_count):
            yield self[i]

    def points(self) -> np.ndarray:
        """Все вершины плоским массивом (3N, 3)."""
        return self.vertices.reshape(-1, 3)


def _looks_like_ascii_stl(data: bytes) -> bool:
    prefix = data[:8192]
    stripped = prefix.lstrip()
    if not stripped.lower().startswith(b"solid"):
        return False
    text = prefix.decode("utf-8", errors="ignore").lower()
    return ("facet" in text) and ("vertex" in text)


def expected_stl_size(triangle_count: int) -> int:
    return PREFIX_BYTES + RECORD_BYTES * int(triangle_count)


def decode_stl(buffer) -> TriangleMesh:
    """
    bytes/bytearray/memoryview -> TriangleMesh.
    FormatError, если буфер короче заголовка или длина != 84 + 50·N.
    """
    data = bytes(buffer)
    size = len(data)
    if size < PREFIX_BYTES:
        if _looks_like_ascii_stl(data):
            raise FormatError(_ASCII_STL_MESSAGE)
        raise FormatError("Malformed binary STL: file too small")

    (count,) = struct.unpack_from("<I", data, HEADER_BYTES)
    expected = expected_stl_size(count)
    if size != expected:
        if _looks_like_ascii_stl(data):
            raise FormatError(_ASCII_STL_MESSAGE)
        raise FormatError(f"Malformed binary STL: expected {expected} bytes, got {size}")

    if count == 0:
        return TriangleMesh(np.zeros((0, 3, 3)), np.zeros((0, 3)), header=data[:HEADER_BYTES])

    records = np.frombuffer(data, dtype=STL_RECORD_DTYPE, count=count, offset=PREFIX_BYTES)
    return TriangleMesh(
        vertices=records["vertices"].astype(np.float64),
        normals=records["normal"].astype(np.float64),
        header=data[:HEADER_BYTES],
    )


def read_stl_file(path: str) -> TriangleMesh:
    """Читает файл целиком и декодирует. Ошибки чтения (OSError) не перехватываются."""
    with open(path, "rb") as f:
        return decode_stl(f.read())


def encode_stl(mesh: TriangleMesh, header: bytes | None = None) -> bytes:
    """Обратная операция (для фикстур/экспорта): TriangleMesh -> бинарный STL."""
    hdr = (mesh.header if header is None else header)[:HEADER_BYTES].ljust(HEADER_BYTES, b"\0")
    records = np.zeros(mesh.triangle_count, dtype=STL_RECORD_DTYPE)
    records["normal"] = mesh.normals
    records["vertices"] = mesh.vertices
    return hdr + struct.pack("<I", mesh.triangle_count) + records.tobytes()
