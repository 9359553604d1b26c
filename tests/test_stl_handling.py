import struct
from dataclasses import FrozenInstanceError
from pathlib import Path

import numpy as np
import pytest

from mesh_core import decode_stl, encode_stl, expected_stl_size, read_stl_file
from quote_errors import FormatError
from tests.helpers_mesh import cube_triangles, stl_bytes, write_binary_stl

TRI = ((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0))


def _ascii_stl() -> bytes:
    return "\n".join(
        [
            "solid ascii",
            "facet normal 0 0 1",
            "  outer loop",
            "    vertex 0 0 0",
            "    vertex 1 0 0",
            "    vertex 0 1 0",
            "  endloop",
            "endfacet",
            "endsolid ascii",
        ]
    ).encode("utf-8")


@pytest.mark.parametrize("count", [0, 1, 2, 7])
def test_decode_length_matches_header_count(count):
    data = stl_bytes([TRI] * count)
    assert len(data) == expected_stl_size(count) == 84 + 50 * count

    mesh = decode_stl(data)
    assert len(mesh) == count
    assert mesh.vertices.shape == (count, 3, 3)
    assert mesh.normals.shape == (count, 3)


@pytest.mark.parametrize("delta", [-1, 1, 49, 50, -50])
def test_decode_rejects_any_other_length(delta):
    data = stl_bytes([TRI, TRI])
    if delta > 0:
        bad = data + b"\0" * delta
    else:
        bad = data[:delta]
    with pytest.raises(FormatError, match=r"Malformed binary STL: expected \d+ bytes, got \d+"):
        decode_stl(bad)


def test_decode_rejects_buffer_shorter_than_header():
    with pytest.raises(FormatError, match="file too small"):
        decode_stl(b"\0" * 83)


def test_decode_reads_vertices_and_stored_normals():
    data = stl_bytes([TRI], normals=[(0.0, 0.0, -1.0)], header=b"my part")
    mesh = decode_stl(data)
    tri = mesh[0]
    assert tri.v1 == (0.0, 0.0, 0.0)
    assert tri.v2 == (1.0, 0.0, 0.0)
    assert tri.v3 == (0.0, 1.0, 0.0)
    # нормаль берётся из файла, а не пересчитывается
    assert tri.normal == (0.0, 0.0, -1.0)
    assert mesh.header.startswith(b"my part")
    assert len(mesh.header) == 80


def test_binary_header_starts_with_solid_is_accepted():
    data = stl_bytes([TRI], header=b"solid binary header")
    mesh = decode_stl(data)
    assert len(mesh) == 1


def test_decode_ascii_raises_user_friendly_error():
    with pytest.raises(FormatError, match="ASCII STL detected"):
        decode_stl(_ascii_stl())


def test_format_error_is_value_error():
    with pytest.raises(ValueError):
        decode_stl(b"")


def test_truncated_binary_is_rejected():
    # заявлено 2 треугольника, данных на 1
    data = bytearray(b"truncated".ljust(80, b"\0"))
    data.extend(struct.pack("<I", 2))
    data.extend(stl_bytes([TRI])[84:])
    with pytest.raises(FormatError, match="Malformed binary STL"):
        decode_stl(bytes(data))


def test_decode_accepts_bytearray_and_memoryview():
    data = stl_bytes(cube_triangles())
    assert len(decode_stl(bytearray(data))) == 12
    assert len(decode_stl(memoryview(data))) == 12


def test_mesh_is_immutable():
    mesh = decode_stl(stl_bytes([TRI]))
    with pytest.raises(ValueError):
        mesh.vertices[0, 0, 0] = 5.0
    with pytest.raises(FrozenInstanceError):
        mesh.header = b""  # type: ignore[misc]
    with pytest.raises(FrozenInstanceError):
        mesh[0].v1 = (1.0, 1.0, 1.0)  # type: ignore[misc]


def test_iteration_preserves_storage_order():
    tris = cube_triangles()
    mesh = decode_stl(stl_bytes(tris))
    got = [tuple(t.vertices) for t in mesh]
    assert got == [tuple(tuple(v) for v in tri) for tri in tris]


def test_encode_roundtrip_keeps_geometry():
    mesh = decode_stl(stl_bytes(cube_triangles(), header=b"cube"))
    again = decode_stl(encode_stl(mesh))
    assert np.array_equal(mesh.vertices, again.vertices)
    assert np.array_equal(mesh.normals, again.normals)
    assert again.header == mesh.header


def test_read_stl_file(tmp_path: Path):
    path = write_binary_stl(tmp_path / "cube.stl", cube_triangles())
    assert len(read_stl_file(str(path))) == 12


def test_read_stl_file_missing_propagates_os_error(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        read_stl_file(str(tmp_path / "nope.stl"))


def test_ascii_sniffing_only_looks_at_the_prefix():
    # "facet"/"vertex" далеко за первыми 8 КБ не должны влиять на сообщение
    data = b"solid big\n" + b" " * 20000 + b"facet normal 0 0 1\nouter loop\nvertex 0 0 0\n"
    with pytest.raises(FormatError, match="Malformed binary STL"):
        decode_stl(data)


def test_ascii_detection_with_leading_whitespace():
    with pytest.raises(FormatError, match="ASCII STL detected"):
        decode_stl(b"\n\n  " + _ascii_stl())
