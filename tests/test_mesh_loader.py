import pytest

from panelcut.core.mesh_loader import MeshLoader

SQUARE_OBJ = """\
v 0 0 0
v 1 0 0
v 1 1 0
v 0 1 0
f 1 2 3
f 1 3 4
"""


def test_load_obj(tmp_path):
    path = tmp_path / "square.obj"
    path.write_text(SQUARE_OBJ, encoding="utf-8")

    mesh = MeshLoader().load(path)

    assert mesh.n_vertices == 4
    assert mesh.n_triangles == 2
    mesh.validate()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        MeshLoader().load(tmp_path / "nope.obj")


def test_unsupported_extension(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello", encoding="utf-8")
    with pytest.raises(ValueError):
        MeshLoader().load(path)


def test_file_info(tmp_path):
    path = tmp_path / "square.obj"
    path.write_text(SQUARE_OBJ, encoding="utf-8")

    info = MeshLoader().get_file_info(path)

    assert info["extension"] == ".obj"
    assert info["n_triangles"] == 2
    assert info["n_boundary_edges"] == 4
    assert "error" not in info


def test_supported_formats_is_a_copy():
    formats = MeshLoader.get_supported_formats()
    formats.pop(".obj")
    assert ".obj" in MeshLoader.get_supported_formats()


def test_load_multiple_keeps_order(tmp_path):
    first = tmp_path / "a.obj"
    second = tmp_path / "b.obj"
    first.write_text(SQUARE_OBJ, encoding="utf-8")
    second.write_text("v 0 0 0\nv 1 0 0\nv 0 1 0\nf 1 2 3\n", encoding="utf-8")

    meshes = MeshLoader().load_multiple([first, second])

    assert [m.n_triangles for m in meshes] == [2, 1]
