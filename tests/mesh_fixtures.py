import numpy as np

from panelcut.core.mesh_store import Mesh


def unit_cube() -> Mesh:
    """8 vertices, 12 outward-facing triangles."""
    vertices = np.asarray(
        [
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [1.0, 1.0, 0.0],
            [0.0, 1.0, 0.0],
            [0.0, 0.0, 1.0],
            [1.0, 0.0, 1.0],
            [1.0, 1.0, 1.0],
            [0.0, 1.0, 1.0],
        ],
        dtype=np.float64,
    )
    faces = np.asarray(
        [
            [0, 2, 1], [0, 3, 2],  # bottom
            [4, 5, 6], [4, 6, 7],  # top
            [0, 1, 5], [0, 5, 4],  # front
            [2, 3, 7], [2, 7, 6],  # back
            [1, 2, 6], [1, 6, 5],  # right
            [0, 4, 7], [0, 7, 3],  # left
        ],
        dtype=np.int64,
    )
    return Mesh(vertices=vertices, faces=faces)


def single_triangle() -> Mesh:
    return Mesh(
        vertices=[[0.0, 0.0, 0.0], [3.0, 0.0, 0.0], [0.0, 4.0, 1.0]],
        faces=[0, 1, 2],
    )


def grid_faces(nx: int, ny: int, offset: int = 0) -> np.ndarray:
    faces = []
    for j in range(ny):
        for i in range(nx):
            a = offset + j * (nx + 1) + i
            b = a + 1
            c = a + nx + 2
            d = a + nx + 1
            faces.append([a, b, c])
            faces.append([a, c, d])
    return np.asarray(faces, dtype=np.int64)


def plane_grid(nx: int = 4, ny: int = 4, size: float = 1.0, z: float = 0.0) -> Mesh:
    xs, ys = np.meshgrid(np.linspace(0.0, size, nx + 1), np.linspace(0.0, size, ny + 1))
    vertices = np.column_stack([xs.ravel(), ys.ravel(), np.full(xs.size, z)])
    return Mesh(vertices=vertices, faces=grid_faces(nx, ny))


def cylinder_patch(arc_deg: float = 60.0, radius: float = 1.0, height: float = 1.0, n_arc: int = 8, n_h: int = 4) -> Mesh:
    """Developable open patch of a cylinder around the z axis."""
    theta = np.radians(np.linspace(-arc_deg / 2.0, arc_deg / 2.0, n_arc + 1))
    zs = np.linspace(0.0, height, n_h + 1)
    tt, zz = np.meshgrid(theta, zs)
    vertices = np.column_stack([radius * np.cos(tt.ravel()), radius * np.sin(tt.ravel()), zz.ravel()])
    return Mesh(vertices=vertices, faces=grid_faces(n_arc, n_h))


def two_islands() -> Mesh:
    """Two disjoint 2x2 grids, the second shifted far along x."""
    left = plane_grid(2, 2)
    n = left.n_vertices
    right_vertices = left.vertices + np.array([10.0, 0.0, 0.0])
    vertices = np.vstack([left.vertices, right_vertices])
    faces = np.vstack([left.faces, left.faces + n])
    return Mesh(vertices=vertices, faces=faces)


def folded_sheet(n: int = 6) -> Mesh:
    """Two perpendicular n x n grids sharing one edge (an L-shaped sheet)."""
    xs, ys = np.meshgrid(np.linspace(0.0, 1.0, n + 1), np.linspace(0.0, 1.0, n + 1))
    floor = np.column_stack([xs.ravel(), ys.ravel(), np.zeros(xs.size)])
    wall = np.column_stack([xs.ravel(), np.ones(xs.size), ys.ravel()])
    vertices = np.vstack([floor, wall])
    faces = np.vstack([grid_faces(n, n), grid_faces(n, n, offset=floor.shape[0])])
    # weld the wall's first row onto the floor's last row
    remap = np.arange(vertices.shape[0])
    row = np.arange(n + 1)
    remap[floor.shape[0] + row] = n * (n + 1) + row
    return Mesh(vertices=vertices, faces=remap[faces])


def hemisphere(radius: float = 1.0, n_lat: int = 6, n_lon: int = 16) -> Mesh:
    """Upper half of a UV sphere, open at the equator; doubly curved."""
    phi = np.linspace(0.0, np.pi / 2.0, n_lat + 1)[1:]
    theta = np.linspace(0.0, 2.0 * np.pi, n_lon, endpoint=False)
    pp, tt = (a.ravel() for a in np.meshgrid(phi, theta, indexing="ij"))
    rings = radius * np.column_stack([np.sin(pp) * np.cos(tt), np.sin(pp) * np.sin(tt), np.cos(pp)])
    vertices = np.vstack([[0.0, 0.0, radius], rings])

    def ring(i, j):
        return 1 + i * n_lon + (j % n_lon)

    faces = [[0, ring(0, j), ring(0, j + 1)] for j in range(n_lon)]
    for i in range(n_lat - 1):
        for j in range(n_lon):
            a, b = ring(i, j), ring(i, j + 1)
            c, d = ring(i + 1, j + 1), ring(i + 1, j)
            faces.append([a, d, c])
            faces.append([a, c, b])
    return Mesh(vertices=vertices, faces=np.asarray(faces, dtype=np.int64))


def sliver_strip() -> Mesh:
    """Two triangles plus a sliver ``(3, 3, 2)`` that only references two vertices."""
    vertices = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [2.0, 1.0, 0.0]]
    return Mesh(vertices=vertices, faces=[[0, 1, 2], [1, 3, 2], [3, 3, 2]])
