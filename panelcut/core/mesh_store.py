"""
Immutable triangle mesh and topology helpers.

The mesh is a read-only container: vertex positions ``(N, 3)`` and triangles
stored as runs of three vertex indices. Topology (edges, triangle adjacency,
boundaries) is derived on demand and never cached globally, so concurrent
calls on the same mesh do not share mutable state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import logging
import numpy as np
from scipy import sparse

from .errors import InvalidMesh

_LOGGER = logging.getLogger(__name__)

# Triangles below this area are treated as degenerate everywhere.
DEGENERATE_AREA = 1e-6


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Mesh:
    """
    Triangle mesh.

    Attributes:
        vertices: (N, 3) float64 vertex positions; index is the vertex id
        faces: (M, 3) int64 vertex ids per triangle

    ``faces`` accepts either an ``(M, 3)`` array or a flat index sequence
    whose length is a multiple of three.
    """

    vertices: np.ndarray
    faces: np.ndarray

    def __post_init__(self):
        vertices = np.array(self.vertices, dtype=np.float64, copy=True)
        if vertices.size == 0:
            vertices = vertices.reshape(0, 3)
        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise InvalidMesh(f"vertices must have shape (N, 3), got {vertices.shape}")

        raw = np.array(self.faces, copy=True)
        if raw.size == 0:
            raw = np.zeros((0, 3), dtype=np.int64)
        if raw.dtype.kind not in "iu":
            if raw.dtype.kind == "f" and np.all(np.isfinite(raw)) and np.all(raw == np.round(raw)):
                raw = raw.astype(np.int64)
            else:
                raise InvalidMesh("triangle indices must be integers")
        if raw.ndim == 1:
            if raw.size % 3 != 0:
                raise InvalidMesh(f"triangle index count {raw.size} is not a multiple of 3")
            raw = raw.reshape(-1, 3)
        if raw.ndim != 2 or raw.shape[1] != 3:
            raise InvalidMesh(f"faces must have shape (M, 3), got {raw.shape}")

        object.__setattr__(self, "vertices", _readonly(vertices))
        object.__setattr__(self, "faces", _readonly(raw.astype(np.int64, copy=False)))

    @classmethod
    def from_flat(cls, vertices: Any, triangle_indices: Any) -> "Mesh":
        return cls(vertices=vertices, faces=np.asarray(triangle_indices).reshape(-1))

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_triangles(self) -> int:
        return int(self.faces.shape[0])

    @property
    def triangle_indices(self) -> np.ndarray:
        """Flat index runs (length ``3 * n_triangles``)."""
        return self.faces.reshape(-1)

    def validate(self) -> "Mesh":
        """Raise ``InvalidMesh`` unless the mesh can be segmented."""
        if self.n_vertices < 3:
            raise InvalidMesh(f"mesh needs at least 3 vertices, got {self.n_vertices}")
        if self.n_triangles == 0:
            raise InvalidMesh("mesh has no triangles")
        lo = int(self.faces.min())
        hi = int(self.faces.max())
        if lo < 0 or hi >= self.n_vertices:
            raise InvalidMesh(
                f"triangle indices out of range [0, {self.n_vertices}): min={lo}, max={hi}"
            )
        if not np.all(np.isfinite(self.vertices)):
            raise InvalidMesh("vertex coordinates must be finite")
        return self

    @property
    def bounds(self) -> np.ndarray:
        """[[min_x, min_y, min_z], [max_x, max_y, max_z]]"""
        if self.n_vertices == 0:
            return np.zeros((2, 3), dtype=np.float64)
        return np.array([self.vertices.min(axis=0), self.vertices.max(axis=0)])

    @property
    def extents(self) -> np.ndarray:
        return self.bounds[1] - self.bounds[0]

    def face_cross(self) -> np.ndarray:
        v = self.vertices
        f = self.faces
        return np.cross(v[f[:, 1]] - v[f[:, 0]], v[f[:, 2]] - v[f[:, 0]])

    def face_areas(self) -> np.ndarray:
        return 0.5 * np.linalg.norm(self.face_cross(), axis=1)

    def face_normals(self) -> np.ndarray:
        """Unit face normals; degenerate triangles get a zero vector."""
        cross = self.face_cross()
        norms = np.linalg.norm(cross, axis=1, keepdims=True)
        out = np.zeros_like(cross)
        ok = norms[:, 0] > 2.0 * DEGENERATE_AREA
        out[ok] = cross[ok] / norms[ok]
        return out

    def centroids(self) -> np.ndarray:
        return self.vertices[self.faces].mean(axis=1)

    def unique_edges(self) -> np.ndarray:
        return unique_edges(self.faces)

    def boundary_edges(self) -> np.ndarray:
        return boundary_edges(self.faces)

    def boundary_loops(self) -> List[np.ndarray]:
        return boundary_loops(self.boundary_edges())

    def to_trimesh(self):
        import trimesh

        return trimesh.Trimesh(vertices=self.vertices, faces=self.faces, process=False)

    @classmethod
    def from_trimesh(cls, mesh) -> "Mesh":
        return cls(vertices=np.asarray(mesh.vertices), faces=np.asarray(mesh.faces))


def _face_edges(faces: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sorted (a < b) edges of every triangle, with the owning face id.

    Self-edges from repeated vertices in a degenerate triangle are dropped.
    """
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    edges = np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]], axis=0)
    face_ids = np.tile(np.arange(faces.shape[0], dtype=np.int64), 3)
    edges.sort(axis=1)
    keep = edges[:, 0] != edges[:, 1]
    return edges[keep], face_ids[keep]


def _edge_keys(edges: np.ndarray) -> Tuple[np.ndarray, int]:
    """Scalar key ``a * width + b`` per sorted edge; keys sort like the edge rows."""
    width = int(edges.max()) + 1
    return edges[:, 0] * width + edges[:, 1], width


def _decode_keys(keys: np.ndarray, width: int) -> np.ndarray:
    return np.column_stack([keys // width, keys % width]).astype(np.int64)


def unique_edges(faces: np.ndarray) -> np.ndarray:
    """All undirected edges ``(E, 2)`` with ``a < b``, lexicographically sorted."""
    edges, _ = _face_edges(faces)
    if edges.shape[0] == 0:
        return np.zeros((0, 2), dtype=np.int64)
    keys, width = _edge_keys(edges)
    return _decode_keys(np.unique(keys), width)


def boundary_edges(faces: np.ndarray) -> np.ndarray:
    """Edges ``(E, 2)`` used by exactly one triangle."""
    edges, face_ids = _face_edges(faces)
    if edges.shape[0] == 0:
        return np.zeros((0, 2), dtype=np.int64)
    keys, width = _edge_keys(edges)
    # A face can contribute the same edge twice only when degenerate; count faces, not uses.
    order = np.lexsort((face_ids, keys))
    keys = keys[order]
    face_ids = face_ids[order]
    first = np.ones(keys.shape[0], dtype=bool)
    first[1:] = (keys[1:] != keys[:-1]) | (face_ids[1:] != face_ids[:-1])
    uniq, counts = np.unique(keys[first], return_counts=True)
    return _decode_keys(uniq[counts == 1], width)


def boundary_loops(edges: np.ndarray) -> List[np.ndarray]:
    """
    Chain boundary edges into ordered vertex loops.

    Each loop is an ``(L,)`` array without the repeated start vertex. Open
    chains (non-manifold boundaries) are returned as they were traced; chains
    shorter than three vertices are skipped.
    """
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    if edges.shape[0] == 0:
        return []

    adjacency: dict[int, list[int]] = {}
    unused: set[tuple[int, int]] = set()
    for a, b in edges.tolist():
        adjacency.setdefault(a, []).append(b)
        adjacency.setdefault(b, []).append(a)
        unused.add((a, b) if a < b else (b, a))

    loops: List[np.ndarray] = []
    # Deterministic start order.
    for start in sorted(unused):
        if start not in unused:
            continue
        unused.discard(start)
        loop = [start[0], start[1]]
        prev, curr = start
        while True:
            step = None
            for cand in adjacency.get(curr, ()):
                if cand == prev:
                    continue
                key = (curr, cand) if curr < cand else (cand, curr)
                if key in unused:
                    unused.discard(key)
                    step = cand
                    break
            if step is None or step == loop[0]:
                break
            loop.append(step)
            prev, curr = curr, step
        if len(loop) >= 3:
            loops.append(np.asarray(loop, dtype=np.int64))
    return loops


class TriangleAdjacency:
    """
    Triangle-to-triangle adjacency over shared undirected edges (CSR).

    ``neighbors(t)`` returns a read-only view into one contiguous index array,
    sorted ascending, without ``t`` itself and without duplicates.
    """

    def __init__(self, matrix: sparse.csr_matrix):
        matrix = sparse.csr_matrix(matrix)
        matrix.sort_indices()
        self.matrix = matrix
        self.indptr = _readonly(np.asarray(matrix.indptr, dtype=np.int64))
        self.indices = _readonly(np.asarray(matrix.indices, dtype=np.int64))

    @property
    def n_triangles(self) -> int:
        return int(self.matrix.shape[0])

    @property
    def n_pairs(self) -> int:
        return int(self.indices.shape[0])

    def neighbors(self, t: int) -> np.ndarray:
        return self.indices[self.indptr[t]:self.indptr[t + 1]]

    def degree(self) -> np.ndarray:
        return np.diff(self.indptr)

    def pairs(self) -> Tuple[np.ndarray, np.ndarray]:
        """Directed (row, col) pairs, both directions present."""
        rows = np.repeat(np.arange(self.n_triangles, dtype=np.int64), self.degree())
        return rows, self.indices


def build_triangle_adjacency(faces: np.ndarray, n_triangles: Optional[int] = None) -> TriangleAdjacency:
    """
    Two triangles are adjacent when they share an undirected edge.

    Built from a sparse face/edge incidence matrix ``B`` as ``B @ B.T`` with
    the diagonal removed, so non-manifold edges connect every face pair.
    """
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    m = int(faces.shape[0] if n_triangles is None else n_triangles)
    edges, face_ids = _face_edges(faces)
    if edges.shape[0] == 0:
        return TriangleAdjacency(sparse.csr_matrix((m, m), dtype=np.int8))

    keys, _ = _edge_keys(edges)
    _, edge_ids = np.unique(keys, return_inverse=True)
    edge_ids = np.asarray(edge_ids).reshape(-1)
    incidence = sparse.csr_matrix(
        (np.ones(edge_ids.shape[0], dtype=np.int32), (face_ids, edge_ids)),
        shape=(m, int(edge_ids.max()) + 1),
    )
    incidence.data[:] = 1
    shared = (incidence @ incidence.T).tocoo()
    off_diag = shared.row != shared.col
    shared = sparse.csr_matrix(
        (
            np.ones(int(off_diag.sum()), dtype=np.int8),
            (shared.row[off_diag], shared.col[off_diag]),
        ),
        shape=(m, m),
    )
    _LOGGER.debug("Triangle adjacency: %d triangles, %d directed pairs", m, shared.nnz)
    return TriangleAdjacency(shared)
