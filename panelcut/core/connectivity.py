"""
Make every cluster a single connected patch.

K-means in feature space can place spatially separate triangles into one
cluster. For each label the largest connected component keeps the label and
every other component (an orphan) is merged, as a whole, into the label of the
nearest neighbouring triangle outside it. Labels too small to form a panel
are folded into a neighbour the same way.
"""

from __future__ import annotations

from typing import Optional

import logging
import numpy as np
from scipy.sparse.csgraph import connected_components

from .cooperative import Checkpoint
from .mesh_store import Mesh, TriangleAdjacency
from .panels import MIN_PANEL_VERTICES

_LOGGER = logging.getLogger(__name__)


def label_components(adjacency: TriangleAdjacency, labels: np.ndarray, label: int) -> list[np.ndarray]:
    """
    Connected components of the triangles carrying ``label``.

    Components are sorted largest first; equal sizes keep the order of their
    lowest triangle id.
    """
    members = np.flatnonzero(np.asarray(labels) == label)
    if members.size == 0:
        return []
    sub = adjacency.matrix[members][:, members]
    n_comp, comp = connected_components(sub, directed=False)
    groups = [members[comp == c] for c in range(n_comp)]
    groups.sort(key=lambda g: (-int(g.size), int(g[0])))
    return groups


def _nearest_external_label(
    adjacency: TriangleAdjacency,
    labels: np.ndarray,
    component: np.ndarray,
    own_label: int,
    centroids: np.ndarray,
) -> Optional[int]:
    rows_csr = adjacency.matrix[component]
    rows = np.repeat(component, np.diff(rows_csr.indptr))
    cols = np.asarray(rows_csr.indices, dtype=np.int64)
    outside = labels[cols] != own_label
    if not np.any(outside):
        return None
    rows = rows[outside]
    cols = cols[outside]
    dist = np.linalg.norm(centroids[rows] - centroids[cols], axis=1)
    return int(labels[cols[int(np.argmin(dist))]])


def enforce_connectivity(
    mesh: Mesh,
    adjacency: TriangleAdjacency,
    labels: np.ndarray,
    *,
    n_labels: Optional[int] = None,
    centroids: Optional[np.ndarray] = None,
    checkpoint: Optional[Checkpoint] = None,
) -> np.ndarray:
    """
    Return a new label array in which every label forms one component.

    Orphans without any external neighbour (separate mesh islands) fall back
    to label 0, so label 0 may stay disconnected on multi-island meshes.
    No label outside the input range is ever introduced.
    """
    out = np.array(labels, dtype=np.int64, copy=True)
    if out.size == 0:
        return out
    k = int(out.max()) + 1 if n_labels is None else int(n_labels)
    if centroids is None:
        centroids = mesh.centroids()

    reassigned = 0
    isolated = 0
    for label in range(k):
        components = label_components(adjacency, out, label)
        for component in components[1:]:
            target = _nearest_external_label(adjacency, out, component, label, centroids)
            if target is None:
                target = 0
                isolated += 1
            out[component] = target
            reassigned += int(component.size)
        if checkpoint is not None and label % 8 == 7:
            checkpoint.check("connectivity")

    if reassigned:
        _LOGGER.debug(
            "Connectivity: reassigned %d orphan triangles (%d isolated components to label 0)",
            reassigned,
            isolated,
        )
    return out


def _undersized_labels(faces: np.ndarray, labels: np.ndarray, n_vertices: int) -> np.ndarray:
    """Present labels whose triangles reference fewer than MIN_PANEL_VERTICES vertices."""
    keys = np.unique(np.repeat(labels, 3) * n_vertices + faces.reshape(-1))
    size = int(labels.max()) + 1
    distinct = np.bincount(keys // n_vertices, minlength=size)
    present = np.bincount(labels, minlength=size) > 0
    return np.flatnonzero(present & (distinct < MIN_PANEL_VERTICES))


def merge_degenerate_clusters(
    mesh: Mesh,
    adjacency: TriangleAdjacency,
    labels: np.ndarray,
    *,
    centroids: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Fold labels that cannot form a panel into a neighbouring label.

    A label whose triangles reference fewer than three distinct vertices
    (slivers such as ``(3, 3, 2)``) joins the label of the nearest
    edge-adjacent triangle, or of the nearest triangle by centroid when it
    has no edge neighbour. A mesh with a single label is left as is.
    """
    out = np.array(labels, dtype=np.int64, copy=True)
    if out.size == 0:
        return out
    if centroids is None:
        centroids = mesh.centroids()

    merged = 0
    while np.unique(out).size > 1:
        small = _undersized_labels(mesh.faces, out, mesh.n_vertices)
        if small.size == 0:
            break
        label = int(small[0])
        members = np.flatnonzero(out == label)
        target = _nearest_external_label(adjacency, out, members, label, centroids)
        if target is None:
            others = np.flatnonzero(out != label)
            dist = np.linalg.norm(centroids[others] - centroids[members].mean(axis=0), axis=1)
            target = int(out[others[int(np.argmin(dist))]])
        out[members] = target
        merged += 1

    if merged:
        _LOGGER.debug("Merged %d clusters with fewer than %d vertices", merged, MIN_PANEL_VERTICES)
    return out
