"""
Majority-vote smoothing of cluster boundaries.
"""

from __future__ import annotations

from typing import Optional

import logging
import numpy as np

from .cooperative import Checkpoint
from .mesh_store import TriangleAdjacency

_LOGGER = logging.getLogger(__name__)

OWN_LABEL_WEIGHT = 2.0


def boundary_mask(adjacency: TriangleAdjacency, labels: np.ndarray) -> np.ndarray:
    """True for triangles with at least one differently-labelled neighbour."""
    rows, cols = adjacency.pairs()
    differs = labels[rows] != labels[cols]
    return np.bincount(rows[differs], minlength=adjacency.n_triangles) > 0


def _vote(adjacency: TriangleAdjacency, labels: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    """Winning label for each triangle in ``candidates``."""
    k = int(labels.max()) + 1
    rows_all, cols_all = adjacency.pairs()
    pick = np.zeros(adjacency.n_triangles, dtype=bool)
    pick[candidates] = True
    sel = pick[rows_all]
    rows = np.concatenate([rows_all[sel], candidates])
    voted = np.concatenate([labels[cols_all[sel]], labels[candidates]])
    weights = np.concatenate(
        [np.ones(int(sel.sum())), np.full(candidates.shape[0], OWN_LABEL_WEIGHT)]
    )

    keys, inverse = np.unique(rows * k + voted, return_inverse=True)
    votes = np.bincount(inverse.reshape(-1), weights=weights)
    key_rows = keys // k
    key_labels = keys % k
    is_own = key_labels == labels[key_rows]

    # Per row: most votes first, then the current label, then the lowest label.
    order = np.lexsort((key_labels, ~is_own, -votes, key_rows))
    first = np.ones(order.shape[0], dtype=bool)
    first[1:] = key_rows[order][1:] != key_rows[order][:-1]
    winners = order[first]

    out = labels.copy()
    out[key_rows[winners]] = key_labels[winners]
    return out[candidates]


def smoothing_pass(adjacency: TriangleAdjacency, labels: np.ndarray) -> tuple[np.ndarray, int]:
    """
    One pass reading only from ``labels`` (a snapshot) and writing a copy.

    A move that would remove the last triangle of a cluster is reverted.
    Returns the new labels and the number of changed triangles.
    """
    labels = np.asarray(labels, dtype=np.int64)
    candidates = np.flatnonzero(boundary_mask(adjacency, labels))
    if candidates.size == 0:
        return labels.copy(), 0

    out = labels.copy()
    out[candidates] = _vote(adjacency, labels, candidates)

    k = int(labels.max()) + 1
    before = np.bincount(labels, minlength=k)
    after = np.bincount(out, minlength=k)
    emptied = np.flatnonzero((before > 0) & (after == 0))
    if emptied.size:
        revert = np.isin(labels, emptied) & (out != labels)
        out[revert] = labels[revert]
        _LOGGER.debug("Smoothing kept %d clusters from emptying", int(emptied.size))

    return out, int(np.count_nonzero(out != labels))


def smooth_boundaries(
    adjacency: TriangleAdjacency,
    labels: np.ndarray,
    passes: int = 3,
    *,
    checkpoint: Optional[Checkpoint] = None,
) -> np.ndarray:
    out = np.array(labels, dtype=np.int64, copy=True)
    if out.size == 0:
        return out
    for i in range(int(passes)):
        out, changed = smoothing_pass(adjacency, out)
        if checkpoint is not None:
            checkpoint.check("smoothing")
        if changed == 0:
            _LOGGER.debug("Smoothing stable after %d passes", i + 1)
            break
    return out
