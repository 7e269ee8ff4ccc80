"""
Feature-space K-means for triangle clustering.

Centers are seeded with K-means++ from an explicit ``numpy.random.Generator``
seed so that runs are reproducible, then refined with Lloyd iterations under a
weighted mixed distance:

    d = w_pos * |dp| + w_normal * (1 - n1.n2) + w_curv * |dc| + w_edge * |de|
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import logging
import numpy as np
from scipy.spatial.distance import cdist

from .config import DistanceWeights, SegmentationConfig
from .cooperative import Checkpoint
from .errors import InvalidPanelCount
from .features import FeatureSet

_LOGGER = logging.getLogger(__name__)

# Elements of the (n, K) distance matrix evaluated per block.
_CHUNK_ELEMENTS = 2_000_000
YIELD_EVERY = 5


@dataclass(frozen=True, eq=False)
class Centers:
    positions: np.ndarray
    normals: np.ndarray
    curvature: np.ndarray
    average_edge_length: np.ndarray

    def __len__(self) -> int:
        return int(self.positions.shape[0])

    @classmethod
    def take(cls, features: FeatureSet, rows: np.ndarray) -> "Centers":
        rows = np.asarray(rows, dtype=np.int64)
        return cls(
            positions=features.positions[rows].copy(),
            normals=features.normals[rows].copy(),
            curvature=features.curvature[rows].copy(),
            average_edge_length=features.average_edge_length[rows].copy(),
        )


@dataclass(frozen=True, eq=False)
class ClusteringResult:
    labels: np.ndarray
    centers: Centers
    iterations: int
    converged: bool
    meta: dict[str, Any] = field(default_factory=dict)


def feature_distance(features: FeatureSet, centers: Centers, weights: DistanceWeights) -> np.ndarray:
    """Weighted distance ``(n, K)`` from every feature row to every center."""
    n = len(features)
    k = len(centers)
    out = np.empty((n, k), dtype=np.float64)
    chunk = max(1, _CHUNK_ELEMENTS // max(k, 1))
    for start in range(0, n, chunk):
        stop = min(n, start + chunk)
        block = weights.position * cdist(features.positions[start:stop], centers.positions)
        block += weights.normal * (1.0 - features.normals[start:stop] @ centers.normals.T)
        block += weights.curvature * np.abs(
            features.curvature[start:stop, None] - centers.curvature[None, :]
        )
        block += weights.edge_length * np.abs(
            features.average_edge_length[start:stop, None] - centers.average_edge_length[None, :]
        )
        out[start:stop] = block
    return out


def _paired_distance(a: Centers, b: Centers, weights: DistanceWeights) -> np.ndarray:
    """Distance between row i of ``a`` and row i of ``b``."""
    return (
        weights.position * np.linalg.norm(a.positions - b.positions, axis=1)
        + weights.normal * (1.0 - np.einsum("ij,ij->i", a.normals, b.normals))
        + weights.curvature * np.abs(a.curvature - b.curvature)
        + weights.edge_length * np.abs(a.average_edge_length - b.average_edge_length)
    )


def _nearest(features: FeatureSet, centers: Centers, weights: DistanceWeights) -> tuple[np.ndarray, np.ndarray]:
    dist = feature_distance(features, centers, weights)
    labels = np.argmin(dist, axis=1)
    return labels.astype(np.int64), dist[np.arange(dist.shape[0]), labels]


def kmeans_plus_plus(
    features: FeatureSet,
    k: int,
    weights: DistanceWeights,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Seed row indices for ``k`` centers.

    The first center is uniform; each next one is drawn with probability
    proportional to the squared distance to its nearest chosen center. When
    every remaining distance is zero the draw is uniform over unchosen rows.
    """
    n = len(features)
    chosen = [int(rng.integers(n))]
    closest = feature_distance(features, Centers.take(features, chosen), weights)[:, 0]
    closest = np.maximum(closest, 0.0)

    while len(chosen) < k:
        d2 = closest * closest
        total = float(d2.sum())
        if total > 0.0 and np.isfinite(total):
            pick = int(rng.choice(n, p=d2 / total))
        else:
            mask = np.ones(n, dtype=bool)
            mask[chosen] = False
            pick = int(rng.choice(np.flatnonzero(mask)))
        chosen.append(pick)
        d_new = feature_distance(features, Centers.take(features, [pick]), weights)[:, 0]
        closest = np.minimum(closest, np.maximum(d_new, 0.0))
    return np.asarray(chosen, dtype=np.int64)


def _update_centers(features: FeatureSet, labels: np.ndarray, previous: Centers) -> tuple[Centers, int]:
    k = len(previous)
    counts = np.bincount(labels, minlength=k).astype(np.float64)
    filled = counts > 0

    def _mean(column: np.ndarray, old: np.ndarray) -> np.ndarray:
        out = old.copy()
        if column.ndim == 1:
            sums = np.bincount(labels, weights=column, minlength=k)
            out[filled] = sums[filled] / counts[filled]
            return out
        for axis in range(column.shape[1]):
            sums = np.bincount(labels, weights=column[:, axis], minlength=k)
            out[filled, axis] = sums[filled] / counts[filled]
        return out

    positions = _mean(features.positions, previous.positions)
    normal_sum = _mean(features.normals, previous.normals)
    norms = np.linalg.norm(normal_sum, axis=1)
    normals = previous.normals.copy()
    ok = filled & (norms > 1e-12)
    normals[ok] = normal_sum[ok] / norms[ok, None]

    centers = Centers(
        positions=positions,
        normals=normals,
        curvature=_mean(features.curvature, previous.curvature),
        average_edge_length=_mean(features.average_edge_length, previous.average_edge_length),
    )
    return centers, int(np.count_nonzero(~filled))


def kmeans_cluster(
    features: FeatureSet,
    k: int,
    config: Optional[SegmentationConfig] = None,
    *,
    checkpoint: Optional[Checkpoint] = None,
) -> ClusteringResult:
    """
    Cluster feature rows into ``k`` groups.

    Raises:
        InvalidPanelCount: ``k < 1`` or ``k`` exceeds the number of rows
        SegmentationTimeout / Cancelled: raised by ``checkpoint``
    """
    cfg = config or SegmentationConfig()
    n = len(features)
    k = int(k)
    if k < 1 or k > n:
        raise InvalidPanelCount(f"panel count must be in [1, {n}], got {k}")

    weights = cfg.distance_weights
    rng = np.random.default_rng(cfg.seed)
    seeds = kmeans_plus_plus(features, k, weights, rng)
    centers = Centers.take(features, seeds)

    labels = np.zeros(n, dtype=np.int64)
    converged = False
    empty_events = 0
    iteration = 0
    for iteration in range(1, int(cfg.max_iterations) + 1):
        labels, _ = _nearest(features, centers, weights)
        new_centers, n_empty = _update_centers(features, labels, centers)
        empty_events += n_empty
        shift = float(_paired_distance(centers, new_centers, weights).max(initial=0.0))
        centers = new_centers
        if shift < float(cfg.convergence_threshold):
            converged = True
            break
        if checkpoint is not None and iteration % YIELD_EVERY == 0:
            checkpoint.check("clustering")

    if not converged:
        _LOGGER.debug("K-means stopped at iteration cap (%d) without converging", iteration)

    return ClusteringResult(
        labels=labels,
        centers=centers,
        iterations=iteration,
        converged=converged,
        meta={"seeds": seeds, "empty_cluster_events": empty_events},
    )
