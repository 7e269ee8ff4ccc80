import unittest

import numpy as np

from panelcut.core.clustering import _update_centers, feature_distance, kmeans_cluster, kmeans_plus_plus, Centers
from panelcut.core.config import DistanceWeights, SegmentationConfig
from panelcut.core.errors import InvalidPanelCount
from panelcut.core.features import FeatureSet, extract_features
from tests.mesh_fixtures import folded_sheet, unit_cube


def _features(positions, normals=None):
    positions = np.asarray(positions, dtype=np.float64)
    n = positions.shape[0]
    if normals is None:
        normals = np.tile([0.0, 0.0, 1.0], (n, 1))
    return FeatureSet(
        positions=positions,
        normals=np.asarray(normals, dtype=np.float64),
        curvature=np.zeros(n),
        average_edge_length=np.ones(n),
    )


class TestDistance(unittest.TestCase):
    def test_weighted_terms(self):
        feats = _features([[0.0, 0.0, 0.0]])
        center = Centers(
            positions=np.array([[3.0, 4.0, 0.0]]),
            normals=np.array([[1.0, 0.0, 0.0]]),
            curvature=np.array([2.0]),
            average_edge_length=np.array([3.0]),
        )
        d = feature_distance(feats, center, DistanceWeights())
        # 0.3 * 5 + 0.4 * (1 - 0) + 0.3 * 2 + 0.1 * 2
        self.assertAlmostEqual(float(d[0, 0]), 1.5 + 0.4 + 0.6 + 0.2)

    def test_position_term_far_from_origin(self):
        rng = np.random.default_rng(5)
        positions = rng.normal(size=(200, 3)) + 1.0e4
        feats = _features(positions)
        centers = Centers.take(feats, [0, 50, 150])
        weights = DistanceWeights(position=1.0, normal=0.0, curvature=0.0, edge_length=0.0)

        d = feature_distance(feats, centers, weights)

        expected = np.linalg.norm(positions[:, None, :] - centers.positions[None, :, :], axis=2)
        np.testing.assert_allclose(d, expected, atol=1e-6)
        np.testing.assert_allclose(d[[0, 50, 150], [0, 1, 2]], 0.0, atol=1e-6)


class TestKMeans(unittest.TestCase):
    def test_panel_count_bounds(self):
        feats = _features(np.random.default_rng(1).normal(size=(5, 3)))
        with self.assertRaises(InvalidPanelCount):
            kmeans_cluster(feats, 0)
        with self.assertRaises(InvalidPanelCount):
            kmeans_cluster(feats, 6)

    def test_two_well_separated_groups(self):
        rng = np.random.default_rng(3)
        a = rng.normal(scale=0.05, size=(20, 3))
        b = rng.normal(scale=0.05, size=(20, 3)) + np.array([10.0, 0.0, 0.0])
        result = kmeans_cluster(_features(np.vstack([a, b])), 2)

        self.assertTrue(result.converged)
        self.assertEqual(len(set(result.labels[:20].tolist())), 1)
        self.assertEqual(len(set(result.labels[20:].tolist())), 1)
        self.assertNotEqual(int(result.labels[0]), int(result.labels[20]))

    def test_same_seed_same_labels(self):
        feats = extract_features(folded_sheet()).triangle
        cfg = SegmentationConfig(seed=7)
        first = kmeans_cluster(feats, 4, cfg)
        second = kmeans_cluster(feats, 4, cfg)
        np.testing.assert_array_equal(first.labels, second.labels)
        np.testing.assert_array_equal(first.meta["seeds"], second.meta["seeds"])

    def test_labels_in_range(self):
        feats = extract_features(unit_cube()).triangle
        result = kmeans_cluster(feats, 6)
        self.assertEqual(result.labels.shape, (12,))
        self.assertTrue(np.all((result.labels >= 0) & (result.labels < 6)))
        self.assertLessEqual(result.iterations, 50)


class TestCenterUpdate(unittest.TestCase):
    def test_empty_cluster_keeps_previous_center(self):
        feats = _features([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0], [10.0, 0.0, 0.0]])
        previous = Centers(
            positions=np.array([[1.0, 1.0, 1.0], [5.0, 5.0, 5.0], [9.0, 0.0, 0.0]]),
            normals=np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]]),
            curvature=np.array([0.5, 0.7, 0.0]),
            average_edge_length=np.array([2.0, 3.0, 1.0]),
        )

        centers, n_empty = _update_centers(feats, np.array([0, 0, 2]), previous)

        self.assertEqual(n_empty, 1)
        np.testing.assert_allclose(centers.positions[1], [5.0, 5.0, 5.0])
        np.testing.assert_allclose(centers.normals[1], [1.0, 0.0, 0.0])
        self.assertEqual(float(centers.curvature[1]), 0.7)
        self.assertEqual(float(centers.average_edge_length[1]), 3.0)
        np.testing.assert_allclose(centers.positions[0], [1.0, 0.0, 0.0])
        np.testing.assert_allclose(centers.positions[2], [10.0, 0.0, 0.0])
        self.assertEqual(float(centers.average_edge_length[0]), 1.0)


class TestKMeansPlusPlus(unittest.TestCase):
    def test_identical_points_pick_distinct_rows(self):
        feats = _features(np.zeros((4, 3)))
        rng = np.random.default_rng(0)
        seeds = kmeans_plus_plus(feats, 4, DistanceWeights(), rng)
        self.assertEqual(sorted(seeds.tolist()), [0, 1, 2, 3])

    def test_seeds_are_distinct_points(self):
        feats = _features(np.arange(30, dtype=float).reshape(10, 3))
        seeds = kmeans_plus_plus(feats, 5, DistanceWeights(), np.random.default_rng(11))
        self.assertEqual(len(set(seeds.tolist())), 5)


if __name__ == "__main__":
    unittest.main()
