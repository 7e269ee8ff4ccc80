import unittest

import numpy as np
from scipy import sparse

from panelcut.core.mesh_store import TriangleAdjacency, build_triangle_adjacency
from panelcut.core.smoothing import boundary_mask, smooth_boundaries, smoothing_pass
from tests.mesh_fixtures import plane_grid


def _graph(n, pairs):
    rows = [a for a, b in pairs] + [b for a, b in pairs]
    cols = [b for a, b in pairs] + [a for a, b in pairs]
    m = sparse.csr_matrix((np.ones(len(rows), dtype=np.int8), (rows, cols)), shape=(n, n))
    return TriangleAdjacency(m)


class TestBoundarySmoothing(unittest.TestCase):
    def test_outvoted_triangle_flips(self):
        adjacency = _graph(5, [(0, 1), (0, 2), (0, 3)])
        labels = np.array([2, 0, 0, 0, 2])

        out, changed = smoothing_pass(adjacency, labels)

        self.assertEqual(int(out[0]), 0)
        self.assertEqual(changed, 1)

    def test_tie_keeps_current_label(self):
        adjacency = _graph(5, [(0, 1), (0, 2), (0, 3)])
        labels = np.array([2, 0, 0, 1, 2])

        out, changed = smoothing_pass(adjacency, labels)

        np.testing.assert_array_equal(out, labels)
        self.assertEqual(changed, 0)

    def test_last_triangle_of_cluster_is_kept(self):
        adjacency = _graph(4, [(0, 1), (0, 2), (0, 3)])
        labels = np.array([2, 0, 0, 0])

        out, _ = smoothing_pass(adjacency, labels)

        self.assertEqual(int(out[0]), 2)

    def test_boundary_mask(self):
        adjacency = _graph(4, [(0, 1), (1, 2), (2, 3)])
        mask = boundary_mask(adjacency, np.array([0, 0, 1, 1]))
        self.assertEqual(mask.tolist(), [False, True, True, False])

    def test_pass_reads_from_snapshot(self):
        adjacency = _graph(
            10, [(0, 1), (0, 2), (0, 3), (0, 8), (0, 4), (4, 5), (4, 6), (4, 7)]
        )
        labels = np.array([1, 0, 0, 0, 1, 0, 0, 0, 0, 1])

        out, changed = smoothing_pass(adjacency, labels)

        # node 0 flips; node 4 still sees node 0 as label 1 and ties
        self.assertEqual(int(out[0]), 0)
        self.assertEqual(int(out[4]), 1)
        self.assertEqual(changed, 1)

    def test_jagged_grid_gets_smoother(self):
        mesh = plane_grid(6, 6)
        adjacency = build_triangle_adjacency(mesh.faces)
        labels = (mesh.centroids()[:, 0] > 0.5).astype(np.int64)
        noisy = labels.copy()
        noisy[[10, 25, 40]] = 1 - noisy[[10, 25, 40]]

        before = int(boundary_mask(adjacency, noisy).sum())
        out = smooth_boundaries(adjacency, noisy, passes=3)
        after = int(boundary_mask(adjacency, out).sum())

        self.assertLessEqual(after, before)
        np.testing.assert_array_equal(noisy[[10, 25, 40]], 1 - labels[[10, 25, 40]])

    def test_zero_passes_returns_copy(self):
        adjacency = _graph(3, [(0, 1), (1, 2)])
        labels = np.array([0, 1, 0])
        out = smooth_boundaries(adjacency, labels, passes=0)
        np.testing.assert_array_equal(out, labels)
        self.assertIsNot(out, labels)


if __name__ == "__main__":
    unittest.main()
