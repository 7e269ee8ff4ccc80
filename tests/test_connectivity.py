import unittest

import numpy as np

from panelcut.core.connectivity import enforce_connectivity, label_components, merge_degenerate_clusters
from panelcut.core.mesh_store import Mesh, build_triangle_adjacency
from tests.mesh_fixtures import plane_grid, sliver_strip, two_islands


class TestConnectivity(unittest.TestCase):
    def test_split_label_keeps_one_component(self):
        mesh = plane_grid(4, 4)
        adjacency = build_triangle_adjacency(mesh.faces)
        labels = np.zeros(mesh.n_triangles, dtype=np.int64)
        labels[0] = 1
        labels[31] = 1

        out = enforce_connectivity(mesh, adjacency, labels)

        self.assertEqual(int(np.count_nonzero(out == 1)), 1)
        self.assertEqual(int(out[0]), 1)
        self.assertEqual(int(out[31]), 0)
        # input untouched
        self.assertEqual(int(labels[31]), 1)

    def test_orphan_joins_neighbouring_label(self):
        mesh = two_islands()
        adjacency = build_triangle_adjacency(mesh.faces)
        labels = np.zeros(mesh.n_triangles, dtype=np.int64)
        labels[8:] = 1
        labels[3] = 1

        out = enforce_connectivity(mesh, adjacency, labels)

        np.testing.assert_array_equal(out[:8], np.zeros(8))
        np.testing.assert_array_equal(out[8:], np.ones(8))

    def test_isolated_orphan_defaults_to_zero(self):
        mesh = two_islands()
        adjacency = build_triangle_adjacency(mesh.faces)
        labels = np.ones(mesh.n_triangles, dtype=np.int64)

        out = enforce_connectivity(mesh, adjacency, labels, n_labels=2)

        np.testing.assert_array_equal(out[:8], np.ones(8))
        np.testing.assert_array_equal(out[8:], np.zeros(8))

    def test_random_labels_become_connected(self):
        mesh = plane_grid(6, 6)
        adjacency = build_triangle_adjacency(mesh.faces)
        labels = np.random.default_rng(5).integers(0, 4, size=mesh.n_triangles)

        out = enforce_connectivity(mesh, adjacency, labels, n_labels=4)

        self.assertTrue(set(out.tolist()) <= set(labels.tolist()))
        for label in set(out.tolist()):
            self.assertEqual(len(label_components(adjacency, out, label)), 1)

    def test_components_sorted_largest_first(self):
        mesh = plane_grid(4, 4)
        adjacency = build_triangle_adjacency(mesh.faces)
        labels = np.zeros(mesh.n_triangles, dtype=np.int64)
        labels[[0, 1]] = 1
        labels[31] = 1
        comps = label_components(adjacency, labels, 1)
        self.assertEqual([c.size for c in comps], [2, 1])


class TestDegenerateClusters(unittest.TestCase):
    def test_sliver_joins_edge_neighbour(self):
        mesh = sliver_strip()
        adjacency = build_triangle_adjacency(mesh.faces)

        out = merge_degenerate_clusters(mesh, adjacency, np.array([0, 1, 2]))

        self.assertEqual(out.tolist(), [0, 1, 1])

    def test_sliver_without_edge_neighbour_joins_nearest(self):
        vertices = [
            [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0],
            [10.0, 0.0, 0.0], [11.0, 0.0, 0.0], [10.0, 1.0, 0.0],
            [10.0, 2.0, 0.0], [11.0, 2.0, 0.0],
        ]
        mesh = Mesh(vertices=vertices, faces=[[0, 1, 2], [3, 4, 5], [6, 6, 7]])
        adjacency = build_triangle_adjacency(mesh.faces)

        out = merge_degenerate_clusters(mesh, adjacency, np.array([0, 1, 2]))

        self.assertEqual(out.tolist(), [0, 1, 1])

    def test_valid_clusters_untouched(self):
        mesh = plane_grid(2, 2)
        adjacency = build_triangle_adjacency(mesh.faces)
        labels = np.array([0, 0, 1, 1, 2, 2, 3, 3])

        out = merge_degenerate_clusters(mesh, adjacency, labels)

        np.testing.assert_array_equal(out, labels)

    def test_single_label_is_left_alone(self):
        mesh = Mesh(vertices=np.eye(3), faces=[[0, 0, 1]])
        out = merge_degenerate_clusters(mesh, build_triangle_adjacency(mesh.faces), np.array([0]))
        self.assertEqual(out.tolist(), [0])


if __name__ == "__main__":
    unittest.main()
