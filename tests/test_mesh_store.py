import unittest

import numpy as np

from panelcut.core.errors import InvalidMesh
from panelcut.core.mesh_store import (
    Mesh,
    boundary_edges,
    boundary_loops,
    build_triangle_adjacency,
)
from tests.mesh_fixtures import plane_grid, single_triangle, unit_cube


class TestMeshConstruction(unittest.TestCase):
    def test_flat_indices_are_grouped_in_triples(self):
        mesh = Mesh(vertices=np.zeros((4, 3)), faces=[0, 1, 2, 0, 2, 3])
        self.assertEqual(mesh.faces.shape, (2, 3))
        self.assertEqual(mesh.triangle_indices.tolist(), [0, 1, 2, 0, 2, 3])

    def test_flat_indices_not_multiple_of_three(self):
        with self.assertRaises(InvalidMesh):
            Mesh(vertices=np.zeros((4, 3)), faces=[0, 1, 2, 3])

    def test_arrays_are_read_only(self):
        mesh = unit_cube()
        with self.assertRaises(ValueError):
            mesh.vertices[0, 0] = 5.0
        with self.assertRaises(ValueError):
            mesh.faces[0, 0] = 1

    def test_input_array_is_copied(self):
        vertices = np.eye(3)
        mesh = Mesh(vertices=vertices, faces=[0, 1, 2])
        vertices[0, 0] = 42.0
        self.assertEqual(float(mesh.vertices[0, 0]), 1.0)

    def test_validate_empty(self):
        with self.assertRaises(InvalidMesh):
            Mesh(vertices=[], faces=[]).validate()

    def test_validate_out_of_range(self):
        mesh = Mesh(vertices=np.zeros((3, 3)), faces=[0, 1, 3])
        with self.assertRaises(InvalidMesh):
            mesh.validate()

    def test_validate_negative_index(self):
        mesh = Mesh(vertices=np.zeros((3, 3)), faces=[0, 1, -1])
        with self.assertRaises(InvalidMesh):
            mesh.validate()

    def test_invalid_mesh_is_value_error(self):
        with self.assertRaises(ValueError):
            Mesh(vertices=[], faces=[]).validate()


class TestTopology(unittest.TestCase):
    def test_cube_adjacency_has_three_neighbours_each(self):
        mesh = unit_cube()
        adjacency = build_triangle_adjacency(mesh.faces)

        self.assertEqual(adjacency.n_triangles, 12)
        self.assertTrue(np.all(adjacency.degree() == 3))
        for t in range(12):
            nbrs = adjacency.neighbors(t)
            self.assertNotIn(t, nbrs.tolist())
            self.assertEqual(len(set(nbrs.tolist())), nbrs.size)

    def test_adjacency_is_symmetric(self):
        adjacency = build_triangle_adjacency(plane_grid(3, 3).faces)
        dense = adjacency.matrix.toarray()
        np.testing.assert_array_equal(dense, dense.T)

    def test_single_triangle_has_no_neighbours(self):
        adjacency = build_triangle_adjacency(single_triangle().faces)
        self.assertEqual(adjacency.n_pairs, 0)
        self.assertEqual(adjacency.neighbors(0).size, 0)

    def test_non_manifold_edge_connects_all_faces(self):
        # Three triangles share edge (0, 1).
        faces = np.asarray([[0, 1, 2], [1, 0, 3], [0, 1, 4]])
        adjacency = build_triangle_adjacency(faces)
        self.assertEqual(sorted(adjacency.neighbors(0).tolist()), [1, 2])
        self.assertEqual(sorted(adjacency.neighbors(2).tolist()), [0, 1])

    def test_closed_cube_has_no_boundary(self):
        self.assertEqual(unit_cube().boundary_edges().shape, (0, 2))
        self.assertEqual(unit_cube().boundary_loops(), [])

    def test_grid_boundary_loop(self):
        mesh = plane_grid(2, 2)
        edges = boundary_edges(mesh.faces)
        self.assertEqual(edges.shape[0], 8)
        loops = boundary_loops(edges)
        self.assertEqual(len(loops), 1)
        self.assertEqual(sorted(loops[0].tolist()), [0, 1, 2, 3, 5, 6, 7, 8])

    def test_unique_edges_of_two_triangles(self):
        mesh = Mesh(vertices=np.zeros((4, 3)), faces=[[0, 1, 2], [0, 2, 3]])
        edges = {tuple(e) for e in mesh.unique_edges().tolist()}
        self.assertEqual(edges, {(0, 1), (1, 2), (0, 2), (2, 3), (0, 3)})


if __name__ == "__main__":
    unittest.main()
