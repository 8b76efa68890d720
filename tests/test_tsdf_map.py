"""
Tests for the block-based TSDF submap store and trilinear interpolation.
"""

import numpy as np
import pytest

from map_evaluation.core.tsdf_map import (
    Block,
    Submap,
    SubmapCollection,
    SubmapCollectionDistanceField,
    TrilinearInterpolator,
)
from tests.conftest import make_planar_submap


class TestBlock:
    """Voxel layout inside a block."""

    def test_linear_index_is_x_fastest(self):
        block = Block((0, 0, 0), voxels_per_side=4, voxel_size=0.5)

        assert block.local_index(0).tolist() == [0, 0, 0]
        assert block.local_index(1).tolist() == [1, 0, 0]
        assert block.local_index(4).tolist() == [0, 1, 0]
        assert block.local_index(16).tolist() == [0, 0, 1]

    def test_voxel_centers(self):
        block = Block((1, -1, 0), voxels_per_side=2, voxel_size=1.0)

        np.testing.assert_allclose(block.origin, [2.0, -2.0, 0.0])
        np.testing.assert_allclose(block.voxel_center(0), [2.5, -1.5, 0.5])
        np.testing.assert_allclose(block.voxel_center(7), [3.5, -0.5, 1.5])
        np.testing.assert_allclose(block.voxel_centers()[3], block.voxel_center(3))

    def test_new_block_is_unobserved(self):
        block = Block((0, 0, 0), voxels_per_side=3, voxel_size=0.1)

        assert block.num_voxels == 27
        assert np.all(block.weight == 0)
        assert block.color.shape == (27, 3)


class TestSubmap:

    def test_allocate_is_idempotent(self):
        submap = Submap(0, voxel_size=0.1, voxels_per_side=4)
        first = submap.allocate_block((0, 1, 2))
        second = submap.allocate_block((0, 1, 2))

        assert first is second
        assert submap.num_blocks == 1
        assert submap.allocated_block_indices() == [(0, 1, 2)]

    def test_default_truncation_distance(self):
        assert Submap(0, voxel_size=0.05).truncation_distance == pytest.approx(0.1)

    def test_invalid_geometry_rejected(self):
        with pytest.raises(ValueError):
            Submap(0, voxel_size=0.0)
        with pytest.raises(ValueError):
            Submap(0, voxel_size=0.1, voxels_per_side=0)

    def test_lookup_voxel_across_negative_blocks(self):
        submap = make_planar_submap()
        block, linear_index = submap.lookup_voxel(np.array([-1, -1, -1]))

        assert block.block_index == (-1, -1, -1)
        np.testing.assert_allclose(block.voxel_center(linear_index), [-0.05, -0.05, -0.05])
        assert submap.lookup_voxel(np.array([100, 0, 0])) is None

    def test_distance_at(self):
        submap = make_planar_submap()

        assert submap.distance_at(np.array([0.0, 0.0, 0.12])) == pytest.approx(0.15)
        assert submap.distance_at(np.array([5.0, 0.0, 0.0])) is None

    def test_mark_mesh_stale(self):
        submap = Submap(0, voxel_size=0.1)
        assert not submap.mesh_stale
        submap.mark_mesh_stale()
        assert submap.mesh_stale


class TestTrilinearInterpolator:

    def test_linear_field_is_reproduced(self):
        interpolator = TrilinearInterpolator(make_planar_submap())

        for z in (-0.5, -0.03, 0.0, 0.025, 0.3):
            assert interpolator.interpolate(np.array([0.11, -0.27, z])) == pytest.approx(z, abs=1e-6)

    def test_blend_of_eight_voxels(self):
        submap = Submap(0, voxel_size=1.0, voxels_per_side=2)
        block = submap.allocate_block((0, 0, 0))
        block.weight[:] = 1.0
        block.distance[:] = np.arange(8, dtype=np.float32)

        # halfway between all eight voxel centers
        assert submap.interpolator().interpolate(np.array([1.0, 1.0, 1.0])) == pytest.approx(3.5)
        # halfway between voxels 0 and 1 along x
        assert submap.interpolator().interpolate(np.array([1.0, 0.5, 0.5])) == pytest.approx(0.5)
        # on a voxel center
        assert submap.interpolator().interpolate(np.array([0.5, 0.5, 0.5])) == pytest.approx(0.0)

    def test_missing_neighbor_is_not_found(self):
        interpolator = TrilinearInterpolator(make_planar_submap())

        # outside the allocated blocks' voxel centers
        assert interpolator.interpolate(np.array([0.78, 0.0, 0.0])) is None
        assert interpolator.get_distance(np.array([3.0, 3.0, 3.0])) is None

    def test_unobserved_neighbor_is_not_found(self):
        submap = make_planar_submap()
        block, linear_index = submap.lookup_voxel(np.array([0, 0, 0]))
        block.weight[linear_index] = 0.0

        assert submap.interpolator().interpolate(np.array([0.02, 0.02, 0.02])) is None
        assert submap.interpolator().interpolate(np.array([0.3, 0.3, 0.02])) is not None


class TestSubmapCollection:

    def test_duplicate_ids_rejected(self):
        collection = SubmapCollection([Submap(3, voxel_size=0.1)])
        with pytest.raises(ValueError):
            collection.add(Submap(3, voxel_size=0.2))

    def test_distance_field_prefers_smallest_magnitude(self):
        near = make_planar_submap(0, plane_z=0.0)
        far = make_planar_submap(1, plane_z=0.2)
        field = SubmapCollectionDistanceField(SubmapCollection([far, near]))

        assert field.get_distance(np.array([0.0, 0.0, 0.05])) == pytest.approx(0.05, abs=1e-6)
        assert field.get_distance(np.array([0.0, 0.0, 0.19])) == pytest.approx(-0.01, abs=1e-6)
        assert field.interpolate(np.array([4.0, 0.0, 0.0])) is None

    def test_save_and_load(self, tmp_path):
        submap = make_planar_submap(7, truncation_distance=0.3, block_range=range(0, 2))
        submap.get_block((1, 1, 1)).color[5] = (200, 10, 20)
        path = tmp_path / 'map.npz'

        SubmapCollection([submap, Submap(9, voxel_size=0.2)]).save(path)
        loaded = SubmapCollection.load(path)

        assert len(loaded) == 2
        restored = loaded.get(7)
        assert restored.voxel_size == pytest.approx(0.1)
        assert restored.voxels_per_side == 4
        assert restored.truncation_distance == pytest.approx(0.3)
        assert sorted(restored.allocated_block_indices()) == sorted(submap.allocated_block_indices())
        np.testing.assert_array_equal(restored.get_block((1, 1, 1)).color[5], [200, 10, 20])
        np.testing.assert_array_equal(restored.get_block((0, 1, 0)).distance, submap.get_block((0, 1, 0)).distance)
        assert loaded.get(9).num_blocks == 0

    def test_load_errors(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            SubmapCollection.load(tmp_path / 'missing.npz')

        not_a_map = tmp_path / 'other.npz'
        with open(not_a_map, 'wb') as f:
            np.savez(f, values=np.arange(3))
        with pytest.raises(ValueError):
            SubmapCollection.load(not_a_map)

        plain_array = tmp_path / 'array.npz'
        with open(plain_array, 'wb') as f:
            np.save(f, np.arange(3))
        with pytest.raises(ValueError):
            SubmapCollection.load(plain_array)

        planar = tmp_path / 'planar.npz'
        SubmapCollection([make_planar_submap()]).save(planar)
        corrupt = tmp_path / 'corrupt.npz'
        corrupt.write_bytes(planar.read_bytes()[:200])
        with pytest.raises(ValueError):
            SubmapCollection.load(corrupt)
