"""
Shared fixtures: small planar TSDF maps and ground-truth clouds.
"""

import numpy as np
import pytest

from map_evaluation.core.tsdf_map import Submap, SubmapCollection


VOXEL_SIZE = 0.1
VOXELS_PER_SIDE = 4


def make_planar_submap(submap_id=0,
                       plane_z=0.0,
                       voxel_size=VOXEL_SIZE,
                       voxels_per_side=VOXELS_PER_SIDE,
                       block_range=range(-2, 2),
                       truncation_distance=None,
                       initial_color=(1, 2, 3)):
    """
    Submap whose distance field is the signed height above z = plane_z.

    With the defaults the blocks cover [-0.8, 0.8)^3 and trilinear
    interpolation is available on [-0.75, 0.75]^3.
    """
    submap = Submap(submap_id, voxel_size, voxels_per_side, truncation_distance)
    for bx in block_range:
        for by in block_range:
            for bz in block_range:
                block = submap.allocate_block((bx, by, bz))
                centers = block.voxel_centers()
                block.distance[:] = centers[:, 2] - plane_z
                block.weight[:] = 1.0
                block.color[:] = initial_color
    return submap


class PlaneField:
    """Distance field of the plane z = 0 that covers every point with x < limit."""

    def __init__(self, limit=np.inf):
        self.limit = limit
        self.queries = 0

    def get_distance(self, point):
        self.queries += 1
        if point[0] >= self.limit:
            return None
        return float(point[2])

    def interpolate(self, point):
        return self.get_distance(point)


@pytest.fixture
def planar_submap():
    return make_planar_submap()


@pytest.fixture
def planar_map():
    return SubmapCollection([make_planar_submap(0)])


@pytest.fixture
def plane_grid():
    """Ground-truth points on z = 0 inside the interpolation range."""
    xs = np.arange(-0.7, 0.7001, 0.05)
    xx, yy = np.meshgrid(xs, xs, indexing='ij')
    return np.stack([xx.ravel(), yy.ravel(), np.zeros(xx.size)], axis=1)
