"""
Ground-Truth Spatial Index
==========================

Static nearest-neighbor index over the ground-truth point cloud, built once per
evaluation run and shared read-only by the coloring pass.

Uses scipy's cKDTree for the k-nearest search; results are reported as squared
Euclidean distances sorted ascending, ties broken by input order.
"""

import logging
from typing import Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree


class SpatialIndex:
    """
    K-nearest-neighbor index over a fixed set of 3D points.

    The index cannot be rebuilt or extended; a new run builds a new index.
    Queries do not mutate it, so one instance can be shared between threads.
    """

    def __init__(self,
                 points: np.ndarray,
                 leaf_size: int = 10,
                 logger: Optional[logging.Logger] = None):
        """
        Build the index.

        Args:
            points: (N, 3) array of ground-truth points
            leaf_size: Maximum number of points per KD-tree leaf
            logger: Optional logger instance

        Raises:
            ValueError: If points is not an (N, 3) array
        """
        self.logger = logger or logging.getLogger(__name__)

        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Expected an (N, 3) point array, got shape {points.shape}")

        self._points = points.copy()
        self._points.setflags(write=False)
        self._tree = cKDTree(self._points, leafsize=leaf_size) if len(self._points) else None

        self.logger.debug(f"Spatial index built over {len(self._points)} points (leaf_size={leaf_size})")

    def __len__(self) -> int:
        return len(self._points)

    @property
    def points(self) -> np.ndarray:
        """Read-only view of the indexed points, in input order."""
        return self._points

    def query(self, point: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find up to k nearest indexed points.

        Args:
            point: Query point (3,)
            k: Requested number of neighbors (>= 1)

        Returns:
            Tuple of (indices, squared_distances), both of length min(k, N),
            sorted by squared distance with ties ordered by index
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")

        point = np.asarray(point, dtype=np.float64)
        if point.shape != (3,):
            raise ValueError(f"Expected a 3D query point, got shape {point.shape}")

        n_points = len(self._points)
        if n_points == 0:
            return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float64)

        k = min(k, n_points)
        distances, indices = self._tree.query(point, k=k)
        indices = np.atleast_1d(indices).astype(np.int64)

        if k < n_points:
            # Points tied with the k-th neighbor may have been left out in favour
            # of a later index; gather everything up to that radius to decide.
            radius = float(np.atleast_1d(distances)[-1])
            candidates = self._tree.query_ball_point(point, r=radius * (1.0 + 1e-9) + 1e-12)
            if len(candidates) > k:
                indices = np.asarray(candidates, dtype=np.int64)

        diff = self._points[indices] - point
        squared = np.einsum('ij,ij->i', diff, diff)

        # primary key: squared distance, secondary: input index
        order = np.lexsort((indices, squared))[:k]
        return indices[order], squared[order]
