"""
Reconstruction Error Coloring
=============================

Colors every near-surface voxel of every submap by the local reconstruction
error, estimated from the ground-truth points around the voxel:

- grey  (128, 128, 128): outside the evaluation bounds or no usable neighbors
- green -> yellow -> red: local mean |distance| from 0 to maximum_distance

Voxels whose |distance| exceeds the submap's truncation distance cannot be
surface and keep their color. Submaps are colored independently; overlaps
between submaps are not reconciled.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple

import numpy as np
from tqdm import tqdm

from map_evaluation.core.bounds import AcceptAllBounds, BoundsPredicate
from map_evaluation.core.spatial_index import SpatialIndex
from map_evaluation.core.tsdf_map import Submap, SubmapCollection, TrilinearInterpolator
from map_evaluation.utils.config import ConfigurationError, validate_maximum_distance


UNKNOWN_COLOR = (128, 128, 128)


def error_to_color(fraction: float) -> Tuple[int, int, int]:
    """
    Map a normalized error in [0, 1] to RGB (green = low, red = high).

    Args:
        fraction: Error divided by the maximum distance

    Returns:
        (r, g, b) with channels clamped to [0, 255]
    """
    red = min((fraction - 0.5) * 2.0 + 1.0, 1.0) * 255.0
    if fraction <= 0.5:
        green = 190.0 + 130.0 * fraction
    else:
        green = (1.0 - fraction) * 2.0 * 255.0
    return (int(np.clip(red, 0.0, 255.0)), int(np.clip(green, 0.0, 255.0)), 0)


class ErrorVisualizationColorer:
    """Writes per-voxel error colors into the submaps of a map."""

    def __init__(self,
                 bounds: Optional[BoundsPredicate] = None,
                 max_neighbors: int = 100,
                 num_workers: int = 1,
                 logger: Optional[logging.Logger] = None,
                 show_progress: bool = False):
        """
        Args:
            bounds: Evaluation region predicate (default: accept all points)
            max_neighbors: Ground-truth points looked up per voxel
            num_workers: Threads coloring submaps in parallel
            logger: Optional logger instance
            show_progress: Display a progress bar over blocks
        """
        if max_neighbors < 1:
            raise ConfigurationError(f"max_neighbors must be >= 1, got {max_neighbors}")
        if num_workers < 1:
            raise ConfigurationError(f"num_workers must be >= 1, got {num_workers}")

        self.bounds = bounds if bounds is not None else AcceptAllBounds()
        self.max_neighbors = max_neighbors
        self.num_workers = num_workers
        self.logger = logger or logging.getLogger(__name__)
        self.show_progress = show_progress

    def colorize(self,
                 submaps: SubmapCollection,
                 ground_truth: np.ndarray,
                 maximum_distance: float) -> None:
        """
        Color all near-surface voxels of all submaps in place.

        Args:
            submaps: Map to color
            ground_truth: (N, 3) ground-truth points
            maximum_distance: Error at which the color saturates to red (> 0)

        Raises:
            ConfigurationError: If maximum_distance is not positive
            ValueError: If ground_truth is not an (N, 3) array
        """
        maximum_distance = validate_maximum_distance(maximum_distance)

        self.logger.info("Computing reconstruction error coloring...")
        index = SpatialIndex(ground_truth, logger=self.logger)

        submap_list = list(submaps)
        total_blocks = sum(submap.num_blocks for submap in submap_list)

        with tqdm(total=total_blocks, desc='Error coloring', disable=not self.show_progress) as bar:
            if self.num_workers > 1 and len(submap_list) > 1:
                # One worker per submap at a time; the index is only read
                with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
                    futures = [executor.submit(self._colorize_submap, submap, index, maximum_distance, bar)
                               for submap in submap_list]
                    for future in futures:
                        future.result()
            else:
                for submap in submap_list:
                    self._colorize_submap(submap, index, maximum_distance, bar)

        self.logger.info(f"Colored {len(submap_list)} submaps ({total_blocks} blocks)")

    def _colorize_submap(self,
                         submap: Submap,
                         index: SpatialIndex,
                         maximum_distance: float,
                         bar: Optional[tqdm] = None):
        interpolator = TrilinearInterpolator(submap)
        voxel_size_sqr = submap.voxel_size ** 2
        truncation_distance = submap.truncation_distance

        if submap.num_blocks == 0:
            self.logger.warning(f"Submap {submap.submap_id} has no allocated blocks")

        colored = 0
        for block in submap.blocks():
            centers = block.voxel_centers()
            in_band = np.abs(block.distance) <= truncation_distance

            for linear_index in np.flatnonzero(in_band):
                center = centers[linear_index]
                if not self.bounds(center):
                    block.color[linear_index] = UNKNOWN_COLOR
                    continue

                indices, squared_distances = index.query(center, self.max_neighbors)
                if len(indices) == 0:
                    block.color[linear_index] = UNKNOWN_COLOR
                    continue

                total_error = 0.0
                counted_voxels = 0
                for i, (neighbor, squared_distance) in enumerate(zip(indices, squared_distances)):
                    # sorted by distance: nothing after this is within one voxel either
                    if i != 0 and squared_distance > voxel_size_sqr:
                        break
                    distance = interpolator.interpolate(index.points[neighbor])
                    if distance is not None:
                        total_error += abs(distance)
                        counted_voxels += 1

                if counted_voxels == 0:
                    block.color[linear_index] = UNKNOWN_COLOR
                else:
                    fraction = min(total_error / counted_voxels, maximum_distance) / maximum_distance
                    block.color[linear_index] = error_to_color(fraction)
                colored += 1

            if bar is not None:
                bar.update(1)

        submap.mark_mesh_stale()
        self.logger.debug(f"Submap {submap.submap_id}: {colored} voxels colored from ground truth")


# Convenience function
def colorize_reconstruction_error(submaps: SubmapCollection,
                                  ground_truth: np.ndarray,
                                  maximum_distance: float,
                                  bounds: Optional[BoundsPredicate] = None) -> None:
    """Run a single coloring pass with a fresh colorer."""
    ErrorVisualizationColorer(bounds=bounds).colorize(submaps, ground_truth, maximum_distance)
