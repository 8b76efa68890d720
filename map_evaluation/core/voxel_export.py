"""
Colored voxel export.

Writes the centers of near-surface voxels with their colors as a point cloud,
so the colored map can be inspected in any point-cloud viewer.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import open3d as o3d

from map_evaluation.core.tsdf_map import SubmapCollection


def collect_colored_voxels(submaps: SubmapCollection,
                           only_in_band: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gather observed voxel centers and colors.

    Args:
        submaps: Map to export
        only_in_band: Keep only voxels with |distance| <= truncation distance

    Returns:
        Tuple of (points (M, 3) float64, colors (M, 3) uint8)
    """
    points = []
    colors = []
    for submap in submaps:
        for block in submap.blocks():
            mask = block.weight > 0.0
            if only_in_band:
                mask &= np.abs(block.distance) <= submap.truncation_distance
            if not np.any(mask):
                continue
            points.append(block.voxel_centers()[mask])
            colors.append(block.color[mask])

    if not points:
        return np.empty((0, 3), dtype=np.float64), np.empty((0, 3), dtype=np.uint8)
    return np.concatenate(points), np.concatenate(colors)


def export_colored_voxels(submaps: SubmapCollection,
                          output_path: Path,
                          only_in_band: bool = True,
                          logger: Optional[logging.Logger] = None) -> Path:
    """Save colored voxel centers to a point cloud file (format from the suffix)."""
    logger = logger or logging.getLogger(__name__)

    points, colors = collect_colored_voxels(submaps, only_in_band)

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(points)
    pcd.colors = o3d.utility.Vector3dVector(colors.astype(np.float64) / 255.0)

    output_path = Path(output_path)
    if not o3d.io.write_point_cloud(str(output_path), pcd):
        raise OSError(f"Failed to write colored voxels to {output_path}")

    logger.info(f"Exported {len(points)} colored voxels to {output_path}")
    return output_path
