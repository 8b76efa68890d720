"""
Evaluation Input/Output
=======================

Handles:
- Loading the ground-truth point cloud (PLY/PCD/XYZ with Open3D, or .npy)
- Loading the submap collection to evaluate
- Resolving output paths next to the input map
- Writing the evaluation results CSV
- Environment/library version tracking
"""

import csv
import os
import sys
import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import open3d as o3d
import scipy

from map_evaluation.core.error_accumulator import CSV_HEADER, EvaluationSummary
from map_evaluation.core.tsdf_map import SubmapCollection


POINT_CLOUD_SUFFIXES = ('.ply', '.pcd', '.xyz', '.xyzn', '.xyzrgb', '.pts')


def evaluation_data_path(map_file: Path, output_dir: Optional[Path] = None) -> Path:
    """<map-dir>/<map-stem>_evaluation_data.csv"""
    map_file = Path(map_file)
    directory = Path(output_dir) if output_dir else map_file.parent
    return directory / f'{map_file.stem}_evaluation_data.csv'


def evaluated_map_path(map_file: Path, output_dir: Optional[Path] = None) -> Path:
    """<map-dir>/<map-stem>_evaluated<map-ext>"""
    map_file = Path(map_file)
    directory = Path(output_dir) if output_dir else map_file.parent
    return directory / f'{map_file.stem}_evaluated{map_file.suffix}'


def write_evaluation_results(summary: EvaluationSummary, output_path: Path) -> Path:
    """
    Write the summary as a header line plus one data row.

    The file is written to a temporary sibling and moved into place, so a
    failed write never leaves a partial results file behind.

    Raises:
        OSError: If the file cannot be written
    """
    output_path = Path(output_path)
    fd, tmp_name = tempfile.mkstemp(prefix=f'.{output_path.name}.', dir=output_path.parent)
    try:
        with os.fdopen(fd, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            writer.writerow(summary.to_row())
        os.replace(tmp_name, output_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise
    return output_path


def read_evaluation_results(path: Path) -> EvaluationSummary:
    """Read a results file written by write_evaluation_results."""
    with open(path, 'r', newline='') as f:
        rows = list(csv.reader(f))

    if len(rows) != 2 or rows[0] != CSV_HEADER:
        raise ValueError(f"Not an evaluation results file: {path}")

    values = rows[1]
    return EvaluationSummary(
        mean_error=float(values[0]),
        std_error=float(values[1]),
        rmse=float(values[2]),
        total_points=int(values[3]),
        unknown_points=int(values[4]),
        truncated_points=int(values[5]),
    )


class EvaluationDataLoader:
    """
    Load and validate the inputs of an evaluation run.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

        # Track loaded data
        self.ground_truth: Optional[np.ndarray] = None
        self.ground_truth_path: Optional[Path] = None
        self.submaps: Optional[SubmapCollection] = None
        self.map_path: Optional[Path] = None
        self.environment_info: Dict[str, Any] = {}

    def collect_environment_info(self) -> Dict[str, Any]:
        """
        Collect library versions and Python info.

        Returns:
            Dictionary with library versions, Python info, system info
        """
        info = {
            'timestamp': datetime.now().isoformat(),
            'python_version': sys.version,
            'libraries': {
                'open3d': o3d.__version__,
                'numpy': np.__version__,
                'scipy': scipy.__version__,
            },
            'system': {
                'platform': sys.platform,
            }
        }

        self.environment_info = info
        self.logger.debug(f"Environment info collected: Open3D {o3d.__version__}, NumPy {np.__version__}")

        return info

    def load_ground_truth(self, path: Path) -> np.ndarray:
        """
        Load the ground-truth point cloud.

        Args:
            path: Point cloud file (.ply/.pcd/.xyz via Open3D, or .npy with shape (N, 3))

        Returns:
            (N, 3) float64 array

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file cannot be loaded or is empty
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Ground truth point cloud not found: {path}")

        self.logger.info(f"Loading ground truth point cloud from: {path}")

        suffix = path.suffix.lower()
        if suffix == '.npy':
            try:
                points = np.load(path, allow_pickle=False)
            except (OSError, ValueError) as e:
                raise ValueError(f"Failed to load ground truth point cloud: {e}")
        elif suffix in POINT_CLOUD_SUFFIXES:
            pcd = o3d.io.read_point_cloud(str(path))
            if not pcd.has_points():
                raise ValueError(f"Ground truth point cloud has no points: {path}")
            points = np.asarray(pcd.points)
        else:
            raise ValueError(f"Unsupported point cloud format: {path.suffix}")

        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Ground truth must be an (N, 3) array, got shape {points.shape}")
        if len(points) == 0:
            raise ValueError("Ground truth point cloud is empty (0 points)")

        self.logger.info(f"Ground truth loaded: {len(points)} points")

        self.ground_truth = points
        self.ground_truth_path = path
        return points

    def load_map(self, path: Path) -> SubmapCollection:
        """
        Load the submap collection to evaluate.

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file cannot be loaded
        """
        path = Path(path)
        self.logger.info(f"Loading map from: {path}")

        submaps = SubmapCollection.load(path, logger=self.logger)
        if len(submaps) == 0:
            self.logger.warning(f"Map contains no submaps: {path}")

        self.submaps = submaps
        self.map_path = path
        return submaps
