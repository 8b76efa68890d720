"""
Reconstruction Error Evaluation
===============================

Scores a signed-distance map against a ground-truth point cloud. For every
ground-truth point inside the evaluation region the map's distance at that
point is the reconstruction error:

- no finite distance      -> counted as unknown
- |distance| > max        -> clamped to max, counted as truncated
- otherwise               -> |distance| recorded as is

The recorded errors are reduced by the ErrorAccumulator into a single
EvaluationSummary.
"""

import logging
from typing import Optional

import numpy as np
from tqdm import tqdm

from map_evaluation.core.bounds import AcceptAllBounds, BoundsPredicate
from map_evaluation.core.error_accumulator import ErrorAccumulator, EvaluationSummary
from map_evaluation.core.tsdf_map import DistanceField
from map_evaluation.utils.config import validate_maximum_distance


class ReconstructionErrorEvaluator:
    """Computes reconstruction error statistics of a map against ground truth."""

    def __init__(self,
                 bounds: Optional[BoundsPredicate] = None,
                 logger: Optional[logging.Logger] = None,
                 show_progress: bool = False):
        """
        Args:
            bounds: Evaluation region predicate (default: accept all points)
            logger: Optional logger instance
            show_progress: Display a progress bar over ground-truth points
        """
        self.bounds = bounds if bounds is not None else AcceptAllBounds()
        self.logger = logger or logging.getLogger(__name__)
        self.show_progress = show_progress

        # Clamped errors of the last run, e.g. for histograms
        self.last_errors: Optional[np.ndarray] = None

    def evaluate(self,
                 ground_truth: np.ndarray,
                 distance_field: DistanceField,
                 maximum_distance: float,
                 bounds: Optional[BoundsPredicate] = None) -> EvaluationSummary:
        """
        Evaluate the map at every ground-truth point.

        Args:
            ground_truth: (N, 3) ground-truth points
            distance_field: Map distance lookup
            maximum_distance: Truncation limit for absolute errors (> 0)
            bounds: Overrides the evaluator's bounds predicate for this call

        Returns:
            EvaluationSummary of the run

        Raises:
            ConfigurationError: If maximum_distance is not positive
            ValueError: If ground_truth is not an (N, 3) array
        """
        maximum_distance = validate_maximum_distance(maximum_distance)
        bounds = bounds if bounds is not None else self.bounds

        points = np.asarray(ground_truth, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Expected an (N, 3) ground truth array, got shape {points.shape}")

        self.logger.info(f"Computing reconstruction error for {len(points)} ground truth points "
                         f"(maximum_distance={maximum_distance})...")
        if len(points) == 0:
            self.logger.warning("Ground truth point cloud is empty")

        accumulator = ErrorAccumulator()
        outside = 0

        for point in tqdm(points, desc='Reconstruction error', disable=not self.show_progress):
            if not bounds(point):
                outside += 1
                continue

            distance = distance_field.get_distance(point)
            if distance is None or not np.isfinite(distance):
                accumulator.add_unknown()
                continue

            error = abs(distance)
            # Compared at the float32 precision distances are stored with
            if np.float32(error) > np.float32(maximum_distance):
                accumulator.add(maximum_distance, truncated=True)
            else:
                accumulator.add(min(error, maximum_distance))

        summary = accumulator.finalize()
        self.last_errors = accumulator.errors

        self.logger.debug(f"{outside} points outside the evaluation bounds were skipped")
        self.logger.info(f"Reconstruction error: mean={summary.mean_error:.6f}m, "
                         f"std={summary.std_error:.6f}m, rmse={summary.rmse:.6f}m, "
                         f"total={summary.total_points}, unknown={summary.unknown_points}, "
                         f"truncated={summary.truncated_points}")

        return summary


# Convenience function
def evaluate_reconstruction(ground_truth: np.ndarray,
                            distance_field: DistanceField,
                            maximum_distance: float,
                            bounds: Optional[BoundsPredicate] = None) -> EvaluationSummary:
    """Run a single evaluation with a fresh evaluator."""
    return ReconstructionErrorEvaluator(bounds=bounds).evaluate(
        ground_truth, distance_field, maximum_distance
    )
