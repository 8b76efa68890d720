"""
Map Evaluator
Evaluates a submap collection against a ground-truth point cloud and colors
the map by reconstruction error.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

from map_evaluation.core.bounds import BoundsPredicate, build_bounds
from map_evaluation.core.error_coloring import ErrorVisualizationColorer
from map_evaluation.core.error_histogram import ErrorHistogramWriter
from map_evaluation.core.reconstruction_error import ReconstructionErrorEvaluator
from map_evaluation.core.tsdf_map import SubmapCollection
from map_evaluation.utils.config import ConfigurationError, EvaluationConfig, load_config, validate_maximum_distance
from map_evaluation.utils.data_io import (
    EvaluationDataLoader,
    evaluated_map_path,
    evaluation_data_path,
    write_evaluation_results,
)
from map_evaluation.utils.logging_utils import setup_logging, verbosity_to_level


@dataclass
class EvaluationRequest:
    """What to evaluate and which passes to run."""

    map_file: str = ''
    ground_truth_pointcloud_file: str = ''
    maximum_distance: float = 0.2
    evaluate: bool = True
    compute_coloring: bool = False
    visualize: bool = False
    compute_histogram: bool = False
    histogram_bins: int = 30
    max_neighbors: int = 100
    num_workers: int = 1
    verbosity: int = 1
    output_dir: Optional[str] = None
    bounds: Optional[BoundsPredicate] = field(default=None, repr=False)

    def check_params(self):
        """
        Raises:
            ConfigurationError: If a parameter is out of range
        """
        validate_maximum_distance(self.maximum_distance)
        if self.histogram_bins < 1:
            raise ConfigurationError(f"histogram_bins must be >= 1, got {self.histogram_bins}")
        if self.max_neighbors < 1:
            raise ConfigurationError(f"max_neighbors must be >= 1, got {self.max_neighbors}")
        if self.num_workers < 1:
            raise ConfigurationError(f"num_workers must be >= 1, got {self.num_workers}")

    def is_valid(self, logger: Optional[logging.Logger] = None) -> bool:
        try:
            self.check_params()
        except ConfigurationError as e:
            (logger or logging.getLogger(__name__)).error(f"Invalid evaluation request: {e}")
            return False
        return True

    @classmethod
    def from_config(cls,
                    config: EvaluationConfig,
                    map_file: str,
                    ground_truth_pointcloud_file: str = '',
                    output_dir: Optional[str] = None) -> 'EvaluationRequest':
        """Build a request from the evaluation, coloring and bounds config sections."""
        config.validate()
        return cls(
            map_file=map_file,
            ground_truth_pointcloud_file=ground_truth_pointcloud_file,
            maximum_distance=config.get('evaluation', 'maximum_distance'),
            evaluate=config.get('evaluation', 'evaluate'),
            compute_coloring=config.get('evaluation', 'compute_coloring'),
            visualize=config.get('evaluation', 'visualize'),
            compute_histogram=config.get('evaluation', 'compute_histogram'),
            histogram_bins=config.get('evaluation', 'histogram_bins'),
            max_neighbors=config.get('coloring', 'max_neighbors'),
            num_workers=config.get('coloring', 'num_workers'),
            verbosity=config.get('logging', 'verbosity'),
            output_dir=output_dir,
            bounds=build_bounds(config),
        )


class MapEvaluator:
    """Runs the requested evaluation passes and writes their outputs."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.loader = EvaluationDataLoader(logger=self.logger)

        self.ground_truth: Optional[np.ndarray] = None
        self.submaps: Optional[SubmapCollection] = None
        self.target_directory: Optional[Path] = None
        self.target_map_name: Optional[str] = None

    def evaluate(self, request: EvaluationRequest) -> bool:
        """
        Process one request.

        Returns:
            True if every requested pass finished and its outputs were written
        """
        if not request.is_valid(self.logger):
            return False
        self.logger.debug(f"Processing: {request}")

        show_progress = request.verbosity >= 2

        # Load the ground truth point cloud.
        if request.evaluate or request.compute_coloring or request.compute_histogram:
            if not request.ground_truth_pointcloud_file:
                self.logger.error("No ground truth point cloud given.")
                return False
            try:
                self.ground_truth = self.loader.load_ground_truth(request.ground_truth_pointcloud_file)
            except (FileNotFoundError, ValueError) as e:
                self.logger.error(f"Could not load ground truth point cloud: {e}")
                return False

        # Load the map to evaluate.
        if request.visualize or request.evaluate or request.compute_coloring or request.compute_histogram:
            if not request.map_file:
                self.logger.error("No map file given.")
                return False
            try:
                self.submaps = self.loader.load_map(request.map_file)
            except (FileNotFoundError, ValueError) as e:
                self.logger.error(f"Could not load map: {e}")
                return False

            map_path = Path(request.map_file)
            self.target_directory = Path(request.output_dir) if request.output_dir else map_path.parent
            self.target_map_name = map_path.stem

        if request.evaluate or request.compute_histogram:
            if not self._compute_reconstruction_error(request, show_progress):
                return False

        if request.compute_coloring:
            if not self._compute_coloring(request, show_progress):
                return False

        if request.visualize:
            if not self._export_visualization(request):
                return False

        self.logger.info("Done.")
        return True

    def _compute_reconstruction_error(self, request: EvaluationRequest, show_progress: bool) -> bool:
        evaluator = ReconstructionErrorEvaluator(
            bounds=request.bounds, logger=self.logger, show_progress=show_progress
        )
        summary = evaluator.evaluate(
            self.ground_truth, self.submaps.distance_field(), request.maximum_distance
        )

        try:
            self.target_directory.mkdir(parents=True, exist_ok=True)
            if request.evaluate:
                out_file = evaluation_data_path(request.map_file, self.target_directory)
                write_evaluation_results(summary, out_file)
                self.logger.info(f"Evaluation results saved to {out_file}")
            if request.compute_histogram:
                ErrorHistogramWriter(self.target_directory, logger=self.logger).save(
                    evaluator.last_errors, request.maximum_distance,
                    self.target_map_name, request.histogram_bins
                )
        except OSError as e:
            self.logger.error(f"Failed to write evaluation output: {e}")
            return False
        return True

    def _compute_coloring(self, request: EvaluationRequest, show_progress: bool) -> bool:
        colorer = ErrorVisualizationColorer(
            bounds=request.bounds,
            max_neighbors=request.max_neighbors,
            num_workers=request.num_workers,
            logger=self.logger,
            show_progress=show_progress,
        )
        colorer.colorize(self.submaps, self.ground_truth, request.maximum_distance)

        try:
            self.target_directory.mkdir(parents=True, exist_ok=True)
            self.submaps.save(evaluated_map_path(request.map_file, self.target_directory))
        except OSError as e:
            self.logger.error(f"Failed to save colored map: {e}")
            return False
        return True

    def _export_visualization(self, request: EvaluationRequest) -> bool:
        from map_evaluation.core.voxel_export import export_colored_voxels

        output_path = self.target_directory / f'{self.target_map_name}_evaluated_voxels.ply'
        try:
            self.target_directory.mkdir(parents=True, exist_ok=True)
            export_colored_voxels(self.submaps, output_path, logger=self.logger)
        except OSError as e:
            self.logger.error(f"Failed to export colored voxels: {e}")
            return False
        return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description='Evaluate a TSDF submap map against a ground truth point cloud',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
OUTPUT (next to the map file unless --output-dir is given):
  {map}_evaluation_data.csv     # MeanError,StdError,RMSE,TotalPoints,UnknownPoints,TruncatedPoints
  {map}_evaluated.npz           # map with voxels colored by error (--coloring)
  {map}_error_histogram.csv/png # error distribution (--histogram)
  {map}_evaluated_voxels.ply    # colored near-surface voxels (--visualize)

Examples:
  evaluate-map --map run/map.npz --ground-truth gt/cloud.ply --maximum-distance 0.1
  evaluate-map --map run/map.npz --ground-truth gt/cloud.ply --coloring --no-evaluate --visualize
        """
    )

    parser.add_argument('--map', required=True, help='Submap collection file (.npz)')
    parser.add_argument('--ground-truth', default='', help='Ground truth point cloud (.ply/.pcd/.npy)')
    parser.add_argument('--config', type=Path, help='YAML configuration file')
    parser.add_argument('--maximum-distance', type=float, help='Error truncation distance (meters)')
    parser.add_argument('--no-evaluate', action='store_true', help='Skip the error statistics pass')
    parser.add_argument('--coloring', action='store_true', help='Color the map by reconstruction error')
    parser.add_argument('--visualize', action='store_true', help='Export colored voxels as PLY')
    parser.add_argument('--histogram', action='store_true', help='Save the error histogram')
    parser.add_argument('--workers', type=int, help='Threads for the coloring pass')
    parser.add_argument('--output-dir', help='Directory for outputs (default: next to the map)')
    parser.add_argument('--verbosity', type=int, help='0 quiet, 1 info, 2 verbose with progress bars')

    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.maximum_distance is not None:
        config.set('evaluation', 'maximum_distance', value=args.maximum_distance)
    if args.no_evaluate:
        config.set('evaluation', 'evaluate', value=False)
    if args.coloring:
        config.set('evaluation', 'compute_coloring', value=True)
    if args.visualize:
        config.set('evaluation', 'visualize', value=True)
    if args.histogram:
        config.set('evaluation', 'compute_histogram', value=True)
    if args.workers is not None:
        config.set('coloring', 'num_workers', value=args.workers)
    if args.verbosity is not None:
        config.set('logging', 'verbosity', value=args.verbosity)

    logger = setup_logging(
        level=verbosity_to_level(config.get('logging', 'verbosity')),
        log_dir=Path(config.get('logging', 'log_dir')),
        save_to_file=config.get('logging', 'save_to_file'),
    )

    try:
        request = EvaluationRequest.from_config(config, args.map, args.ground_truth, args.output_dir)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    success = MapEvaluator(logger=logger).evaluate(request)
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
