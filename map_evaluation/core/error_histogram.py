"""
Error Distribution Histogram
============================

Histogram of the (truncated) absolute reconstruction errors over
[0, maximum_distance], saved as a CSV table and a PNG plot.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt

from map_evaluation.utils.config import validate_maximum_distance


def compute_error_histogram(errors: np.ndarray,
                            maximum_distance: float,
                            bins: int = 30) -> Tuple[np.ndarray, np.ndarray]:
    """
    Bin absolute errors into equal-width bins over [0, maximum_distance].

    Truncated errors equal maximum_distance and fall into the last bin.

    Returns:
        Tuple of (counts, bin_edges) as returned by numpy.histogram
    """
    maximum_distance = validate_maximum_distance(maximum_distance)
    if bins < 1:
        raise ValueError(f"bins must be >= 1, got {bins}")

    errors = np.asarray(errors, dtype=np.float64)
    return np.histogram(errors, bins=bins, range=(0.0, maximum_distance))


class ErrorHistogramWriter:
    """Writes error histograms next to the evaluation results."""

    def __init__(self, output_dir: Path, logger: Optional[logging.Logger] = None):
        self.output_dir = Path(output_dir)
        self.logger = logger or logging.getLogger(__name__)

    def save(self,
             errors: np.ndarray,
             maximum_distance: float,
             output_name: str,
             bins: int = 30) -> Path:
        """
        Save <output_name>_error_histogram.csv and .png.

        Returns:
            Path of the CSV table
        """
        counts, edges = compute_error_histogram(errors, maximum_distance, bins)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        csv_path = self.output_dir / f'{output_name}_error_histogram.csv'
        df = pd.DataFrame({
            'BinStart': edges[:-1],
            'BinEnd': edges[1:],
            'Count': counts,
        })
        df.to_csv(csv_path, index=False)

        fig, ax = plt.subplots(figsize=(10, 6))
        ax.bar(edges[:-1], counts, width=np.diff(edges), align='edge', edgecolor='black', alpha=0.7)
        ax.set_xlabel('Absolute error (m)')
        ax.set_ylabel('Frequency')
        ax.set_title(f'Reconstruction Error Distribution ({output_name})')
        ax.grid(True, alpha=0.3)

        png_path = self.output_dir / f'{output_name}_error_histogram.png'
        plt.savefig(png_path, dpi=150, bbox_inches='tight')
        plt.close(fig)

        self.logger.info(f"Error histogram saved to {csv_path}")
        return csv_path
