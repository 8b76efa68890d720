"""
Error Accumulation and Summary Statistics
=========================================

Collects per-point absolute reconstruction errors together with the counts of
points the map does not cover and of points whose error was truncated, and
reduces them to an EvaluationSummary:

- mean   = sum(v) / n                         (0 if n = 0)
- rmse   = sqrt(sum(v^2) / n)                 (0 if n = 0)
- stddev = sqrt(sum((v - mean)^2) / (n - 1))  (0 unless n > 2)

The standard deviation is computed in a second pass over the stored values
once the mean is known, in float64.
"""

import math
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List

import numpy as np


CSV_HEADER = ['MeanError', 'StdError', 'RMSE', 'TotalPoints', 'UnknownPoints', 'TruncatedPoints']


@dataclass(frozen=True)
class EvaluationSummary:
    """Result of one reconstruction-error evaluation run."""

    mean_error: float
    std_error: float
    rmse: float
    total_points: int
    unknown_points: int
    truncated_points: int

    def to_row(self) -> List:
        """Values in CSV_HEADER order."""
        return [self.mean_error, self.std_error, self.rmse,
                self.total_points, self.unknown_points, self.truncated_points]

    def to_dict(self) -> Dict:
        return asdict(self)


class ErrorAccumulator:
    """Streams absolute errors and counters, then finalizes them into a summary."""

    def __init__(self):
        self._errors: List[float] = []
        self.unknown_points = 0
        self.truncated_points = 0

    def __len__(self) -> int:
        return len(self._errors)

    def add(self, value: float, truncated: bool = False):
        """
        Record one absolute error.

        Args:
            value: Non-negative absolute error
            truncated: Whether the value was clamped to the maximum distance

        Raises:
            ValueError: If value is negative or NaN
        """
        value = float(value)
        if not value >= 0.0:
            raise ValueError(f"Absolute errors must be non-negative, got {value}")
        self._errors.append(value)
        if truncated:
            self.truncated_points += 1

    def add_many(self, values: Iterable[float]):
        for value in values:
            self.add(value)

    def add_unknown(self):
        """Record a point without distance-field coverage."""
        self.unknown_points += 1

    @property
    def errors(self) -> np.ndarray:
        """Copy of the recorded errors, in insertion order."""
        return np.asarray(self._errors, dtype=np.float64)

    def finalize(self) -> EvaluationSummary:
        """Reduce the recorded values to an EvaluationSummary."""
        values = self.errors
        n = len(values)

        mean = 0.0
        rmse = 0.0
        if n > 0:
            mean = math.fsum(values) / n
            rmse = math.sqrt(math.fsum(values * values) / n)

        stddev = 0.0
        if n > 2:
            deviations = values - mean
            stddev = math.sqrt(math.fsum(deviations * deviations) / (n - 1))

        return EvaluationSummary(
            mean_error=mean,
            std_error=stddev,
            rmse=rmse,
            total_points=n + self.unknown_points,
            unknown_points=self.unknown_points,
            truncated_points=self.truncated_points,
        )
