"""
Evaluation Region Predicates
============================

A bounds predicate is any callable ``predicate(point) -> bool`` that tells the
evaluation and coloring passes whether a 3D point lies inside the region that
should be scored. The passes never hard-code a region; they receive one.

Provided predicates:
- AcceptAllBounds: explicit default, every point is valid
- FlatBounds: axis-aligned box, each axis limit may be left open
- SlabBounds: planar slab, signed distance to a plane within [lower, upper]
"""

from typing import Callable, Optional, Sequence

import numpy as np

from map_evaluation.utils.config import ConfigurationError, EvaluationConfig


BoundsPredicate = Callable[[np.ndarray], bool]


class AcceptAllBounds:
    """Every point is inside the evaluation region."""

    def __call__(self, point: np.ndarray) -> bool:
        return True

    def __repr__(self) -> str:
        return 'AcceptAllBounds()'


class FlatBounds:
    """Axis-aligned box. ``None`` leaves that side of an axis unbounded."""

    def __init__(self,
                 min_bound: Sequence[Optional[float]] = (None, None, None),
                 max_bound: Sequence[Optional[float]] = (None, None, None)):
        if len(min_bound) != 3 or len(max_bound) != 3:
            raise ConfigurationError("FlatBounds limits need exactly 3 entries (x, y, z)")

        self.min_bound = np.array([-np.inf if v is None else float(v) for v in min_bound])
        self.max_bound = np.array([np.inf if v is None else float(v) for v in max_bound])

        if np.any(self.min_bound > self.max_bound):
            raise ConfigurationError(
                f"FlatBounds min {self.min_bound.tolist()} exceeds max {self.max_bound.tolist()}"
            )

    def __call__(self, point: np.ndarray) -> bool:
        point = np.asarray(point, dtype=np.float64)
        return bool(np.all(point >= self.min_bound) and np.all(point <= self.max_bound))

    def __repr__(self) -> str:
        return f'FlatBounds(min={self.min_bound.tolist()}, max={self.max_bound.tolist()})'


class SlabBounds:
    """
    Region between two parallel planes.

    A point ``p`` is valid when ``lower <= dot(n, p) - offset <= upper`` with
    ``n`` the normalized plane normal.
    """

    def __init__(self,
                 plane_normal: Sequence[float] = (0.0, 0.0, 1.0),
                 plane_offset: float = 0.0,
                 lower: float = 0.0,
                 upper: float = 1.0):
        normal = np.asarray(plane_normal, dtype=np.float64)
        norm = np.linalg.norm(normal)
        if normal.shape != (3,) or norm == 0.0:
            raise ConfigurationError(f"Invalid slab plane normal: {plane_normal!r}")
        if lower > upper:
            raise ConfigurationError(f"Slab lower limit {lower} exceeds upper limit {upper}")

        self.plane_normal = normal / norm
        self.plane_offset = float(plane_offset)
        self.lower = float(lower)
        self.upper = float(upper)

    def __call__(self, point: np.ndarray) -> bool:
        height = float(np.dot(self.plane_normal, np.asarray(point, dtype=np.float64))) - self.plane_offset
        return self.lower <= height <= self.upper

    def __repr__(self) -> str:
        return (f'SlabBounds(normal={self.plane_normal.tolist()}, offset={self.plane_offset}, '
                f'range=[{self.lower}, {self.upper}])')


def build_bounds(config: EvaluationConfig) -> BoundsPredicate:
    """
    Create the bounds predicate described by the ``bounds`` config section.

    Raises:
        ConfigurationError: If the bounds type is unknown
    """
    bounds_type = config.get('bounds', 'type')

    if bounds_type in (None, 'none'):
        return AcceptAllBounds()
    if bounds_type == 'flat':
        return FlatBounds(config.get('bounds', 'min_bound'), config.get('bounds', 'max_bound'))
    if bounds_type == 'slab':
        return SlabBounds(
            plane_normal=config.get('bounds', 'plane_normal'),
            plane_offset=config.get('bounds', 'plane_offset'),
            lower=config.get('bounds', 'lower'),
            upper=config.get('bounds', 'upper'),
        )

    raise ConfigurationError(f"Unknown bounds type: {bounds_type!r}")
