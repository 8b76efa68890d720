"""
Volumetric Map Reconstruction-Error Evaluation
==============================================

Evaluates signed-distance maps built from one or more submaps against a
ground-truth point cloud, and colors the map voxels by local reconstruction
error for inspection.

Module Organization:
-------------------
- core/: Spatial index, error statistics, evaluation and coloring passes,
  plus the reference submap store and bounds predicates
- utils/: Shared utilities (configuration, I/O, logging)
- map_evaluator.py: Orchestration and command-line entry point
"""

__version__ = "1.0.0"
__author__ = "VAPOR Team"
