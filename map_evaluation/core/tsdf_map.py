"""
Block-Based TSDF Submap Store
=============================

Reference implementation of the map the evaluation passes consume:

- Block: cubic group of voxels_per_side^3 voxels with distance, weight, color
- Submap: sparse set of allocated blocks plus voxel size and truncation distance
- SubmapCollection: the full map, persisted as a compressed .npz archive
- TrilinearInterpolator: distance lookup at arbitrary points of one submap
- SubmapCollectionDistanceField: distance lookup over all submaps

The evaluation code only relies on the DistanceField protocol and on iterating
allocated voxels; building or integrating the distance field is not done here.
"""

import logging
import zipfile
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Tuple

import numpy as np


BlockIndex = Tuple[int, int, int]

# Offsets of the 8 voxels surrounding a point, x varying fastest
_CORNER_OFFSETS = np.array(
    [[x, y, z] for z in (0, 1) for y in (0, 1) for x in (0, 1)], dtype=np.int64
)


class DistanceField(Protocol):
    """Signed-distance lookup. ``None`` means the point is not covered."""

    def get_distance(self, point: np.ndarray) -> Optional[float]:
        ...

    def interpolate(self, point: np.ndarray) -> Optional[float]:
        ...


class Block:
    """Fixed-size cube of voxels; linear index is x + vps * (y + vps * z)."""

    def __init__(self, block_index: BlockIndex, voxels_per_side: int, voxel_size: float):
        self.block_index = tuple(int(i) for i in block_index)
        self.voxels_per_side = int(voxels_per_side)
        self.voxel_size = float(voxel_size)

        n_voxels = self.voxels_per_side ** 3
        self.distance = np.zeros(n_voxels, dtype=np.float32)
        self.weight = np.zeros(n_voxels, dtype=np.float32)
        self.color = np.zeros((n_voxels, 3), dtype=np.uint8)

    @property
    def num_voxels(self) -> int:
        return self.voxels_per_side ** 3

    @property
    def origin(self) -> np.ndarray:
        """World coordinates of the block's minimum corner."""
        return np.asarray(self.block_index, dtype=np.float64) * self.voxel_size * self.voxels_per_side

    def local_index(self, linear_index: int) -> np.ndarray:
        vps = self.voxels_per_side
        return np.array([linear_index % vps, (linear_index // vps) % vps, linear_index // (vps * vps)],
                        dtype=np.int64)

    def voxel_center(self, linear_index: int) -> np.ndarray:
        return self.origin + (self.local_index(linear_index) + 0.5) * self.voxel_size

    def voxel_centers(self) -> np.ndarray:
        """(vps^3, 3) world coordinates of all voxel centers, in linear order."""
        linear = np.arange(self.num_voxels)
        vps = self.voxels_per_side
        local = np.stack([linear % vps, (linear // vps) % vps, linear // (vps * vps)], axis=1)
        return self.origin + (local + 0.5) * self.voxel_size


class Submap:
    """A sparse TSDF voxel grid organized in blocks."""

    def __init__(self,
                 submap_id: int,
                 voxel_size: float,
                 voxels_per_side: int = 16,
                 truncation_distance: Optional[float] = None):
        """
        Args:
            submap_id: Identifier, unique inside a collection
            voxel_size: Voxel edge length (meters)
            voxels_per_side: Voxels per block edge
            truncation_distance: Largest trusted |distance|; defaults to 2 voxels
        """
        if voxel_size <= 0:
            raise ValueError(f"voxel_size must be > 0, got {voxel_size}")
        if voxels_per_side < 1:
            raise ValueError(f"voxels_per_side must be >= 1, got {voxels_per_side}")

        self.submap_id = int(submap_id)
        self.voxel_size = float(voxel_size)
        self.voxels_per_side = int(voxels_per_side)
        self.truncation_distance = float(
            2.0 * voxel_size if truncation_distance is None else truncation_distance
        )
        self.mesh_stale = False
        self._blocks: Dict[BlockIndex, Block] = {}

    def __repr__(self) -> str:
        return (f'Submap(id={self.submap_id}, voxel_size={self.voxel_size}, '
                f'blocks={len(self._blocks)})')

    @property
    def block_size(self) -> float:
        return self.voxel_size * self.voxels_per_side

    def allocate_block(self, block_index: BlockIndex) -> Block:
        """Return the block at block_index, allocating it if needed."""
        key = tuple(int(i) for i in block_index)
        block = self._blocks.get(key)
        if block is None:
            block = Block(key, self.voxels_per_side, self.voxel_size)
            self._blocks[key] = block
        return block

    def get_block(self, block_index: BlockIndex) -> Optional[Block]:
        return self._blocks.get(tuple(int(i) for i in block_index))

    def allocated_block_indices(self) -> List[BlockIndex]:
        return list(self._blocks.keys())

    def blocks(self) -> Iterator[Block]:
        return iter(self._blocks.values())

    @property
    def num_blocks(self) -> int:
        return len(self._blocks)

    def lookup_voxel(self, global_index: np.ndarray) -> Optional[Tuple[Block, int]]:
        """Block and linear index of a global voxel index, or None if unallocated."""
        global_index = np.asarray(global_index, dtype=np.int64)
        vps = self.voxels_per_side
        block_index = np.floor_divide(global_index, vps)
        block = self._blocks.get(tuple(block_index.tolist()))
        if block is None:
            return None
        local = global_index - block_index * vps
        return block, int(local[0] + vps * (local[1] + vps * local[2]))

    def distance_at(self, point: np.ndarray) -> Optional[float]:
        """Distance of the voxel containing point, if allocated and observed."""
        global_index = np.floor(np.asarray(point, dtype=np.float64) / self.voxel_size).astype(np.int64)
        found = self.lookup_voxel(global_index)
        if found is None:
            return None
        block, linear_index = found
        if block.weight[linear_index] <= 0.0:
            return None
        return float(block.distance[linear_index])

    def interpolator(self) -> 'TrilinearInterpolator':
        return TrilinearInterpolator(self)

    def mark_mesh_stale(self):
        """Flag the renderable mesh for regeneration after voxel colors changed."""
        self.mesh_stale = True


class TrilinearInterpolator:
    """
    Trilinear distance interpolation inside one submap.

    Voxel values live at voxel centers ((i + 0.5) * voxel_size). A point is
    only covered when all 8 surrounding voxels are allocated and observed.
    """

    def __init__(self, submap: Submap):
        self.submap = submap

    def interpolate(self, point: np.ndarray) -> Optional[float]:
        point = np.asarray(point, dtype=np.float64)
        scaled = point / self.submap.voxel_size - 0.5
        base = np.floor(scaled).astype(np.int64)
        frac = scaled - base

        value = 0.0
        for offset in _CORNER_OFFSETS:
            found = self.submap.lookup_voxel(base + offset)
            if found is None:
                return None
            block, linear_index = found
            if block.weight[linear_index] <= 0.0:
                return None
            coefficient = np.prod(np.where(offset == 1, frac, 1.0 - frac))
            value += coefficient * float(block.distance[linear_index])
        return float(value)

    def get_distance(self, point: np.ndarray) -> Optional[float]:
        return self.interpolate(point)


class SubmapCollection:
    """All submaps of a map. Iteration order carries no meaning."""

    def __init__(self, submaps: Optional[List[Submap]] = None, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._submaps: Dict[int, Submap] = {}
        for submap in submaps or []:
            self.add(submap)

    def add(self, submap: Submap) -> Submap:
        if submap.submap_id in self._submaps:
            raise ValueError(f"Duplicate submap id {submap.submap_id}")
        self._submaps[submap.submap_id] = submap
        return submap

    def get(self, submap_id: int) -> Optional[Submap]:
        return self._submaps.get(submap_id)

    def __iter__(self) -> Iterator[Submap]:
        return iter(list(self._submaps.values()))

    def __len__(self) -> int:
        return len(self._submaps)

    def distance_field(self) -> 'SubmapCollectionDistanceField':
        return SubmapCollectionDistanceField(self)

    def save(self, path: Path) -> Path:
        """
        Write all submaps to a compressed .npz archive.

        Args:
            path: Target file

        Returns:
            Path written
        """
        path = Path(path)
        arrays = {'submap_ids': np.array(sorted(self._submaps), dtype=np.int64)}

        for submap_id in sorted(self._submaps):
            submap = self._submaps[submap_id]
            prefix = f'submap_{submap_id}'
            blocks = list(submap.blocks())
            n_voxels = submap.voxels_per_side ** 3

            arrays[f'{prefix}_params'] = np.array(
                [submap.voxel_size, submap.voxels_per_side, submap.truncation_distance], dtype=np.float64
            )
            arrays[f'{prefix}_block_indices'] = np.array(
                [b.block_index for b in blocks], dtype=np.int64
            ).reshape(-1, 3)
            arrays[f'{prefix}_distance'] = np.array(
                [b.distance for b in blocks], dtype=np.float32
            ).reshape(-1, n_voxels)
            arrays[f'{prefix}_weight'] = np.array(
                [b.weight for b in blocks], dtype=np.float32
            ).reshape(-1, n_voxels)
            arrays[f'{prefix}_color'] = np.array(
                [b.color for b in blocks], dtype=np.uint8
            ).reshape(-1, n_voxels, 3)

        # np.savez appends .npz to names without it; open the file ourselves
        with open(path, 'wb') as f:
            np.savez_compressed(f, **arrays)

        self.logger.info(f"Saved {len(self._submaps)} submaps to {path}")
        return path

    @classmethod
    def load(cls, path: Path, logger: Optional[logging.Logger] = None) -> 'SubmapCollection':
        """
        Read a collection written by save().

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the archive is not a submap collection
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Map file not found: {path}")

        collection = cls(logger=logger)
        try:
            data = np.load(path, allow_pickle=False)
            if not isinstance(data, np.lib.npyio.NpzFile):
                raise ValueError(f"Map file is not an .npz archive: {path}")
            with data:
                for submap_id in data['submap_ids'].tolist():
                    prefix = f'submap_{submap_id}'
                    voxel_size, voxels_per_side, truncation_distance = data[f'{prefix}_params'].tolist()
                    submap = Submap(submap_id, voxel_size, int(voxels_per_side), truncation_distance)

                    distances = data[f'{prefix}_distance']
                    weights = data[f'{prefix}_weight']
                    colors = data[f'{prefix}_color']
                    for i, block_index in enumerate(data[f'{prefix}_block_indices']):
                        block = submap.allocate_block(tuple(block_index.tolist()))
                        block.distance[:] = distances[i]
                        block.weight[:] = weights[i]
                        block.color[:] = colors[i]

                    collection.add(submap)
        except (KeyError, OSError, zipfile.BadZipFile) as e:
            raise ValueError(f"Failed to load map from {path}: {e}")

        collection.logger.info(f"Loaded {len(collection)} submaps from {path}")
        return collection


class SubmapCollectionDistanceField:
    """
    Distance lookup over a whole collection.

    Every submap covering the point is interpolated; the value with the
    smallest magnitude (the closest reconstructed surface) is returned.
    """

    def __init__(self, submaps: SubmapCollection):
        self._interpolators = [TrilinearInterpolator(submap) for submap in submaps]

    def interpolate(self, point: np.ndarray) -> Optional[float]:
        best = None
        for interpolator in self._interpolators:
            distance = interpolator.interpolate(point)
            if distance is not None and (best is None or abs(distance) < abs(best)):
                best = distance
        return best

    def get_distance(self, point: np.ndarray) -> Optional[float]:
        return self.interpolate(point)
