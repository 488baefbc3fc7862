"""Voxel classification of a binary skeleton and grouping of junction voxels."""

from typing import List, Tuple, Dict, TYPE_CHECKING
from dataclasses import dataclass, field
import itertools
import logging

import numpy as np
from scipy import ndimage

if TYPE_CHECKING:
    from .branches import Branch

logger = logging.getLogger(__name__)

# Tag values written into the tagged skeleton
BACKGROUND = 0
SLAB = 1
END_POINT = 2
JUNCTION = 3
JUNCTION_TEMP = 255  # junction voxel not yet grouped into a Junction

_OFFSET_CACHE: Dict[int, List[Tuple[int, ...]]] = {}


def neighbor_offsets(ndim: int) -> List[Tuple[int, ...]]:
    """
    Offsets of the full (3^N - 1) neighborhood, in scan (C) order.

    Args:
        ndim: Number of dimensions (2 or 3)

    Returns:
        List of offset tuples, the center offset excluded
    """
    if ndim not in _OFFSET_CACHE:
        _OFFSET_CACHE[ndim] = [
            offset for offset in itertools.product((-1, 0, 1), repeat=ndim)
            if any(offset)
        ]
    return _OFFSET_CACHE[ndim]


def count_neighbors(mask: np.ndarray) -> np.ndarray:
    """
    Count foreground neighbors of every voxel over the full neighborhood.

    Voxels outside the array count as background. Background voxels get 0.
    """
    fg = mask.astype(bool)
    kernel = np.ones((3,) * fg.ndim, dtype=np.uint8)
    kernel[(1,) * fg.ndim] = 0
    counts = ndimage.convolve(fg.astype(np.uint8), kernel, mode='constant', cval=0)
    counts[~fg] = 0
    return counts


def tag_skeleton(mask: np.ndarray) -> np.ndarray:
    """
    Tag every skeleton voxel as end-point, slab or (unclustered) junction.

    Tag rule on the foreground neighbor count: 1 -> END_POINT, 2 -> SLAB,
    >2 -> JUNCTION_TEMP. Isolated voxels stay BACKGROUND. End-points lying on
    the array border are demoted to SLAB since they come from cropping.

    Args:
        mask: 2D or 3D binary skeleton (any dtype, non-zero = foreground)

    Returns:
        uint8 array of the same shape holding the tags
    """
    if mask.ndim not in (2, 3):
        raise ValueError(f"Skeleton mask must be 2D or 3D, got shape {mask.shape}")

    fg = mask.astype(bool)
    counts = count_neighbors(fg)

    tags = np.zeros(fg.shape, dtype=np.uint8)
    tags[fg & (counts == 1)] = END_POINT
    tags[fg & (counts == 2)] = SLAB
    tags[fg & (counts > 2)] = JUNCTION_TEMP

    n_isolated = int(np.count_nonzero(fg & (counts == 0)))
    if n_isolated:
        logger.debug("tag_skeleton: ignored %d isolated voxels", n_isolated)

    remove_border_end_points(tags)
    return tags


def remove_border_end_points(tags: np.ndarray) -> int:
    """
    Demote END_POINT voxels on any face of the array to SLAB, in place.

    Returns:
        Number of demoted voxels
    """
    n_demoted = 0
    for axis in range(tags.ndim):
        for index in (0, tags.shape[axis] - 1):
            face = [slice(None)] * tags.ndim
            face[axis] = index
            view = tags[tuple(face)]
            on_border = view == END_POINT
            n_demoted += int(np.count_nonzero(on_border))
            view[on_border] = SLAB
    if n_demoted:
        logger.debug("remove_border_end_points: demoted %d border end-points", n_demoted)
    return n_demoted


@dataclass(eq=False)
class Junction:
    """A maximal connected cluster of junction voxels."""
    id: int
    pixel: Tuple[int, ...]  # one voxel of the cluster (first in scan order)
    position_sum: np.ndarray
    size: int = 0
    branches: List["Branch"] = field(default_factory=list)

    def increment(self, position) -> None:
        self.size += 1
        self.position_sum = self.position_sum + np.asarray(position, dtype=float)

    @property
    def centroid(self) -> Tuple[float, ...]:
        """Mean position of the member voxels, in voxel coordinates."""
        return tuple(float(v) for v in self.position_sum / self.size)

    def add_branch(self, branch: "Branch") -> None:
        self.branches.append(branch)

    def __repr__(self) -> str:
        return (f"Junction-{self.id}_Npixels{self.size}_Nbranches{len(self.branches)}"
                f"_@{self.pixel}")


def cluster_junctions(tags: np.ndarray) -> Tuple[List[Junction], np.ndarray]:
    """
    Group connected JUNCTION_TEMP voxels into Junction entities.

    Connectivity is the full neighborhood. Clustered voxels are re-tagged
    JUNCTION in place. Junction ids start at 1 and follow the scan order of
    each cluster's first voxel; they are only meaningful within one frame.

    Args:
        tags: Tagged skeleton from tag_skeleton (modified in place)

    Returns:
        Tuple of (junctions, junction_labels) where junction_labels maps every
        junction voxel to its junction id and is 0 elsewhere
    """
    unclustered = tags == JUNCTION_TEMP
    structure = np.ones((3,) * tags.ndim, dtype=bool)
    labels, n_junctions = ndimage.label(unclustered, structure=structure)
    tags[unclustered] = JUNCTION

    if n_junctions == 0:
        return [], labels

    # Scan-order walk over the junction voxels folds each into its cluster;
    # ids are handed out when a cluster is first met
    junctions: Dict[int, Junction] = {}
    relabel = np.zeros(n_junctions + 1, dtype=labels.dtype)
    for voxel in np.argwhere(labels > 0):
        position = tuple(int(v) for v in voxel)
        label = int(labels[position])
        junction = junctions.get(label)
        if junction is None:
            junction = Junction(len(junctions) + 1, position, np.zeros(tags.ndim, dtype=float))
            junctions[label] = junction
            relabel[label] = junction.id
        junction.increment(position)

    result = sorted(junctions.values(), key=lambda j: j.id)
    logger.debug("cluster_junctions: %d junctions from %d junction voxels",
                 len(result), int(np.count_nonzero(labels)))
    return result, relabel[labels]


def retag_foreground(tags: np.ndarray) -> np.ndarray:
    """Tag again the foreground of an already tagged grid."""
    return tag_skeleton(tags != BACKGROUND)


def tag_counts(tags: np.ndarray) -> Dict[str, int]:
    """Number of voxels per tag (unclustered junctions counted as junctions)."""
    return {
        'slab': int(np.count_nonzero(tags == SLAB)),
        'end_point': int(np.count_nonzero(tags == END_POINT)),
        'junction': int(np.count_nonzero((tags == JUNCTION) | (tags == JUNCTION_TEMP))),
    }


def junction_by_id(junctions: List[Junction]) -> Dict[int, Junction]:
    return {junction.id: junction for junction in junctions}
