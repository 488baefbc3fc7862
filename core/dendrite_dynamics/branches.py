"""Branch walking on a tagged skeleton."""

from typing import List, Dict, Tuple, Optional, Sequence
from dataclasses import dataclass, field
import math
import logging

import numpy as np

from .voxels import (
    BACKGROUND, SLAB, END_POINT, JUNCTION,
    Junction, neighbor_offsets, junction_by_id,
)

logger = logging.getLogger(__name__)

Voxel = Tuple[int, ...]


@dataclass(eq=False)
class Branch:
    """Path walked from an end-point to its junction (or to another end-point)."""
    end_point: Voxel
    junction_point: Voxel  # contact voxel: junction voxel, or the opposite end-point
    junction: Optional[Junction]  # None for a two-tip segment
    length: float
    pixels: List[Voxel] = field(default_factory=list)

    def __repr__(self) -> str:
        owner = "_NoJunction" if self.junction is None else f"_J{self.junction.id}"
        return f"Branch_@{self.end_point}->{self.junction_point}{owner}"


@dataclass(eq=False)
class JunctionLink:
    """Slab chain joining two different junctions."""
    source: Junction
    target: Junction
    length: float
    pixels: List[Voxel] = field(default_factory=list)


def compute_path_length(points: Sequence[Voxel], spacing: Optional[Sequence[float]] = None) -> float:
    """
    Compute the length of a voxel path.

    Args:
        points: Voxel coordinates along the path, in array axis order
        spacing: Physical voxel size per axis (default: 1 on every axis)

    Returns:
        Sum of Euclidean distances between consecutive voxels, 0 for fewer
        than 2 points
    """
    if len(points) < 2:
        return 0.0

    if spacing is None:
        spacing = (1.0,) * len(points[0])

    total_length = 0.0
    for i in range(len(points) - 1):
        p1 = points[i]
        p2 = points[i + 1]
        d2 = 0.0
        for a, b, s in zip(p1, p2, spacing):
            dx = (b - a) * s
            d2 += dx * dx
        total_length += math.sqrt(d2)

    return total_length


class BranchWalker:
    """
    Walks branches on a private copy of a tagged skeleton.

    Consumed voxels are set to BACKGROUND in the working copy so that
    branches never overlap. The walker owns that copy; the tagged skeleton
    it was built from is left untouched.
    """

    def __init__(
        self,
        tags: np.ndarray,
        junctions: List[Junction],
        junction_labels: np.ndarray,
        spacing: Optional[Sequence[float]] = None
    ):
        self.tags = tags
        self.work = tags.copy()
        self.junction_labels = junction_labels
        self.junctions = junction_by_id(junctions)
        self.spacing = tuple(spacing) if spacing is not None else (1.0,) * tags.ndim
        self.offsets = neighbor_offsets(tags.ndim)
        self.n_dropped = 0

    def _next_pixel(self, current: Voxel, exclude_junction: int = 0) -> Optional[Voxel]:
        """First non-background neighbor of current in scan order, or None."""
        shape = self.work.shape
        for offset in self.offsets:
            candidate = tuple(c + o for c, o in zip(current, offset))
            if any(v < 0 or v >= n for v, n in zip(candidate, shape)):
                continue
            if self.work[candidate] == BACKGROUND:
                continue
            if exclude_junction and self.junction_labels[candidate] == exclude_junction:
                continue
            return candidate
        return None

    def process(self) -> List[Branch]:
        """
        Walk one branch from every end-point, in scan order.

        Returns:
            List of branches. End-points whose walk dead-ends are dropped.
        """
        branches = []
        for voxel in np.argwhere(self.tags == END_POINT):
            start = tuple(int(v) for v in voxel)
            # Far end of a two-tip segment already walked from its other end
            if self.work[start] != END_POINT:
                continue
            branch = self._walk_from_end_point(start)
            if branch is not None:
                branches.append(branch)

        logger.debug("BranchWalker.process: %d branches, %d dropped", len(branches), self.n_dropped)
        return branches

    def _walk_from_end_point(self, start: Voxel) -> Optional[Branch]:
        current = start
        pixels = [start]

        while True:
            # Mark as iterated
            self.work[current] = BACKGROUND
            next_pixel = self._next_pixel(current)
            if next_pixel is None:
                # Border or degenerate configuration: give up on this branch
                self.n_dropped += 1
                logger.debug("BranchWalker: no successor after %s, dropping branch from %s", current, start)
                return None

            value = self.work[next_pixel]
            if value == SLAB:
                pixels.append(next_pixel)
                current = next_pixel
                continue

            if value == END_POINT:
                # Tree made of a single branch with two end-points
                self.work[next_pixel] = BACKGROUND
                return Branch(start, next_pixel, None, compute_path_length(pixels, self.spacing), pixels)

            if value == JUNCTION:
                junction = self.junctions.get(int(self.junction_labels[next_pixel]))
                branch = Branch(start, next_pixel, junction, compute_path_length(pixels, self.spacing), pixels)
                if junction is not None:
                    junction.add_branch(branch)
                return branch

            self.n_dropped += 1
            logger.debug("BranchWalker: unexpected tag %d at %s, dropping branch from %s", value, next_pixel, start)
            return None

    def link_junctions(self) -> List[JunctionLink]:
        """
        Walk the slab chains left between junctions.

        Must run after process() so that end-point branches are consumed.
        Chains that come back to their own junction or dead-end are ignored.

        Returns:
            List of junction-to-junction links
        """
        links = []
        n_ignored = 0
        for voxel in np.argwhere(self.tags == JUNCTION):
            origin_voxel = tuple(int(v) for v in voxel)
            origin_id = int(self.junction_labels[origin_voxel])
            for offset in self.offsets:
                start = tuple(c + o for c, o in zip(origin_voxel, offset))
                if any(v < 0 or v >= n for v, n in zip(start, self.work.shape)):
                    continue
                if self.work[start] != SLAB:
                    continue
                link = self._walk_from_junction(origin_id, start)
                if link is None:
                    n_ignored += 1
                else:
                    links.append(link)

        logger.debug("BranchWalker.link_junctions: %d links, %d chains ignored", len(links), n_ignored)
        return links

    def _walk_from_junction(self, origin_id: int, start: Voxel) -> Optional[JunctionLink]:
        current = start
        pixels = [start]

        while True:
            self.work[current] = BACKGROUND
            # The first slab touches its own junction; look past it
            exclude = origin_id if len(pixels) == 1 else 0
            next_pixel = self._next_pixel(current, exclude_junction=exclude)
            if next_pixel is None:
                return None

            value = self.work[next_pixel]
            if value == SLAB:
                pixels.append(next_pixel)
                current = next_pixel
                continue

            if value == JUNCTION:
                target_id = int(self.junction_labels[next_pixel])
                if target_id == origin_id:
                    return None
                return JunctionLink(
                    self.junctions[origin_id],
                    self.junctions[target_id],
                    compute_path_length(pixels, self.spacing),
                    pixels,
                )

            return None


def branch_summary(branches: List[Branch]) -> Dict[str, float]:
    """Count and length statistics of a list of branches."""
    if not branches:
        return {'n_branches': 0, 'n_single': 0, 'total_length': 0.0, 'mean_length': 0.0}
    lengths = np.array([b.length for b in branches])
    return {
        'n_branches': len(branches),
        'n_single': sum(1 for b in branches if b.junction is None),
        'total_length': float(lengths.sum()),
        'mean_length': float(lengths.mean()),
    }
