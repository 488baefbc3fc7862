"""Parallel detection of skeleton end-points and junctions over a movie."""

from typing import List, Dict, Optional, Callable, Any, Iterable
from dataclasses import dataclass, field
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
import os
import time

import numpy as np
from skimage.morphology import skeletonize

from .schemas import Calibration, DetectorSettings
from .skeleton_graph import SkeletonGraph, analyze_frame, JUNCTION_VERTEX

logger = logging.getLogger(__name__)

END_POINT = "END_POINT"
JUNCTION = "JUNCTION"

END_POINTS_QUALITY_VALUE = 1.0
JUNCTION_POINTS_QUALITY_VALUE = 2.0
END_POINTS_RADIUS = 0.5
JUNCTION_POINTS_RADIUS = 1.0

# Spot feature keys
BRANCH_LENGTH = "BRANCH_LENGTH"
JUNCTION_ID = "JUNCTION_ID"


class ConfigurationError(ValueError):
    """Invalid run configuration, detected before any processing starts."""


@dataclass(eq=False)
class Spot:
    """A point-in-time observation of an end-point or a junction."""
    id: int
    frame: int
    local_index: int
    kind: str
    position: tuple  # physical (x, y, z)
    t: float
    name: str = ""
    features: Dict[str, Any] = field(default_factory=dict)

    @property
    def quality(self) -> float:
        return JUNCTION_POINTS_QUALITY_VALUE if self.kind == JUNCTION else END_POINTS_QUALITY_VALUE

    @property
    def radius(self) -> float:
        return JUNCTION_POINTS_RADIUS if self.kind == JUNCTION else END_POINTS_RADIUS

    def square_distance_to(self, other: "Spot") -> float:
        return sum((a - b) ** 2 for a, b in zip(self.position, other.position))

    def __repr__(self) -> str:
        return f"Spot-{self.id}_{self.kind}_f{self.frame}_@{self.position}"


@dataclass
class FrameDetection:
    """Detection output for one frame, private to the worker that made it."""
    frame: int
    skeleton: SkeletonGraph
    spots: List[Spot]
    junction_map: Dict[int, int]  # end-point local index -> junction local index
    n_branches: int = 0
    n_dropped: int = 0


@dataclass
class DetectionResults:
    """Merged detection output, indexed by frame."""
    frames: Dict[int, FrameDetection]
    spots: Dict[int, Spot]
    junction_map: Dict[int, int]  # end-point spot id -> junction spot id
    n_frames: int
    ndim: int = 2
    failed_frames: List[int] = field(default_factory=list)

    def spots_in_frame(self, frame: int, kind: Optional[str] = None) -> List[Spot]:
        detection = self.frames.get(frame)
        if detection is None:
            return []
        return [s for s in detection.spots if kind is None or s.kind == kind]

    def spots_by_frame(self, kind: str) -> Dict[int, List[Spot]]:
        return {frame: self.spots_in_frame(frame, kind) for frame in sorted(self.frames)}

    def iter_spots(self, kind: Optional[str] = None) -> Iterable[Spot]:
        for frame in sorted(self.frames):
            yield from self.spots_in_frame(frame, kind)

    def graph_for(self, frame: int) -> Optional[SkeletonGraph]:
        detection = self.frames.get(frame)
        return detection.skeleton if detection is not None else None

    def vertex_for(self, spot: Spot) -> Optional[int]:
        skeleton = self.graph_for(spot.frame)
        if skeleton is None:
            return None
        return skeleton.spot_to_vertex.get(spot.local_index)

    def spot_for(self, frame: int, vertex: int) -> Optional[Spot]:
        detection = self.frames.get(frame)
        if detection is None:
            return None
        index = detection.skeleton.vertex_to_spot.get(vertex)
        return detection.spots[index] if index is not None else None

    @property
    def n_dropped_branches(self) -> int:
        return sum(d.n_dropped for d in self.frames.values())


def validate_movie(movie: np.ndarray, settings: DetectorSettings) -> None:
    """
    Check the movie layout and channel settings before processing.

    The movie is expected as (T, C, Y, X) or (T, C, Z, Y, X).

    Raises:
        ConfigurationError: if the layout or the skeleton channel is invalid
    """
    if movie.ndim not in (4, 5):
        raise ConfigurationError(
            f"Movie must have shape (T, C, Y, X) or (T, C, Z, Y, X), got {movie.shape}."
        )
    n_channels = movie.shape[1]
    if settings.skeleton_channel > n_channels:
        raise ConfigurationError(
            f"Skeleton channel defined as {settings.skeleton_channel} but source image "
            f"only has {n_channels} channels."
        )
    if movie.shape[0] == 0:
        raise ConfigurationError("Movie has no frames.")


def _detect_frame(
    frame: int,
    skeleton_frame: np.ndarray,
    settings: DetectorSettings,
    calibration: Calibration
) -> FrameDetection:
    """Run the frame analyzer on one frame and turn its vertices into spots."""
    # skeleton_frame is a view into the movie; the mask is this task's own buffer
    mask = skeleton_frame != 0
    if settings.skeletonize:
        mask = skeletonize(mask)

    analysis = analyze_frame(mask, calibration.spacing(mask.ndim))
    skeleton = analysis.skeleton
    graph = skeleton.graph
    t = frame * calibration.frame_interval

    spots: List[Spot] = []
    # Junctions first, then end-points
    for vertex in skeleton.junction_vertices() + skeleton.end_point_vertices():
        data = graph.nodes[vertex]
        kind = JUNCTION if data['kind'] == JUNCTION_VERTEX else END_POINT
        spot = Spot(
            id=-1,
            frame=frame,
            local_index=len(spots),
            kind=kind,
            position=calibration.to_physical(data['position']),
            t=t,
        )
        if kind == JUNCTION:
            spot.name = f"J{data['junction_id']}"
        spots.append(spot)
        skeleton.register_spot(vertex, spot.local_index)

    # Link every end-point to the junction its single branch protrudes from
    junction_map: Dict[int, int] = {}
    for vertex in skeleton.end_point_vertices():
        spot = spots[skeleton.vertex_to_spot[vertex]]
        opposite = skeleton.governing_vertex(vertex)
        if opposite is None:
            continue
        spot.features[BRANCH_LENGTH] = skeleton.edge_length(vertex, opposite)
        if skeleton.kind(opposite) == JUNCTION_VERTEX:
            junction_map[spot.local_index] = skeleton.vertex_to_spot[opposite]

    return FrameDetection(
        frame=frame,
        skeleton=skeleton,
        spots=spots,
        junction_map=junction_map,
        n_branches=len(analysis.branches),
        n_dropped=analysis.n_dropped,
    )


def detect_key_points(
    movie: np.ndarray,
    settings: Optional[DetectorSettings] = None,
    calibration: Optional[Calibration] = None,
    num_workers: Optional[int] = None,
    progress: Optional[Callable[[int, int], None]] = None
) -> DetectionResults:
    """
    Detect junctions and end-points in every frame of a skeleton movie.

    Frames are independent and processed on a thread pool. Each task gets a
    view of its frame, builds its own mask from it and keeps private result
    structures. Results are merged by frame number once all tasks are done,
    so the output does not depend on completion order or on the number of
    workers.

    Args:
        movie: Array of shape (T, C, Y, X) or (T, C, Z, Y, X)
        settings: Detector settings (skeleton channel, skeletonization)
        calibration: Physical calibration (default: unit calibration)
        num_workers: Pool size (default: number of CPUs)
        progress: Optional callback called with (frames_done, n_frames)

    Returns:
        DetectionResults merged over all frames

    Raises:
        ConfigurationError: if the movie layout or channel is invalid
    """
    settings = settings or DetectorSettings()
    calibration = calibration or Calibration()
    validate_movie(movie, settings)

    n_frames = movie.shape[0]
    channel = settings.skeleton_channel - 1
    num_workers = num_workers or os.cpu_count() or 1
    logger.info("detect_key_points: %d frames, shape %s, skeleton channel %d, %d workers",
                n_frames, movie.shape[2:], settings.skeleton_channel, num_workers)
    start = time.time()

    per_frame: Dict[int, FrameDetection] = {}
    failed_frames: List[int] = []
    done = 0
    with ThreadPoolExecutor(max_workers=num_workers) as executor:
        futures = {
            executor.submit(_detect_frame, frame, movie[frame, channel], settings, calibration): frame
            for frame in range(n_frames)
        }
        for future in as_completed(futures):
            frame = futures[future]
            try:
                per_frame[frame] = future.result()
            except Exception as e:
                # A failing frame must not abort the other frames
                logger.error("detect_key_points: frame %d failed: %s", frame, e, exc_info=True)
                failed_frames.append(frame)
            done += 1
            if progress is not None:
                progress(done, n_frames)

    results = merge_frame_detections(per_frame, n_frames, movie.ndim - 2)
    results.failed_frames = sorted(failed_frames)

    elapsed = time.time() - start
    logger.info(
        "detect_key_points: %d junction spots, %d end-point spots in %.2fs (%d frames failed)",
        sum(1 for _ in results.iter_spots(JUNCTION)),
        sum(1 for _ in results.iter_spots(END_POINT)),
        elapsed, len(failed_frames)
    )
    return results


def merge_frame_detections(
    per_frame: Dict[int, FrameDetection],
    n_frames: int,
    ndim: int = 2
) -> DetectionResults:
    """
    Merge per-frame detections in frame order and assign global spot ids.
    """
    spots: Dict[int, Spot] = {}
    junction_map: Dict[int, int] = {}
    next_id = 0
    for frame in sorted(per_frame):
        detection = per_frame[frame]
        for spot in detection.spots:
            spot.id = next_id
            spots[next_id] = spot
            next_id += 1
        for end_point_index, junction_index in detection.junction_map.items():
            junction_map[detection.spots[end_point_index].id] = detection.spots[junction_index].id

    return DetectionResults(
        frames=dict(sorted(per_frame.items())),
        spots=spots,
        junction_map=junction_map,
        n_frames=n_frames,
        ndim=ndim,
    )
