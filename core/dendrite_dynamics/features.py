"""Junction identities, branch growth features and border pruning."""

from typing import List, Dict, Tuple, Optional
import logging
import math

from .detection import DetectionResults, Spot, END_POINT, BRANCH_LENGTH, JUNCTION_ID
from .schemas import Calibration
from .tracks import Track

logger = logging.getLogger(__name__)

# Edge feature keys
GROWTH = "GROWTH"
GROWTH_PHASE = "GROWTH_PHASE"
GROWTH_ANGLE = "GROWTH_ANGLE"  # radians

GROWING = 1
SHRINKING = -1
STATIC = 0

# Track feature keys
ACCUMULATIVE_BRANCH_DISTANCE = "ACCUMULATIVE_BRANCH_DISTANCE"
NET_BRANCH_DISTANCE = "NET_BRANCH_DISTANCE"


def assign_junction_ids(detection: DetectionResults, junction_track_of: Dict[int, int]) -> int:
    """
    Store on every end-point the id of its junction's track.

    End-points whose junction is missing or not part of a track get a null
    JUNCTION_ID and the name 'no junction'.

    Returns:
        Number of end-points that received a junction id
    """
    n_assigned = 0
    for spot in detection.iter_spots(END_POINT):
        junction_spot = detection.junction_map.get(spot.id)
        track_id = junction_track_of.get(junction_spot) if junction_spot is not None else None
        spot.features[JUNCTION_ID] = track_id
        if track_id is None:
            spot.name = "no junction"
            continue
        spot.name = f"->{track_id}"
        n_assigned += 1

    logger.info("assign_junction_ids: %d end-points matched to a junction track", n_assigned)
    return n_assigned


def compute_growth_features(track: Track) -> None:
    """
    Growth, growth phase and growth angle of every link of an end-point track.

    Growth is the change of branch length along the link. The growth angle
    is the absolute angle, in the xy plane, between the direction from the
    track's first spot to the link source and the link direction itself.
    """
    first = track.spots[0]
    for source, target in track.links():
        bls = source.features.get(BRANCH_LENGTH)
        blt = target.features.get(BRANCH_LENGTH)
        if bls is None or blt is None:
            growth, phase = None, None
        else:
            growth = blt - bls
            if blt > bls:
                phase = GROWING
            elif blt < bls:
                phase = SHRINKING
            else:
                phase = STATIC

        alpha1 = math.atan2(source.position[1] - first.position[1], source.position[0] - first.position[0])
        alpha2 = math.atan2(target.position[1] - source.position[1], target.position[0] - source.position[0])
        delta = math.atan2(math.sin(alpha1 - alpha2), math.cos(alpha1 - alpha2))

        track.edge_features[(source.id, target.id)] = {
            GROWTH: growth,
            GROWTH_PHASE: phase,
            GROWTH_ANGLE: abs(delta),
        }


def compute_branch_travel(track: Track, min_frame: int, max_frame: int) -> Tuple[Optional[float], Optional[float]]:
    """
    Accumulative and net distance travelled by an end-point track's branch.

    A branch absent at min_frame is taken to grow from 0; a branch absent
    at max_frame is taken to shrink back to 0.

    Args:
        track: End-point track with BRANCH_LENGTH on its spots
        min_frame: First frame of the analysis
        max_frame: Last frame of the analysis

    Returns:
        Tuple (accumulative, net), both None if any branch length is missing
    """
    lengths = [s.features.get(BRANCH_LENGTH) for s in track.spots]
    if any(length is None for length in lengths):
        track.features[ACCUMULATIVE_BRANCH_DISTANCE] = None
        track.features[NET_BRANCH_DISTANCE] = None
        return None, None

    first_frame = track.spots[0].frame
    last_frame = track.spots[-1].frame

    previous = lengths[0] if first_frame == min_frame else 0.0
    accumulative = 0.0
    for length in lengths:
        accumulative += abs(length - previous)
        previous = length
    if last_frame < max_frame:
        accumulative += lengths[-1]

    if first_frame == min_frame and last_frame == max_frame:
        net = lengths[-1] - lengths[0]
    elif first_frame == min_frame:
        net = -lengths[0]
    elif last_frame == max_frame:
        net = lengths[-1]
    else:
        net = 0.0

    track.features[ACCUMULATIVE_BRANCH_DISTANCE] = accumulative
    track.features[NET_BRANCH_DISTANCE] = net
    return accumulative, net


def _on_border(spot: Spot, roi: Tuple[Tuple[int, int], Tuple[int, int]], calibration: Calibration) -> bool:
    (xmin, ymin), (xmax, ymax) = roi
    x = round(spot.position[0] / calibration.pixel_width)
    y = round(spot.position[1] / calibration.pixel_height)
    return x <= xmin or x >= xmax or y <= ymin or y >= ymax


def roi_for(shape: Tuple[int, ...], calibration: Calibration) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """(min, max) pixel corners in x, y of a frame of the given array shape."""
    height, width = shape[-2], shape[-1]
    x0, y0 = calibration.origin[0], calibration.origin[1]
    return (x0, y0), (x0 + width - 1, y0 + height - 1)


def prune_border_tracks(
    tracks: List[Track],
    lone_spots: List[Spot],
    roi: Tuple[Tuple[int, int], Tuple[int, int]],
    calibration: Calibration
) -> Tuple[List[Track], List[Spot]]:
    """
    Drop tracks and lone spots touching the border of the ROI or outside it.

    A track goes as soon as one of its spots does.

    Args:
        tracks: Tracks to filter
        lone_spots: Spots not part of any track
        roi: ((xmin, ymin), (xmax, ymax)) in pixels
        calibration: Calibration used to convert positions back to pixels

    Returns:
        Tuple (kept tracks, kept lone spots)
    """
    kept_tracks = [t for t in tracks if not any(_on_border(s, roi, calibration) for s in t.spots)]
    kept_spots = [s for s in lone_spots if not _on_border(s, roi, calibration)]
    n_pruned = len(tracks) - len(kept_tracks)
    if n_pruned or len(kept_spots) < len(lone_spots):
        logger.info("prune_border_tracks: removed %d tracks and %d lone spots on the ROI border",
                    n_pruned, len(lone_spots) - len(kept_spots))
    return kept_tracks, kept_spots
