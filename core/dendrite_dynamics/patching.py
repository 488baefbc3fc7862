"""
Patch correction of end-point tracks.

An end-point's governing junction can appear to jump between junction
tracks over time: junctions or end-points were mis-tracked, or the branch
forked. For each candidate junction track observed along an end-point
track, we look in every disagreeing frame for a path from the end-point to
a junction of that track in the frame's skeleton graph. The candidate that
explains the most frames wins, and its corrected branch lengths (summed
along the found path) and junction ids are written back.
"""

from typing import List, Dict, Optional, Callable
from collections import deque
from concurrent.futures import ThreadPoolExecutor
import logging
import time

from .detection import DetectionResults, BRANCH_LENGTH, JUNCTION_ID
from .skeleton_graph import SkeletonGraph
from .tracks import Track, N_INCORRECT_IDS

logger = logging.getLogger(__name__)


def find_path(
    skeleton: SkeletonGraph,
    start: int,
    is_target: Callable[[int], bool]
) -> Optional[List[int]]:
    """
    Breadth-first search from start to the first vertex accepted by is_target.

    Neighbors are explored in increasing vertex order. The search keeps a
    vertex -> parent map and rebuilds the path only once a target is met.

    Returns:
        Vertex path from start to the target (both included), or None
    """
    graph = skeleton.graph
    parents: Dict[int, Optional[int]] = {start: None}
    queue = deque([start])
    while queue:
        vertex = queue.popleft()
        if is_target(vertex):
            path = [vertex]
            while parents[path[-1]] is not None:
                path.append(parents[path[-1]])
            path.reverse()
            return path
        for neighbor in sorted(graph.neighbors(vertex)):
            if neighbor not in parents:
                parents[neighbor] = vertex
                queue.append(neighbor)
    return None


def path_length(skeleton: SkeletonGraph, path: List[int]) -> float:
    return sum(skeleton.edge_length(u, v) for u, v in zip(path, path[1:]))


def observed_junction_ids(
    track: Track,
    detection: DetectionResults,
    junction_track_of: Dict[int, int]
) -> List[Optional[int]]:
    """Junction-track id of each spot's governing junction, None if unknown."""
    ids = []
    for spot in track.spots:
        junction_spot = detection.junction_map.get(spot.id)
        ids.append(junction_track_of.get(junction_spot) if junction_spot is not None else None)
    return ids


def patch_track(
    track: Track,
    detection: DetectionResults,
    junction_track_of: Dict[int, int]
) -> int:
    """
    Correct the junction identity and branch length series of one end-point track.

    Args:
        track: End-point track, modified in place along with its spots
        detection: Detection results holding the per-frame skeleton graphs
        junction_track_of: Junction spot id -> junction track id

    Returns:
        Number of time steps left uncorrected
    """
    lengths = [s.features.get(BRANCH_LENGTH) for s in track.spots]
    ids = observed_junction_ids(track, detection, junction_track_of)

    candidates = sorted({jid for jid in ids if jid is not None})
    if len(candidates) <= 1:
        best_lengths, best_ids, n_incorrect = lengths, ids, 0
    else:
        # Ascending candidates: max() keeps the first, so ties go to the smallest id
        results = [_try_candidate(track, detection, junction_track_of, candidate, lengths, ids)
                   for candidate in candidates]
        best = max(range(len(candidates)), key=lambda i: results[i][2])
        best_lengths, best_ids, n_successes = results[best]
        n_incorrect = len(track) - n_successes
        logger.debug("patch_track: %s candidates %s -> %s, %d uncorrected",
                     track.name, candidates, candidates[best], n_incorrect)

    track.branch_lengths = list(best_lengths)
    track.junction_ids = list(best_ids)
    track.n_incorrect_ids = n_incorrect
    track.features[N_INCORRECT_IDS] = n_incorrect
    for spot, length, jid in zip(track.spots, best_lengths, best_ids):
        spot.features[BRANCH_LENGTH] = length
        spot.features[JUNCTION_ID] = jid
        spot.name = f"->{jid}" if jid is not None else "no junction"
    return n_incorrect


def _try_candidate(track, detection, junction_track_of, candidate, lengths, ids):
    corrected_lengths = list(lengths)
    corrected_ids = list(ids)
    n_successes = 0

    for t, spot in enumerate(track.spots):
        if ids[t] == candidate:
            n_successes += 1
            continue

        skeleton = detection.graph_for(spot.frame)
        start = detection.vertex_for(spot)
        if skeleton is None or start is None:
            continue

        def is_candidate_junction(vertex, frame=spot.frame):
            candidate_spot = detection.spot_for(frame, vertex)
            return (candidate_spot is not None
                    and junction_track_of.get(candidate_spot.id) == candidate)

        path = find_path(skeleton, start, is_candidate_junction)
        if path is None:
            continue
        corrected_lengths[t] = path_length(skeleton, path)
        corrected_ids[t] = candidate
        n_successes += 1

    return corrected_lengths, corrected_ids, n_successes


def patch_tracks(
    tracks: List[Track],
    detection: DetectionResults,
    junction_track_of: Dict[int, int],
    num_workers: int = 1
) -> Dict[int, int]:
    """
    Patch every end-point track.

    Tracks share no mutable state, so they can be patched on a thread pool.

    Returns:
        Track id -> number of uncorrected time steps
    """
    start = time.time()
    if num_workers > 1 and len(tracks) > 1:
        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            counts = list(executor.map(
                lambda track: patch_track(track, detection, junction_track_of), tracks
            ))
    else:
        counts = [patch_track(track, detection, junction_track_of) for track in tracks]

    result = {track.id: n for track, n in zip(tracks, counts)}
    logger.info("patch_tracks: %d tracks patched in %.2fs, %d with uncorrected identity jumps",
                len(tracks), time.time() - start, sum(1 for n in counts if n > 0))
    return result
