#!/usr/bin/env python3
"""Test parallel key-point detection over a skeleton movie."""

import numpy as np
import pytest

import dendrite_dynamics.detection as detection_module
from dendrite_dynamics.detection import (
    detect_key_points, ConfigurationError, END_POINT, JUNCTION, BRANCH_LENGTH,
)
from dendrite_dynamics.schemas import Calibration, DetectorSettings
from generate_synthetic_movie import growing_branch_movie, patching_movie, to_movie, two_junction_frame


def mixed_movie() -> np.ndarray:
    frames = list(growing_branch_movie()[:, 0])
    # Pad the two-junction frames to the same frame size
    for _ in range(3):
        frame = np.zeros_like(frames[0])
        frame[:20, :30] = two_junction_frame()
        frames.append(frame)
    frames.append(np.zeros_like(frames[0]))
    return to_movie(frames)


def test_spots_and_global_ids():
    detection = detect_key_points(growing_branch_movie(), num_workers=2)

    assert detection.n_frames == 6
    assert detection.failed_frames == []
    assert sorted(detection.spots) == list(range(6 * 4))
    for frame in range(6):
        spots = detection.spots_in_frame(frame)
        assert [s.kind for s in spots] == [JUNCTION, END_POINT, END_POINT, END_POINT]
        # Global ids follow frame order, then local order
        assert [s.id for s in spots] == list(range(4 * frame, 4 * frame + 4))
        assert [s.local_index for s in spots] == [0, 1, 2, 3]

    junction = detection.spots_in_frame(0, JUNCTION)[0]
    assert junction.name == "J1"
    assert junction.quality == 2.0 and junction.radius == 1.0
    assert junction.position == (25.0, 19.75, 0.0)


def test_junction_map_and_branch_length():
    detection = detect_key_points(growing_branch_movie(), num_workers=1)
    for frame in range(6):
        junction = detection.spots_in_frame(frame, JUNCTION)[0]
        for spot in detection.spots_in_frame(frame, END_POINT):
            assert detection.junction_map[spot.id] == junction.id
            assert spot.quality == 1.0

    tip = detection.spots_in_frame(2, END_POINT)[0]
    assert tip.position == (25.0, 13.0, 0.0)
    assert tip.features[BRANCH_LENGTH] == 5.0


def test_vertex_spot_round_trip():
    detection = detect_key_points(patching_movie(), num_workers=2)
    for spot in detection.iter_spots():
        vertex = detection.vertex_for(spot)
        assert vertex is not None
        assert detection.spot_for(spot.frame, vertex) is spot


def test_calibration():
    calibration = Calibration(pixel_width=0.5, pixel_height=0.25, frame_interval=2.0, origin=(10, 0, 0))
    detection = detect_key_points(growing_branch_movie(), calibration=calibration, num_workers=1)
    tip = detection.spots_in_frame(3, END_POINT)[0]

    assert tip.position == ((10 + 25) * 0.5, 12 * 0.25, 0.0)
    assert tip.t == 6.0
    # Branch length from row 12 down to row 18 along y
    assert tip.features[BRANCH_LENGTH] == 6 * 0.25


def test_parallel_matches_sequential():
    movie = mixed_movie()
    sequential = detect_key_points(movie, num_workers=1)
    parallel = detect_key_points(movie, num_workers=4)

    assert sorted(sequential.frames) == sorted(parallel.frames) == list(range(len(movie)))
    for frame in sequential.frames:
        assert sequential.graph_for(frame).signature() == parallel.graph_for(frame).signature()
        seq_spots = [(s.id, s.kind, s.position) for s in sequential.spots_in_frame(frame)]
        par_spots = [(s.id, s.kind, s.position) for s in parallel.spots_in_frame(frame)]
        assert seq_spots == par_spots
    assert sequential.junction_map == parallel.junction_map


def test_progress_is_monotonic():
    calls = []
    detect_key_points(mixed_movie(), num_workers=3, progress=lambda done, total: calls.append((done, total)))
    assert [done for done, _ in calls] == list(range(1, 11))
    assert all(total == 10 for _, total in calls)


def test_failing_frame_does_not_abort_the_others(monkeypatch):
    real_analyze_frame = detection_module.analyze_frame

    def analyze_frame(mask, spacing=None):
        # Frame 0 is the only frame whose growing branch does not reach row 14
        if not mask[14, 25]:
            raise RuntimeError("corrupted frame")
        return real_analyze_frame(mask, spacing)

    monkeypatch.setattr(detection_module, "analyze_frame", analyze_frame)
    calls = []
    detection = detect_key_points(growing_branch_movie(), num_workers=3,
                                  progress=lambda done, total: calls.append((done, total)))

    assert detection.failed_frames == [0]
    assert sorted(detection.frames) == [1, 2, 3, 4, 5]
    assert detection.spots_in_frame(0) == []
    # Global ids restart from the first frame that was merged
    assert [s.id for s in detection.spots_in_frame(1)] == [0, 1, 2, 3]
    assert [s.frame for s in detection.iter_spots()] == sorted(s.frame for s in detection.iter_spots())
    assert calls[-1] == (6, 6)
    assert [done for done, _ in calls] == list(range(1, 7))


def test_read_only_movie():
    movie = growing_branch_movie()
    movie.setflags(write=False)
    detection = detect_key_points(movie, num_workers=2)
    assert detection.failed_frames == []
    assert len(detection.spots) == 24


def test_missing_channel_fails_fast():
    try:
        detect_key_points(growing_branch_movie(), settings=DetectorSettings(skeleton_channel=2))
    except ConfigurationError as e:
        print(f"Got expected error: {e}")
        assert "only has 1 channels" in str(e)
    else:
        raise AssertionError("Out-of-range skeleton channel should fail")


def test_bad_layout_fails_fast():
    try:
        detect_key_points(np.zeros((4, 8, 8), dtype=np.uint8))
    except ConfigurationError as e:
        print(f"Got expected error: {e}")
    else:
        raise AssertionError("3D array should be rejected as a movie")


def test_skeletonize_thick_mask():
    thick = np.zeros((1, 1, 30, 50), dtype=np.uint8)
    thick[0, 0, 19:22, 5:45] = 1
    thick[0, 0, 8:20, 24:27] = 1
    detection = detect_key_points(thick, settings=DetectorSettings(skeletonize=True), num_workers=1)

    assert len(detection.spots_in_frame(0, JUNCTION)) >= 1
    assert len(detection.spots_in_frame(0, END_POINT)) >= 3


if __name__ == "__main__":
    test_spots_and_global_ids()
    test_junction_map_and_branch_length()
    test_vertex_spot_round_trip()
    test_calibration()
    test_parallel_matches_sequential()
    test_progress_is_monotonic()
    with pytest.MonkeyPatch.context() as monkeypatch:
        test_failing_frame_does_not_abort_the_others(monkeypatch)
    test_read_only_movie()
    test_missing_channel_fails_fast()
    test_bad_layout_fails_fast()
    test_skeletonize_thick_mask()
    print("✓ All detection tests passed")
