#!/usr/bin/env python3
"""Test junction id assignment, growth and travel features and border pruning."""

import math

from dendrite_dynamics.detection import Spot, detect_key_points, END_POINT, JUNCTION, BRANCH_LENGTH, JUNCTION_ID
from dendrite_dynamics.features import (
    assign_junction_ids, compute_growth_features, compute_branch_travel,
    prune_border_tracks, roi_for,
    GROWTH, GROWTH_PHASE, GROWTH_ANGLE, GROWING, SHRINKING, STATIC,
    ACCUMULATIVE_BRANCH_DISTANCE, NET_BRANCH_DISTANCE,
)
from dendrite_dynamics.schemas import Calibration
from dendrite_dynamics.tracks import Track
from generate_synthetic_movie import growing_branch_movie


def make_track(lengths, first_frame=0, positions=None, track_id=0):
    spots = []
    for i, length in enumerate(lengths):
        position = positions[i] if positions else (10.0, 10.0 - i, 0.0)
        spot = Spot(id=i, frame=first_frame + i, local_index=0, kind=END_POINT,
                    position=position, t=float(first_frame + i))
        spot.features[BRANCH_LENGTH] = length
        spots.append(spot)
    return Track(id=track_id, kind=END_POINT, spots=spots)


def test_assign_junction_ids():
    detection = detect_key_points(growing_branch_movie(), num_workers=1)
    # Junction spots of frames 0-3 form track 7, the rest is untracked
    junction_track_of = {s.id: 7 for s in detection.iter_spots(JUNCTION) if s.frame < 4}

    n_assigned = assign_junction_ids(detection, junction_track_of)

    assert n_assigned == 12
    for spot in detection.iter_spots(END_POINT):
        if spot.frame < 4:
            assert spot.features[JUNCTION_ID] == 7
            assert spot.name == "->7"
        else:
            assert spot.features[JUNCTION_ID] is None
            assert spot.name == "no junction"


def test_growth_features():
    track = make_track([3.0, 4.0, 4.0, 2.0])
    compute_growth_features(track)
    edges = [track.edge_features[(s.id, t.id)] for s, t in track.links()]

    assert [e[GROWTH] for e in edges] == [1.0, 0.0, -2.0]
    assert [e[GROWTH_PHASE] for e in edges] == [GROWING, STATIC, SHRINKING]
    # Straight motion: the first link has no reference direction, later ones are aligned
    angles = [e[GROWTH_ANGLE] for e in edges]
    assert math.isclose(angles[0], math.pi / 2)
    assert angles[1:] == [0.0, 0.0]


def test_growth_angle_of_a_turn():
    positions = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (1.0, 1.0, 0.0)]
    track = make_track([1.0, 2.0, 3.0], positions=positions)
    compute_growth_features(track)
    turn = track.edge_features[(1, 2)]
    assert math.isclose(turn[GROWTH_ANGLE], math.pi / 2)


def test_missing_length_has_no_growth():
    track = make_track([3.0, None])
    compute_growth_features(track)
    edge = track.edge_features[(0, 1)]
    assert edge[GROWTH] is None and edge[GROWTH_PHASE] is None


def test_branch_travel_rules():
    # There from start to end
    track = make_track([2.0, 5.0, 3.0])
    assert compute_branch_travel(track, 0, 2) == (5.0, 1.0)
    assert track.features[ACCUMULATIVE_BRANCH_DISTANCE] == 5.0
    assert track.features[NET_BRANCH_DISTANCE] == 1.0

    # There at the start, gone before the end: shrinks back to 0
    assert compute_branch_travel(make_track([2.0, 5.0, 3.0]), 0, 5) == (8.0, -2.0)

    # Appears after the start: grows from 0
    assert compute_branch_travel(make_track([2.0, 5.0, 3.0], first_frame=1), 0, 3) == (7.0, 3.0)

    # Appears and disappears
    assert compute_branch_travel(make_track([2.0, 5.0, 3.0], first_frame=1), 0, 5) == (10.0, 0.0)

    assert compute_branch_travel(make_track([2.0, None]), 0, 1) == (None, None)


def test_prune_border_tracks():
    calibration = Calibration(pixel_width=0.5, pixel_height=0.5)
    roi = roi_for((1, 1, 20, 30), calibration)
    assert roi == ((0, 0), (29, 19))

    inside = make_track([1.0, 1.0], positions=[(5.0, 5.0, 0.0), (5.5, 5.0, 0.0)])
    touching = make_track([1.0, 1.0], positions=[(5.0, 5.0, 0.0), (14.5, 5.0, 0.0)], track_id=1)
    lone_inside = Spot(id=10, frame=0, local_index=0, kind=END_POINT, position=(3.0, 3.0, 0.0), t=0.0)
    lone_outside = Spot(id=11, frame=0, local_index=0, kind=END_POINT, position=(3.0, 0.0, 0.0), t=0.0)

    tracks, lone = prune_border_tracks([inside, touching], [lone_inside, lone_outside], roi, calibration)
    assert tracks == [inside]
    assert lone == [lone_inside]


if __name__ == "__main__":
    test_assign_junction_ids()
    test_growth_features()
    test_growth_angle_of_a_turn()
    test_missing_length_has_no_growth()
    test_branch_travel_rules()
    test_prune_border_tracks()
    print("✓ All feature tests passed")
