#!/usr/bin/env python3
"""Test the linking cost model, the assignment solver adapter and spot linking."""

import math
import sys

import numpy as np

from dendrite_dynamics.detection import Spot, ConfigurationError, END_POINT, JUNCTION_ID
from dendrite_dynamics.linking import LinkingCostModel, solve_assignment, link_spots
from dendrite_dynamics.schemas import TrackerSettings
from dendrite_dynamics.tracks import build_tracks


def make_spot(spot_id, frame, x, y=0.0, junction_id=None):
    spot = Spot(id=spot_id, frame=frame, local_index=0, kind=END_POINT, position=(x, y, 0.0), t=float(frame))
    if junction_id is not None:
        spot.features[JUNCTION_ID] = junction_id
    return spot


def test_cost_gating():
    source = make_spot(0, 0, 0.0)
    for max_distance in (0.0, 0.5, 1.0, 2.5, 10.0):
        model = LinkingCostModel(max_distance)
        for d in (0.25, 1.0, 2.0, 3.0, 12.0):
            cost = model(source, make_spot(1, 1, d))
            if d > max_distance:
                assert cost == math.inf, (max_distance, d)
            else:
                assert cost == d * d


def test_cost_symmetry():
    model = LinkingCostModel(5.0)
    a = make_spot(0, 0, 1.0, 2.0, junction_id=3)
    b = make_spot(1, 1, 2.5, 0.5, junction_id=4)
    assert model(a, b) == model(b, a)
    c = make_spot(2, 1, 2.5, 0.5)
    assert model(a, c) == model(c, a)


def test_zero_distance_is_not_free():
    model = LinkingCostModel(1.0)
    cost = model(make_spot(0, 0, 1.0), make_spot(1, 1, 1.0))
    assert cost == sys.float_info.min
    assert cost > 0


def test_matched_junction_bias():
    model = LinkingCostModel(5.0, matched_cost_factor=10.0)
    source = make_spot(0, 0, 0.0, junction_id=1)
    assert model(source, make_spot(1, 1, 2.0, junction_id=1)) == 0.4
    assert model(source, make_spot(2, 1, 2.0, junction_id=2)) == 4.0
    assert model(source, make_spot(3, 1, 2.0)) == 4.0
    # Gating does not depend on identity
    assert model(source, make_spot(4, 1, 6.0, junction_id=1)) == math.inf


def test_invalid_cost_settings():
    for kwargs in ({'max_linking_distance': 1.0, 'matched_cost_factor': 1.0},
                   {'max_linking_distance': -1.0}):
        try:
            LinkingCostModel(**kwargs)
        except ConfigurationError as e:
            print(f"Got expected error: {e}")
        else:
            raise AssertionError(f"{kwargs} should be rejected")


def test_solve_assignment():
    costs = np.array([
        [1.0, 4.0],
        [4.0, 1.0],
    ])
    assert sorted(solve_assignment(costs)) == [(0, 0), (1, 1)]

    costs = np.array([
        [np.inf, 1.0],
        [np.inf, np.inf],
    ])
    assert solve_assignment(costs) == [(0, 1)]
    assert solve_assignment(np.full((2, 3), np.inf)) == []
    assert solve_assignment(np.zeros((0, 3))) == []


def test_identity_bias_changes_the_link():
    model = LinkingCostModel(5.0, matched_cost_factor=10.0)
    source = make_spot(0, 0, 0.0, junction_id=1)
    near_other = make_spot(1, 1, 1.0, junction_id=2)
    far_same = make_spot(2, 1, 1.2, junction_id=1)
    graph = link_spots({0: [source], 1: [near_other, far_same]}, TrackerSettings(), cost_model=model)

    assert graph.has_edge(0, 2)
    assert not graph.has_edge(0, 1)


def test_frame_to_frame_linking():
    spots_by_frame = {
        f: [make_spot(2 * f, f, 0.5 * f), make_spot(2 * f + 1, f, 20.0 + 0.5 * f)]
        for f in range(4)
    }
    graph = link_spots(spots_by_frame, TrackerSettings(max_linking_distance=2.0))
    spots = {s.id: s for frame_spots in spots_by_frame.values() for s in frame_spots}
    tracks = build_tracks(graph, spots)

    assert len(tracks) == 2
    assert tracks[0].spot_ids == [0, 2, 4, 6]
    assert tracks[1].spot_ids == [1, 3, 5, 7]
    assert tracks[0].name == "Branch_0"


def test_gap_closing_bridges_missing_frame():
    spots_by_frame = {
        0: [make_spot(0, 0, 0.0)],
        1: [make_spot(1, 1, 1.0)],
        2: [],
        3: [make_spot(2, 3, 2.0)],
        4: [make_spot(3, 4, 3.0)],
    }
    spots = {s.id: s for frame_spots in spots_by_frame.values() for s in frame_spots}

    closed = link_spots(spots_by_frame, TrackerSettings(max_linking_distance=2.0, max_frame_gap=2))
    tracks = build_tracks(closed, spots)
    assert len(tracks) == 1
    assert tracks[0].frames == [0, 1, 3, 4]

    open_ = link_spots(spots_by_frame, TrackerSettings(max_linking_distance=2.0, allow_gap_closing=False))
    assert len(build_tracks(open_, spots)) == 2

    too_far = link_spots(spots_by_frame, TrackerSettings(max_linking_distance=2.0, gap_closing_max_distance=0.5))
    assert len(build_tracks(too_far, spots)) == 2


if __name__ == "__main__":
    test_cost_gating()
    test_cost_symmetry()
    test_zero_distance_is_not_free()
    test_matched_junction_bias()
    test_invalid_cost_settings()
    test_solve_assignment()
    test_identity_bias_changes_the_link()
    test_frame_to_frame_linking()
    test_gap_closing_bridges_missing_frame()
    print("✓ All linking tests passed")
