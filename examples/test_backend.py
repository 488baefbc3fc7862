#!/usr/bin/env python3
"""Test the backend API: import a movie, analyze it and read the tables back."""

import io
import sys
from pathlib import Path

import numpy as np
from fastapi.testclient import TestClient

# Fallback: add ./backend to sys.path for local dev runs.
BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app import app  # noqa: E402
from generate_synthetic_movie import growing_branch_movie  # noqa: E402

client = TestClient(app)


def upload(movie: np.ndarray):
    buffer = io.BytesIO()
    np.save(buffer, movie)
    return client.post(
        "/api/import-movie",
        files={"file": ("movie.npy", buffer.getvalue(), "application/octet-stream")},
    )


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_lists_workflow():
    body = client.get("/").json()
    assert body["message"] == "Dendrite Dynamics Tracker API"
    assert "POST /api/analyze" in body["endpoints"]


def test_import_analyze_and_fetch():
    response = upload(growing_branch_movie())
    assert response.status_code == 200
    imported = response.json()
    assert imported["shape"] == [6, 1, 30, 50]
    assert imported["n_channels"] == 1 and imported["ndim"] == 2
    session_id = imported["session_id"]

    response = client.post("/api/analyze", json={"session_id": session_id})
    assert response.status_code == 200, response.text
    summary = response.json()["summary"]
    assert summary["n_end_point_tracks"] == 3
    assert summary["n_junction_tracks"] == 1

    tracks = client.get(f"/api/tracks/{session_id}", params={"kind": "END_POINT"}).json()
    assert len(tracks) == 3
    assert tracks[0]["branch_lengths"] == [3.0, 4.0, 5.0, 6.0, 7.0, 8.0]

    spots = client.get(f"/api/spots/{session_id}", params={"frame": 0}).json()
    assert len(spots) == 4

    assert client.get(f"/api/summary/{session_id}").json()["n_frames"] == 6


def test_configuration_error_is_400():
    session_id = upload(growing_branch_movie()).json()["session_id"]
    response = client.post("/api/analyze", json={
        "session_id": session_id,
        "settings": {"detector": {"skeleton_channel": 2}},
    })
    assert response.status_code == 400
    assert "channel" in response.json()["detail"]


def test_unknown_session_is_404():
    assert client.post("/api/analyze", json={"session_id": "nope"}).status_code == 404
    assert client.get("/api/tracks/nope").status_code == 404


def test_bad_movie_is_400():
    assert upload(np.zeros((8, 8), dtype=np.uint8)).status_code == 400
    response = client.post(
        "/api/import-movie",
        files={"file": ("movie.npy", b"not a numpy file", "application/octet-stream")},
    )
    assert response.status_code == 400


if __name__ == "__main__":
    test_health()
    test_root_lists_workflow()
    test_import_analyze_and_fetch()
    test_configuration_error_is_400()
    test_unknown_session_is_404()
    test_bad_movie_is_400()
    print("✓ All backend tests passed")
