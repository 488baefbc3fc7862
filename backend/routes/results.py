"""Track and spot table endpoints."""

from typing import Literal
from fastapi import APIRouter, HTTPException
from dendrite_dynamics.schemas import SpotRecord, TrackRecord, AnalysisSummary
from storage import load_result

router = APIRouter()


def get_result(session_id: str) -> dict:
    result = load_result(session_id)
    if result is None:
        raise HTTPException(
            status_code=404,
            detail=f"No analysis found for session {session_id}. Please run the analysis first."
        )
    return result


@router.get("/summary/{session_id}", response_model=AnalysisSummary)
async def get_summary(session_id: str):
    return get_result(session_id)['summary']


@router.get("/tracks/{session_id}", response_model=list[TrackRecord])
async def get_tracks(session_id: str, kind: Literal["END_POINT", "JUNCTION"] | None = None):
    """Tracks of a session, optionally only end-point or junction tracks."""
    tracks = get_result(session_id)['tracks']
    return [t for t in tracks if kind is None or t['kind'] == kind]


@router.get("/spots/{session_id}", response_model=list[SpotRecord])
async def get_spots(session_id: str, frame: int | None = None):
    spots = get_result(session_id)['spots']
    return [s for s in spots if frame is None or s['frame'] == frame]
