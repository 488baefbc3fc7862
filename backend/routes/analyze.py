"""Pipeline run endpoint."""

import numpy as np
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from dendrite_dynamics.detection import ConfigurationError
from dendrite_dynamics.pipeline import run_pipeline
from dendrite_dynamics.schemas import PipelineSettings, AnalysisSummary
from storage import find_session_dir, save_result, MOVIE_FILENAME

router = APIRouter()


class AnalyzeRequest(BaseModel):
    session_id: str
    settings: PipelineSettings = Field(default_factory=PipelineSettings)


class AnalyzeResponse(BaseModel):
    session_id: str
    summary: AnalysisSummary
    log_file: str | None = None


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(req: AnalyzeRequest):
    """Run the dendrite dynamics pipeline on an imported movie."""
    session_dir = find_session_dir(req.session_id)
    movie_path = session_dir / MOVIE_FILENAME if session_dir is not None else None
    if movie_path is None or not movie_path.exists():
        raise HTTPException(
            status_code=404,
            detail=f"Movie not found for session {req.session_id}. Please import a movie first."
        )

    movie = np.load(movie_path, allow_pickle=False)
    try:
        result = run_pipeline(movie, req.settings, log_dir=str(session_dir))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to analyze movie: {e}")

    save_result(req.session_id, {
        'summary': result.summary.model_dump(),
        'spots': [s.model_dump() for s in result.spot_records()],
        'tracks': [t.model_dump() for t in result.track_records()],
    })

    return AnalyzeResponse(
        session_id=req.session_id,
        summary=result.summary,
        log_file=result.log_file,
    )
