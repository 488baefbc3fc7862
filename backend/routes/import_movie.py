"""Skeleton movie import endpoint."""

import io
import uuid
import numpy as np
from fastapi import APIRouter, UploadFile, File, HTTPException
from pydantic import BaseModel
from storage import get_session_dir, cleanup_session, MOVIE_FILENAME

router = APIRouter()


class ImportResponse(BaseModel):
    session_id: str
    shape: list[int]
    n_frames: int
    n_channels: int
    ndim: int


@router.post("/import-movie", response_model=ImportResponse)
async def import_movie(file: UploadFile = File(...)):
    """Import a skeleton movie saved as .npy, shaped (T, C, Y, X) or (T, C, Z, Y, X)."""
    content = await file.read()
    try:
        movie = np.load(io.BytesIO(content), allow_pickle=False)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Failed to read movie: {e}")

    if movie.ndim not in (4, 5):
        raise HTTPException(
            status_code=400,
            detail=f"Movie must have shape (T, C, Y, X) or (T, C, Z, Y, X), got {list(movie.shape)}"
        )

    session_id = str(uuid.uuid4())
    session_dir = get_session_dir(session_id)
    try:
        np.save(session_dir / MOVIE_FILENAME, movie)
    except OSError as e:
        cleanup_session(session_id)
        raise HTTPException(status_code=500, detail=f"Failed to store movie: {e}")

    return ImportResponse(
        session_id=session_id,
        shape=list(movie.shape),
        n_frames=movie.shape[0],
        n_channels=movie.shape[1],
        ndim=movie.ndim - 2,
    )
