"""FastAPI service running the dendrite dynamics pipeline on uploaded skeleton movies."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routes import import_movie, analyze, results

API_TITLE = "Dendrite Dynamics Tracker API"
API_VERSION = "0.1.0"

app = FastAPI(title=API_TITLE, version=API_VERSION)

# The viewer is served separately during development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Upload a movie, run the analysis, then read the spot and track tables
app.include_router(import_movie.router, prefix="/api", tags=["import"])
app.include_router(analyze.router, prefix="/api", tags=["analysis"])
app.include_router(results.router, prefix="/api", tags=["results"])


@app.get("/")
async def root():
    """Service name and the endpoints of the analysis workflow."""
    return {
        "message": API_TITLE,
        "version": API_VERSION,
        "endpoints": [
            "POST /api/import-movie",
            "POST /api/analyze",
            "GET /api/summary/{session_id}",
            "GET /api/tracks/{session_id}",
            "GET /api/spots/{session_id}",
        ],
    }


@app.get("/health")
async def health():
    return {"status": "ok"}
