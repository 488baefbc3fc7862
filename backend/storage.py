"""Session storage: one temporary workspace per uploaded movie."""

import json
import tempfile
import shutil
from pathlib import Path
from typing import Dict, Optional, Any

# Global session storage
_sessions: Dict[str, Path] = {}

MOVIE_FILENAME = "movie.npy"
RESULT_FILENAME = "analysis.json"


def get_session_dir(session_id: str) -> Path:
    """Get or create temp directory for session."""
    if session_id not in _sessions:
        temp_dir = Path(tempfile.mkdtemp(prefix=f"dendrite_{session_id}_"))
        _sessions[session_id] = temp_dir
    return _sessions[session_id]


def find_session_dir(session_id: str) -> Optional[Path]:
    """Directory of an existing session, None if the session is unknown."""
    return _sessions.get(session_id)


def save_result(session_id: str, result: Dict[str, Any]) -> Path:
    result_path = get_session_dir(session_id) / RESULT_FILENAME
    with open(result_path, "w") as f:
        json.dump(result, f, indent=2)
    return result_path


def load_result(session_id: str) -> Optional[Dict[str, Any]]:
    """Stored analysis of a session, None if it was not analyzed yet."""
    session_dir = find_session_dir(session_id)
    if session_dir is None:
        return None
    result_path = session_dir / RESULT_FILENAME
    if not result_path.exists():
        return None
    with open(result_path, "r") as f:
        return json.load(f)


def cleanup_session(session_id: str) -> None:
    """Clean up session directory."""
    if session_id in _sessions:
        shutil.rmtree(_sessions[session_id], ignore_errors=True)
        del _sessions[session_id]
