"""Full dendrite dynamics pipeline: detection, tracking, patch correction, features."""

from typing import Dict, Any, List, Optional, Callable
from dataclasses import dataclass, field
from pathlib import Path
from datetime import datetime
import ast
import logging
import time

import numpy as np

from .detection import (
    DetectionResults, Spot, ConfigurationError, detect_key_points,
    END_POINT, JUNCTION, BRANCH_LENGTH, JUNCTION_ID,
)
from .linking import link_spots
from .tracks import Track, build_tracks, lone_spots, track_id_map
from .patching import patch_tracks
from .features import (
    assign_junction_ids, compute_growth_features, compute_branch_travel,
    prune_border_tracks, roi_for,
)
from .schemas import PipelineSettings, SpotRecord, TrackRecord, AnalysisSummary

logger = logging.getLogger(__name__)


def load_pipeline_parameters(movie_path: str) -> Dict[str, Any]:
    """
    Load pipeline parameters from a NAME_param.txt file next to the movie, if it exists.

    Each line reads 'name = value'; blank lines and lines starting with '#'
    are skipped. Values are parsed as Python literals. Nested settings use
    dotted names, e.g. 'end_point_tracker.max_linking_distance = 3.0'.

    Args:
        movie_path: Path to the movie file

    Returns:
        Dictionary of parameter name -> value. Only includes parameters that were found in the file.
    """
    params = {}
    movie_file_path = Path(movie_path)
    param_file_path = movie_file_path.parent / f"{movie_file_path.stem}_param.txt"

    if not param_file_path.exists():
        logger.debug(f"Parameter file not found: {param_file_path}")
        return params

    logger.info(f"Loading parameters from: {param_file_path}")
    with open(param_file_path, 'r') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' not in line:
                logger.warning(f"  Ignoring line {line_num} without '=': {line}")
                continue

            name, value_str = (part.strip() for part in line.split('=', 1))
            try:
                value = ast.literal_eval(value_str)
            except (ValueError, SyntaxError) as e:
                logger.warning(f"  Failed to parse parameter on line {line_num}: {line} ({e})")
                continue
            params[name] = value
            logger.debug(f"  Loaded {name} = {value!r}")

    return params


def apply_parameter_overrides(settings: PipelineSettings, params: Dict[str, Any]) -> PipelineSettings:
    """
    Return a copy of settings with the given (dotted) parameters overridden.

    Raises:
        ConfigurationError: if a parameter name is unknown or its value invalid
    """
    if not params:
        return settings

    data = settings.model_dump()
    for name, value in params.items():
        target = data
        *parents, leaf = name.split('.')
        for parent in parents:
            if not isinstance(target.get(parent), dict):
                raise ConfigurationError(f"Unknown parameter: {name}")
            target = target[parent]
        if leaf not in target:
            raise ConfigurationError(f"Unknown parameter: {name}")
        target[leaf] = value
        logger.info(f"Using {name} = {value!r} from param file")

    try:
        return PipelineSettings(**data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid parameter value: {e}") from e


@dataclass
class PipelineResult:
    """Everything produced by one pipeline run."""
    detection: DetectionResults
    junction_tracks: List[Track]
    end_point_tracks: List[Track]
    lone_end_points: List[Spot]
    summary: AnalysisSummary
    settings: PipelineSettings
    log_file: Optional[str] = None
    timings: Dict[str, float] = field(default_factory=dict)

    def spot_records(self) -> List[SpotRecord]:
        return [spot_record(s) for s in self.detection.iter_spots()]

    def track_records(self, kind: Optional[str] = None) -> List[TrackRecord]:
        tracks = []
        if kind in (None, JUNCTION):
            tracks.extend(self.junction_tracks)
        if kind in (None, END_POINT):
            tracks.extend(self.end_point_tracks)
        return [track_record(t) for t in tracks]


def spot_record(spot: Spot) -> SpotRecord:
    x, y, z = spot.position
    return SpotRecord(
        id=spot.id,
        frame=spot.frame,
        kind=spot.kind,
        x=x, y=y, z=z,
        t=spot.t,
        name=spot.name,
        branch_length=spot.features.get(BRANCH_LENGTH),
        junction_id=spot.features.get(JUNCTION_ID),
    )


def track_record(track: Track) -> TrackRecord:
    features = {k: v for k, v in track.features.items() if v is None or isinstance(v, (int, float))}
    return TrackRecord(
        id=track.id,
        name=track.name,
        kind=track.kind,
        spot_ids=track.spot_ids,
        frames=track.frames,
        branch_lengths=track.branch_lengths,
        junction_ids=track.junction_ids,
        n_incorrect_ids=track.n_incorrect_ids,
        features=features,
    )


def _attach_log_file(movie_path: Optional[str], log_dir: Optional[str]) -> Optional[logging.FileHandler]:
    if movie_path is None and log_dir is None:
        return None
    stem = Path(movie_path).stem if movie_path else "dendrite_dynamics"
    directory = Path(log_dir) if log_dir else Path(movie_path).parent
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file_path = directory / f"{stem}_{timestamp}.log"

    file_handler = logging.FileHandler(log_file_path, mode='w', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))
    logging.getLogger().addHandler(file_handler)
    return file_handler


def run_pipeline(
    movie: np.ndarray,
    settings: Optional[PipelineSettings] = None,
    movie_path: Optional[str] = None,
    log_dir: Optional[str] = None,
    progress: Optional[Callable[[int, int], None]] = None
) -> PipelineResult:
    """
    Run the full analysis: detection → junction tracking → junction ids →
    end-point tracking → border pruning → patch correction → features.

    Args:
        movie: Skeleton movie of shape (T, C, Y, X) or (T, C, Z, Y, X)
        settings: Pipeline settings (default: PipelineSettings())
        movie_path: Path the movie was read from. Enables the NAME_param.txt
                    overrides and places the run log next to the movie.
        log_dir: Directory for the run log (overrides the movie directory)
        progress: Optional detection progress callback (frames_done, n_frames)

    Returns:
        PipelineResult

    Raises:
        ConfigurationError: if the settings or the movie layout are invalid
    """
    settings = settings or PipelineSettings()
    if movie_path is not None:
        settings = apply_parameter_overrides(settings, load_pipeline_parameters(movie_path))

    file_handler = _attach_log_file(movie_path, log_dir)
    root_logger = logging.getLogger()
    original_level = root_logger.level
    if file_handler is not None:
        root_logger.setLevel(logging.INFO)

    pipeline_start_time = time.time()
    timings: Dict[str, float] = {}
    try:
        logger.info("=" * 70)
        logger.info(f"Pipeline started for movie of shape {movie.shape}")
        if file_handler is not None:
            logger.info(f"Log file: {file_handler.baseFilename}")
        logger.info("=" * 70)

        # Step 1: Detect junctions and end-points
        logger.info("Step 1: Detecting skeleton key-points...")
        step_start = time.time()
        try:
            detection = detect_key_points(
                movie,
                settings=settings.detector,
                calibration=settings.calibration,
                num_workers=settings.num_workers,
                progress=progress,
            )
        except Exception as e:
            logger.error(f"Step 1: Failed after {time.time() - step_start:.2f}s: {e}", exc_info=True)
            raise
        timings['detection'] = time.time() - step_start
        logger.info(f"Step 1: Completed in {timings['detection']:.2f}s")

        # Step 2: Track junctions, then tag end-points with their junction track
        logger.info("Step 2: Tracking junctions...")
        step_start = time.time()
        junction_graph = link_spots(detection.spots_by_frame(JUNCTION), settings.junction_tracker)
        junction_tracks = build_tracks(junction_graph, detection.spots, JUNCTION)
        junction_track_of = track_id_map(junction_tracks)
        assign_junction_ids(detection, junction_track_of)
        timings['junction_tracking'] = time.time() - step_start
        logger.info(f"Step 2: {len(junction_tracks)} junction tracks in {timings['junction_tracking']:.2f}s")

        # Step 3: Track end-points, biased toward keeping their junction id
        logger.info("Step 3: Tracking end-points...")
        step_start = time.time()
        end_point_graph = link_spots(detection.spots_by_frame(END_POINT), settings.end_point_tracker)
        end_point_tracks = build_tracks(end_point_graph, detection.spots, END_POINT)
        lone_end_points = lone_spots(end_point_graph, detection.spots)
        timings['end_point_tracking'] = time.time() - step_start
        logger.info(f"Step 3: {len(end_point_tracks)} end-point tracks, {len(lone_end_points)} lone end-points "
                    f"in {timings['end_point_tracking']:.2f}s")

        n_pruned = 0
        if settings.prune_border_dendrites:
            # Branches running into the array edge are already dropped by the walker,
            # so only an ROI narrower than the frame can prune anything
            roi = settings.roi or roi_for(movie.shape, settings.calibration)
            kept_tracks, lone_end_points = prune_border_tracks(
                end_point_tracks, lone_end_points, roi, settings.calibration)
            n_pruned = len(end_point_tracks) - len(kept_tracks)
            end_point_tracks = kept_tracks
        else:
            logger.info("Border pruning: Skipped (disabled)")

        # Step 4: Patch correction
        if settings.patch_tracks:
            logger.info("Step 4: Patching end-point tracks...")
            step_start = time.time()
            patch_tracks(end_point_tracks, detection, junction_track_of,
                         num_workers=settings.num_workers or 1)
            timings['patching'] = time.time() - step_start
            logger.info(f"Step 4: Completed in {timings['patching']:.2f}s")
        else:
            logger.info("Step 4: Skipped (disabled)")

        # Step 5: Growth and travel features
        step_start = time.time()
        frames = [s.frame for s in detection.iter_spots(END_POINT)]
        if frames:
            min_frame, max_frame = min(frames), max(frames)
            for track in end_point_tracks:
                compute_growth_features(track)
                compute_branch_travel(track, min_frame, max_frame)
        timings['features'] = time.time() - step_start

        timings['total'] = time.time() - pipeline_start_time
        logger.info("=" * 70)
        logger.info("Pipeline Timing Summary")
        logger.info("=" * 70)
        for step, elapsed in timings.items():
            logger.info(f"{step}: {elapsed:.2f}s")
        logger.info("=" * 70)
    finally:
        if file_handler is not None:
            root_logger.removeHandler(file_handler)
            root_logger.setLevel(original_level)
            file_handler.close()

    summary = AnalysisSummary(
        n_frames=detection.n_frames,
        n_junction_spots=sum(1 for _ in detection.iter_spots(JUNCTION)),
        n_end_point_spots=sum(1 for _ in detection.iter_spots(END_POINT)),
        n_junction_tracks=len(junction_tracks),
        n_end_point_tracks=len(end_point_tracks),
        n_pruned_tracks=n_pruned,
        n_dropped_branches=detection.n_dropped_branches,
        failed_frames=detection.failed_frames,
        timings=timings,
    )

    return PipelineResult(
        detection=detection,
        junction_tracks=junction_tracks,
        end_point_tracks=end_point_tracks,
        lone_end_points=lone_end_points,
        summary=summary,
        settings=settings,
        log_file=file_handler.baseFilename if file_handler is not None else None,
        timings=timings,
    )
