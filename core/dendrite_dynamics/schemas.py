"""Pydantic models for settings and exported results."""

from pydantic import BaseModel, Field
from typing import Literal, Optional, List, Dict, Tuple


class Calibration(BaseModel):
    """Physical calibration of the movie."""
    pixel_width: float = Field(1.0, gt=0)
    pixel_height: float = Field(1.0, gt=0)
    pixel_depth: float = Field(1.0, gt=0)
    frame_interval: float = Field(1.0, gt=0)
    space_units: str = "pixel"
    time_units: str = "frame"
    origin: Tuple[int, int, int] = (0, 0, 0)  # ROI offset (x, y, z) in voxels

    def spacing(self, ndim: int) -> Tuple[float, ...]:
        """Voxel size in array axis order: (y, x) or (z, y, x)."""
        if ndim == 2:
            return (self.pixel_height, self.pixel_width)
        return (self.pixel_depth, self.pixel_height, self.pixel_width)

    def to_physical(self, voxel_position) -> Tuple[float, float, float]:
        """Convert an array-order voxel position to physical (x, y, z)."""
        if len(voxel_position) == 2:
            z, (y, x) = 0.0, voxel_position
        else:
            z, y, x = voxel_position
        return (
            (self.origin[0] + x) * self.pixel_width,
            (self.origin[1] + y) * self.pixel_height,
            (self.origin[2] + z) * self.pixel_depth,
        )


class DetectorSettings(BaseModel):
    """Key-point detection settings."""
    skeleton_channel: int = Field(1, ge=1)  # 1-based channel holding the skeleton
    skeletonize: bool = False  # thin the mask first when it is not a skeleton yet


class TrackerSettings(BaseModel):
    """Settings handed to the assignment solver."""
    max_linking_distance: float = Field(5.0, ge=0)
    allow_gap_closing: bool = True
    gap_closing_max_distance: float = Field(5.0, ge=0)
    max_frame_gap: int = Field(2, ge=1)
    matched_cost_factor: float = Field(10.0, gt=1)
    alternative_linking_cost_factor: float = Field(1.05, gt=1)


class PipelineSettings(BaseModel):
    """Full dendrite dynamics analysis settings."""
    calibration: Calibration = Field(default_factory=Calibration)
    detector: DetectorSettings = Field(default_factory=DetectorSettings)
    junction_tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    end_point_tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    prune_border_dendrites: bool = True
    # ((xmin, ymin), (xmax, ymax)) in pixels, default: the whole frame
    roi: Optional[Tuple[Tuple[int, int], Tuple[int, int]]] = None
    patch_tracks: bool = True
    num_workers: Optional[int] = Field(None, ge=1)


# Result schemas
class SpotRecord(BaseModel):
    """One detected key-point."""
    id: int
    frame: int
    kind: Literal["END_POINT", "JUNCTION"]
    x: float
    y: float
    z: float
    t: float
    name: str
    branch_length: Optional[float] = None
    junction_id: Optional[int] = None


class TrackRecord(BaseModel):
    """One end-point or junction track with its time series."""
    id: int
    name: str
    kind: Literal["END_POINT", "JUNCTION"]
    spot_ids: List[int]
    frames: List[int]
    branch_lengths: List[Optional[float]]
    junction_ids: List[Optional[int]]
    n_incorrect_ids: int = 0
    features: Dict[str, Optional[float]] = Field(default_factory=dict)


class AnalysisSummary(BaseModel):
    """Summary of one pipeline run."""
    n_frames: int
    n_junction_spots: int
    n_end_point_spots: int
    n_junction_tracks: int
    n_end_point_tracks: int
    n_pruned_tracks: int = 0
    n_dropped_branches: int = 0
    failed_frames: List[int] = Field(default_factory=list)
    timings: Dict[str, float] = Field(default_factory=dict)
