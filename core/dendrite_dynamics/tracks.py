"""Tracks: frame-ordered chains of linked spots of one kind."""

from typing import List, Dict, Optional, Any, Tuple
from dataclasses import dataclass, field
import logging

import networkx as nx

from .detection import Spot, END_POINT, JUNCTION, BRANCH_LENGTH, JUNCTION_ID

logger = logging.getLogger(__name__)

# Track feature keys
N_INCORRECT_IDS = "N_INCORRECT_IDS"

TRACK_NAME_PREFIX = {END_POINT: "Branch", JUNCTION: "Junction"}


@dataclass(eq=False)
class Track:
    """
    Spots of one object over time, strictly increasing in frame.

    branch_lengths and junction_ids hold one entry per spot. They start as
    the raw observations and may be overwritten by patch correction.
    """
    id: int
    kind: str
    spots: List[Spot]
    name: str = ""
    branch_lengths: List[Optional[float]] = field(default_factory=list)
    junction_ids: List[Optional[int]] = field(default_factory=list)
    n_incorrect_ids: int = 0
    features: Dict[str, Any] = field(default_factory=dict)
    edge_features: Dict[Tuple[int, int], Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        frames = self.frames
        for previous, current in zip(frames, frames[1:]):
            if current <= previous:
                raise ValueError(
                    f"Track {self.id}: spots must be strictly increasing in frame, "
                    f"got frame {current} after {previous}"
                )
        if not self.name:
            self.name = f"{TRACK_NAME_PREFIX.get(self.kind, 'Track')}_{self.id}"
        if not self.branch_lengths and not self.junction_ids:
            self.reset_correction_state()

    def reset_correction_state(self) -> None:
        """Set the correction state back to the raw spot observations."""
        self.branch_lengths = [s.features.get(BRANCH_LENGTH) for s in self.spots]
        self.junction_ids = [s.features.get(JUNCTION_ID) for s in self.spots]
        self.n_incorrect_ids = 0

    @property
    def frames(self) -> List[int]:
        return [s.frame for s in self.spots]

    @property
    def spot_ids(self) -> List[int]:
        return [s.id for s in self.spots]

    def links(self) -> List[Tuple[Spot, Spot]]:
        """Consecutive (source, target) spot pairs."""
        return list(zip(self.spots, self.spots[1:]))

    def __len__(self) -> int:
        return len(self.spots)

    def __repr__(self) -> str:
        return f"Track-{self.id}_{self.name}_N{len(self.spots)}"


def build_tracks(
    link_graph: nx.Graph,
    spots: Dict[int, Spot],
    kind: Optional[str] = None
) -> List[Track]:
    """
    Turn the connected components of a link graph into tracks.

    Components with fewer than 2 spots are lone spots, not tracks. Track
    ids start at 0 and follow (first frame, first spot id) order, so they
    do not depend on graph iteration order.

    Args:
        link_graph: Graph over spot ids from link_spots
        spots: Spot lookup by id
        kind: Kind given to the tracks (default: kind of the first spot)

    Returns:
        List of tracks sorted by id

    Raises:
        ValueError: if a component holds two spots in the same frame
    """
    chains = []
    for component in nx.connected_components(link_graph):
        if len(component) < 2:
            continue
        chain = sorted((spots[i] for i in component), key=lambda s: (s.frame, s.id))
        chains.append(chain)
    chains.sort(key=lambda chain: (chain[0].frame, chain[0].id))

    tracks = [
        Track(id=i, kind=kind or chain[0].kind, spots=chain)
        for i, chain in enumerate(chains)
    ]
    logger.debug("build_tracks: %d tracks from %d spots", len(tracks), link_graph.number_of_nodes())
    return tracks


def lone_spots(link_graph: nx.Graph, spots: Dict[int, Spot]) -> List[Spot]:
    """Spots not linked to any other spot."""
    return [spots[i] for i in sorted(link_graph.nodes) if link_graph.degree(i) == 0]


def track_id_map(tracks: List[Track]) -> Dict[int, int]:
    """Lookup from spot id to the id of the track holding it."""
    return {spot.id: track.id for track in tracks for spot in track.spots}
