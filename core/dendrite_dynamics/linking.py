"""Frame-to-frame linking of key-point spots with a LAP solver."""

from typing import List, Dict, Tuple, Optional, Callable
import logging
import sys

import networkx as nx
import numpy as np
from scipy.optimize import linear_sum_assignment

from .detection import Spot, ConfigurationError, JUNCTION_ID
from .schemas import TrackerSettings

logger = logging.getLogger(__name__)

CostFunction = Callable[[Spot, Spot], float]


class LinkingCostModel:
    """
    Squared-distance linking cost, biased toward preserving junction identity.

    Links longer than max_linking_distance are forbidden (infinite cost).
    When both spots carry the same non-null JUNCTION_ID, the cost is divided
    by matched_cost_factor. This only makes identity-preserving links
    cheaper; the solver can still pick a cheaper cross-identity link.
    """

    def __init__(self, max_linking_distance: float, matched_cost_factor: float = 10.0):
        if max_linking_distance < 0:
            raise ConfigurationError(
                f"max_linking_distance must be >= 0, got {max_linking_distance}."
            )
        if matched_cost_factor <= 1:
            raise ConfigurationError(
                f"matched_cost_factor must be > 1, got {matched_cost_factor}."
            )
        self.max_linking_distance = max_linking_distance
        self.matched_cost_factor = matched_cost_factor

    def cost(self, source: Spot, target: Spot) -> float:
        d2 = source.square_distance_to(target)
        if d2 > self.max_linking_distance * self.max_linking_distance:
            return float('inf')

        # A zero cost would be indistinguishable from "free" for the solver
        sq_dist = sys.float_info.min if d2 == 0 else d2
        source_id = source.features.get(JUNCTION_ID)
        target_id = target.features.get(JUNCTION_ID)
        if source_id is None or target_id is None or source_id != target_id:
            return sq_dist
        return sq_dist / self.matched_cost_factor

    __call__ = cost

    def __repr__(self) -> str:
        return (f"LinkingCostModel(max_linking_distance={self.max_linking_distance}, "
                f"matched_cost_factor={self.matched_cost_factor})")


def cost_matrix(sources: List[Spot], targets: List[Spot], cost_function: CostFunction) -> np.ndarray:
    """Cost of every (source, target) pair, +inf where the link is forbidden."""
    costs = np.full((len(sources), len(targets)), np.inf)
    for i, source in enumerate(sources):
        for j, target in enumerate(targets):
            costs[i, j] = cost_function(source, target)
    return costs


def solve_assignment(costs: np.ndarray, alternative_cost_factor: float = 1.05) -> List[Tuple[int, int]]:
    """
    Solve the linking LAP for a (sources x targets) cost matrix.

    The matrix is embedded in the usual square block matrix:

        | C          | alt (diag) |
        | alt (diag) | C.T        |

    where the diagonal "no link" alternatives cost alternative_cost_factor
    times the largest finite link cost, and forbidden cells are +inf.

    Args:
        costs: Link costs, +inf for forbidden links
        alternative_cost_factor: Factor applied to the max finite cost for
            the no-link alternatives

    Returns:
        List of (source index, target index) links
    """
    n_rows, n_cols = costs.shape
    if n_rows == 0 or n_cols == 0:
        return []
    finite = np.isfinite(costs)
    if not finite.any():
        return []

    alternative = alternative_cost_factor * float(costs[finite].max())
    size = n_rows + n_cols
    matrix = np.full((size, size), np.inf)
    matrix[:n_rows, :n_cols] = costs
    matrix[:n_rows, n_cols:][np.diag_indices(n_rows)] = alternative
    matrix[n_rows:, :n_cols][np.diag_indices(n_cols)] = alternative
    matrix[n_rows:, n_cols:] = costs.T

    rows, cols = linear_sum_assignment(matrix)
    return [
        (int(r), int(c)) for r, c in zip(rows, cols)
        if r < n_rows and c < n_cols and finite[r, c]
    ]


def _segments(graph: nx.Graph, spots: Dict[int, Spot]) -> List[List[Spot]]:
    """Connected chains of the link graph, each sorted by frame."""
    segments = []
    for component in nx.connected_components(graph):
        segments.append(sorted((spots[i] for i in component), key=lambda s: s.frame))
    segments.sort(key=lambda seg: (seg[0].frame, seg[0].id))
    return segments


def close_gaps(
    graph: nx.Graph,
    spots: Dict[int, Spot],
    cost_function: CostFunction,
    max_frame_gap: int,
    alternative_cost_factor: float = 1.05
) -> int:
    """
    Link segment ends to segment starts across missing frames, in place.

    A candidate bridge goes from the last spot of one segment to the first
    spot of another, 2 to max_frame_gap frames later.

    Returns:
        Number of bridges added
    """
    segments = _segments(graph, spots)
    if len(segments) < 2:
        return 0

    ends = [seg[-1] for seg in segments]
    starts = [seg[0] for seg in segments]
    costs = np.full((len(ends), len(starts)), np.inf)
    for i, end in enumerate(ends):
        for j, start in enumerate(starts):
            if i == j:
                continue
            delta = start.frame - end.frame
            if delta < 2 or delta > max_frame_gap:
                continue
            costs[i, j] = cost_function(end, start)

    links = solve_assignment(costs, alternative_cost_factor)
    for i, j in links:
        graph.add_edge(ends[i].id, starts[j].id, weight=float(costs[i, j]))
    return len(links)


def link_spots(
    spots_by_frame: Dict[int, List[Spot]],
    settings: Optional[TrackerSettings] = None,
    cost_model: Optional[LinkingCostModel] = None
) -> nx.Graph:
    """
    Link spots across frames into a graph of one-to-one links.

    Frame-to-frame links are solved between each frame and the next one.
    When gap closing is allowed, segment ends are then bridged to segment
    starts up to max_frame_gap frames later, within gap_closing_max_distance.

    Args:
        spots_by_frame: Spots to link, by frame
        settings: Tracker settings (default: TrackerSettings())
        cost_model: Frame-to-frame cost (default: built from settings)

    Returns:
        Graph over spot ids; edges carry the link cost as 'weight'
    """
    settings = settings or TrackerSettings()
    if cost_model is None:
        cost_model = LinkingCostModel(settings.max_linking_distance, settings.matched_cost_factor)

    graph = nx.Graph()
    spots: Dict[int, Spot] = {}
    for frame_spots in spots_by_frame.values():
        for spot in frame_spots:
            graph.add_node(spot.id, frame=spot.frame)
            spots[spot.id] = spot

    n_links = 0
    for frame in sorted(spots_by_frame):
        sources = spots_by_frame[frame]
        targets = spots_by_frame.get(frame + 1, [])
        if not sources or not targets:
            continue
        costs = cost_matrix(sources, targets, cost_model)
        for i, j in solve_assignment(costs, settings.alternative_linking_cost_factor):
            graph.add_edge(sources[i].id, targets[j].id, weight=float(costs[i, j]))
            n_links += 1

    n_bridges = 0
    if settings.allow_gap_closing and settings.max_frame_gap >= 2:
        gap_model = LinkingCostModel(settings.gap_closing_max_distance, cost_model.matched_cost_factor)
        n_bridges = close_gaps(graph, spots, gap_model, settings.max_frame_gap,
                               settings.alternative_linking_cost_factor)

    logger.info("link_spots: %d spots, %d frame-to-frame links, %d gap-closing links",
                len(spots), n_links, n_bridges)
    return graph
