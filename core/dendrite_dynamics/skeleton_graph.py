"""Per-frame skeleton graph: junctions and end-points joined by branches."""

from typing import List, Dict, Tuple, Optional, Sequence
from dataclasses import dataclass, field
import logging

import networkx as nx
import numpy as np

from .voxels import Junction, tag_skeleton, cluster_junctions, tag_counts
from .branches import Branch, JunctionLink, BranchWalker, branch_summary

logger = logging.getLogger(__name__)

JUNCTION_VERTEX = "junction"
END_POINT_VERTEX = "end-point"


@dataclass
class SkeletonGraph:
    """
    Topological graph of one frame.

    Vertices are integers. Each vertex carries 'kind' (junction or
    end-point), 'voxel' and 'position' (voxel coordinates, array order);
    junction vertices also carry 'junction_id' and 'size'. Edges carry the
    walked 'length'. The two lookup tables relate vertices to the local
    index of the spot created from them; they are indices, not state.
    """
    graph: nx.Graph = field(default_factory=nx.Graph)
    vertex_to_spot: Dict[int, int] = field(default_factory=dict)
    spot_to_vertex: Dict[int, int] = field(default_factory=dict)

    def register_spot(self, vertex: int, spot_index: int) -> None:
        self.vertex_to_spot[vertex] = spot_index
        self.spot_to_vertex[spot_index] = vertex

    def kind(self, vertex: int) -> str:
        return self.graph.nodes[vertex]['kind']

    def junction_vertices(self) -> List[int]:
        return [v for v, kind in self.graph.nodes(data='kind') if kind == JUNCTION_VERTEX]

    def end_point_vertices(self) -> List[int]:
        return [v for v, kind in self.graph.nodes(data='kind') if kind == END_POINT_VERTEX]

    def edge_length(self, u: int, v: int) -> float:
        return self.graph.edges[u, v]['length']

    def governing_vertex(self, end_point: int) -> Optional[int]:
        """Opposite vertex of an end-point's single branch, if any."""
        neighbors = list(self.graph.neighbors(end_point))
        if len(neighbors) != 1:
            return None
        return neighbors[0]

    def signature(self) -> Tuple:
        """Hashable description of the graph, independent of vertex numbering."""
        nodes = sorted(
            (data['kind'], tuple(data['voxel'])) for _, data in self.graph.nodes(data=True)
        )
        edges = sorted(
            tuple(sorted((tuple(self.graph.nodes[u]['voxel']), tuple(self.graph.nodes[v]['voxel']))))
            + (round(length, 9),)
            for u, v, length in self.graph.edges(data='length')
        )
        return tuple(nodes), tuple(edges)


@dataclass
class FrameAnalysis:
    """Everything extracted from one skeleton frame."""
    tags: np.ndarray
    junctions: List[Junction]
    branches: List[Branch]
    links: List[JunctionLink]
    skeleton: SkeletonGraph
    n_dropped: int = 0


def _add_edge(graph: nx.Graph, u: int, v: int, length: float) -> None:
    # Two chains joining the same pair of vertices: keep the shorter one
    if graph.has_edge(u, v):
        if length < graph.edges[u, v]['length']:
            graph.edges[u, v]['length'] = length
        return
    graph.add_edge(u, v, length=length)


def build_skeleton_graph(
    junctions: List[Junction],
    branches: List[Branch],
    links: List[JunctionLink]
) -> SkeletonGraph:
    """
    Build the frame graph from junctions, end-point branches and links.

    Junction vertices are numbered first (in junction id order), then one
    vertex per end-point in branch order. A two-tip segment adds both of its
    end-points, joined by a single edge.
    """
    skeleton = SkeletonGraph()
    graph = skeleton.graph

    junction_vertex: Dict[int, int] = {}
    for junction in junctions:
        vertex = graph.number_of_nodes()
        graph.add_node(
            vertex,
            kind=JUNCTION_VERTEX,
            voxel=junction.pixel,
            position=junction.centroid,
            junction_id=junction.id,
            size=junction.size,
        )
        junction_vertex[junction.id] = vertex

    for branch in branches:
        tip = graph.number_of_nodes()
        graph.add_node(tip, kind=END_POINT_VERTEX, voxel=branch.end_point,
                       position=tuple(float(v) for v in branch.end_point))
        if branch.junction is not None:
            _add_edge(graph, tip, junction_vertex[branch.junction.id], branch.length)
        else:
            other = graph.number_of_nodes()
            graph.add_node(other, kind=END_POINT_VERTEX, voxel=branch.junction_point,
                           position=tuple(float(v) for v in branch.junction_point))
            _add_edge(graph, tip, other, branch.length)

    for link in links:
        _add_edge(graph, junction_vertex[link.source.id], junction_vertex[link.target.id], link.length)

    return skeleton


def analyze_frame(mask: np.ndarray, spacing: Optional[Sequence[float]] = None) -> FrameAnalysis:
    """
    Extract the topology of one binary skeleton frame.

    Runs voxel tagging, junction clustering and branch walking, then builds
    the frame graph.

    Args:
        mask: 2D or 3D binary skeleton
        spacing: Physical voxel size per array axis (default: 1)

    Returns:
        FrameAnalysis with the tagged grid, entities and graph
    """
    tags = tag_skeleton(mask)
    counts = tag_counts(tags)
    junctions, junction_labels = cluster_junctions(tags)
    walker = BranchWalker(tags, junctions, junction_labels, spacing)
    branches = walker.process()
    links = walker.link_junctions()
    skeleton = build_skeleton_graph(junctions, branches, links)

    logger.debug(
        "analyze_frame: %d end-point voxels, %d slab voxels, %d junction voxels -> "
        "%d junctions, %s, %d dropped, %d junction links, graph %d vertices / %d edges",
        counts['end_point'], counts['slab'], counts['junction'],
        len(junctions), branch_summary(branches), walker.n_dropped, len(links),
        skeleton.graph.number_of_nodes(), skeleton.graph.number_of_edges()
    )
    return FrameAnalysis(tags, junctions, branches, links, skeleton, walker.n_dropped)
