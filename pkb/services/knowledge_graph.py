"""
In-memory knowledge graph of atomic units and their relationships.

The graph is a directed multigraph: parallel edges and self-loops are allowed,
and edges may reference unit ids that have not been added as nodes yet (the
relationship detector can run ahead of node materialisation). Only nodes added
through :meth:`KnowledgeGraph.add_node` are reported as nodes.
"""

import itertools
import threading
from collections import deque
from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Optional

import networkx as nx

from ..models.core import GraphEdge, GraphNode, Relationship
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import parse_timestamp, to_datetime

logger = get_logger(__name__)

VIS_LABEL_LENGTH = 30


class RelationshipType:
    RELATED = 'related'
    SIMILAR = 'similar'
    CONTRADICTS = 'contradicts'
    EXTENDS = 'extends'
    REFERENCES = 'references'
    DEPENDS_ON = 'depends_on'
    PART_OF = 'part_of'
    FOLLOWS = 'follows'
    PRECEDES = 'precedes'
    SAME_CATEGORY = 'same_category'
    SAME_TOPIC = 'same_topic'


class KnowledgeGraph:
    """Directed multigraph of knowledge units with traversal and statistics."""

    def __init__(self) -> None:
        self._g = nx.MultiDiGraph()
        self._edges: Dict[str, GraphEdge] = {}
        self._seq = itertools.count()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_node(self, node: GraphNode) -> None:
        """Add a node, overwriting any node with the same id."""
        with self._lock:
            self._g.add_node(node.id, record=node)
        logger.debug(f'Added node: {node.id}')

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        with self._lock:
            if node_id not in self._g:
                return None
            return self._g.nodes[node_id].get('record')

    def has_node(self, node_id: str) -> bool:
        return self.get_node(node_id) is not None

    def get_all_nodes(self) -> List[GraphNode]:
        with self._lock:
            return [data['record'] for _, data in self._g.nodes(data=True) if data.get('record') is not None]

    def find_by_type(self, node_type: str) -> List[GraphNode]:
        return [node for node in self.get_all_nodes() if node.type == node_type]

    def find_by_category(self, category: str) -> List[GraphNode]:
        return [node for node in self.get_all_nodes() if node.category == category]

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add_edge(self, edge: GraphEdge) -> None:
        """Add an edge. Re-adding an existing edge id replaces it in place.

        Endpoints are not validated against the node set.
        """
        with self._lock:
            previous = self._edges.get(edge.id)
            if previous is not None:
                seq = self._g.edges[previous.source, previous.target, previous.id]['seq']
                self._g.remove_edge(previous.source, previous.target, key=previous.id)
            else:
                seq = next(self._seq)

            self._g.add_edge(edge.source, edge.target, key=edge.id, record=edge, seq=seq)
            self._edges[edge.id] = edge

    def _incident(self, node_id: str, outgoing: bool = True, incoming: bool = False) -> List[GraphEdge]:
        """Edges touching node_id in insertion order."""
        if node_id not in self._g:
            return []

        found = {}
        if outgoing:
            for _, _, data in self._g.out_edges(node_id, data=True):
                found[data['record'].id] = data
        if incoming:
            for _, _, data in self._g.in_edges(node_id, data=True):
                found[data['record'].id] = data

        return [data['record'] for data in sorted(found.values(), key=lambda data: data['seq'])]

    def get_edges_from(self, node_id: str) -> List[GraphEdge]:
        with self._lock:
            return self._incident(node_id, outgoing=True)

    def get_edges_to(self, node_id: str) -> List[GraphEdge]:
        with self._lock:
            return self._incident(node_id, outgoing=False, incoming=True)

    def get_all_edges(self) -> List[GraphEdge]:
        with self._lock:
            return list(self._edges.values())

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def find_shortest_path(self, source_id: str, target_id: str) -> List[str]:
        """
        Unweighted shortest directed path between two nodes.

        Neighbours are expanded in edge insertion order, which decides ties.

        Returns:
            Node ids from source to target, ``[source_id]`` when both are the
            same, or an empty list when either node is unknown or no path exists
        """
        with self._lock:
            if not self.has_node(source_id) or not self.has_node(target_id):
                return []
            if source_id == target_id:
                return [source_id]

            parents: Dict[str, Optional[str]] = {source_id: None}
            queue = deque([source_id])
            while queue:
                current = queue.popleft()
                for edge in self._incident(current, outgoing=True):
                    neighbor = edge.target
                    if neighbor in parents:
                        continue
                    parents[neighbor] = current
                    if neighbor == target_id:
                        path = [neighbor]
                        while parents[path[-1]] is not None:
                            path.append(parents[path[-1]])
                        return list(reversed(path))
                    queue.append(neighbor)

        return []

    def get_neighborhood(self, center_id: str, hops: int = 2) -> Dict[str, List[Any]]:
        """
        Collect the units within hops of center_id, following edges either way.

        Returns:
            ``{'nodes': [...], 'edges': [...]}`` where edges are the ones
            traversed to discover each node, not every edge among the nodes
        """
        with self._lock:
            if center_id not in self._g:
                return {'nodes': [], 'edges': []}

            visited = {center_id}
            order = [center_id]
            traversed: List[GraphEdge] = []
            frontier = [center_id]

            for _ in range(max(hops, 0)):
                next_frontier = []
                for current in frontier:
                    for edge in self._incident(current, outgoing=True, incoming=True):
                        other = edge.target if edge.source == current else edge.source
                        if other in visited:
                            continue
                        visited.add(other)
                        order.append(other)
                        traversed.append(edge)
                        next_frontier.append(other)
                if not next_frontier:
                    break
                frontier = next_frontier

            nodes = [self._g.nodes[node_id].get('record') for node_id in order]
            return {'nodes': [node for node in nodes if node is not None], 'edges': traversed}

    # ------------------------------------------------------------------
    # Statistics and projections
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        """Node/edge counts, directed density, degree summary and component count.

        Degree counts incoming and outgoing edges of each node.
        """
        with self._lock:
            node_ids = [node_id for node_id, data in self._g.nodes(data=True) if data.get('record') is not None]
            node_count = len(node_ids)
            edge_count = len(self._edges)
            degrees = [self._g.degree(node_id) for node_id in node_ids]
            components = nx.number_weakly_connected_components(self._g.subgraph(node_ids)) if node_ids else 0

        return {
            'node_count': node_count,
            'edge_count': edge_count,
            'density': edge_count / (node_count * (node_count - 1)) if node_count > 1 else 0.0,
            'components': components,
            'avg_degree': sum(degrees) / len(degrees) if degrees else 0.0,
            'max_degree': max(degrees) if degrees else 0
        }

    def to_json(self) -> Dict[str, Any]:
        """Serializable snapshot of nodes, edges and statistics."""
        nodes = []
        for node in self.get_all_nodes():
            data = asdict(node)
            data['timestamp'] = node.timestamp.isoformat() if node.timestamp else None
            nodes.append(data)

        return {
            'nodes': nodes,
            'edges': [asdict(edge) for edge in self.get_all_edges()],
            'stats': self.get_statistics()
        }

    def to_vis_format(self) -> Dict[str, List[Dict[str, Any]]]:
        """Projection for generic network visualisation front ends."""
        return {
            'nodes': [{
                'id': node.id,
                'label': node.title[:VIS_LABEL_LENGTH],
                'title': node.title,
                'type': node.type,
                'category': node.category
            } for node in self.get_all_nodes()],
            'edges': [{
                'id': edge.id,
                'from': edge.source,
                'to': edge.target,
                'label': edge.relationship,
                'title': edge.relationship,
                'value': edge.strength
            } for edge in self.get_all_edges()]
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'KnowledgeGraph':
        """Rebuild a graph from :meth:`to_json` output."""
        graph = cls()
        for raw in data.get('nodes', []):
            timestamp = parse_timestamp(raw.get('timestamp'))
            graph.add_node(
                GraphNode(id=raw['id'],
                          title=raw.get('title', ''),
                          type=raw.get('type', ''),
                          category=raw.get('category', ''),
                          keywords=list(raw.get('keywords') or []),
                          timestamp=to_datetime(timestamp) if timestamp is not None else None,
                          metadata=dict(raw.get('metadata') or {})))
        for raw in data.get('edges', []):
            graph.add_edge(
                GraphEdge(id=raw['id'],
                          source=raw['source'],
                          target=raw['target'],
                          relationship=raw.get('relationship', RelationshipType.RELATED),
                          strength=float(raw.get('strength', 0.0)),
                          metadata=dict(raw.get('metadata') or {})))
        return graph

    def __len__(self) -> int:
        return len(self.get_all_nodes())


class GraphBuilder:
    """Batch constructors and a cheap keyword-overlap relationship pre-filter."""

    @staticmethod
    def build_from_units(units: Iterable[Any], relationships: Iterable[Relationship]) -> KnowledgeGraph:
        """
        Build a graph from units and relationships.

        Args:
            units: AtomicUnit or GraphNode objects, each added as a node
            relationships: Relationships, each added as an edge with its strength

        Returns:
            The populated KnowledgeGraph
        """
        graph = KnowledgeGraph()

        node_count = 0
        for unit in units:
            graph.add_node(unit if isinstance(unit, GraphNode) else GraphNode.from_unit(unit))
            node_count += 1

        for index, rel in enumerate(relationships):
            graph.add_edge(
                GraphEdge(id=f'{rel.from_unit}-{rel.to_unit}-{index}',
                          source=rel.from_unit,
                          target=rel.to_unit,
                          relationship=rel.relationship_type,
                          strength=rel.strength,
                          metadata={'source': rel.source, 'explanation': rel.explanation} if rel.explanation else
                          {'source': rel.source}))

        logger.info(f'Built graph with {node_count} nodes and {len(graph.get_all_edges())} edges')
        return graph

    @staticmethod
    def detect_relationships(units: List[Any], similarity_threshold: float = 0.3) -> List[Relationship]:
        """
        Propose relationships from keyword-set Jaccard similarity.

        Each unordered pair is considered once, directed from the earlier unit
        to the later one. Pairs with no keywords at all are never related.

        Args:
            units: Objects with ``id`` and ``keywords``
            similarity_threshold: Minimum Jaccard similarity to emit a relationship

        Returns:
            Candidate relationships with strength equal to the similarity
        """
        relationships = []
        keyword_sets = [set(unit.keywords or []) for unit in units]

        for i, first in enumerate(units):
            for j in range(i + 1, len(units)):
                union = keyword_sets[i] | keyword_sets[j]
                if not union:
                    continue
                similarity = len(keyword_sets[i] & keyword_sets[j]) / len(union)
                if similarity >= similarity_threshold:
                    relationships.append(
                        Relationship(from_unit=first.id,
                                     to_unit=units[j].id,
                                     relationship_type=RelationshipType.RELATED,
                                     strength=similarity,
                                     explanation='Shared keywords',
                                     source='keyword_overlap',
                                     confidence=similarity))

        logger.debug(f'Keyword pre-filter proposed {len(relationships)} relationships for {len(units)} units')
        return relationships
