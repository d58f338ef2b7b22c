"""
Amazon Neptune graph database client with Gremlin Python driver and AWS SigV4 authentication.

Persists the knowledge graph: units become ``Unit`` vertices and
relationships become ``RELATES_TO`` edges.
"""

from functools import wraps
from typing import Any, Dict, List

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import Cardinality

from ..models.core import GraphEdge, GraphNode
from ..services.knowledge_graph import KnowledgeGraph
from .config import NeptuneConfig
from .logging_config import get_logger
from .timestamp_utils import to_datetime, to_seconds_str

logger = get_logger(__name__)

UNIT_LABEL = 'Unit'
RELATIONSHIP_LABEL = 'RELATES_TO'


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def _value(data: Dict[Any, Any], key: str, default: Any = None) -> Any:
    """Unwrap a value_map entry, which Gremlin returns as a single-item list."""
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig, g=None):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
            g: Optional ready traversal source; no connection is opened when given
        """
        self.config = config
        self.connection = None
        self.g = g
        if g is None:
            self._connect()
            logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        # Create signed request for WebSocket connection
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def _unit_vertex(self, unit_id: str):
        """Traversal to the unit vertex, creating a placeholder when absent."""
        return self.g.V().has(UNIT_LABEL, 'id', unit_id).fold().coalesce(
            __.unfold(),
            __.addV(UNIT_LABEL).property('id', unit_id).property('placeholder', True))

    @retry_on_connection_error
    def upsert_unit_vertex(self, node: GraphNode) -> bool:
        """
        Create or update the vertex for a graph node.

        Returns:
            True once the vertex is written
        """
        created_at = to_seconds_str(node.timestamp.timestamp()) if node.timestamp else to_seconds_str()

        self._unit_vertex(node.id)\
            .property(Cardinality.single, 'title', node.title)\
            .property(Cardinality.single, 'type', node.type)\
            .property(Cardinality.single, 'category', node.category)\
            .property(Cardinality.single, 'keywords', ','.join(node.keywords))\
            .property(Cardinality.single, 'created_at', created_at)\
            .property(Cardinality.single, 'placeholder', False)\
            .next()

        logger.debug(f'Upserted unit vertex: {node.id}')
        return True

    @retry_on_connection_error
    def create_relationship_edge(self, edge: GraphEdge) -> bool:
        """
        Write a relationship edge, replacing any edge with the same id.

        Missing endpoint vertices are created as placeholders.

        Returns:
            True once the edge is written
        """
        self.g.E().has(RELATIONSHIP_LABEL, 'id', edge.id).drop().iterate()

        source = self._unit_vertex(edge.source).next()
        target = self._unit_vertex(edge.target).next()

        self.g.V(source).addE(RELATIONSHIP_LABEL).to(target)\
            .property('id', edge.id)\
            .property('relationship', edge.relationship)\
            .property('strength', edge.strength)\
            .next()

        logger.debug(f'Created relationship edge: {edge.id}')
        return True

    def save_graph(self, graph: KnowledgeGraph) -> Dict[str, int]:
        """
        Persist every node and edge of graph.

        Returns:
            Counts of vertices and edges written
        """
        nodes = graph.get_all_nodes()
        edges = graph.get_all_edges()

        for node in nodes:
            self.upsert_unit_vertex(node)
        for edge in edges:
            self.create_relationship_edge(edge)

        logger.info(f'Saved knowledge graph to Neptune ({len(nodes)} vertices, {len(edges)} edges)')
        return {'vertices': len(nodes), 'edges': len(edges)}

    @retry_on_connection_error
    def load_graph(self) -> KnowledgeGraph:
        """
        Rebuild a KnowledgeGraph from the stored vertices and edges.

        Placeholder vertices are not materialised as nodes.
        """
        graph = KnowledgeGraph()

        vertex_data = self.g.V().has_label(UNIT_LABEL).value_map().to_list()
        for data in vertex_data:
            if _value(data, 'placeholder', False):
                continue
            keywords = _value(data, 'keywords', '') or ''
            created_at = _value(data, 'created_at')
            graph.add_node(
                GraphNode(id=_value(data, 'id'),
                          title=_value(data, 'title', ''),
                          type=_value(data, 'type', ''),
                          category=_value(data, 'category', ''),
                          keywords=[keyword for keyword in keywords.split(',') if keyword],
                          timestamp=to_datetime(int(created_at)) if created_at else None))

        edge_data = self.g.E().has_label(RELATIONSHIP_LABEL)\
            .project('id', 'source', 'target', 'relationship', 'strength')\
            .by('id')\
            .by(__.out_v().values('id'))\
            .by(__.in_v().values('id'))\
            .by('relationship')\
            .by('strength')\
            .to_list()
        for data in edge_data:
            graph.add_edge(
                GraphEdge(id=data['id'],
                          source=data['source'],
                          target=data['target'],
                          relationship=data['relationship'],
                          strength=float(data['strength'])))

        logger.info(f'Loaded knowledge graph from Neptune ({len(vertex_data)} vertices, {len(edge_data)} edges)')
        return graph

    @retry_on_connection_error
    def get_neighbor_ids(self, unit_id: str, hops: int = 1) -> List[str]:
        """
        Ids of units within hops of unit_id, following edges in both directions.
        """
        neighbor_ids = self.g.V().has(UNIT_LABEL, 'id', unit_id)\
            .repeat(__.both(RELATIONSHIP_LABEL).simple_path())\
            .emit()\
            .times(hops)\
            .dedup()\
            .values('id')\
            .to_list()

        neighbor_ids = [neighbor_id for neighbor_id in neighbor_ids if neighbor_id != unit_id]
        logger.debug(f'Found {len(neighbor_ids)} units within {hops} hops of {unit_id}')
        return neighbor_ids

    @retry_on_connection_error
    def delete_unit(self, unit_id: str) -> bool:
        """
        Delete a unit vertex and its relationship edges.
        """
        self.g.V().has(UNIT_LABEL, 'id', unit_id).drop().iterate()
        logger.debug(f'Deleted unit vertex and connected edges: {unit_id}')
        return True

    @retry_on_connection_error
    def cleanup(self) -> bool:
        """
        Clean up all data from Neptune (vertices and edges).

        Returns:
            True if cleanup was successful
        """
        logger.info('Deleting all edges from Neptune...')
        self.g.E().drop().iterate()

        logger.info('Deleting all vertices from Neptune...')
        self.g.V().drop().iterate()

        return True

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy
        """
        self.g.V().limit(1).count().next()
        return True
