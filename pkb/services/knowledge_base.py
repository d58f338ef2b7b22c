"""
Knowledge base service wiring retrieval, relationship detection and the graph.
"""

from typing import Any, Dict, List, Optional

from .embedding_cache import EmbeddingCache, TTLEmbeddingCache
from .embedding_service import CachedEmbeddingService
from .hybrid_search import HybridSearch
from .knowledge_graph import KnowledgeGraph
from .relationship_detector import RelationshipDetector, RelationshipGraph
from .relationship_judge import BedrockRelationshipJudge
from .search_cache import SearchCache
from .vector_index import VectorIndex
from ..models.core import AtomicUnit, CacheStats, GraphNode, HybridSearchResult, Relationship, SearchWeights
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import AppConfig, RelationshipConfig, SearchConfig
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)

_INFRASTRUCTURE_ERRORS = (BedrockEmbedError, OpenSearchError, NeptuneError)


class KnowledgeBaseError(Exception):
    """Custom exception for knowledge base errors."""
    pass


class KnowledgeBaseService:
    """Facade over hybrid search, relationship detection and the knowledge graph."""

    def __init__(self,
                 embedder: CachedEmbeddingService,
                 vector_index: VectorIndex,
                 text_search,
                 judge,
                 graph: Optional[KnowledgeGraph] = None,
                 search_cache: Optional[SearchCache] = None,
                 graph_store: Optional[NeptuneClient] = None,
                 search_config: Optional[SearchConfig] = None,
                 relationship_config: Optional[RelationshipConfig] = None):
        """
        Initialize the knowledge base service.

        Args:
            embedder: Cache-backed embedding service
            vector_index: Nearest-neighbour index over unit embeddings
            text_search: Full-text provider exposing ``search_text`` and ``search_by_tag``
            judge: Relationship judgment oracle
            graph: Knowledge graph to populate, a new empty one if None
            search_cache: Optional hybrid search result cache
            graph_store: Optional Neptune client for graph persistence
            search_config: Fusion settings, library defaults if None
            relationship_config: Detection settings, library defaults if None
        """
        self.embedder = embedder
        self.vector_index = vector_index
        self.text_search = text_search
        self.graph = graph or KnowledgeGraph()
        self.graph_store = graph_store
        self.relationship_config = relationship_config or RelationshipConfig(candidate_limit=10,
                                                                             similarity_floor=0.0,
                                                                             batch_similarity_floor=0.75,
                                                                             min_strength=0.5,
                                                                             max_workers=1,
                                                                             content_chars=500)

        self.detector = RelationshipDetector(vector_index, embedder, judge, self.relationship_config.min_strength)

        if search_config is not None:
            self.hybrid_search = HybridSearch(text_search,
                                              embedder,
                                              vector_index,
                                              cache=search_cache,
                                              rrf_k=search_config.rrf_k,
                                              overfetch_factor=search_config.overfetch_factor,
                                              default_weights=SearchWeights(fts=search_config.fts_weight,
                                                                            semantic=search_config.semantic_weight))
        else:
            self.hybrid_search = HybridSearch(text_search, embedder, vector_index, cache=search_cache)

        self._units: Dict[str, AtomicUnit] = {}

        logger.info('Initialized KnowledgeBaseService')

    @classmethod
    def from_config(cls, app_config: AppConfig) -> 'KnowledgeBaseService':
        """Build the service against Bedrock, OpenSearch and optionally Neptune."""
        cache_config = app_config.embedding_cache
        if cache_config.ttl_seconds > 0:
            cache = TTLEmbeddingCache(cache_config.path, ttl_seconds=cache_config.ttl_seconds, enabled=cache_config.enabled)
        else:
            cache = EmbeddingCache(cache_config.path, enabled=cache_config.enabled)
        embedder = CachedEmbeddingService(BedrockEmbed(app_config.bedrock_embed), cache)

        opensearch = OpenSearchClient(app_config.opensearch)
        opensearch.create_index_if_not_exists()

        judge = BedrockRelationshipJudge(BedrockLLM(app_config.bedrock_llm),
                                         content_chars=app_config.relationships.content_chars,
                                         temperature=app_config.bedrock_llm.temperature,
                                         max_tokens=app_config.bedrock_llm.max_tokens)

        search_config = app_config.search
        search_cache = SearchCache(search_config.cache_max_size,
                                   search_config.cache_ttl_seconds) if search_config.cache_enabled else None

        graph_store = None
        graph = None
        if app_config.neptune.enabled:
            graph_store = NeptuneClient(app_config.neptune)
            graph = graph_store.load_graph()

        return cls(embedder,
                   opensearch,
                   opensearch,
                   judge,
                   graph=graph,
                   search_cache=search_cache,
                   graph_store=graph_store,
                   search_config=search_config,
                   relationship_config=app_config.relationships)

    def add_units(self, units: List[AtomicUnit]) -> int:
        """
        Embed (where missing), index and register units as graph nodes.

        Returns:
            Number of units added

        Raises:
            KnowledgeBaseError: If embedding or indexing fails
        """
        try:
            missing = [unit for unit in units if not unit.embedding]
            if missing:
                embeddings = self.embedder.generate_embeddings([unit.embedding_text() for unit in missing])
                for unit, embedding in zip(missing, embeddings):
                    unit.embedding = embedding

            for unit in units:
                self.vector_index.add_unit(unit)
                if self.text_search is not self.vector_index and hasattr(self.text_search, 'index_unit'):
                    self.text_search.index_unit(unit)
                self.graph.add_node(GraphNode.from_unit(unit))
                self._units[unit.id] = unit

        except _INFRASTRUCTURE_ERRORS as e:
            logger.error(f'Failed to add units: {e}')
            raise KnowledgeBaseError(f'Failed to add units: {e}')

        self.hybrid_search.invalidate_cache()
        logger.info(f'Added {len(units)} units to knowledge base')
        return len(units)

    def get_unit(self, unit_id: str) -> Optional[AtomicUnit]:
        unit = self._units.get(unit_id)
        if unit is not None or not hasattr(self.text_search, 'get_unit'):
            return unit

        try:
            return self.text_search.get_unit(unit_id)
        except OpenSearchError as e:
            raise KnowledgeBaseError(f'Failed to get unit {unit_id}: {e}')

    def search(self,
               query: str,
               limit: int = 10,
               weights: Optional[SearchWeights] = None,
               filters: Optional[Dict[str, Any]] = None) -> List[HybridSearchResult]:
        """
        Hybrid full-text and semantic search.

        Raises:
            KnowledgeBaseError: If a search provider fails
        """
        try:
            return self.hybrid_search.search(query, limit, weights, filters)
        except _INFRASTRUCTURE_ERRORS as e:
            logger.error(f'Search failed for query {query[:50]!r}: {e}')
            raise KnowledgeBaseError(f'Search failed: {e}')

    def search_by_tag(self, tag: str, limit: int = 50) -> List[AtomicUnit]:
        try:
            return self.hybrid_search.search_by_tag(tag, limit)
        except _INFRASTRUCTURE_ERRORS as e:
            logger.error(f'Tag search failed for {tag}: {e}')
            raise KnowledgeBaseError(f'Tag search failed: {e}')

    def find_related(self,
                     unit_id: str,
                     candidate_limit: Optional[int] = None,
                     similarity_floor: Optional[float] = None,
                     merge: bool = False) -> List[Relationship]:
        """
        Detect relationships from one unit to its neighbours.

        Args:
            unit_id: Id of a known unit
            candidate_limit: Neighbours considered, configured default if None
            similarity_floor: Minimum candidate similarity, configured default if None
            merge: Also add the relationships to the knowledge graph

        Raises:
            KnowledgeBaseError: If the unit is unknown or the vector index fails
        """
        unit = self.get_unit(unit_id)
        if unit is None:
            raise KnowledgeBaseError(f'Unknown unit: {unit_id}')

        limit = candidate_limit if candidate_limit is not None else self.relationship_config.candidate_limit
        floor = similarity_floor if similarity_floor is not None else self.relationship_config.similarity_floor

        try:
            relationships = self.detector.find_related_units(unit, limit, floor)
        except _INFRASTRUCTURE_ERRORS as e:
            logger.error(f'Relationship detection failed for {unit_id}: {e}')
            raise KnowledgeBaseError(f'Relationship detection failed: {e}')

        if merge and relationships:
            RelationshipGraph(relationships={unit_id: relationships}).merge_into(self.graph)
        return relationships

    def build_graph(self, units: Optional[List[AtomicUnit]] = None, mirror: bool = False) -> RelationshipGraph:
        """
        Run batch relationship detection and merge the result into the graph.

        Args:
            units: Units to relate, every added unit if None
            mirror: Also add the reverse edge of each relationship

        Returns:
            The batch detection result, including per-unit failures
        """
        units = list(self._units.values()) if units is None else units
        for unit in units:
            if not self.graph.has_node(unit.id):
                self.graph.add_node(GraphNode.from_unit(unit))

        config = self.relationship_config
        result = self.detector.build_relationship_graph(units,
                                                        candidate_limit=config.candidate_limit,
                                                        similarity_floor=config.batch_similarity_floor,
                                                        max_workers=config.max_workers)
        result.merge_into(self.graph, mirror=mirror)
        return result

    def shortest_path(self, source_id: str, target_id: str) -> List[str]:
        return self.graph.find_shortest_path(source_id, target_id)

    def neighborhood(self, unit_id: str, hops: int = 2) -> Dict[str, List[Any]]:
        return self.graph.get_neighborhood(unit_id, hops)

    def graph_statistics(self) -> Dict[str, Any]:
        return self.graph.get_statistics()

    def graph_json(self) -> Dict[str, Any]:
        return self.graph.to_json()

    def graph_vis(self) -> Dict[str, List[Dict[str, Any]]]:
        return self.graph.to_vis_format()

    def cache_stats(self) -> Optional[CacheStats]:
        if self.embedder.cache is None:
            return None
        return self.embedder.cache.get_stats()

    def persist_graph(self) -> Dict[str, int]:
        """
        Save the knowledge graph to Neptune.

        Raises:
            KnowledgeBaseError: If persistence is not configured or fails
        """
        if self.graph_store is None:
            raise KnowledgeBaseError('Graph persistence is not configured')

        try:
            return self.graph_store.save_graph(self.graph)
        except NeptuneError as e:
            logger.error(f'Failed to persist knowledge graph: {e}')
            raise KnowledgeBaseError(f'Failed to persist knowledge graph: {e}')

    def close(self) -> None:
        """Save the embedding cache and close the graph store connection."""
        if self.embedder.cache is not None:
            self.embedder.cache.save()
        if self.graph_store is not None:
            self.graph_store.close()
        logger.info('KnowledgeBaseService closed')
