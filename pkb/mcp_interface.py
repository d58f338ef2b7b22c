"""
MCP Interface Layer using fastmcp for agent access to the knowledge base.
"""
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from pkb.services.knowledge_base import KnowledgeBaseError, KnowledgeBaseService
from pkb.utils.config import config
from pkb.utils.health_check import get_system_info
from pkb.utils.logging_config import get_logger

logger = get_logger(__name__)


def _unit_summary(unit) -> Dict[str, Any]:
    return {
        'id': unit.id,
        'type': unit.type,
        'title': unit.title,
        'category': unit.category,
        'tags': list(unit.tags)
    }


def create_mcp(service: KnowledgeBaseService) -> FastMCP:
    """Create the MCP application with tools bound to service."""
    mcp = FastMCP('Knowledge Base')

    @mcp.tool()
    def search_knowledge(query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Search the knowledge base with combined keyword and semantic search.

        Args:
            query: Natural language query
            limit: Maximum number of results to return (default: 10)

        Returns:
            List of matching units with their fused scores
        """
        if not query or not query.strip():
            return []

        try:
            results = service.search(query, limit)
        except KnowledgeBaseError as e:
            logger.error(f'Knowledge base error in MCP search: {e}')
            raise Exception(f'Knowledge search failed: {e}')

        logger.debug(f'MCP search returned {len(results)} units')
        return [{
            **_unit_summary(result.unit),
            'score': result.combined_score,
            'semantic_score': result.semantic_score,
            'keyword_match': bool(result.fts_score)
        } for result in results]

    @mcp.tool()
    def search_by_tag(tag: str, limit: int = 50) -> List[Dict[str, Any]]:
        """List units carrying a tag.

        Args:
            tag: Exact tag
            limit: Maximum number of units (default: 50)
        """
        try:
            return [_unit_summary(unit) for unit in service.search_by_tag(tag, limit)]
        except KnowledgeBaseError as e:
            logger.error(f'Knowledge base error in MCP tag search: {e}')
            raise Exception(f'Tag search failed: {e}')

    @mcp.tool()
    def find_related_units(unit_id: str, limit: int = 10, min_similarity: Optional[float] = None) -> List[Dict[str, Any]]:
        """Find units related to a unit, validated by the relationship judge.

        Args:
            unit_id: Id of the unit to relate
            limit: Number of nearest neighbours to consider (default: 10)
            min_similarity: Minimum embedding similarity for candidates

        Returns:
            List of relationships from the unit
        """
        try:
            relationships = service.find_related(unit_id, candidate_limit=limit, similarity_floor=min_similarity)
        except KnowledgeBaseError as e:
            logger.error(f'Knowledge base error finding related units: {e}')
            raise Exception(f'Finding related units failed: {e}')

        return [asdict(rel) for rel in relationships]

    @mcp.tool()
    def graph_shortest_path(from_id: str, to_id: str) -> List[str]:
        """Shortest chain of relationships between two units (empty if none)."""
        return service.shortest_path(from_id, to_id)

    @mcp.tool()
    def graph_neighborhood(unit_id: str, hops: int = 2) -> Dict[str, Any]:
        """Units and relationships within a number of hops of a unit."""
        neighborhood = service.neighborhood(unit_id, hops)
        return {
            'nodes': [{
                'id': node.id,
                'title': node.title,
                'type': node.type,
                'category': node.category
            } for node in neighborhood['nodes']],
            'edges': [asdict(edge) for edge in neighborhood['edges']]
        }

    @mcp.tool()
    def graph_statistics() -> Dict[str, Any]:
        """Size, density and connectivity of the knowledge graph."""
        return service.graph_statistics()

    @mcp.tool()
    def embedding_cache_stats() -> Dict[str, Any]:
        """Embedding cache hit rate, size and estimated token savings."""
        stats = service.cache_stats()
        return asdict(stats) if stats is not None else {'enabled': False}

    @mcp.tool()
    def system_health() -> Dict[str, Any]:
        """Configuration summary and health of Bedrock, OpenSearch and Neptune."""
        return get_system_info()

    return mcp


if __name__ == '__main__':
    knowledge_base = KnowledgeBaseService.from_config(config)
    try:
        create_mcp(knowledge_base).run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
    finally:
        knowledge_base.close()
