"""
OpenSearch client wrapper for full-text and vector search over knowledge units.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger
from .timestamp_utils import parse_timestamp, to_datetime
from ..models.core import AtomicUnit, VectorSearchResult
from ..services.vector_index import VectorIndex, cosine_similarity

logger = get_logger(__name__)


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def unit_to_document(unit: AtomicUnit) -> Dict[str, Any]:
    """Index document for a unit."""
    return {
        'id': unit.id,
        'type': unit.type,
        'title': unit.title,
        'content': unit.content,
        'category': unit.category,
        'tags': list(unit.tags),
        'keywords': list(unit.keywords),
        'timestamp': unit.timestamp.isoformat() if unit.timestamp else None,
        'embedding': unit.embedding,
        'conversation_id': unit.conversation_id,
        'document_id': unit.document_id
    }


def document_to_unit(source: Dict[str, Any]) -> AtomicUnit:
    """Rebuild a unit from an index document's ``_source``."""
    timestamp = parse_timestamp(source.get('timestamp'))
    return AtomicUnit(id=source['id'],
                      type=source.get('type', ''),
                      title=source.get('title', ''),
                      content=source.get('content', ''),
                      category=source.get('category') or '',
                      tags=list(source.get('tags') or []),
                      keywords=list(source.get('keywords') or []),
                      timestamp=to_datetime(timestamp) if timestamp is not None else None,
                      embedding=source.get('embedding'),
                      conversation_id=source.get('conversation_id'),
                      document_id=source.get('document_id'))


class OpenSearchClient(VectorIndex):
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client=None, sync_wait_seconds: float = 15.0):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Optional pre-built opensearch-py client
            sync_wait_seconds: Pause after creating an index before it is queryable
        """
        self.config = config
        self.index_name = config.index_name
        self.sync_wait_seconds = sync_wait_seconds

        if client is not None:
            self.client = client
        else:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                endpoint = endpoint.split('://', 1)[1]

            self.client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                     http_auth=auth,
                                     use_ssl=True,
                                     verify_certs=True,
                                     connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def create_index_if_not_exists(self) -> str:
        """
        Create the unit index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            index_body = {
                'mappings': {
                    'properties': {
                        'id': {'type': 'keyword'},
                        'type': {'type': 'keyword'},
                        'title': {'type': 'text'},
                        'content': {'type': 'text'},
                        'category': {'type': 'keyword'},
                        'tags': {'type': 'keyword'},
                        'keywords': {'type': 'text'},
                        'timestamp': {'type': 'date'},
                        'conversation_id': {'type': 'keyword'},
                        'document_id': {'type': 'keyword'},
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'nmslib'
                            }
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True,
                        'knn.algo_param.ef_search': 100
                    }
                }
            }

            response = self.client.indices.create(index=self.index_name, body=index_body)
            logger.info(f'Created index {self.index_name}')
            if not response.get('acknowledged', False):
                return 'failed'

            if self.sync_wait_seconds:
                logger.info(f'Waiting {self.sync_wait_seconds}s for index {self.index_name} sync-up...')
                time.sleep(self.sync_wait_seconds)
            return 'created'

        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def index_unit(self, unit: AtomicUnit) -> bool:
        """
        Index or replace a unit document.

        Returns:
            True if the document was created or updated
        """
        try:
            response = self.client.index(index=self.index_name, id=unit.id, body=unit_to_document(unit))

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Indexed unit {unit.id} in {self.index_name}')
            else:
                logger.warning(f'Unexpected result indexing unit {unit.id}: {response}')
            return success

        except OpenSearchException as e:
            logger.error(f'Error indexing unit {unit.id}: {e}')
            raise OpenSearchError(f'Failed to index unit: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing unit {unit.id}: {e}')
            raise OpenSearchError(f'Unexpected error indexing unit: {e}')

    def add_unit(self, unit: AtomicUnit) -> None:
        if not unit.embedding:
            raise ValueError(f'Unit {unit.id} has no embedding to index')
        self.index_unit(unit)

    def search_text(self, query: str, limit: int = 20) -> List[AtomicUnit]:
        """
        Full-text search over title, content, keywords and tags.

        Returns:
            Matching units in relevance order, without embeddings
        """
        try:
            search_body = {
                'size': limit,
                'query': {
                    'multi_match': {
                        'query': query,
                        'fields': ['title^2', 'content', 'keywords', 'tags']
                    }
                },
                '_source': {
                    'excludes': ['embedding']
                }
            }

            response = self.client.search(index=self.index_name, body=search_body)
            units = [document_to_unit(hit['_source']) for hit in response['hits']['hits']]

            logger.debug(f'Text search returned {len(units)} units')
            return units

        except OpenSearchException as e:
            logger.error(f'Error performing text search: {e}')
            raise OpenSearchError(f'Text search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in text search: {e}')
            raise OpenSearchError(f'Unexpected error in text search: {e}')

    def search_by_embedding(self, vector: List[float], limit: int = 10) -> List[VectorSearchResult]:
        """
        k-NN search returning units with their cosine similarity to vector.

        Scores are computed from the stored embeddings rather than taken from
        the engine's transformed ``_score``.
        """
        if limit <= 0:
            return []

        try:
            search_body = {
                'size': limit,
                'query': {
                    'knn': {
                        'embedding': {
                            'vector': vector,
                            'k': limit
                        }
                    }
                }
            }

            response = self.client.search(index=self.index_name, body=search_body)

            results = []
            for hit in response['hits']['hits']:
                unit = document_to_unit(hit['_source'])
                results.append(VectorSearchResult(unit=unit, score=cosine_similarity(vector, unit.embedding or [])))
            results.sort(key=lambda result: result.score, reverse=True)

            logger.debug(f'Vector search returned {len(results)} results')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

    def search_by_tag(self, tag: str, limit: int = 50) -> List[AtomicUnit]:
        """Units carrying the exact tag, newest first."""
        try:
            search_body = {
                'size': limit,
                'query': {
                    'term': {
                        'tags': tag
                    }
                },
                'sort': [{
                    'timestamp': {
                        'order': 'desc',
                        'missing': '_last'
                    }
                }],
                '_source': {
                    'excludes': ['embedding']
                }
            }

            response = self.client.search(index=self.index_name, body=search_body)
            return [document_to_unit(hit['_source']) for hit in response['hits']['hits']]

        except OpenSearchException as e:
            logger.error(f'Error searching by tag {tag}: {e}')
            raise OpenSearchError(f'Tag search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error searching by tag {tag}: {e}')
            raise OpenSearchError(f'Unexpected error in tag search: {e}')

    def get_unit(self, unit_id: str) -> Optional[AtomicUnit]:
        """
        Get a unit by id.

        Returns:
            The unit including its embedding, or None if not found
        """
        try:
            response = self.client.get(index=self.index_name, id=unit_id)
            if not response.get('found', False):
                return None
            return document_to_unit(response['_source'])

        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting unit {unit_id}: {e}')
            raise OpenSearchError(f'Failed to get unit: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting unit {unit_id}: {e}')
            raise OpenSearchError(f'Unexpected error getting unit: {e}')

    def delete_unit(self, unit_id: str) -> bool:
        """
        Delete a unit from the index.

        Returns:
            True if deletion was successful, False if it was not found
        """
        try:
            response = self.client.delete(index=self.index_name, id=unit_id)

            success = response.get('result') == 'deleted'
            if success:
                logger.debug(f'Deleted unit {unit_id} from {self.index_name}')
            else:
                logger.warning(f'Unit {unit_id} not found for deletion')
            return success

        except NotFoundError:
            logger.warning(f'Unit {unit_id} not found for deletion')
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting unit {unit_id}: {e}')
            raise OpenSearchError(f'Failed to delete unit: {e}')
        except Exception as e:
            logger.error(f'Unexpected error deleting unit {unit_id}: {e}')
            raise OpenSearchError(f'Unexpected error deleting unit: {e}')

    def remove_unit(self, unit_id: str) -> bool:
        return self.delete_unit(unit_id)

    def count(self) -> int:
        """Number of indexed units."""
        try:
            return int(self.client.count(index=self.index_name).get('count', 0))
        except OpenSearchException as e:
            logger.error(f'Error counting units: {e}')
            raise OpenSearchError(f'Failed to count units: {e}')

    def cleanup(self) -> bool:
        """
        Delete the unit index.

        Returns:
            True if cleanup was successful
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                self.client.indices.delete(index=self.index_name)
                logger.info(f'Deleted unit index: {self.index_name}')
            else:
                logger.info(f'Unit index {self.index_name} does not exist')
            return True

        except OpenSearchException as e:
            logger.error(f'Error during OpenSearch cleanup: {e}')
            raise OpenSearchError(f'Failed to cleanup OpenSearch: {e}')
        except Exception as e:
            logger.error(f'Unexpected error during OpenSearch cleanup: {e}')
            raise OpenSearchError(f'Unexpected error during OpenSearch cleanup: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
