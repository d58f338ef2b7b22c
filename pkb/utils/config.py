"""
Configuration management for AWS services and knowledge base settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for the Amazon Bedrock LLM used as relationship judge."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    read_timeout: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str
    enabled: bool


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int


@dataclass
class EmbeddingCacheConfig:
    """Configuration for the on-disk embedding cache."""
    path: str
    enabled: bool
    ttl_seconds: float  # 0 disables expiry


@dataclass
class SearchConfig:
    """Configuration for hybrid search and its result cache."""
    fts_weight: float
    semantic_weight: float
    rrf_k: int
    overfetch_factor: int
    cache_enabled: bool
    cache_max_size: int
    cache_ttl_seconds: float


@dataclass
class RelationshipConfig:
    """Configuration for the two-stage relationship detector."""
    candidate_limit: int
    similarity_floor: float
    batch_similarity_floor: float
    min_strength: float
    max_workers: int
    content_chars: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    embedding_cache: EmbeddingCacheConfig
    search: SearchConfig
    relationships: RelationshipConfig
    mcp: MCPConfig


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '300')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.2')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          read_timeout=int(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '120')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'),
                                   enabled=_env_bool('NEPTUNE_ENABLED', 'false'))

    # Full-text and vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'knowledge_units'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')))

    # Embedding cache configuration
    embedding_cache_config = EmbeddingCacheConfig(path=os.getenv('EMBEDDING_CACHE_PATH', './cache/embeddings'),
                                                  enabled=_env_bool('EMBEDDING_CACHE_ENABLED', 'true'),
                                                  ttl_seconds=float(os.getenv('EMBEDDING_CACHE_TTL_SECONDS', '0')))

    # Hybrid search configuration
    search_config = SearchConfig(fts_weight=float(os.getenv('SEARCH_FTS_WEIGHT', '0.6')),
                                 semantic_weight=float(os.getenv('SEARCH_SEMANTIC_WEIGHT', '0.4')),
                                 rrf_k=int(os.getenv('SEARCH_RRF_K', '60')),
                                 overfetch_factor=int(os.getenv('SEARCH_OVERFETCH_FACTOR', '2')),
                                 cache_enabled=_env_bool('SEARCH_CACHE_ENABLED', 'true'),
                                 cache_max_size=int(os.getenv('SEARCH_CACHE_MAX_SIZE', '1000')),
                                 cache_ttl_seconds=float(os.getenv('SEARCH_CACHE_TTL_SECONDS', '300')))

    # Relationship detection configuration
    relationship_config = RelationshipConfig(candidate_limit=int(os.getenv('RELATIONSHIP_CANDIDATE_LIMIT', '10')),
                                             similarity_floor=float(os.getenv('RELATIONSHIP_SIMILARITY_FLOOR', '0.0')),
                                             batch_similarity_floor=float(
                                                 os.getenv('RELATIONSHIP_BATCH_SIMILARITY_FLOOR', '0.75')),
                                             min_strength=float(os.getenv('RELATIONSHIP_MIN_STRENGTH', '0.5')),
                                             max_workers=int(os.getenv('RELATIONSHIP_MAX_WORKERS', '1')),
                                             content_chars=int(os.getenv('RELATIONSHIP_CONTENT_CHARS', '500')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     embedding_cache=embedding_cache_config,
                     search=search_config,
                     relationships=relationship_config,
                     mcp=mcp_config)


# Loaded once at import for logging setup and the MCP entry point.
config = load_config()
