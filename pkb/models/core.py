"""
Core data models for the knowledge base retrieval and relationship layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class UnitType:
    """Atomic unit type tags."""
    INSIGHT = 'insight'
    CODE = 'code'
    QUESTION = 'question'
    REFERENCE = 'reference'
    DECISION = 'decision'

    ALL = (INSIGHT, CODE, QUESTION, REFERENCE, DECISION)


@dataclass
class AtomicUnit:
    """The smallest persisted knowledge record produced by ingestion.

    Only the embedding is ever written by this layer; everything else is
    owned by ingestion and tagging.
    """
    id: str
    type: str  # One of UnitType.ALL
    title: str
    content: str
    category: str = ''
    tags: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    embedding: Optional[List[float]] = None
    conversation_id: Optional[str] = None
    document_id: Optional[str] = None

    def embedding_text(self) -> str:
        """Text that is embedded and indexed for this unit."""
        return f'{self.title}\n\n{self.content}'


@dataclass
class CachedEmbedding:
    """A cached embedding keyed by the hash of its exact source text."""
    text_hash: str
    text: str
    embedding: List[float]
    model: str
    timestamp: float  # Unix seconds
    tokens_used: int = 0


@dataclass
class CacheStats:
    """Embedding cache counters and estimates."""
    entries: int
    hits: int
    misses: int
    hit_rate: float
    miss_rate: float
    memory_usage_bytes: int
    tokens_used_with_cache: int
    tokens_saved_by_cache: int


@dataclass
class GraphNode:
    """Identity and display fields of a unit inside the knowledge graph."""
    id: str
    title: str
    type: str
    category: str = ''
    keywords: List[str] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_unit(cls, unit: AtomicUnit) -> 'GraphNode':
        return cls(id=unit.id,
                   title=unit.title,
                   type=unit.type,
                   category=unit.category,
                   keywords=list(unit.keywords),
                   timestamp=unit.timestamp)


@dataclass
class GraphEdge:
    """Directed, typed, weighted edge. Endpoints need not exist as nodes."""
    id: str
    source: str
    target: str
    relationship: str
    strength: float  # 0.0 to 1.0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RelationshipVerdict:
    """Structured decision returned by the judgment oracle."""
    is_related: bool
    relationship_type: str
    strength: float
    explanation: str = ''


@dataclass
class Relationship:
    """A validated, directed relationship proposed by the detector."""
    from_unit: str
    to_unit: str
    relationship_type: str
    strength: float
    explanation: str = ''
    source: str = 'auto_detected'
    confidence: float = 0.0


@dataclass
class DetectionOutcome:
    """Per-unit result of a batch relationship detection run."""
    unit_id: str
    success: bool
    relationships: List[Relationship] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class VectorSearchResult:
    """A nearest-neighbour hit with its cosine similarity."""
    unit: AtomicUnit
    score: float


@dataclass
class SearchWeights:
    """Per-source weights for reciprocal rank fusion."""
    fts: float = 0.6
    semantic: float = 0.4


@dataclass
class HybridSearchResult:
    """A fused search hit. Computed per query, never persisted."""
    unit: AtomicUnit
    fts_score: int  # 1 when the unit was in the full-text list, else 0
    semantic_score: float
    combined_score: float
