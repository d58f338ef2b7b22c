"""
Two-stage relationship detection between knowledge units.

Stage one shortlists neighbours by embedding similarity; stage two asks a
judgment oracle to classify each candidate pair and keeps only strong,
confirmed relationships.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .knowledge_graph import KnowledgeGraph
from .relationship_judge import parse_verdict
from .vector_index import VectorIndex
from ..models.core import AtomicUnit, DetectionOutcome, GraphEdge, Relationship, RelationshipVerdict
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

MIN_RELATIONSHIP_STRENGTH = 0.5

_TYPE_ALIASES = {
    'builds_on': 'expands-on',
    'builds-on': 'expands-on',
    'derived_from': 'expands-on',
    'derived-from': 'expands-on',
    'expands_on': 'expands-on',
    'references': 'related',
}


def normalize_relationship_type(relationship_type: Optional[str]) -> str:
    """Map oracle type labels onto the relationship vocabulary; unknown labels pass through."""
    value = (relationship_type or '').strip().lower()
    if not value:
        return 'related'
    return _TYPE_ALIASES.get(value, value)


@dataclass
class RelationshipGraph:
    """Result of a batch detection run, keyed by the queried unit's id."""
    relationships: Dict[str, List[Relationship]] = field(default_factory=dict)
    adjacency: Dict[str, List[str]] = field(default_factory=dict)
    outcomes: List[DetectionOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[DetectionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    def merge_into(self, graph: KnowledgeGraph, mirror: bool = False) -> int:
        """
        Add every detected relationship to graph as an edge.

        Edge ids are derived from endpoints and type, so merging twice is
        idempotent.

        Args:
            graph: Target knowledge graph
            mirror: Also add the reverse edge for each relationship

        Returns:
            Number of edges written
        """
        written = 0
        for relationships in self.relationships.values():
            for rel in relationships:
                metadata = {'source': rel.source, 'explanation': rel.explanation, 'confidence': rel.confidence}
                graph.add_edge(
                    GraphEdge(id=f'{rel.from_unit}->{rel.to_unit}:{rel.relationship_type}',
                              source=rel.from_unit,
                              target=rel.to_unit,
                              relationship=rel.relationship_type,
                              strength=rel.strength,
                              metadata=metadata))
                written += 1

                if mirror:
                    graph.add_edge(
                        GraphEdge(id=f'{rel.to_unit}->{rel.from_unit}:{rel.relationship_type}',
                                  source=rel.to_unit,
                                  target=rel.from_unit,
                                  relationship=rel.relationship_type,
                                  strength=rel.strength,
                                  metadata={**metadata, 'mirrored': True}))
                    written += 1

        logger.info(f'Merged {written} relationship edges into knowledge graph')
        return written


class RelationshipDetector:
    """Vector-candidate plus oracle-validation relationship detector."""

    def __init__(self, vector_index: VectorIndex, embedder, judge, min_strength: float = MIN_RELATIONSHIP_STRENGTH):
        """
        Args:
            vector_index: Nearest-neighbour index over unit embeddings
            embedder: Object exposing ``generate_embedding(text)``
            judge: Oracle exposing ``judge(unit_a, unit_b) -> str``
            min_strength: Verdicts at or below this strength are dropped
        """
        self.vector_index = vector_index
        self.embedder = embedder
        self.judge = judge
        self.min_strength = min_strength

        self._stats_lock = threading.Lock()
        self._stats = {
            'candidates_examined': 0,
            'oracle_calls': 0,
            'oracle_failures': 0,
            'unparseable_verdicts': 0,
            'relationships_emitted': 0
        }

    def _count(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[key] += amount

    def get_stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def _ensure_embedding(self, unit: AtomicUnit) -> bool:
        """Generate and attach the unit's embedding if missing. False when that fails."""
        if unit.embedding:
            return True

        try:
            unit.embedding = self.embedder.generate_embedding(unit.embedding_text())
            return True
        except Exception as e:
            logger.warning(f'Failed to generate embedding for unit {unit.id}: {e}')
            return False

    def _verdict_for(self, unit: AtomicUnit, candidate: AtomicUnit) -> Optional[RelationshipVerdict]:
        self._count('oracle_calls')
        try:
            response = self.judge.judge(unit, candidate)
        except Exception as e:
            self._count('oracle_failures')
            logger.warning(f'Relationship judgment failed for {unit.id} -> {candidate.id}: {e}')
            return None

        verdict = parse_verdict(response)
        if verdict is None:
            self._count('unparseable_verdicts')
        return verdict

    def find_related_units(self,
                           unit: AtomicUnit,
                           candidate_limit: int = 10,
                           similarity_floor: float = 0.0) -> List[Relationship]:
        """
        Find validated relationships from unit to its nearest neighbours.

        Args:
            unit: Unit to relate; its embedding is generated and attached if missing
            candidate_limit: Number of nearest neighbours to consider
            similarity_floor: Candidates below this cosine similarity are dropped

        Returns:
            Relationships directed from unit to each confirmed candidate

        Raises:
            Whatever the vector index raises; index failures are not degraded
        """
        if not self._ensure_embedding(unit):
            return []

        candidates = self.vector_index.search_by_embedding(unit.embedding, candidate_limit)
        viable = [c for c in candidates if c.unit.id != unit.id and c.score >= similarity_floor]
        self._count('candidates_examined', len(viable))

        if not viable:
            logger.debug(f'No candidates above {similarity_floor} for unit {unit.id}')
            return []

        relationships = []
        for candidate in viable:
            verdict = self._verdict_for(unit, candidate.unit)
            if verdict is None or not verdict.is_related:
                continue
            if verdict.strength <= self.min_strength:
                logger.debug(f'Dropped weak relationship {unit.id} -> {candidate.unit.id} ({verdict.strength})')
                continue

            relationships.append(
                Relationship(from_unit=unit.id,
                             to_unit=candidate.unit.id,
                             relationship_type=normalize_relationship_type(verdict.relationship_type),
                             strength=verdict.strength,
                             explanation=verdict.explanation,
                             source='auto_detected',
                             confidence=candidate.score))

        self._count('relationships_emitted', len(relationships))
        logger.info(f'Found {len(relationships)} relationships for unit {unit.id} from {len(viable)} candidates')
        return relationships

    def _detect(self, unit: AtomicUnit, candidate_limit: int, similarity_floor: float) -> DetectionOutcome:
        try:
            relationships = self.find_related_units(unit, candidate_limit, similarity_floor)
            return DetectionOutcome(unit_id=unit.id, success=True, relationships=relationships)
        except Exception as e:
            logger.error(f'Relationship detection failed for unit {unit.id}: {e}')
            return DetectionOutcome(unit_id=unit.id, success=False, error=str(e))

    def build_relationship_graph(self,
                                 units: List[AtomicUnit],
                                 candidate_limit: int = 10,
                                 similarity_floor: float = 0.75,
                                 max_workers: int = 1) -> RelationshipGraph:
        """
        Run detection for every unit, isolating per-unit failures.

        Args:
            units: Units to relate
            candidate_limit: Neighbours considered per unit
            similarity_floor: Minimum candidate similarity
            max_workers: Units processed concurrently

        Returns:
            RelationshipGraph with relationships and adjacency for each unit
            that succeeded, and an outcome for every unit
        """
        if max_workers > 1 and len(units) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                outcomes = list(executor.map(lambda u: self._detect(u, candidate_limit, similarity_floor), units))
        else:
            outcomes = [self._detect(unit, candidate_limit, similarity_floor) for unit in units]

        result = RelationshipGraph(outcomes=outcomes)
        for outcome in outcomes:
            if not outcome.success:
                continue
            result.relationships[outcome.unit_id] = outcome.relationships
            result.adjacency[outcome.unit_id] = [rel.to_unit for rel in outcome.relationships]

        total = sum(len(rels) for rels in result.relationships.values())
        logger.info(f'Relationship graph built for {len(units)} units: {total} relationships, '
                    f'{len(result.failures)} failures')
        return result
