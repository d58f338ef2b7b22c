"""
Shared fakes for the knowledge base tests.

Nothing here talks to AWS: embedding providers, judges and full-text search
are in-memory stand-ins with call recording.
"""

from __future__ import annotations

import json
import threading
from typing import Dict, List, Optional

import pytest

from pkb.models.core import AtomicUnit


def make_unit(unit_id: str,
              title: Optional[str] = None,
              content: str = 'content',
              embedding: Optional[List[float]] = None,
              unit_type: str = 'insight',
              category: str = 'general',
              keywords: Optional[List[str]] = None,
              tags: Optional[List[str]] = None,
              timestamp=None) -> AtomicUnit:
    return AtomicUnit(id=unit_id,
                      type=unit_type,
                      title=title or f'Unit {unit_id}',
                      content=content,
                      category=category,
                      tags=list(tags or []),
                      keywords=list(keywords or []),
                      timestamp=timestamp,
                      embedding=embedding)


def verdict(is_related: bool = True, relationship_type: str = 'related', strength: float = 0.9,
            explanation: str = 'connected') -> str:
    return json.dumps({
        'isRelated': is_related,
        'relationshipType': relationship_type,
        'strength': strength,
        'explanation': explanation
    })


class FakeClock:
    """Manually advanced Unix clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbedder:
    """Embedding provider returning preset vectors and counting calls."""

    model_id = 'fake-embed-v1'

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default: Optional[List[float]] = None,
                 tokens: int = 7):
        self.vectors = dict(vectors or {})
        self.default = default or [1.0, 0.0, 0.0]
        self.tokens = tokens
        self.calls: List[str] = []
        self.last_token_count = 0
        self.error: Optional[Exception] = None
        self._lock = threading.Lock()

    def generate_embedding(self, text: str) -> List[float]:
        with self._lock:
            self.calls.append(text)
        if self.error is not None:
            raise self.error
        self.last_token_count = self.tokens
        return list(self.vectors.get(text, self.default))


class FakeTextSearch:
    """Full-text provider returning a fixed ranked list."""

    def __init__(self, units: Optional[List[AtomicUnit]] = None):
        self.units = list(units or [])
        self.calls = []
        self.error: Optional[Exception] = None
        self.tagged: Dict[str, List[AtomicUnit]] = {}

    def search_text(self, query: str, limit: int = 20) -> List[AtomicUnit]:
        self.calls.append((query, limit))
        if self.error is not None:
            raise self.error
        return self.units[:limit]

    def search_by_tag(self, tag: str, limit: int = 50) -> List[AtomicUnit]:
        return self.tagged.get(tag, [])[:limit]


class FakeJudge:
    """Judgment oracle answering from a per-candidate response table."""

    def __init__(self, responses: Optional[Dict[str, object]] = None, default: Optional[str] = None):
        self.responses = dict(responses or {})
        self.default = default if default is not None else verdict(False, 'related', 0.0)
        self.calls = []
        self._lock = threading.Lock()

    def judge(self, unit_a: AtomicUnit, unit_b: AtomicUnit) -> str:
        with self._lock:
            self.calls.append((unit_a.id, unit_b.id))
        response = self.responses.get(unit_b.id, self.default)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_dir(tmp_path):
    return str(tmp_path / 'embeddings')
