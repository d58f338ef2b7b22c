"""
LLM-backed judgment of whether and how two knowledge units relate.
"""

import math
from typing import Optional

from ..models.core import AtomicUnit, RelationshipVerdict
from ..utils.bedrock_llm import BedrockLLM
from ..utils.json_utils import extract_json_object
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

JUDGE_SYSTEM_PROMPT = """
You are an expert at identifying relationships between pieces of knowledge.

Given two pieces of content, decide:
1. Whether they are meaningfully related
2. The type of relationship
3. How strong the relationship is, from 0.0 to 1.0
4. A one-sentence explanation

Relationship types:
- "prerequisite": Content A must be understood before Content B
- "expands-on": One piece extends, elaborates or builds upon the other
- "contradicts": The pieces present conflicting information
- "implements": One piece is a practical implementation of the other's idea
- "related": General topical relationship, only when no specific type fits

Return a JSON object with this exact format:
```json
{
  "isRelated": true,
  "relationshipType": "expands-on",
  "strength": 0.85,
  "explanation": "Content B gives implementation details for the pattern in Content A"
}
```

Be selective. Only mark pieces as related when the connection is meaningful."""


def _coerce_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', '1')
    return bool(value)


def parse_verdict(response: Optional[str]) -> Optional[RelationshipVerdict]:
    """
    Parse a judge response into a verdict.

    The JSON object may be wrapped in a code fence or surrounded by prose.

    Args:
        response: Raw judge output

    Returns:
        RelationshipVerdict, or None when no usable JSON object is present or the
        strength is not a number in [0, 1]
    """
    data = extract_json_object(response)
    if data is None:
        logger.warning('Relationship judge returned no parseable JSON object')
        return None

    try:
        strength = float(data.get('strength', 0.0))
    except (TypeError, ValueError):
        logger.warning(f"Relationship judge returned a non-numeric strength: {data.get('strength')!r}")
        return None

    if not math.isfinite(strength) or not 0.0 <= strength <= 1.0:
        logger.warning(f'Relationship judge returned a strength outside [0, 1]: {strength!r}')
        return None

    return RelationshipVerdict(is_related=_coerce_bool(data.get('isRelated', False)),
                               relationship_type=str(data.get('relationshipType') or ''),
                               strength=strength,
                               explanation=str(data.get('explanation') or ''))


class BedrockRelationshipJudge:
    """Judgment oracle that asks a Bedrock model to classify a unit pair."""

    def __init__(self, llm: BedrockLLM, content_chars: int = 500, temperature: float = 0.2, max_tokens: int = 300):
        self.llm = llm
        self.content_chars = content_chars
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _describe(self, label: str, unit: AtomicUnit) -> str:
        return f'**Content {label}:**\nTitle: {unit.title}\n{unit.content[:self.content_chars]}'

    def judge(self, unit_a: AtomicUnit, unit_b: AtomicUnit) -> str:
        """
        Ask the model how unit_a relates to unit_b.

        Returns:
            Raw model output, expected to hold a JSON verdict

        Raises:
            BedrockLLMError: If the model call fails
        """
        prompt = (f'Analyze the relationship between these two pieces of content:\n\n'
                  f"{self._describe('A', unit_a)}\n\n{self._describe('B', unit_b)}")

        response = self.llm.complete(prompt,
                                     system_prompt=JUDGE_SYSTEM_PROMPT,
                                     prefill='```json',
                                     max_tokens=self.max_tokens,
                                     temperature=self.temperature,
                                     stop_sequences=['```'])
        logger.debug(f'Judged {unit_a.id} -> {unit_b.id} (response length: {len(response)})')
        return response
