"""
JSON utilities for cleaning LLM responses.
"""

import json
import re
from typing import Any, Dict, Optional

_OBJECT_PATTERN = re.compile(r'\{[\s\S]*\}')


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def extract_json_object(response: Optional[str]) -> Optional[Dict[str, Any]]:
    """Pull the outermost JSON object out of an LLM response.

    The object may be wrapped in a code fence or surrounded by prose.

    Args:
        response: Raw LLM response

    Returns:
        Parsed dictionary, or None when no JSON object can be decoded
    """
    if not response:
        return None

    match = _OBJECT_PATTERN.search(clean_json_response(response))
    if not match:
        return None

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None

    return parsed if isinstance(parsed, dict) else None
