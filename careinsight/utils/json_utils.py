"""
JSON utilities for cleaning LLM responses.
"""

import json
from typing import Any, Optional


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


def find_json_object(text: str) -> Optional[str]:
    """Locate the outermost ``{...}`` substring of a free-form response.

    Args:
        text: Raw LLM response, possibly with prose around the JSON

    Returns:
        The substring from the first ``{`` to the last ``}``, or None
    """
    start = text.find('{')
    end = text.rfind('}')
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def find_json_array(text: str) -> Optional[str]:
    """Locate the outermost ``[...]`` substring of a free-form response."""
    start = text.find('[')
    end = text.rfind(']')
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def loads_or_none(text: Optional[str]) -> Any:
    """Parse JSON, returning None instead of raising on malformed input."""
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
