"""JSON extraction from free-form model output."""

from __future__ import annotations

import json
import re
from typing import Any, Optional

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_DECODER = json.JSONDecoder()


def _first_object(text: str) -> Optional[dict[str, Any]]:
    """Decode the first JSON object starting at any ``{`` in ``text``."""
    start = text.find("{")
    while start != -1:
        try:
            value, _end = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def extract_json_object(content: str) -> Optional[dict[str, Any]]:
    """Extract a JSON object from content that may contain other text.

    Fenced code blocks are tried first, then the raw text. Returns None when
    no decodable object is present.
    """
    for block in _CODE_BLOCK_RE.findall(content):
        found = _first_object(block.strip())
        if found is not None:
            return found
    return _first_object(content)
