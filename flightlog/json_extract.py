"""Locate and parse JSON inside free-form model output.

Vision models routinely wrap their answer in a fenced block or add a sentence
before/after it, so these helpers treat messy text as the normal case.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List

from .errors import ParseError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")


def extract_json_array(text: str) -> str:
    """
    Return the substring most likely to be the JSON array.

    Order: a leading ``[`` is trusted as-is, then the body of a fenced code
    block, then the span from the first ``[`` to the last ``]``. Falls back
    to the stripped input.
    """
    text = (text or "").strip()

    if text.startswith("["):
        return text

    m = _FENCE_RE.search(text)
    if m and m.group(1).strip():
        return m.group(1).strip()

    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and start < end:
        return text[start : end + 1]

    return text


def parse_json_array(text: str) -> List[Any]:
    candidate = extract_json_array(text)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ParseError(f"Response is not valid JSON: {e}", raw_text=text) from e

    # Some responses wrap the array: {"entries": [...]}
    if isinstance(data, dict):
        for value in data.values():
            if isinstance(value, list):
                return value
        raise ParseError("JSON object without an array payload", raw_text=text)

    if not isinstance(data, list):
        raise ParseError(f"Expected a JSON array, got {type(data).__name__}", raw_text=text)
    return data


def parse_json_object(text: str) -> Dict[str, Any]:
    text = (text or "").strip()
    candidates = []
    m = _FENCE_RE.search(text)
    if m:
        candidates.append(m.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and start < end:
        candidates.append(text[start : end + 1])
    candidates.append(text)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise ParseError("No JSON object found in response", raw_text=text)
