"""Pull a JSON document out of a model reply."""

import json
import re
from typing import Any, Dict

from ..errors import ParseError

CODE_BLOCK_RE = re.compile(r'```(?:json)?\s*\n?(.*?)\n?\s*```', re.DOTALL)
ANSI_RE = re.compile(r'\x1b\[[0-9;]*[a-zA-Z]')


def extract_json(text: str) -> Any:
    """Decode the first JSON value in text.

    Accepts bare JSON, JSON inside a fenced code block, or JSON surrounded by prose.
    """
    cleaned = ANSI_RE.sub("", text or "").strip()
    if not cleaned:
        raise ParseError("Empty response", raw=text)

    candidates = []
    m = CODE_BLOCK_RE.search(cleaned)
    if m:
        candidates.append(m.group(1).strip())
    candidates.append(cleaned)

    decoder = json.JSONDecoder()
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
        for start, ch in enumerate(candidate):
            if ch not in "{[":
                continue
            try:
                value, _ = decoder.raw_decode(candidate, start)
                return value
            except json.JSONDecodeError:
                continue
    raise ParseError(f"No valid JSON found in response: {cleaned[:200]!r}", raw=text)


def extract_json_object(text: str) -> Dict[str, Any]:
    value = extract_json(text)
    if not isinstance(value, dict):
        raise ParseError(f"Expected a JSON object, got {type(value).__name__}", raw=text)
    return value
