"""Helpers for reading JSON and code out of free-form model output."""

from __future__ import annotations

import json
import re
from typing import Any


_FENCE_OPEN = re.compile(r"```[\w+-]*[ \t]*\n?")
_JSON_BLOCK = re.compile(r"```json\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_CODE_BLOCK = re.compile(r"```([\w+-]*)[^\n]*\n(.*?)```", re.DOTALL)


def strip_code_fences(content: str) -> str:
    """Remove markdown fence markers, keeping what is inside them."""
    return _FENCE_OPEN.sub("", content).replace("```", "").strip()


def load_json_array(content: str) -> list[Any]:
    """Parse a JSON array, tolerating fences. Anything else yields ``[]``."""
    try:
        data = json.loads(strip_code_fences(content or ""))
    except ValueError:
        return []
    return data if isinstance(data, list) else []


def load_json_object(content: str) -> dict[str, Any]:
    """Locate and parse the JSON object in ``content``.

    Tries a ```json fence first, then the outermost ``{...}`` span.

    Raises:
        ValueError: when no JSON object can be decoded
    """
    content = content or ""
    match = _JSON_BLOCK.search(content)
    if match:
        candidate = match.group(1)
    else:
        start, end = content.find("{"), content.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object found")
        candidate = content[start : end + 1]

    data = json.loads(candidate.strip())
    if not isinstance(data, dict):
        raise ValueError("JSON document is not an object")
    return data


def extract_code_blocks(content: str, tags: tuple[str, ...]) -> list[str]:
    """Return the bodies of all fenced blocks whose tag is one of ``tags``."""
    wanted = {t.lower() for t in tags}
    return [
        body.strip("\n")
        for tag, body in _CODE_BLOCK.findall(content or "")
        if tag.lower() in wanted
    ]
