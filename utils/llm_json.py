from __future__ import annotations

import json
import re
from typing import Any

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Return the body of the first Markdown code block, or ``text`` unchanged."""

    if not text:
        return ""
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_json(text: str) -> Any:
    """Parse a model reply as JSON after removing Markdown code fences.

    An empty reply decodes to an empty object.  Any other undecodable reply
    raises ``ValueError`` so callers can treat it as a recoverable failure.
    """

    body = strip_code_fences(text or "")
    if not body:
        return {}
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", body, flags=re.DOTALL)
        if not match:
            raise
        return json.loads(match.group(0))
