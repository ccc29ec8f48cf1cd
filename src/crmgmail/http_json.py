"""Summary: JSON body decoding shared by the Google HTTP helpers.

Importance: Success bodies must decode cleanly; error bodies are best effort.
Alternatives: Let each caller decode and guess at failures.
"""

from __future__ import annotations

import json
from typing import Any


def load_json(raw: str) -> dict[str, Any]:
    """Lenient parse for error bodies: anything unreadable becomes an empty dict."""

    try:
        payload = json.loads(raw) if raw else {}
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def parse_json_body(raw: bytes) -> dict[str, Any]:
    """Summary: Strictly decode a successful response body into a JSON object.

    Importance: A 200 with a broken body is a provider failure, not an empty result.
    Alternatives: Treat unreadable bodies as empty payloads.

    Raises ValueError (including UnicodeDecodeError) for anything that is not a
    UTF-8 encoded JSON object.
    """

    payload = json.loads(raw.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object.")
    return payload
