"""Inference service contract.

Call sites treat the service as slow, rate-limited and occasionally
malformed: ``complete`` never raises, and every caller keeps a heuristic path
for ``success=False`` or unparseable output.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

_JSON_BLOCK = re.compile(r"(\{.*\}|\[.*\])", re.DOTALL)


@dataclass
class InferenceResult:
    """Outcome of one inference call."""

    success: bool
    result: Any = None
    error: Optional[str] = None


class InferenceService(Protocol):
    """Text completion capability."""

    async def complete(self, prompt: str, context: Optional[str] = None) -> InferenceResult:
        ...


def parse_json_payload(text: Any) -> Optional[Any]:
    """
    Pull the first JSON object or array out of a model response.

    Handles markdown fences and leading prose. Returns None when nothing
    parseable is found.
    """
    if isinstance(text, (dict, list)):
        return text
    if not isinstance(text, str):
        return None
    match = _JSON_BLOCK.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
