"""Pull a JSON payload out of free-form model output.

Rules are tried in order and the first one that parses wins:

``direct``
    the whole text is JSON.
``fence``
    the text is wrapped in a Markdown code fence (optionally tagged ``json``).
``brackets``
    the first balanced ``{...}`` (or ``[...]``) block embedded in prose.

Callers use :attr:`ExtractionResult.used_fallback` to decide whether to
record a fallback event; anything other than ``direct`` counts.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


class JSONExtractionError(ValueError):
    """No rule produced valid JSON."""


@dataclass(frozen=True)
class ExtractionResult:
    data: Any
    rule: str

    @property
    def used_fallback(self) -> bool:
        return self.rule != "direct"


def strip_code_fence(text: str) -> Optional[str]:
    """Return the fenced body, or ``None`` when the text is not fenced."""

    match = _FENCE_RE.match(text.strip())
    if not match:
        return None
    return match.group(1).strip()


def find_balanced_block(text: str, opener: str = "{") -> Optional[str]:
    """Return the first balanced block starting with ``opener``.

    Brackets inside JSON string literals are ignored.
    """

    closer = "}" if opener == "{" else "]"
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        start = text.find(opener, start + 1)
    return None


def _loads(candidate: Optional[str]) -> tuple[bool, Any]:
    if candidate is None:
        return False, None
    try:
        return True, json.loads(candidate)
    except json.JSONDecodeError:
        return False, None


def extract_json(text: str, *, expect: str = "object") -> ExtractionResult:
    """Apply the extraction rules to ``text``.

    ``expect`` is ``"object"`` or ``"array"`` and picks the bracket pair used
    by the last rule. Raises :class:`JSONExtractionError` when nothing parses.
    """

    if not text or not text.strip():
        raise JSONExtractionError("empty response")
    opener = "[" if expect == "array" else "{"

    ok, data = _loads(text.strip())
    if ok:
        return ExtractionResult(data=data, rule="direct")

    fenced = strip_code_fence(text)
    ok, data = _loads(fenced)
    if ok:
        return ExtractionResult(data=data, rule="fence")

    source = fenced if fenced is not None else text
    ok, data = _loads(find_balanced_block(source, opener))
    if ok:
        return ExtractionResult(data=data, rule="brackets")

    raise JSONExtractionError(f"no JSON {expect} found in response ({len(text)} chars)")


__all__ = [
    "ExtractionResult",
    "JSONExtractionError",
    "extract_json",
    "find_balanced_block",
    "strip_code_fence",
]
