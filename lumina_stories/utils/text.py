"""Text helpers for normalizing model responses and trimming prose."""

import json
import re

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)\n?```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    m = _FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    return text.strip()


def parse_json_response(text: str) -> dict | list:
    """Extract JSON from an LLM response that may contain markdown fences.

    Raises ValueError when no JSON document can be recovered.
    """
    cleaned = strip_code_fences(text)
    if cleaned.startswith("{") or cleaned.startswith("["):
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            pass
    # Find the outermost JSON structure in surrounding prose
    for open_ch, close_ch in [("[", "]"), ("{", "}")]:
        start = cleaned.find(open_ch)
        if start == -1:
            continue
        end = cleaned.rfind(close_ch)
        if end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                pass
    raise ValueError(f"Could not parse JSON from response: {text[:200]}...")


def truncate_text(text: str, max_chars: int, from_end: bool = False) -> str:
    """Truncate text at sentence boundaries.

    Args:
        text: The text to truncate.
        max_chars: Maximum number of characters.
        from_end: If True, keep the end of the text instead of the beginning.
    """
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text

    if from_end:
        chunk = text[-max_chars:]
        # Start on a sentence boundary near the cut if there is one
        for sep in [". ", "! ", "? ", "\n"]:
            idx = chunk.find(sep)
            if idx != -1 and idx < 200:
                return chunk[idx + len(sep):]
        return "..." + chunk
    else:
        chunk = text[:max_chars]
        best = -1
        for sep in [". ", "! ", "? ", "\n"]:
            idx = chunk.rfind(sep)
            if idx != -1 and idx >= max_chars - 200:
                best = max(best, idx + len(sep))
        if best == -1:
            best = max_chars
        return text[:best] + "..."
