"""
JSON object extraction from free-form model output.

Models often wrap the answer in a fenced block or surround it with prose,
so extraction tries delimiter-aware and balanced-brace strategies before
the caller attempts a strict ``json.loads``.
"""
import json
import logging
from typing import Optional

logger = logging.getLogger("cardforge.json_extractor")


def extract_json_object(text: str) -> Optional[str]:
    """
    Return the most likely JSON object substring of *text*, or ``None``.

    Strategy (in order of reliability):
        1. The whole text, when it already parses as a bare object.
        2. The last ``\\`\\`\\`json ... \\`\\`\\``` (or bare ``\\`\\`\\```) fenced block.
        3. Forward balanced-brace scanning, keeping the last parseable object.
    """
    if not text or not text.strip():
        return None

    stripped = text.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        try:
            json.loads(stripped)
            return stripped
        except json.JSONDecodeError:
            # Several objects or prose between braces; let the scanners pick one
            pass

    return _extract_from_code_block(text) or _extract_by_brace_scan(text)


def load_json_object(text: str) -> tuple[Optional[dict], str]:
    """Extract and strictly parse a JSON object.

    Returns ``(obj, "")`` on success and ``(None, reason)`` otherwise.
    """
    raw = extract_json_object(text)
    if raw is None:
        logger.warning(
            "json_extract_failed | strategy=none_matched | text_len=%d | tail=%.200s",
            len(text or ""), (text or "")[-200:],
        )
        return None, "no JSON object found in model output"

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning(
            "json_extract_failed | strategy=parse_error | error=%s | raw_head=%.500s",
            exc, raw[:500],
        )
        return None, f"invalid JSON: {exc}"

    if not isinstance(parsed, dict):
        logger.warning(
            "json_extract_failed | strategy=not_a_dict | type=%s",
            type(parsed).__name__,
        )
        return None, f"expected a JSON object, got {type(parsed).__name__}"

    return parsed, ""


# ---------------------------------------------------------------------------
# Extraction strategies
# ---------------------------------------------------------------------------

def _extract_from_code_block(text: str) -> Optional[str]:
    """Extract the body of the **last** fenced code block."""
    for marker in ("```json", "```"):
        idx = text.rfind(marker)
        if marker == "```" and idx != -1:
            # rfind on a bare fence lands on the closing one; step back to its opener
            idx = text.rfind(marker, 0, idx)
        if idx == -1:
            continue

        start = idx + len(marker)
        end = text.find("```", start)
        if end == -1:
            # Unclosed code block, take everything after the marker.
            candidate = text[start:].strip()
        else:
            candidate = text[start:end].strip()
        if candidate.startswith("{"):
            return candidate
    return None


def _extract_by_brace_scan(text: str) -> Optional[str]:
    """
    Return the last top-level balanced ``{…}`` block in *text* that parses.

    Scans forward so a nested object is never mistaken for the outer one;
    stray ``{`` in prose simply fail to parse and are skipped.
    """
    found: Optional[str] = None
    pos = 0

    while True:
        open_idx = text.find("{", pos)
        if open_idx == -1:
            return found

        close_idx = _find_matching_brace(text, open_idx)
        if close_idx is not None:
            candidate = text[open_idx : close_idx + 1]
            try:
                json.loads(candidate)
                found = candidate
                pos = close_idx + 1
                continue
            except json.JSONDecodeError:
                pass

        pos = open_idx + 1


def _find_matching_brace(text: str, start: int) -> Optional[int]:
    """
    Return the index of the ``}`` that balances the ``{`` at *start*,
    respecting JSON string literals so embedded braces don't confuse the count.
    """
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i

    return None
