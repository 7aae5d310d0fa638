"""Uniform MCP tool results: a Markdown summary plus structured content."""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

CHARACTER_LIMIT = 25_000
DEFAULT_RESPONSE_FORMAT = "markdown"
JSON_RESPONSE_FORMAT = "json"
_VALID_RESPONSE_FORMATS = {DEFAULT_RESPONSE_FORMAT, JSON_RESPONSE_FORMAT}

_TRUNCATION_NOTE = (
    "Output truncated to {limit:,} characters. Narrow the request (a smaller file, "
    "a more specific prefix or query) to see the rest."
)


def normalize_response_format(value: Optional[str]) -> str:
    normalized = (value or "").strip().lower()
    if normalized in _VALID_RESPONSE_FORMATS:
        return normalized
    return DEFAULT_RESPONSE_FORMAT


def build_markdown_summary(summary: str, details: Sequence[str] | None = None) -> str:
    headline = summary.strip() or "(no summary provided)"
    lines = [f"**Summary:** {headline}"]
    lines.extend(f"- {detail.strip()}" for detail in details or [] if (detail or "").strip())
    return "\n".join(lines)


def apply_character_limit(
    items: Sequence[Dict[str, Any]],
    *,
    limit: int = CHARACTER_LIMIT,
) -> Tuple[List[Dict[str, Any]], bool, List[str]]:
    """Shorten text items, last first, until their total fits in ``limit``.

    Returns the copied items, whether anything was cut, and the labels of the
    items that were cut.
    """
    processed = [copy.deepcopy(item) for item in items]
    texts = [
        (index, item)
        for index, item in enumerate(processed)
        if item.get("type") == "text" and isinstance(item.get("text"), str)
    ]
    total = sum(len(item["text"]) for _, item in texts)
    if total <= limit:
        return processed, False, []

    note = f"_Note: {_TRUNCATION_NOTE.format(limit=limit)}_"
    excess = total - max(0, limit - len(note))
    labels: List[str] = []
    for index, item in reversed(texts):
        if excess <= 0:
            break
        text = item["text"]
        cut = min(len(text), excess)
        item["text"] = text[: len(text) - cut].rstrip()
        excess -= cut
        labels.append("summary" if index == texts[0][0] else f"text[{index}]")
    processed.append({"type": "text", "text": note})
    return processed, True, list(reversed(labels))


def extend_structured_with_truncation(
    structured: Optional[Mapping[str, Any]],
    *,
    truncated: bool,
    truncated_sections: Sequence[str],
    limit: int = CHARACTER_LIMIT,
) -> Optional[Dict[str, Any]]:
    if structured is None and not truncated:
        return None
    payload: Dict[str, Any] = copy.deepcopy(dict(structured or {}))
    if truncated:
        meta = payload.setdefault("_meta", {})
        meta["truncated"] = True
        meta["character_limit"] = limit
        meta["truncation_hint"] = _TRUNCATION_NOTE.format(limit=limit)
        if truncated_sections:
            meta["truncated_sections"] = list(truncated_sections)
    return payload


def mcp_result(
    *,
    content: Iterable[Mapping[str, Any]],
    structured: Mapping[str, Any] | None = None,
    is_error: bool = False,
) -> Dict[str, Any]:
    """Return a CallToolResult-compatible payload."""

    content_list = [dict(item) for item in content]
    if not content_list:
        raise ValueError("mcp_result requires at least one content item")
    result: Dict[str, Any] = {"content": content_list, "isError": bool(is_error)}
    if structured is not None:
        result["structuredContent"] = dict(structured)
    return result


__all__ = [
    "CHARACTER_LIMIT",
    "DEFAULT_RESPONSE_FORMAT",
    "JSON_RESPONSE_FORMAT",
    "apply_character_limit",
    "build_markdown_summary",
    "extend_structured_with_truncation",
    "mcp_result",
    "normalize_response_format",
]
