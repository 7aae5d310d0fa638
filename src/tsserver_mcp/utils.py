from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from tsserver_mcp.schema_types import ListItem, SymbolDisplayPart


def convert_to_display_string(parts: Optional[Iterable[SymbolDisplayPart]]) -> str:
    """Join tsserver display parts into plain text."""

    if not parts:
        return ""
    if isinstance(parts, str):
        return parts
    return "".join(part.get("text", "") for part in parts)


def get_kind(kind: str, kind_symbols: Mapping[str, str] | None = None) -> str:
    if kind_symbols and kind in kind_symbols:
        return kind_symbols[kind]
    return kind


def trim(text: str) -> str:
    return (text or "").strip()


def truncate_message(message: str, columns: int) -> str:
    """Fit ``message`` on one command-line row of ``columns`` cells."""

    first_line = (message or "").split("\n", 1)[0]
    if columns <= 15 or len(first_line) < columns - 12:
        return first_line
    return first_line[: columns - 15] + "..."


def get_params(parameters: List[Dict[str, str]], separator: str) -> str:
    return separator.join(param.get("text", "") for param in parameters)


def is_rename_success(info: Mapping[str, Any] | None) -> bool:
    return bool(info) and info.get("canRename") is True


def location_item(
    file: str, start: Mapping[str, int], text: str, *, item_type: str | None = None
) -> ListItem:
    item: ListItem = {
        "filename": file,
        "lnum": int(start["line"]),
        "col": int(start["offset"]),
        "text": text,
    }
    if item_type:
        item["type"] = item_type
    return item


def references_to_items(refs: Iterable[Mapping[str, Any]]) -> List[ListItem]:
    return [location_item(ref["file"], ref["start"], trim(ref.get("lineText", ""))) for ref in refs]


def navtree_to_items(file: str, tree: Mapping[str, Any]) -> List[ListItem]:
    """Flatten the top two levels of a navigation tree into list entries."""

    items: List[ListItem] = []
    for symbol in tree.get("childItems") or []:
        spans = symbol.get("spans") or []
        if spans:
            items.append(location_item(file, spans[0]["start"], symbol.get("text", "")))
        for child in symbol.get("childItems") or []:
            child_spans = child.get("spans") or []
            if child_spans:
                items.append(location_item(file, child_spans[0]["start"], child.get("text", "")))
    return items


def navto_to_items(
    results: Iterable[Mapping[str, Any]], kind_symbols: Mapping[str, str] | None = None
) -> List[ListItem]:
    return [
        location_item(
            symbol["file"],
            symbol["start"],
            f"{get_kind(symbol.get('kind', ''), kind_symbols)}\t {symbol.get('name', '')}",
        )
        for symbol in results
    ]


__all__ = [
    "convert_to_display_string",
    "get_kind",
    "get_params",
    "is_rename_success",
    "location_item",
    "navto_to_items",
    "navtree_to_items",
    "references_to_items",
    "trim",
    "truncate_message",
]
