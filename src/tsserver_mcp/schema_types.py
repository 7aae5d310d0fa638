"""Typed payload primitives for the tsserver bridge."""

from __future__ import annotations

from typing import Any, Dict, List, TypedDict

# ----- Error codes ---------------------------------------------------------
ERROR_BAD_REQUEST = "bad_request"
ERROR_INVALID_PATH = "invalid_path"
ERROR_SERVER_UNAVAILABLE = "server_unavailable"
ERROR_PROTOCOL = "protocol_error"
ERROR_NOT_FOUND = "not_found"
ERROR_RENAME_FAILED = "rename_failed"
ERROR_CANCELED = "canceled"
ERROR_UNKNOWN = "unknown"


# ----- tsserver wire shapes -------------------------------------------------
class Location(TypedDict):
    line: int
    offset: int


class TextSpan(TypedDict):
    start: Location
    end: Location


class FileSpan(TextSpan):
    file: str


class SymbolDisplayPart(TypedDict):
    text: str
    kind: str


class CodeEdit(TypedDict):
    start: Location
    end: Location
    newText: str


class FileCodeEdits(TypedDict):
    fileName: str
    textChanges: List[CodeEdit]


class CodeFixAction(TypedDict, total=False):
    description: str
    changes: List[FileCodeEdits]
    fixName: str


# ----- Editor-facing shapes -------------------------------------------------
class ListItem(TypedDict, total=False):
    """Entry for a quickfix or location list; ``lnum``/``col`` are 1-based."""

    filename: str
    lnum: int
    col: int
    text: str
    type: str


class CompletionItem(TypedDict, total=False):
    word: str
    kind: str
    abbr: str
    menu: str
    info: str
    snippet: str


class FloatingAnnotation(TypedDict):
    file: str
    line: int
    offset: int
    lines: List[str]


ResponseBody = Dict[str, Any]


__all__ = [
    "CodeEdit",
    "CodeFixAction",
    "CompletionItem",
    "FileCodeEdits",
    "FileSpan",
    "FloatingAnnotation",
    "ListItem",
    "Location",
    "ResponseBody",
    "SymbolDisplayPart",
    "TextSpan",
    "ERROR_BAD_REQUEST",
    "ERROR_CANCELED",
    "ERROR_INVALID_PATH",
    "ERROR_NOT_FOUND",
    "ERROR_PROTOCOL",
    "ERROR_RENAME_FAILED",
    "ERROR_SERVER_UNAVAILABLE",
    "ERROR_UNKNOWN",
]
