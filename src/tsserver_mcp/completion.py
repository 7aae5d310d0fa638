"""Completion candidates: fetch, narrow, and elaborate under a size budget.

tsserver answers global completions already narrowed by the typed prefix, but
member completions (after ``.``) come back as the full member bag. Elaborating
every candidate costs one detail payload per name, so the pipeline narrows
member results by prefix and only asks for details once the candidate count is
within ``max_detail``. Above that it returns shallow entries.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from mcp.server.fastmcp.utilities.logging import get_logger

from tsserver_mcp.schema_types import CompletionItem
from tsserver_mcp.utils import convert_to_display_string, get_kind

logger = get_logger(__name__)

MEMBER_COMPLETION_VERSION = "3.0"
TRIGGER_CHARACTERS = frozenset(".\"'`/@<")
CALLABLE_KINDS = frozenset({"function", "method", "local function", "constructor"})


def _is_word_char(char: str) -> bool:
    return char.isalnum() or char in "_$"


def trigger_character(line_text: str, offset: int) -> Optional[str]:
    """Return the trigger character right before the 1-based ``offset``, if any."""

    index = offset - 2
    if 0 <= index < len(line_text) and line_text[index] in TRIGGER_CHARACTERS:
        return line_text[index]
    return None


def completion_start(line_text: str, col: int) -> int:
    """Return the 0-based column where the word being completed starts."""

    start = min(col, len(line_text))
    while start > 0 and _is_word_char(line_text[start - 1]):
        start -= 1
    return start


def reduce_by_prefix(prefix: str, entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [entry for entry in entries if entry.get("name", "").startswith(prefix)]


@dataclass
class CompletionResult:
    is_member_completion: bool
    entries: List[Dict[str, Any]] = field(default_factory=list)


class CompletionStrategy(ABC):
    command: str = ""

    def build(
        self, file: str, line: int, offset: int, prefix: str, line_text: str
    ) -> Dict[str, Any]:
        return {
            "file": file,
            "line": line,
            "offset": offset,
            "prefix": prefix,
            "includeInsertTextCompletions": False,
            "includeExternalModuleExports": False,
        }

    @abstractmethod
    def fetch(self, client, arguments: Dict[str, Any]) -> CompletionResult: ...


class LegacyCompletionStrategy(CompletionStrategy):
    """tsserver 2.x: ``completions`` returns a bare entry list."""

    command = "completions"

    def fetch(self, client, arguments: Dict[str, Any]) -> CompletionResult:
        return CompletionResult(False, list(client.completions(arguments)))


class MemberAwareCompletionStrategy(CompletionStrategy):
    """tsserver 3.x+: ``completionInfo`` flags member completions."""

    command = "completionInfo"

    def build(
        self, file: str, line: int, offset: int, prefix: str, line_text: str
    ) -> Dict[str, Any]:
        arguments = super().build(file, line, offset, prefix, line_text)
        trigger = trigger_character(line_text, offset)
        if trigger is not None:
            arguments["triggerCharacter"] = trigger
        return arguments

    def fetch(self, client, arguments: Dict[str, Any]) -> CompletionResult:
        body = client.completion_info(arguments)
        return CompletionResult(
            bool(body.get("isMemberCompletion")), list(body.get("entries") or [])
        )


def select_strategy(gate) -> CompletionStrategy:
    if gate.is_at_least(MEMBER_COMPLETION_VERSION):
        return MemberAwareCompletionStrategy()
    return LegacyCompletionStrategy()


def _parameter_names(display_parts: List[Dict[str, str]]) -> List[str]:
    names: List[str] = []
    depth = 0
    for part in display_parts:
        text = part.get("text", "")
        if part.get("kind") == "punctuation" and text == "(":
            depth += 1
        elif part.get("kind") == "punctuation" and text == ")":
            depth -= 1
            if depth == 0:
                break
        elif part.get("kind") == "parameterName" and depth == 1:
            names.append(text)
    return names


def build_snippet(name: str, display_parts: List[Dict[str, str]]) -> str:
    params = ", ".join(
        f"${{{index}:{param}}}" for index, param in enumerate(_parameter_names(display_parts), 1)
    )
    return f"{name}({params})"


def convert_entry(
    entry: Mapping[str, Any], kind_symbols: Mapping[str, str] | None = None
) -> CompletionItem:
    return {"word": entry["name"], "kind": get_kind(entry.get("kind", ""), kind_symbols)}


def convert_detail_entry(
    detail: Mapping[str, Any],
    kind_symbols: Mapping[str, str] | None = None,
    expand_snippet: bool = False,
) -> CompletionItem:
    name = detail["name"]
    kind = detail.get("kind", "")
    display_parts = detail.get("displayParts") or []
    display = convert_to_display_string(display_parts)
    documentation = convert_to_display_string(detail.get("documentation"))
    item: CompletionItem = {
        "word": name,
        "kind": get_kind(kind, kind_symbols),
        "abbr": name,
        "menu": display.split("\n", 1)[0],
        "info": f"{display}\n\n{documentation}" if documentation else display,
    }
    if expand_snippet and kind in CALLABLE_KINDS:
        item["snippet"] = build_snippet(name, display_parts)
    return item


class CompletionPipeline:
    def __init__(
        self,
        client,
        strategy: CompletionStrategy,
        *,
        max_detail: int = 25,
        expand_snippet: bool = False,
        kind_symbols: Mapping[str, str] | None = None,
    ) -> None:
        self.client = client
        self.strategy = strategy
        self.max_detail = max_detail
        self.expand_snippet = expand_snippet
        self.kind_symbols = dict(kind_symbols or {})

    def complete(
        self, file: str, prefix: str, line: int, offset: int, line_text: str = ""
    ) -> List[CompletionItem]:
        arguments = self.strategy.build(file, line, offset, prefix, line_text)
        result = self.strategy.fetch(self.client, arguments)

        candidates = result.entries
        if result.is_member_completion and prefix:
            candidates = reduce_by_prefix(prefix, candidates)

        if len(candidates) > self.max_detail:
            logger.debug(
                "%d completion candidates exceed detail limit %d", len(candidates), self.max_detail
            )
            return [convert_entry(entry, self.kind_symbols) for entry in candidates]
        if not candidates:
            return []

        details = self.client.completion_details(
            file, line, offset, [entry["name"] for entry in candidates]
        )
        return [
            convert_detail_entry(detail, self.kind_symbols, self.expand_snippet)
            for detail in details
        ]


__all__ = [
    "CompletionPipeline",
    "CompletionResult",
    "CompletionStrategy",
    "LegacyCompletionStrategy",
    "MemberAwareCompletionStrategy",
    "build_snippet",
    "completion_start",
    "convert_detail_entry",
    "convert_entry",
    "reduce_by_prefix",
    "select_strategy",
    "trigger_character",
]
