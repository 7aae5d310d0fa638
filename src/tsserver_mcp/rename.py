"""Multi-file rename planned in full before any buffer changes."""

from __future__ import annotations

from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from mcp.server.fastmcp.utilities.logging import get_logger

from tsserver_mcp.errors import RenameError
from tsserver_mcp.schema_types import ListItem
from tsserver_mcp.utils import is_rename_success

logger = get_logger(__name__)


@dataclass(frozen=True)
class RenameLocation:
    file: str
    line: int
    offset: int
    end_offset: int


@dataclass
class RenamePlan:
    symbol: str
    new_name: str
    trigger: Tuple[int, int]
    edits: Dict[str, Dict[int, str]] = field(default_factory=dict)
    changes: List[ListItem] = field(default_factory=list)

    @property
    def edit_count(self) -> int:
        return len(self.changes)

    @property
    def file_count(self) -> int:
        return len(self.edits)


def rewrite_line(original: str, symbol: str, new_name: str, offsets: List[Tuple[int, int]]) -> str:
    """Replace every ``(offset, end_offset)`` span of ``original`` with ``new_name``.

    Offsets are 1-based and refer to ``original``; spans are rewritten from the
    right so earlier offsets stay valid.
    """
    result = original
    boundary = len(original) + 1
    for offset, end_offset in sorted(set(offsets), reverse=True):
        if end_offset > boundary:
            raise RenameError(f"Overlapping rename spans at offset {offset}")
        found = original[offset - 1 : end_offset - 1]
        if found != symbol:
            raise RenameError(
                f"Expected `{symbol}` at offset {offset}, found `{found}`",
                offset=offset,
            )
        result = result[: offset - 1] + new_name + result[end_offset - 1 :]
        boundary = offset
    return result


class RenameOrchestrator:
    def __init__(self, client, editor, *, lock=None) -> None:
        self.client = client
        self.editor = editor
        self.lock = lock

    def group_locations(
        self, response: Mapping[str, Any], symbol: str
    ) -> Dict[str, List[RenameLocation]]:
        grouped: Dict[str, List[RenameLocation]] = {}
        for file_locs in response.get("locs") or []:
            file = file_locs["file"]
            for loc in file_locs.get("locs") or []:
                start = loc["start"]
                end = loc.get("end") or {
                    "line": start["line"],
                    "offset": start["offset"] + len(symbol),
                }
                if end["line"] != start["line"]:
                    raise RenameError(f"Rename span in {file} crosses lines", file=file)
                grouped.setdefault(file, []).append(
                    RenameLocation(file, start["line"], start["offset"], end["offset"])
                )
        return grouped

    def _trigger_symbol(self, file: str, info: Mapping[str, Any], fallback: str) -> str:
        span = info.get("triggerSpan") or {}
        start = span.get("start")
        end = span.get("end")
        if not start or not end or start["line"] != end["line"]:
            return fallback
        lines = self.editor.buffer_lines(file)
        if not 0 < start["line"] <= len(lines):
            return fallback
        return lines[start["line"] - 1][start["offset"] - 1 : end["offset"] - 1] or fallback

    def plan(
        self, file: str, symbol: str, new_name: str, response: Mapping[str, Any]
    ) -> RenamePlan:
        info = response.get("info") or {}
        if not is_rename_success(info):
            raise RenameError(
                info.get("localizedErrorMessage") or "You cannot rename this element.",
                file=file,
            )
        symbol = self._trigger_symbol(file, info, symbol)
        trigger_start = (info.get("triggerSpan") or {}).get("start") or {}
        plan = RenamePlan(
            symbol=symbol,
            new_name=new_name,
            trigger=(trigger_start.get("line", 1), trigger_start.get("offset", 1)),
        )

        for loc_file, locations in self.group_locations(response, symbol).items():
            lines = self.editor.buffer_lines(loc_file)
            by_line: Dict[int, List[Tuple[int, int]]] = {}
            for location in locations:
                by_line.setdefault(location.line, []).append(
                    (location.offset, location.end_offset)
                )
            file_edits: Dict[int, str] = {}
            for line, offsets in sorted(by_line.items()):
                if not 0 < line <= len(lines):
                    raise RenameError(f"Line {line} is outside {loc_file}", file=loc_file)
                try:
                    file_edits[line] = rewrite_line(lines[line - 1], symbol, new_name, offsets)
                except RenameError as exc:
                    raise RenameError(f"{loc_file}:{line}: {exc.message}", file=loc_file) from exc
            plan.edits[loc_file] = file_edits
            for location in sorted(locations, key=lambda loc: (loc.line, loc.offset)):
                plan.changes.append(
                    {
                        "filename": loc_file,
                        "lnum": location.line,
                        "col": location.offset,
                        "text": f"Replaced {symbol} with {new_name}",
                    }
                )
        return plan

    def apply(self, plan: RenamePlan, origin: str) -> None:
        for file, edits in plan.edits.items():
            self.editor.edit(file)
            self.editor.apply_line_edits(file, edits)
        self.editor.edit(origin)
        self.editor.set_cursor(*plan.trigger)
        self.editor.set_quickfix(plan.changes, "Renames")
        self.editor.echo(f"Replaced {plan.edit_count} in {plan.file_count} files")

    def rename(self, file: str, line: int, offset: int, symbol: str, new_name: str) -> RenamePlan:
        response = self.client.rename(file, line, offset)
        # buffers must not move between planning and applying
        with self.lock or nullcontext():
            plan = self.plan(file, symbol, new_name, response)
            logger.info(
                "Renaming %s to %s: %d edits in %d files",
                plan.symbol,
                new_name,
                plan.edit_count,
                plan.file_count,
            )
            self.apply(plan, file)
        return plan


__all__ = ["RenameLocation", "RenameOrchestrator", "RenamePlan", "rewrite_line"]
