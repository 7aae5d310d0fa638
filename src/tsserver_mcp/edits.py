from __future__ import annotations

from typing import Dict, List, Mapping, Sequence

from tsserver_mcp.schema_types import CodeEdit, FileCodeEdits


def _position_index(lines: Sequence[str], line: int, offset: int) -> int:
    if line < 1 or line > len(lines) + 1:
        raise ValueError(f"line {line} is outside the buffer ({len(lines)} lines)")
    if line == len(lines) + 1:
        if offset != 1:
            raise ValueError(f"offset {offset} past the end of the buffer")
        return sum(len(text) + 1 for text in lines)
    if offset < 1 or offset > len(lines[line - 1]) + 1:
        raise ValueError(f"offset {offset} is outside line {line}")
    return sum(len(text) + 1 for text in lines[: line - 1]) + offset - 1


def apply_text_changes(lines: Sequence[str], changes: Sequence[CodeEdit]) -> List[str]:
    """Return ``lines`` with every change applied.

    All positions refer to the original text, so changes are applied from the
    bottom of the buffer upwards. Insertions at the same position keep their
    given order.
    """
    # every line is newline-terminated so line len(lines) + 1 is end of text
    text = "\n".join(lines) + "\n"
    resolved = []
    for index, change in enumerate(changes):
        start = _position_index(lines, change["start"]["line"], change["start"]["offset"])
        end = _position_index(lines, change["end"]["line"], change["end"]["offset"])
        if end < start:
            raise ValueError("text change ends before it starts")
        resolved.append((start, index, end, change.get("newText", "")))

    for start, _index, end, new_text in sorted(resolved, reverse=True):
        text = text[:start] + new_text + text[end:]
    result = text.split("\n")
    if len(result) > 1 and result[-1] == "":
        result.pop()
    return result


def plan_code_edits(editor, file_edits: Sequence[FileCodeEdits]) -> Dict[str, List[str]]:
    """Compute the new contents of every touched file without modifying any."""

    planned: Dict[str, List[str]] = {}
    for file_edit in file_edits:
        file = file_edit["fileName"]
        current = planned.get(file)
        if current is None:
            current = editor.buffer_lines(file)
        planned[file] = apply_text_changes(current, file_edit.get("textChanges") or [])
    return planned


def apply_code_edits(editor, file_edits: Sequence[FileCodeEdits]) -> int:
    """Apply tsserver ``FileCodeEdits`` to editor buffers; return the edit count."""

    planned = plan_code_edits(editor, file_edits)
    for file, lines in planned.items():
        editor.edit(file)
        editor.set_buffer_lines(file, lines)
    return sum(len(file_edit.get("textChanges") or []) for file_edit in file_edits)


def fix_descriptions(fixes: Sequence[Mapping[str, object]]) -> List[str]:
    return [f"{index}. {fix.get('description', '')}" for index, fix in enumerate(fixes, 1)]


__all__ = ["apply_code_edits", "apply_text_changes", "fix_descriptions", "plan_code_edits"]
