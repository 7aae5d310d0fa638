"""Editor collaborator interface and a file-backed implementation.

The bridge only talks to an editor through :class:`Editor`. ``WorkspaceEditor``
keeps buffers in memory on top of the filesystem so the MCP server can drive
the bridge without a running editor: unsaved buffer text, cursor, lists,
messages and session variables all live here.

Buffers are shared. The focused file, the cursor and the last selection
prompt belong to the calling thread, so tool calls running side by side each
work on their own position.
"""

from __future__ import annotations

import os

from collections import deque
from dataclasses import dataclass, field
from threading import RLock, get_ident, local
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Protocol, Tuple

from tsserver_mcp.file_utils import get_file_contents
from tsserver_mcp.schema_types import FloatingAnnotation, ListItem

ChangeListener = Callable[[str], None]


class Editor(Protocol):
    supports_floating: bool
    columns: int

    def current_file(self) -> str: ...

    def cursor(self) -> Tuple[int, int]:
        """Return ``(line, col)``: 1-based line, 0-based byte column."""
        ...

    def set_cursor(self, line: int, offset: int) -> None:
        """Move the cursor; ``offset`` is 1-based like ``cursor()`` in Vim."""
        ...

    def current_line(self) -> str: ...

    def word_under_cursor(self) -> str: ...

    def buffer_lines(self, file: str) -> List[str]: ...

    def endofline(self, file: str) -> bool: ...

    def apply_line_edits(self, file: str, edits: Mapping[int, str]) -> None: ...

    def set_buffer_lines(self, file: str, lines: List[str]) -> None: ...

    def edit(self, file: str) -> None: ...

    def preview(self, file: str, line: int) -> None: ...

    def print_in_split(self, bufname: str, lines: List[str]) -> None: ...

    def echo(self, message: str, highlight: str = "MoreMsg") -> None: ...

    def open_floating(self, annotation: FloatingAnnotation) -> None: ...

    def close_floating(self) -> None: ...

    def set_quickfix(self, items: List[ListItem], title: str) -> None: ...

    def set_loclist(self, items: List[ListItem], title: str) -> None: ...

    def prompt(self, message: str) -> Optional[str]: ...

    def select(self, message: str, options: List[str]) -> Optional[int]:
        """Return the 0-based index of the chosen option, or None when canceled."""
        ...

    def get_var(self, name: str, default: Any = None) -> Any: ...

    def set_var(self, name: str, value: Any) -> None: ...

    def place_signs(self, file: str, signs: List[Dict[str, Any]]) -> None: ...

    def on_lines_changed(self, file: str, listener: ChangeListener) -> None: ...


@dataclass
class EditorMessage:
    text: str
    highlight: str
    thread: int = 0


@dataclass
class Buffer:
    path: str
    lines: List[str]
    endofline: bool = True
    modified: bool = False
    listeners: List[ChangeListener] = field(default_factory=list)

    @classmethod
    def from_text(cls, path: str, text: str) -> "Buffer":
        lines = text.split("\n")
        endofline = len(lines) > 1 and lines[-1] == ""
        if endofline:
            lines.pop()
        return cls(path=path, lines=lines, endofline=endofline)

    def text(self) -> str:
        body = "\n".join(self.lines)
        return body + "\n" if self.endofline else body


class _FocusView(local):
    def __init__(self) -> None:
        self.current: Optional[str] = None
        self.cursor: Tuple[int, int] = (1, 0)
        self.last_select: Optional[Tuple[str, List[str]]] = None


class WorkspaceEditor:
    supports_floating = True

    def __init__(self, root: str | None = None, *, columns: int = 120) -> None:
        self.root = os.path.abspath(root) if root else os.getcwd()
        self.columns = columns
        self._lock = RLock()
        self.buffers: Dict[str, Buffer] = {}
        self.windows: List[str] = []
        self._view = _FocusView()
        self.messages: List[EditorMessage] = []
        self.floating: Optional[FloatingAnnotation] = None
        self.quickfix: Tuple[str, List[ListItem]] = ("", [])
        self.loclist: Tuple[str, List[ListItem]] = ("", [])
        self.scratch: Dict[str, List[str]] = {}
        self.previewed: Optional[Tuple[str, int]] = None
        self.variables: Dict[str, Any] = {}
        self.signs: Dict[str, List[Dict[str, Any]]] = {}
        self.prompt_answers: Deque[Optional[str]] = deque()
        self.select_answers: Deque[Optional[int]] = deque()

    @property
    def last_select(self) -> Optional[Tuple[str, List[str]]]:
        """The last ``select`` prompt shown on this thread."""
        return self._view.last_select

    @last_select.setter
    def last_select(self, value: Optional[Tuple[str, List[str]]]) -> None:
        self._view.last_select = value

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------
    def resolve(self, file: str) -> str:
        if os.path.isabs(file):
            return os.path.normpath(file)
        return os.path.normpath(os.path.join(self.root, file))

    def _buffer(self, file: str) -> Buffer:
        path = self.resolve(file)
        with self._lock:
            buffer = self.buffers.get(path)
            if buffer is None:
                text = get_file_contents(path) if os.path.isfile(path) else ""
                buffer = Buffer.from_text(path, text)
                self.buffers[path] = buffer
            return buffer

    def open(self, file: str, *, text: str | None = None) -> str:
        """Load ``file`` (optionally with unsaved ``text``) and focus it."""

        path = self.resolve(file)
        with self._lock:
            self._buffer(path)
            if text is not None:
                self.set_text(path, text)
            self.edit(path)
        return path

    def set_text(self, file: str, text: str) -> None:
        with self._lock:
            buffer = self._buffer(file)
            replacement = Buffer.from_text(buffer.path, text)
            buffer.lines = replacement.lines
            buffer.endofline = replacement.endofline
            buffer.modified = True
            listeners = list(buffer.listeners)
        for listener in listeners:
            listener(buffer.path)

    def text(self, file: str) -> str:
        with self._lock:
            return self._buffer(file).text()

    def write(self, file: str | None = None) -> str:
        with self._lock:
            buffer = self._buffer(file or self.current_file())
            with open(buffer.path, "w", encoding="utf-8") as handle:
                handle.write(buffer.text())
            buffer.modified = False
            return buffer.path

    def buffer_lines(self, file: str) -> List[str]:
        with self._lock:
            return list(self._buffer(file).lines)

    def endofline(self, file: str) -> bool:
        with self._lock:
            return self._buffer(file).endofline

    def set_buffer_lines(self, file: str, lines: List[str]) -> None:
        with self._lock:
            buffer = self._buffer(file)
            buffer.lines = list(lines)
            buffer.modified = True
            listeners = list(buffer.listeners)
        for listener in listeners:
            listener(buffer.path)

    def apply_line_edits(self, file: str, edits: Mapping[int, str]) -> None:
        """Replace several 1-based lines at once; nothing changes if any is out of range."""

        with self._lock:
            buffer = self._buffer(file)
            for line in edits:
                if line < 1 or line > len(buffer.lines):
                    raise IndexError(f"line {line} outside {buffer.path}")
            lines = list(buffer.lines)
            for line, text in edits.items():
                lines[line - 1] = text
        self.set_buffer_lines(file, lines)

    def on_lines_changed(self, file: str, listener: ChangeListener) -> None:
        with self._lock:
            buffer = self._buffer(file)
            if listener not in buffer.listeners:
                buffer.listeners.append(listener)

    # ------------------------------------------------------------------
    # Windows and cursor
    # ------------------------------------------------------------------
    def current_file(self) -> str:
        with self._lock:
            if self._view.current is None:
                raise LookupError("no buffer is focused")
            return self._view.current

    def edit(self, file: str) -> None:
        path = self.resolve(file)
        with self._lock:
            self._buffer(path)
            if self._view.current != path:
                self._view.cursor = (1, 0)
            self._view.current = path
            if path not in self.windows:
                self.windows.append(path)

    def preview(self, file: str, line: int) -> None:
        with self._lock:
            self._buffer(file)
            self.previewed = (self.resolve(file), line)

    def print_in_split(self, bufname: str, lines: List[str]) -> None:
        with self._lock:
            self.scratch[bufname] = list(lines)

    def cursor(self) -> Tuple[int, int]:
        with self._lock:
            return self._view.cursor

    def set_cursor(self, line: int, offset: int) -> None:
        with self._lock:
            self._view.cursor = (max(line, 1), max(offset - 1, 0))

    def current_line(self) -> str:
        with self._lock:
            lines = self._buffer(self.current_file()).lines
            line = self._view.cursor[0]
            return lines[line - 1] if 0 < line <= len(lines) else ""

    def word_under_cursor(self) -> str:
        text = self.current_line()
        col = self.cursor()[1]
        if not text:
            return ""

        def is_word(char: str) -> bool:
            return char.isalnum() or char in "_$"

        col = min(col, len(text) - 1)
        if not is_word(text[col]):
            return ""
        start = col
        while start > 0 and is_word(text[start - 1]):
            start -= 1
        end = col
        while end < len(text) and is_word(text[end]):
            end += 1
        return text[start:end]

    # ------------------------------------------------------------------
    # UI surfaces
    # ------------------------------------------------------------------
    def echo(self, message: str, highlight: str = "MoreMsg") -> None:
        with self._lock:
            self.messages.append(EditorMessage(text=message, highlight=highlight, thread=get_ident()))

    def message_mark(self) -> int:
        with self._lock:
            return len(self.messages)

    def messages_since(self, mark: int) -> List[EditorMessage]:
        """Messages echoed on the calling thread after ``mark``."""
        thread = get_ident()
        with self._lock:
            return [message for message in self.messages[mark:] if message.thread == thread]

    def open_floating(self, annotation: FloatingAnnotation) -> None:
        with self._lock:
            self.floating = annotation

    def close_floating(self) -> None:
        with self._lock:
            self.floating = None

    def set_quickfix(self, items: List[ListItem], title: str) -> None:
        with self._lock:
            self.quickfix = (title, list(items))

    def set_loclist(self, items: List[ListItem], title: str) -> None:
        with self._lock:
            self.loclist = (title, list(items))

    def prompt(self, message: str) -> Optional[str]:
        with self._lock:
            return self.prompt_answers.popleft() if self.prompt_answers else None

    def select(self, message: str, options: List[str]) -> Optional[int]:
        with self._lock:
            self.last_select = (message, list(options))
            return self.select_answers.popleft() if self.select_answers else None

    def get_var(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self.variables.get(name, default)

    def set_var(self, name: str, value: Any) -> None:
        with self._lock:
            self.variables[name] = value

    def place_signs(self, file: str, signs: List[Dict[str, Any]]) -> None:
        with self._lock:
            self.signs[self.resolve(file)] = list(signs)


__all__ = ["Buffer", "Editor", "EditorMessage", "WorkspaceEditor"]
