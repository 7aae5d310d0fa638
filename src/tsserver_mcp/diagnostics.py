from __future__ import annotations

import threading
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from mcp.server.fastmcp.utilities.logging import get_logger

from tsserver_mcp.config import DEFAULT_SIGNS
from tsserver_mcp.schema_types import ListItem

logger = get_logger(__name__)

STATE_CLEAN = "clean"
STATE_REQUESTED = "requested"
STATE_UPDATED = "updated"

_LIST_TYPES = {"error": "E", "warning": "W", "suggestion": "I", "message": "I"}


@dataclass(frozen=True)
class DiagnosticSign:
    file: str
    start_line: int
    start_offset: int
    end_line: int
    end_offset: int
    code: int
    severity: str
    text: str

    @classmethod
    def from_diagnostic(cls, file: str, diagnostic: Mapping[str, Any]) -> "DiagnosticSign":
        start = diagnostic.get("start") or {}
        end = diagnostic.get("end") or start
        return cls(
            file=file,
            start_line=int(start.get("line", 1)),
            start_offset=int(start.get("offset", 1)),
            end_line=int(end.get("line", 1)),
            end_offset=int(end.get("offset", 1)),
            code=int(diagnostic.get("code") or 0),
            severity=str(diagnostic.get("category") or "error"),
            text=str(diagnostic.get("text") or ""),
        )

    def contains(self, line: int, offset: int) -> bool:
        return (self.start_line, self.start_offset) <= (line, offset) < (
            self.end_line,
            self.end_offset,
        )

    def to_list_item(self) -> ListItem:
        return {
            "filename": self.file,
            "lnum": self.start_line,
            "col": self.start_offset,
            "text": self.text,
            "type": _LIST_TYPES.get(self.severity, "E"),
        }


class DiagnosticHost:
    """Per-file table of the diagnostics tsserver last reported.

    A stored set always replaces the previous one for its file. Each refresh
    takes a revision from :meth:`begin_request`; a result stored with an older
    revision than the newest issued one is dropped so a slow response cannot
    overwrite a newer one.
    """

    def __init__(self, sign_definitions: Iterable[Mapping[str, str]] | None = None) -> None:
        self._lock = Lock()
        self._signs: Dict[str, List[DiagnosticSign]] = {}
        self._issued: Dict[str, int] = {}
        self._states: Dict[str, str] = {}
        self.sign_definitions: List[Dict[str, str]] = [
            dict(definition) for definition in (sign_definitions or DEFAULT_SIGNS)
        ]

    def begin_request(self, file: str) -> int:
        with self._lock:
            revision = self._issued.get(file, 0) + 1
            self._issued[file] = revision
            self._states[file] = STATE_REQUESTED
            return revision

    def store(
        self,
        file: str,
        diagnostics: Iterable[Mapping[str, Any]],
        revision: int | None = None,
    ) -> bool:
        signs = [DiagnosticSign.from_diagnostic(file, diag) for diag in diagnostics]
        with self._lock:
            latest = self._issued.get(file, 0)
            if revision is not None and revision < latest:
                logger.debug(
                    "Dropping stale diagnostics for %s (revision %d < %d)", file, revision, latest
                )
                return False
            self._signs[file] = signs
            self._states[file] = STATE_UPDATED
        return True

    def clear(self, file: str | None = None) -> None:
        with self._lock:
            if file is None:
                self._signs.clear()
                self._issued.clear()
                self._states.clear()
                return
            self._signs.pop(file, None)
            self._states.pop(file, None)

    def state(self, file: str) -> str:
        with self._lock:
            return self._states.get(file, STATE_CLEAN)

    def signs_for(self, file: str) -> List[DiagnosticSign]:
        with self._lock:
            return list(self._signs.get(file, []))

    def get_sign(self, file: str, line: int, offset: int) -> Optional[DiagnosticSign]:
        with self._lock:
            for sign in self._signs.get(file, []):
                if sign.contains(line, offset):
                    return sign
        return None

    def sign_name(self, severity: str) -> str:
        for definition in self.sign_definitions:
            if definition.get("severity") == severity:
                return definition["name"]
        return self.sign_definitions[0]["name"] if self.sign_definitions else "TSerror"

    def placements(self, file: str) -> List[Dict[str, Any]]:
        return [
            {"name": self.sign_name(sign.severity), "line": sign.start_line, "file": file}
            for sign in self.signs_for(file)
        ]


class DiagnosticScheduler:
    """Debounce refresh requests: one pending timer per file, latest wins."""

    def __init__(
        self,
        callback: Callable[[str], None],
        delay: float = 0.5,
        *,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self._callback = callback
        self.delay = delay
        self._timer_factory = timer_factory
        self._lock = Lock()
        self._timers: Dict[str, threading.Timer] = {}
        self._generation = 0

    def trigger(self, file: str) -> None:
        with self._lock:
            previous = self._timers.pop(file, None)
            if previous is not None:
                previous.cancel()
            self._generation += 1
            timer = self._timer_factory(self.delay, self._fire, args=(file, self._generation))
            timer.daemon = True
            timer.generation = self._generation
            self._timers[file] = timer
        timer.start()

    def pending(self, file: str) -> bool:
        with self._lock:
            return file in self._timers

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _fire(self, file: str, generation: int) -> None:
        with self._lock:
            timer = self._timers.get(file)
            if timer is None or getattr(timer, "generation", None) != generation:
                return
            del self._timers[file]
        try:
            self._callback(file)
        except Exception:
            logger.exception("Diagnostics refresh for %s failed", file)


__all__ = [
    "DiagnosticHost",
    "DiagnosticScheduler",
    "DiagnosticSign",
    "STATE_CLEAN",
    "STATE_REQUESTED",
    "STATE_UPDATED",
]
