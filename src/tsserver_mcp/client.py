"""Sequenced request/response client for the tsserver stdio protocol.

Requests are written as single JSON lines carrying a ``seq`` number. tsserver
answers with ``response`` messages echoing it as ``request_seq`` and interleaves
unsolicited ``event`` messages. One reader thread owns the output stream and
routes each response to the caller waiting on that sequence number, so callers
on different threads never observe each other's results regardless of the
order tsserver answers in.
"""

from __future__ import annotations

from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from threading import Lock, Thread, current_thread
from typing import Any, Callable, Dict, List, Optional, Protocol

import orjson
from mcp.server.fastmcp.utilities.logging import get_logger

from tsserver_mcp.errors import (
    ProtocolError,
    ServerTimeoutError,
    ServerUnavailableError,
)

logger = get_logger(__name__)

EventListener = Callable[[Any], None]


class LineTransport(Protocol):
    def start(self) -> None: ...

    def write_line(self, line: str) -> None: ...

    def read_line(self) -> Optional[str]: ...

    def close(self) -> None: ...

    @property
    def is_running(self) -> bool: ...


@dataclass
class PendingRequest:
    seq: int
    command: str
    future: Future = field(default_factory=Future)


class TSServerClient:
    def __init__(
        self,
        transport: LineTransport,
        *,
        request_timeout: float | None = None,
        on_terminated: Callable[[], None] | None = None,
    ) -> None:
        self._transport = transport
        self.request_timeout = request_timeout
        self._on_terminated = on_terminated
        self._lock = Lock()
        self._seq = 0
        self._pending: Dict[int, PendingRequest] = {}
        self._listeners: Dict[str, List[EventListener]] = {}
        self._reader: Optional[Thread] = None
        self._started = False
        self._closed = False
        self._closing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return self._started and not self._closed and self._transport.is_running

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
        self._transport.start()
        self._reader = Thread(target=self._read_loop, name="tsserver-reader", daemon=True)
        self._reader.start()

    def close(self) -> None:
        """Stop the server and fail every outstanding call.

        New calls are rejected before the transport is released, so nothing
        writes to a closed stream.
        """
        with self._lock:
            if self._closed and self._closing:
                return
            self._closing = True
            self._closed = True
            orphaned = list(self._pending.values())
            self._pending.clear()
        self._transport.close()
        for pending in orphaned:
            if not pending.future.done():
                pending.future.set_exception(ServerUnavailableError("tsserver stopped"))
        reader = self._reader
        if reader is not None and reader is not current_thread():
            reader.join(timeout=2.0)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def on(self, event: str, listener: EventListener) -> None:
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: EventListener) -> None:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

    def _emit(self, event: str, body: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, []))
        if not listeners:
            logger.debug("Ignoring tsserver event %s", event)
            return
        for listener in listeners:
            try:
                listener(body)
            except Exception:
                logger.exception("Listener for tsserver event %s failed", event)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def _next_seq(self, command: str, *, register: bool) -> PendingRequest:
        with self._lock:
            if self._closed or not self._started:
                raise ServerUnavailableError("tsserver is not running")
            self._seq += 1
            pending = PendingRequest(seq=self._seq, command=command)
            if register:
                self._pending[pending.seq] = pending
            return pending

    def _write(self, pending: PendingRequest, arguments: Dict[str, Any] | None) -> None:
        message: Dict[str, Any] = {
            "seq": pending.seq,
            "type": "request",
            "command": pending.command,
        }
        if arguments is not None:
            message["arguments"] = arguments
        try:
            self._transport.write_line(orjson.dumps(message).decode("utf-8"))
        except ServerUnavailableError:
            with self._lock:
                self._pending.pop(pending.seq, None)
            raise
        logger.debug("-> %s seq=%s", pending.command, pending.seq)

    def send(self, command: str, arguments: Dict[str, Any] | None = None) -> PendingRequest:
        """Write a request whose response will resolve the returned future."""

        pending = self._next_seq(command, register=True)
        self._write(pending, arguments)
        return pending

    def notify(self, command: str, arguments: Dict[str, Any] | None = None) -> None:
        """Write a request tsserver does not answer (``open``, ``close``...)."""

        self._write(self._next_seq(command, register=False), arguments)

    def call(
        self,
        command: str,
        arguments: Dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send ``command`` and block until its response arrives.

        Returns the response ``body``. Raises :class:`ProtocolError` when the
        server reports ``success: false`` and :class:`ServerUnavailableError`
        when the server goes away first.
        """
        pending = self.send(command, arguments)
        wait = self.request_timeout if timeout is None else timeout
        try:
            response = pending.future.result(timeout=wait)
        except FutureTimeoutError:
            with self._lock:
                self._pending.pop(pending.seq, None)
            raise ServerTimeoutError(
                f"{command} timed out after {wait}s", command=command, seq=pending.seq
            )
        if not response.get("success", False):
            raise ProtocolError(command, str(response.get("message") or ""))
        return response.get("body")

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------
    def _read_loop(self) -> None:
        while True:
            line = self._transport.read_line()
            if line is None:
                break
            try:
                self._dispatch_line(line)
            except Exception:
                logger.exception("Failed to dispatch tsserver output")
        self._handle_eof()

    def _dispatch_line(self, line: str) -> None:
        text = line.strip()
        if not text or text.lower().startswith("content-length:"):
            return
        try:
            message = orjson.loads(text)
        except orjson.JSONDecodeError:
            logger.debug("Dropping non-JSON tsserver output: %s", text[:120])
            return
        if not isinstance(message, dict):
            logger.warning("Dropping unexpected tsserver payload type %s", type(message).__name__)
            return

        request_seq = message.get("request_seq")
        if message.get("type") == "event" or request_seq is None:
            event = message.get("event")
            if isinstance(event, str):
                self._emit(event, message.get("body"))
            else:
                logger.warning("Dropping tsserver message without request_seq or event")
            return

        with self._lock:
            pending = self._pending.pop(request_seq, None)
        if pending is None:
            logger.warning(
                "Discarding response for unknown request_seq=%s (%s)",
                request_seq,
                message.get("command"),
            )
            return
        if not pending.future.done():
            pending.future.set_result(message)

    def _handle_eof(self) -> None:
        with self._lock:
            expected = self._closing
            self._closed = True
            orphaned = list(self._pending.values())
            self._pending.clear()
        for pending in orphaned:
            if not pending.future.done():
                pending.future.set_exception(ServerUnavailableError("tsserver terminated"))
        if expected:
            return
        logger.warning("tsserver exited unexpectedly; %d calls failed", len(orphaned))
        self._transport.close()
        if self._on_terminated is not None:
            self._on_terminated()

    # ------------------------------------------------------------------
    # tsserver commands
    # ------------------------------------------------------------------
    def status(self) -> Dict[str, Any]:
        return self.call("status") or {}

    def open_file(self, file: str) -> None:
        self.notify("open", {"file": file})

    def close_file(self, file: str) -> None:
        self.notify("close", {"file": file})

    def reload(self, file: str, tmpfile: str) -> Any:
        return self.call("reload", {"file": file, "tmpfile": tmpfile})

    def reload_projects(self) -> None:
        self.notify("reloadProjects")

    def quick_info(self, file: str, line: int, offset: int) -> Dict[str, Any]:
        return self.call("quickinfo", {"file": file, "line": line, "offset": offset})

    def completions(self, arguments: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.call("completions", arguments) or []

    def completion_info(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return self.call("completionInfo", arguments) or {}

    def completion_details(
        self, file: str, line: int, offset: int, entry_names: List[str]
    ) -> List[Dict[str, Any]]:
        return (
            self.call(
                "completionEntryDetails",
                {"file": file, "line": line, "offset": offset, "entryNames": entry_names},
            )
            or []
        )

    def signature_help(self, file: str, line: int, offset: int) -> Dict[str, Any]:
        return self.call("signatureHelp", {"file": file, "line": line, "offset": offset})

    def definition(self, file: str, line: int, offset: int) -> List[Dict[str, Any]]:
        return self.call("definition", {"file": file, "line": line, "offset": offset}) or []

    def type_definition(self, file: str, line: int, offset: int) -> List[Dict[str, Any]]:
        return (
            self.call("typeDefinition", {"file": file, "line": line, "offset": offset})
            or []
        )

    def references(self, file: str, line: int, offset: int) -> Dict[str, Any]:
        return self.call("references", {"file": file, "line": line, "offset": offset}) or {}

    def rename(
        self,
        file: str,
        line: int,
        offset: int,
        *,
        find_in_comments: bool = False,
        find_in_strings: bool = False,
    ) -> Dict[str, Any]:
        return self.call(
            "rename",
            {
                "file": file,
                "line": line,
                "offset": offset,
                "findInComments": find_in_comments,
                "findInStrings": find_in_strings,
            },
        ) or {}

    def organize_imports(self, file: str) -> List[Dict[str, Any]]:
        return (
            self.call("organizeImports", {"scope": {"type": "file", "args": {"file": file}}})
            or []
        )

    def project_info(self, file: str, need_file_name_list: bool = True) -> Dict[str, Any]:
        return self.call(
            "projectInfo", {"file": file, "needFileNameList": need_file_name_list}
        ) or {}

    def navto(self, file: str, search_value: str, max_result_count: int = 50) -> List[Dict[str, Any]]:
        return (
            self.call(
                "navto",
                {"file": file, "searchValue": search_value, "maxResultCount": max_result_count},
            )
            or []
        )

    def navtree(self, file: str) -> Dict[str, Any]:
        return self.call("navtree", {"file": file}) or {}

    def semantic_diagnostics_sync(self, file: str) -> List[Dict[str, Any]]:
        return self.call("semanticDiagnosticsSync", {"file": file}) or []

    def syntactic_diagnostics_sync(self, file: str) -> List[Dict[str, Any]]:
        return self.call("syntacticDiagnosticsSync", {"file": file}) or []

    def suggestion_diagnostics_sync(self, file: str) -> List[Dict[str, Any]]:
        return self.call("suggestionDiagnosticsSync", {"file": file}) or []

    def get_code_fixes(
        self,
        file: str,
        start_line: int,
        start_offset: int,
        end_line: int,
        end_offset: int,
        error_codes: List[int],
    ) -> List[Dict[str, Any]]:
        return (
            self.call(
                "getCodeFixes",
                {
                    "file": file,
                    "startLine": start_line,
                    "startOffset": start_offset,
                    "endLine": end_line,
                    "endOffset": end_offset,
                    "errorCodes": error_codes,
                },
            )
            or []
        )


__all__ = ["LineTransport", "PendingRequest", "TSServerClient"]
