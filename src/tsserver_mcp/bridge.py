"""Editor commands on top of one tsserver session.

``TSBridge`` owns the session state: the protocol client (``None`` while
stopped), the detected protocol version, the completion strategy chosen from
it, and the diagnostics table. Every public command is wrapped by
:func:`editor_command`, so a protocol or transport failure reaches the editor
as a highlighted message and is kept on ``last_error`` (per calling thread)
instead of escaping to the caller.

``lock`` guards session state and multi-step editor updates only. It is never
held while waiting on tsserver, so a slow request cannot block ``stop`` or
other commands. Starting is serialized separately and ``stop`` can interrupt
a start that is still waiting for the server.
"""

from __future__ import annotations

import functools
import os
import threading
from threading import Lock, RLock, local
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from mcp.server.fastmcp.utilities.logging import get_logger

from tsserver_mcp.client import TSServerClient
from tsserver_mcp.completion import CompletionPipeline, completion_start, select_strategy
from tsserver_mcp.config import BridgeConfig
from tsserver_mcp.diagnostics import DiagnosticHost, DiagnosticScheduler, DiagnosticSign
from tsserver_mcp.edits import apply_code_edits, fix_descriptions
from tsserver_mcp.errors import (
    BridgeError,
    CommandCanceled,
    NotFoundError,
    ServerUnavailableError,
)
from tsserver_mcp.file_sync import sync_buffer
from tsserver_mcp.rename import RenameOrchestrator, RenamePlan
from tsserver_mcp.schema_types import CompletionItem, ListItem
from tsserver_mcp.transport import SubprocessTransport
from tsserver_mcp.utils import (
    convert_to_display_string,
    get_params,
    location_item,
    navto_to_items,
    navtree_to_items,
    references_to_items,
    truncate_message,
)
from tsserver_mcp.version import VersionGate

logger = get_logger(__name__)

COMPLETION_VAR = "tsserver#completionRes"
ASYNC_COMPLETION_VAR = "tsserver#completion_res"


def editor_command(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn a bridge command's failures into editor messages."""

    @functools.wraps(func)
    def wrapper(self: "TSBridge", *args: Any, **kwargs: Any) -> Any:
        self.last_error = None
        try:
            return func(self, *args, **kwargs)
        except BridgeError as exc:
            self.last_error = exc
            logger.info("%s failed: %s", func.__name__, exc.message)
            self.editor.echo(truncate_message(exc.message, self.editor.columns), exc.highlight)
        except Exception as exc:
            self.last_error = exc
            logger.exception("%s raised unexpectedly", func.__name__)
            self.editor.echo(truncate_message(str(exc), self.editor.columns), "ErrorMsg")
        return None

    return wrapper


class _CommandState(local):
    def __init__(self) -> None:
        self.last_error: Optional[BaseException] = None


class TSBridge:
    def __init__(
        self,
        config: BridgeConfig,
        editor,
        *,
        transport_factory: Callable[..., Any] = SubprocessTransport,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self.config = config
        self.editor = editor
        self.lock = RLock()
        self._lifecycle = Lock()
        self._state = _CommandState()
        self.client: Optional[TSServerClient] = None
        self._starting: Optional[TSServerClient] = None
        self.gate: Optional[VersionGate] = None
        self.pipeline: Optional[CompletionPipeline] = None
        self.enable_diagnostics = config.diagnostics_enable
        self.diagnostics = DiagnosticHost(config.default_signs)
        self.scheduler = DiagnosticScheduler(
            self._on_debounced_change,
            config.diagnostics_delay,
            timer_factory=timer_factory,
        )
        self.project_loaded = False
        self._transport_factory = transport_factory
        self._command: List[str] = []
        self._session = 0
        self._opened: Set[str] = set()
        self._listening: Set[str] = set()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    @property
    def last_error(self) -> Optional[BaseException]:
        """The failure of the last command run on the calling thread."""
        return self._state.last_error

    @last_error.setter
    def last_error(self, value: Optional[BaseException]) -> None:
        self._state.last_error = value

    @property
    def is_running(self) -> bool:
        client = self.client
        return client is not None and client.is_running

    def _start(self) -> bool:
        with self._lifecycle:
            with self.lock:
                if self.is_running:
                    return False
                stale = self.client
                if stale is not None:
                    self._clear_session()
                self._session += 1
                session = self._session
            if stale is not None:
                stale.close()

            command = self.config.server_command()
            transport = self._transport_factory(command, cwd=self.config.project_path)
            client = TSServerClient(
                transport,
                request_timeout=self.config.request_timeout,
                on_terminated=lambda: self._on_terminated(session),
            )
            with self.lock:
                self._starting = client
            try:
                client.start()
                gate = VersionGate.detect(
                    client, self.config.tsserver_version, server_path=command[0]
                )
            except BridgeError:
                client.close()
                raise
            finally:
                with self.lock:
                    if self._starting is client:
                        self._starting = None
            client.on("projectLoadingFinish", self._on_project_loaded)
            return self._install(session, client, gate, command)

    def _install(
        self, session: int, client: TSServerClient, gate: VersionGate, command: List[str]
    ) -> bool:
        with self.lock:
            interrupted = session != self._session
            if not interrupted:
                self.client = client
                self.gate = gate
                self._command = command
                self.pipeline = CompletionPipeline(
                    client,
                    select_strategy(gate),
                    max_detail=self.config.max_completion_detail,
                    expand_snippet=self.config.expand_snippet,
                    kind_symbols=self.config.kind_symbols,
                )
        if interrupted:
            client.close()
            raise ServerUnavailableError("Server start interrupted by stop")
        logger.info("Started %s (protocol %s)", command[0], gate.version)
        self.editor.echo("Server started", "MoreMsg")
        return True

    def _clear_session(self) -> None:
        self.client = None
        self.gate = None
        self.pipeline = None
        self.project_loaded = False
        self._opened.clear()
        self.diagnostics.clear()

    def _on_terminated(self, session: int) -> None:
        with self.lock:
            if session != self._session:
                return
            logger.warning("tsserver terminated; clearing session state")
            self.scheduler.cancel_all()
            self._clear_session()
            self.editor.echo("tsserver terminated, run start to restart it", "ErrorMsg")

    def _on_project_loaded(self, body: Any) -> None:
        logger.info("tsserver finished loading the project")
        self.project_loaded = True

    @editor_command
    def start(self) -> bool:
        return self._start()

    @editor_command
    def stop(self) -> bool:
        """Shut the server down; calls still waiting on it fail right away."""

        with self.lock:
            client = self.client or self._starting
            if client is None:
                return False
            self.scheduler.cancel_all()
            self._session += 1
            self._starting = None
            self._clear_session()
        client.close()
        logger.info("Stopped tsserver")
        self.editor.echo("Server stopped", "ErrorMsg")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_client(self) -> TSServerClient:
        with self.lock:
            client = self.client
        if client is None:
            raise ServerUnavailableError("tsserver is not running, run start first")
        return client

    def _position(self) -> Tuple[str, int, int]:
        line, col = self.editor.cursor()
        return self.editor.current_file(), line, col + 1

    def _sync(self, client: TSServerClient, file: str) -> None:
        sync_buffer(client, self.editor, file, lock=self.lock)

    def _synced_position(self) -> Tuple[TSServerClient, str, int, int]:
        client = self._require_client()
        file, line, offset = self._position()
        self._sync(client, file)
        return client, file, line, offset

    def _open_location(self, file: str, line: int, offset: int) -> None:
        self.editor.edit(file)
        self.editor.set_cursor(line, offset)

    def _sign_at_cursor(self) -> Optional[DiagnosticSign]:
        try:
            file, line, offset = self._position()
        except LookupError:
            return None
        return self.diagnostics.get_sign(file, line, offset)

    def _show_sign_at_cursor(self) -> Optional[DiagnosticSign]:
        sign = self._sign_at_cursor()
        if sign is None:
            return None
        if self.editor.supports_floating:
            self.editor.open_floating(
                {
                    "file": sign.file,
                    "line": sign.start_line,
                    "offset": sign.start_offset,
                    "lines": sign.text.split("\n"),
                }
            )
        else:
            self.editor.echo(truncate_message(sign.text, self.editor.columns), "ErrorMsg")
        return sign

    # ------------------------------------------------------------------
    # Information
    # ------------------------------------------------------------------
    @editor_command
    def type_info(self) -> str:
        client, file, line, offset = self._synced_position()
        info = client.quick_info(file, line, offset) or {}
        display = info.get("displayString", "")
        if info.get("kind", "") != "":
            self.editor.echo(truncate_message(display, self.editor.columns), "MoreMsg")
        return display

    @editor_command
    def signature(self) -> str:
        client, file, line, offset = self._synced_position()
        info = client.quick_info(file, line, offset) or {}
        display = info.get("displayString", "")
        if display:
            self.editor.echo(display, "MoreMsg")
        return display

    @editor_command
    def signature_help(self) -> Dict[str, Any]:
        client, file, line, offset = self._synced_position()
        help_items = (client.signature_help(file, line, offset) or {}).get("items") or []
        if not help_items:
            raise NotFoundError("No signature help available")
        item = help_items[0]
        parameters = [
            {
                "text": convert_to_display_string(param.get("displayParts")),
                "documentation": convert_to_display_string(param.get("documentation")),
            }
            for param in item.get("parameters") or []
        ]
        separator = convert_to_display_string(item.get("separatorDisplayParts"))
        text = get_params(parameters, separator)
        self.editor.echo(text, "MoreMsg")
        return {
            "prefix": convert_to_display_string(item.get("prefixDisplayParts")),
            "suffix": convert_to_display_string(item.get("suffixDisplayParts")),
            "separator": separator,
            "variableArguments": bool(item.get("isVariadic")),
            "parameters": parameters,
            "text": text,
        }

    @editor_command
    def doc(self) -> List[str]:
        client, file, line, offset = self._synced_position()
        info = client.quick_info(file, line, offset) or {}
        lines = convert_to_display_string(info.get("displayString")).split("\n")
        lines += convert_to_display_string(info.get("documentation")).split("\n")
        self.editor.print_in_split("__doc__", lines)
        return lines

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    def _first_location(self, locations: List[Dict[str, Any]], what: str) -> ListItem:
        if not locations:
            raise NotFoundError(f"{what} not found")
        first = locations[0]
        return location_item(first["file"], first["start"], what)

    @editor_command
    def definition(self) -> ListItem:
        client, file, line, offset = self._synced_position()
        target = self._first_location(client.definition(file, line, offset), "Definition")
        self._open_location(target["filename"], target["lnum"], target["col"])
        return target

    @editor_command
    def definition_preview(self) -> ListItem:
        client, file, line, offset = self._synced_position()
        target = self._first_location(client.definition(file, line, offset), "Definition")
        self.editor.preview(target["filename"], target["lnum"])
        return target

    @editor_command
    def type_definition(self) -> ListItem:
        client, file, line, offset = self._synced_position()
        target = self._first_location(
            client.type_definition(file, line, offset), "Type definition"
        )
        self._open_location(target["filename"], target["lnum"], target["col"])
        return target

    @editor_command
    def references(self) -> List[ListItem]:
        client, file, line, offset = self._synced_position()
        refs = (client.references(file, line, offset) or {}).get("refs") or []
        if not refs:
            raise NotFoundError("References not found")
        items = references_to_items(refs)
        # references can span files, so they go to the quickfix list
        self.editor.set_quickfix(items, "References")
        return items

    @editor_command
    def document_symbols(self) -> List[ListItem]:
        client, file, _line, _offset = self._synced_position()
        items = navtree_to_items(file, client.navtree(file))
        if items:
            self.editor.set_loclist(items, "Symbols")
        return items

    @editor_command
    def workspace_symbols(self, search: str = "") -> List[ListItem]:
        client, file, _line, _offset = self._synced_position()
        items = navto_to_items(client.navto(file, search), self.config.kind_symbols)
        if items:
            self.editor.set_loclist(items, "WorkspaceSymbols")
        return items

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    def _complete(self, prefix: str, offset: int | None, variable: str) -> List[CompletionItem]:
        client, file, line, cursor_offset = self._synced_position()
        with self.lock:
            pipeline = self.pipeline
        if pipeline is None:
            raise ServerUnavailableError("tsserver is not running, run start first")
        items = pipeline.complete(
            file,
            prefix,
            line,
            cursor_offset if offset is None else offset,
            self.editor.current_line(),
        )
        self.editor.set_var(variable, items)
        return items

    @editor_command
    def complete(
        self, prefix: str, offset: int | None = None, variable: str = COMPLETION_VAR
    ) -> List[CompletionItem]:
        """Return completions at the cursor and publish them to ``variable``."""

        return self._complete(prefix, offset, variable)

    @editor_command
    def omni_complete(self, findstart: bool, base: str = "") -> Any:
        """Omnifunc protocol: first the start column, then the candidates."""

        if findstart:
            return completion_start(self.editor.current_line(), self.editor.cursor()[1])
        return self._complete(base, None, COMPLETION_VAR)

    # ------------------------------------------------------------------
    # Rename and code actions
    # ------------------------------------------------------------------
    @editor_command
    def rename(self, new_name: str | None = None) -> RenamePlan:
        client = self._require_client()
        file, line, offset = self._position()
        symbol = self.editor.word_under_cursor()
        if new_name is None:
            new_name = self.editor.prompt(f"Rename {symbol} to: ")
        new_name = (new_name or "").strip()
        if not new_name:
            raise CommandCanceled("Rename canceled")
        self._sync(client, file)
        orchestrator = RenameOrchestrator(client, self.editor, lock=self.lock)
        return orchestrator.rename(file, line, offset, symbol, new_name)

    @editor_command
    def organize_imports(self) -> int:
        client, file, line, offset = self._synced_position()
        file_edits = client.organize_imports(file)
        if not any(edit.get("textChanges") for edit in file_edits):
            self.editor.echo("No changes needed", "MoreMsg")
            return 0
        with self.lock:
            count = apply_code_edits(self.editor, file_edits)
        self._open_location(file, line, offset)
        return count

    @editor_command
    def get_code_fix(self, choice: int | None = None) -> Dict[str, Any]:
        client, file, line, offset = self._synced_position()
        sign = self.diagnostics.get_sign(file, line, offset)
        if sign is None:
            raise NotFoundError("No diagnostic at cursor")
        fixes = client.get_code_fixes(
            file,
            sign.start_line,
            sign.start_offset,
            sign.end_line,
            sign.end_offset,
            [sign.code],
        )
        if not fixes:
            raise NotFoundError("No fix")
        if choice is None:
            choice = self.editor.select("Select a fix:", fix_descriptions(fixes))
        if choice is None or not 0 <= choice < len(fixes):
            raise CommandCanceled("Code fix canceled")
        fix = fixes[choice]
        with self.lock:
            apply_code_edits(self.editor, fix.get("changes") or [])
        self._open_location(file, line, offset)
        self.editor.echo(f"Applied: {fix.get('description', '')}", "MoreMsg")
        return fix

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def _refresh(self, file: str, include_suggestions: bool = False) -> List[DiagnosticSign]:
        client = self._require_client()
        revision = self.diagnostics.begin_request(file)
        self._sync(client, file)
        found = list(client.semantic_diagnostics_sync(file))
        found += client.syntactic_diagnostics_sync(file)
        if include_suggestions:
            found += client.suggestion_diagnostics_sync(file)

        with self.lock:
            if not self.diagnostics.store(file, found, revision):
                # a newer refresh of this file already published its answer
                return self.diagnostics.signs_for(file)
            signs = self.diagnostics.signs_for(file)
            self.editor.place_signs(file, self.diagnostics.placements(file))
            self.editor.set_loclist([sign.to_list_item() for sign in signs], "Errors")
            self.editor.close_floating()
        try:
            current = self.editor.current_file()
        except LookupError:
            current = None
        if current == file:
            self._show_sign_at_cursor()
        return signs

    @editor_command
    def get_diagnostics(self, include_suggestions: bool = False) -> List[DiagnosticSign]:
        if not self.enable_diagnostics:
            return []
        return self._refresh(self.editor.current_file(), include_suggestions)

    @editor_command
    def refresh(self, file: str) -> List[DiagnosticSign]:
        if self.client is None or not self.enable_diagnostics:
            return []
        return self._refresh(file)

    def _on_debounced_change(self, file: str) -> None:
        self.refresh(file)

    @editor_command
    def on_cursor_moved(self) -> Optional[DiagnosticSign]:
        self.editor.close_floating()
        return self._show_sign_at_cursor()

    @editor_command
    def close_window(self) -> None:
        self.editor.close_floating()

    @editor_command
    def get_error_full(self) -> str:
        sign = self._sign_at_cursor()
        if sign is None:
            raise NotFoundError("No diagnostic at cursor")
        self.editor.print_in_split("__error__", sign.text.split("\n"))
        return sign.text

    # ------------------------------------------------------------------
    # Project
    # ------------------------------------------------------------------
    @editor_command
    def project_info(self) -> Dict[str, Any]:
        client = self._require_client()
        return client.project_info(self.editor.current_file())

    @editor_command
    def edit_config(self) -> str:
        client, file, _line, _offset = self._synced_position()
        config_file = (client.project_info(file) or {}).get("configFileName") or ""
        if not os.path.isfile(config_file):
            raise NotFoundError("Can't edit config, in an inferred project")
        self.editor.edit(config_file)
        return config_file

    @editor_command
    def reload_project(self) -> None:
        self._require_client().reload_projects()
        self.editor.echo("Project reloaded", "MoreMsg")

    def is_open(self, file: str) -> bool:
        return file in self._opened

    def server_path(self) -> str:
        return self._command[0] if self._command else self.config.resolve_server_path()

    def version(self) -> Optional[str]:
        return str(self.gate.version) if self.gate is not None else None

    # ------------------------------------------------------------------
    # Buffer events
    # ------------------------------------------------------------------
    @editor_command
    def on_buf_enter(self, file: str | None = None) -> Optional[List[DiagnosticSign]]:
        if file is not None:
            self.editor.edit(file)
        self._start()
        client = self._require_client()
        current = self.editor.current_file()
        with self.lock:
            needs_open = current not in self._opened
            self._opened.add(current)
            listen = self.enable_diagnostics and current not in self._listening
            if listen:
                self._listening.add(current)
        if needs_open:
            client.open_file(current)
        if not self.enable_diagnostics:
            return None
        if listen:
            self.editor.on_lines_changed(current, self.scheduler.trigger)
        return self._refresh(current)

    @editor_command
    def on_buf_save(self) -> None:
        self._sync(self._require_client(), self.editor.current_file())

    @editor_command
    def on_text_changed(self, file: str | None = None) -> None:
        self.scheduler.trigger(file or self.editor.current_file())

    @editor_command
    def close_buffer(self, file: str) -> None:
        with self.lock:
            client = self.client if file in self._opened else None
            self._opened.discard(file)
            self.diagnostics.clear(file)
        if client is not None:
            client.close_file(file)


__all__ = ["ASYNC_COMPLETION_VAR", "COMPLETION_VAR", "TSBridge", "editor_command"]
