from __future__ import annotations

import dataclasses
import os
import time
import uuid
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Callable, Dict, List, Optional, Tuple

import orjson
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from tsserver_mcp.bridge import TSBridge
from tsserver_mcp.config import BridgeConfig
from tsserver_mcp.diagnostics import DiagnosticSign
from tsserver_mcp.editor import WorkspaceEditor
from tsserver_mcp.errors import BridgeError, CommandCanceled
from tsserver_mcp.file_utils import get_relative_file_path
from tsserver_mcp.instructions import INSTRUCTIONS
from tsserver_mcp.rename import RenamePlan
from tsserver_mcp.response_formatter import (
    JSON_RESPONSE_FORMAT,
    apply_character_limit,
    build_markdown_summary,
    extend_structured_with_truncation,
    mcp_result,
    normalize_response_format,
)
from tsserver_mcp.schema_types import (
    ERROR_BAD_REQUEST,
    ERROR_CANCELED,
    ERROR_INVALID_PATH,
    ERROR_NOT_FOUND,
    ERROR_PROTOCOL,
    ERROR_RENAME_FAILED,
    ERROR_SERVER_UNAVAILABLE,
    ERROR_UNKNOWN,
    ListItem,
)
from tsserver_mcp.tool_inputs import (
    BufferContentsInput,
    CodeFixInput,
    CompletionsInput,
    DefinitionInput,
    DiagnosticsInput,
    EmptyInput,
    FileInput,
    OpenFileInput,
    PositionInput,
    RenameInput,
    SetBufferTextInput,
    ToolInputBase,
    WorkspaceSymbolsInput,
)
from tsserver_mcp.tool_spec import TOOL_ANNOTATIONS, TOOL_DESCRIPTIONS, build_tool_spec

try:  # pragma: no cover - metadata lookup may fail in tests
    SERVER_VERSION = version("tsserver-mcp")
except PackageNotFoundError:  # pragma: no cover - local dev fallback
    SERVER_VERSION = None


logger = get_logger(__name__)

FOCUS_NONE = "none"
FOCUS_FILE = "file"
FOCUS_POSITION = "position"


# Server and context
class AppContext:
    config: BridgeConfig
    editor: WorkspaceEditor
    bridge: TSBridge

    def __init__(self, *, config: BridgeConfig, editor: WorkspaceEditor, bridge: TSBridge) -> None:
        self.config = config
        self.editor = editor
        self.bridge = bridge


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    config = BridgeConfig.from_env()
    editor = WorkspaceEditor(config.project_path)
    context = AppContext(config=config, editor=editor, bridge=TSBridge(config, editor))
    logger.info("tsserver bridge ready (project: %s)", config.project_path or os.getcwd())
    try:
        yield context
    finally:
        logger.info("Stopping tsserver bridge")
        context.bridge.stop()


mcp = FastMCP(name="tsserver_mcp", instructions=INSTRUCTIONS, lifespan=app_lifespan)


@contextmanager
def bridge_session(ctx: Context) -> Iterator[AppContext]:
    """Yield the app for one tool call.

    No lock is held for the call: editor focus, cursor, messages and the
    bridge's ``last_error`` are all per thread, so concurrent tool calls only
    share buffers and the tsserver session.
    """

    app = ctx.request_context.lifespan_context
    yield app


class ToolError(Exception):
    """Internal control-flow exception carrying a ready-to-send MCP response."""

    def __init__(self, payload: Dict[str, Any]):
        super().__init__(payload.get("structuredContent", {}).get("message", "Tool error"))
        self.payload = payload


def _set_response_format_hint(ctx: Context | None, response_format: Optional[str]) -> None:
    request_context = getattr(ctx, "request_context", None)
    if request_context is not None:
        setattr(request_context, "_response_format_hint", response_format)


def _response_format_hint(ctx: Context | None) -> Optional[str]:
    request_context = getattr(ctx, "request_context", None)
    return getattr(request_context, "_response_format_hint", None)


def _text_item(text: str) -> Dict[str, str]:
    return {"type": "text", "text": text}


def _json_item(structured: Dict[str, Any]) -> Dict[str, Any]:
    """JSON resource mirroring structuredContent, placed first for generic clients."""

    return {
        "type": "resource",
        "resource": {
            "uri": f"file:///_mcp_structured_{uuid.uuid4().hex}.json",
            "mimeType": "application/json",
            "text": orjson.dumps(structured, default=str).decode("utf-8"),
        },
    }


def _render(
    *,
    headline: str,
    details: List[str] | None,
    structured: Dict[str, Any] | None,
    extra: List[Dict[str, Any]] | None,
    ctx: Context | None,
    is_error: bool,
) -> Dict[str, Any]:
    items = [_text_item(build_markdown_summary(headline, details)), *(extra or [])]
    limited, truncated, sections = apply_character_limit(items)
    payload = extend_structured_with_truncation(
        structured, truncated=truncated, truncated_sections=sections
    )
    if normalize_response_format(_response_format_hint(ctx)) == JSON_RESPONSE_FORMAT:
        payload = payload if payload is not None else {}
        payload.setdefault("_meta", {}).setdefault("summary", headline)
        content = [_json_item(payload), *limited[1:]]
        return mcp_result(content=content, structured=payload, is_error=is_error)
    return mcp_result(content=limited, structured=payload, is_error=is_error)


def success_result(
    *,
    summary: str,
    structured: Dict[str, Any] | None,
    start_time: float,
    ctx: Context | None = None,
    content: List[Dict[str, Any]] | None = None,
) -> Dict[str, Any]:
    logger.debug("%s in %.3fs", summary, time.perf_counter() - start_time)
    return _render(
        headline=summary,
        details=None,
        structured=structured,
        extra=content,
        ctx=ctx,
        is_error=False,
    )


def _derive_error_hints(code: str | None, ctx: Context | None) -> List[str]:
    lifespan = getattr(getattr(ctx, "request_context", None), "lifespan_context", None)
    project_root = getattr(getattr(lifespan, "config", None), "project_path", None)
    hints: List[str] = []
    if code == ERROR_SERVER_UNAVAILABLE:
        hints.append(
            "Install `typescript` in the project or set `TSSERVER_PATH`, then call `ts_start`."
        )
    if code in {ERROR_INVALID_PATH, ERROR_BAD_REQUEST} and not project_root:
        hints.append("Set `TS_PROJECT_PATH` so project-relative paths resolve.")
    if code == ERROR_BAD_REQUEST:
        hints.append("Lines and columns are 1-based and must fall inside the buffer.")
    if code == ERROR_PROTOCOL:
        hints.append("Place the position on an identifier; tsserver had no answer there.")
    if code == ERROR_NOT_FOUND:
        hints.append("Run `ts_diagnostics` or move to another position and retry.")
    if code == ERROR_RENAME_FAILED:
        hints.append("No buffer was modified; check the symbol at the position.")
    if code == ERROR_CANCELED:
        hints.append("Provide the missing argument (such as `fix_index`) and retry.")
    return hints


def error_result(
    *,
    message: str,
    start_time: float,
    ctx: Context | None = None,
    code: str | None = None,
    details: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    structured: Dict[str, Any] = {"message": message}
    if code:
        structured["code"] = code
    if details:
        structured["details"] = details
    hints = _derive_error_hints(code, ctx)
    if hints:
        structured["hints"] = hints
    bullets = [f"Code: `{code}`"] if code else []
    bullets.extend(f"Hint: {hint}" for hint in hints)
    logger.debug("error %s after %.3fs: %s", code, time.perf_counter() - start_time, message)
    return _render(
        headline=f"Error: {message}",
        details=bullets,
        structured=structured,
        extra=None,
        ctx=ctx,
        is_error=True,
    )


def bridge_error_result(
    exc: BaseException, *, start_time: float, ctx: Context | None, details: Dict[str, Any]
) -> Dict[str, Any]:
    if isinstance(exc, BridgeError):
        merged = {**{k: v for k, v in exc.details.items() if k != "command"}, **details}
        return error_result(
            message=exc.message, code=exc.code, details=merged, start_time=start_time, ctx=ctx
        )
    return error_result(
        message=str(exc) or type(exc).__name__,
        code=ERROR_UNKNOWN,
        details=details,
        start_time=start_time,
        ctx=ctx,
    )


def _sanitize_path_label(app: AppContext | None, path: str) -> str:
    if not path:
        return path
    root = app.config.project_path if app is not None else None
    relative = get_relative_file_path(root or os.getcwd(), path)
    if relative:
        return relative.replace(os.sep, "/")
    return os.path.basename(path) or path


def _location(app: AppContext, item: ListItem) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "file": _sanitize_path_label(app, item["filename"]),
        "line": item["lnum"],
        "column": item["col"],
        "text": item.get("text", ""),
    }
    if item.get("type"):
        entry["type"] = item["type"]
    return entry


def _diagnostic(app: AppContext, sign: DiagnosticSign) -> Dict[str, Any]:
    payload = dataclasses.asdict(sign)
    payload["file"] = _sanitize_path_label(app, sign.file)
    return payload


def _focus_file(app: AppContext, path: str, *, ctx: Context, started: float) -> None:
    app.editor.edit(path)
    if app.bridge.is_running and app.bridge.is_open(path):
        return
    app.bridge.on_buf_enter(path)
    if app.bridge.last_error is not None:
        raise ToolError(
            bridge_error_result(
                app.bridge.last_error,
                start_time=started,
                ctx=ctx,
                details={"file": _sanitize_path_label(app, path)},
            )
        )


def _place_cursor(
    app: AppContext, path: str, line: int, column: int, *, ctx: Context, started: float
) -> None:
    lines = app.editor.buffer_lines(path)
    if line > len(lines) or column > len(lines[line - 1]) + 1:
        raise ToolError(
            error_result(
                message=f"Position {line}:{column} is outside the buffer.",
                code=ERROR_BAD_REQUEST,
                details={
                    "file": _sanitize_path_label(app, path),
                    "line": line,
                    "column": column,
                    "line_count": len(lines),
                },
                start_time=started,
                ctx=ctx,
            )
        )
    app.editor.set_cursor(line, column)


def run_bridge_tool(
    ctx: Context,
    params: ToolInputBase,
    invoke: Callable[[AppContext, Optional[str]], Any],
    render: Callable[[AppContext, Any], Tuple[str, Dict[str, Any]]],
    *,
    focus: str = FOCUS_FILE,
    must_exist: bool = True,
) -> Dict[str, Any]:
    """Run one bridge command for a tool call and shape its result.

    ``focus`` selects how much editor state is prepared first: nothing, the
    file (opened in tsserver if needed), or the file plus the cursor at the
    requested position.
    """
    started = time.perf_counter()
    _set_response_format_hint(ctx, params.response_format)
    try:
        with bridge_session(ctx) as app:
            mark = app.editor.message_mark()
            app.bridge.last_error = None
            details: Dict[str, Any] = {}
            path: Optional[str] = None
            file_path = getattr(params, "file_path", None)
            if file_path is not None:
                path = app.editor.resolve(file_path)
                details["file"] = _sanitize_path_label(app, path)
                if must_exist and path not in app.editor.buffers and not os.path.isfile(path):
                    raise ToolError(
                        error_result(
                            message=f"File not found: {details['file']}",
                            code=ERROR_INVALID_PATH,
                            details=details,
                            start_time=started,
                            ctx=ctx,
                        )
                    )
                if focus in {FOCUS_FILE, FOCUS_POSITION}:
                    _focus_file(app, path, ctx=ctx, started=started)
                if focus == FOCUS_POSITION:
                    line, column = params.line, params.column
                    _place_cursor(app, path, line, column, ctx=ctx, started=started)
                    details.update(line=line, column=column)

            result = invoke(app, path)
            messages = [message.text for message in app.editor.messages_since(mark)]
            if app.bridge.last_error is not None:
                details["messages"] = messages
                return bridge_error_result(
                    app.bridge.last_error, start_time=started, ctx=ctx, details=details
                )
            summary, structured = render(app, result)
            structured.setdefault("messages", messages)
            return success_result(
                summary=summary, structured=structured, start_time=started, ctx=ctx
            )
    except ToolError as exc:
        return exc.payload


def _server_info(app: AppContext) -> Dict[str, Any]:
    return {
        "running": app.bridge.is_running,
        "serverPath": app.bridge.server_path(),
        "protocolVersion": app.bridge.version(),
        "projectLoaded": app.bridge.project_loaded,
        "projectPath": app.config.project_path,
        "bridgeVersion": SERVER_VERSION,
    }


def _diagnostics_payload(app: AppContext, path: str, signs: List[DiagnosticSign] | None) -> Tuple[str, Dict[str, Any]]:
    label = _sanitize_path_label(app, path)
    entries = [_diagnostic(app, sign) for sign in signs or []]
    counts: Dict[str, int] = {}
    for sign in signs or []:
        counts[sign.severity] = counts.get(sign.severity, 0) + 1
    return (
        f"{len(entries)} diagnostics in `{label}`.",
        {
            "file": label,
            "enabled": app.bridge.enable_diagnostics,
            "count": len(entries),
            "bySeverity": counts,
            "diagnostics": entries,
        },
    )


def _locations_payload(
    app: AppContext, items: List[ListItem] | None, what: str, key: str
) -> Tuple[str, Dict[str, Any]]:
    entries = [_location(app, item) for item in items or []]
    return f"{len(entries)} {what}.", {key: entries, "count": len(entries)}


# Lifecycle tools
@mcp.tool(
    "ts_start",
    description=TOOL_DESCRIPTIONS["ts_start"],
    annotations=TOOL_ANNOTATIONS["ts_start"],
)
def start(ctx: Context, params: EmptyInput) -> Any:
    """Start tsserver; starting a running server does not spawn a second one."""

    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.start(),
        lambda app, spawned: (
            "tsserver started." if spawned else "tsserver is already running.",
            _server_info(app),
        ),
        focus=FOCUS_NONE,
    )


@mcp.tool(
    "ts_stop",
    description=TOOL_DESCRIPTIONS["ts_stop"],
    annotations=TOOL_ANNOTATIONS["ts_stop"],
)
def stop(ctx: Context, params: EmptyInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.stop(),
        lambda app, stopped: (
            "tsserver stopped." if stopped else "tsserver was not running.",
            _server_info(app),
        ),
        focus=FOCUS_NONE,
    )


@mcp.tool(
    "ts_server_info",
    description=TOOL_DESCRIPTIONS["ts_server_info"],
    annotations=TOOL_ANNOTATIONS["ts_server_info"],
)
def server_info(ctx: Context, params: EmptyInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: None,
        lambda app, _result: (
            "tsserver is running." if app.bridge.is_running else "tsserver is not running.",
            _server_info(app),
        ),
        focus=FOCUS_NONE,
    )


@mcp.tool(
    "ts_reload_project",
    description=TOOL_DESCRIPTIONS["ts_reload_project"],
    annotations=TOOL_ANNOTATIONS["ts_reload_project"],
)
def reload_project(ctx: Context, params: EmptyInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.reload_project(),
        lambda app, _result: ("Projects reloaded.", _server_info(app)),
        focus=FOCUS_NONE,
    )


# Buffer tools
@mcp.tool(
    "ts_open_file",
    description=TOOL_DESCRIPTIONS["ts_open_file"],
    annotations=TOOL_ANNOTATIONS["ts_open_file"],
)
def open_file(ctx: Context, params: OpenFileInput) -> Any:
    """Open a file as the focused buffer and report its diagnostics.

    Parameters
    ----------
    params : OpenFileInput
        - ``file_path`` (str): Absolute or project-relative path. The file may be
          missing on disk when ``text`` is given.
        - ``text`` (Optional[str]): Unsaved contents to load into the buffer.

    Returns
    -------
    Diagnostics
        ``structuredContent.diagnostics`` lists the file's diagnostics with
        1-based ``start_line``/``start_offset``. tsserver is started first when it
        is not running.
    """

    def invoke(app: AppContext, path: Optional[str]) -> Any:
        app.editor.open(path, text=params.text)
        return app.bridge.on_buf_enter(path)

    return run_bridge_tool(
        ctx,
        params,
        invoke,
        lambda app, signs: _diagnostics_payload(app, app.editor.current_file(), signs),
        focus=FOCUS_NONE,
        must_exist=params.text is None,
    )


@mcp.tool(
    "ts_set_buffer_text",
    description=TOOL_DESCRIPTIONS["ts_set_buffer_text"],
    annotations=TOOL_ANNOTATIONS["ts_set_buffer_text"],
)
def set_buffer_text(ctx: Context, params: SetBufferTextInput) -> Any:
    def invoke(app: AppContext, path: Optional[str]) -> Any:
        app.editor.set_text(path, params.text)
        if params.refresh_diagnostics:
            return app.bridge.get_diagnostics()
        return None

    def render(app: AppContext, signs: Any) -> Tuple[str, Dict[str, Any]]:
        path = app.editor.current_file()
        if signs is not None:
            return _diagnostics_payload(app, path, signs)
        return (
            f"Updated `{_sanitize_path_label(app, path)}`.",
            {"file": _sanitize_path_label(app, path), "lines": len(app.editor.buffer_lines(path))},
        )

    return run_bridge_tool(ctx, params, invoke, render)


@mcp.tool(
    "ts_save_buffer",
    description=TOOL_DESCRIPTIONS["ts_save_buffer"],
    annotations=TOOL_ANNOTATIONS["ts_save_buffer"],
)
def save_buffer(ctx: Context, params: FileInput) -> Any:
    def invoke(app: AppContext, path: Optional[str]) -> Any:
        written = app.editor.write(path)
        app.bridge.on_buf_save()
        return written

    return run_bridge_tool(
        ctx,
        params,
        invoke,
        lambda app, written: (
            f"Saved `{_sanitize_path_label(app, written)}`.",
            {"file": _sanitize_path_label(app, written)},
        ),
    )


@mcp.tool(
    "ts_close_file",
    description=TOOL_DESCRIPTIONS["ts_close_file"],
    annotations=TOOL_ANNOTATIONS["ts_close_file"],
)
def close_file(ctx: Context, params: FileInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, path: app.bridge.close_buffer(path),
        lambda app, _result: (
            f"Closed `{_sanitize_path_label(app, app.editor.resolve(params.file_path))}`.",
            {"file": _sanitize_path_label(app, app.editor.resolve(params.file_path))},
        ),
        focus=FOCUS_NONE,
        must_exist=False,
    )


@mcp.tool(
    "ts_buffer_contents",
    description=TOOL_DESCRIPTIONS["ts_buffer_contents"],
    annotations=TOOL_ANNOTATIONS["ts_buffer_contents"],
)
def buffer_contents(ctx: Context, params: BufferContentsInput) -> Any:
    def render(app: AppContext, lines: List[str]) -> Tuple[str, Dict[str, Any]]:
        path = app.editor.resolve(params.file_path)
        label = _sanitize_path_label(app, path)
        if params.annotate_lines:
            width = len(str(len(lines)))
            text = "\n".join(f"{index:>{width}}: {line}" for index, line in enumerate(lines, 1))
        else:
            text = "\n".join(lines)
        return (
            f"`{label}` ({len(lines)} lines).",
            {"file": label, "lineCount": len(lines), "text": text},
        )

    return run_bridge_tool(
        ctx,
        params,
        lambda app, path: app.editor.buffer_lines(path),
        render,
        focus=FOCUS_NONE,
    )


# Information tools
@mcp.tool(
    "ts_type_info",
    description=TOOL_DESCRIPTIONS["ts_type_info"],
    annotations=TOOL_ANNOTATIONS["ts_type_info"],
)
def type_info(ctx: Context, params: PositionInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.type_info(),
        lambda app, display: (
            f"`{display.splitlines()[0]}`" if display else "No type information at that position.",
            {"displayString": display},
        ),
        focus=FOCUS_POSITION,
    )


@mcp.tool(
    "ts_signature",
    description=TOOL_DESCRIPTIONS["ts_signature"],
    annotations=TOOL_ANNOTATIONS["ts_signature"],
)
def signature(ctx: Context, params: PositionInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.signature(),
        lambda app, display: (
            "Signature found." if display else "No signature at that position.",
            {"displayString": display},
        ),
        focus=FOCUS_POSITION,
    )


@mcp.tool(
    "ts_signature_help",
    description=TOOL_DESCRIPTIONS["ts_signature_help"],
    annotations=TOOL_ANNOTATIONS["ts_signature_help"],
)
def signature_help(ctx: Context, params: PositionInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.signature_help(),
        lambda app, help_info: (f"Parameters: {help_info['text'] or '(none)'}", dict(help_info)),
        focus=FOCUS_POSITION,
    )


@mcp.tool(
    "ts_doc",
    description=TOOL_DESCRIPTIONS["ts_doc"],
    annotations=TOOL_ANNOTATIONS["ts_doc"],
)
def doc(ctx: Context, params: PositionInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.doc(),
        lambda app, lines: ("Documentation.", {"lines": lines, "text": "\n".join(lines).strip()}),
        focus=FOCUS_POSITION,
    )


# Navigation tools
@mcp.tool(
    "ts_definition",
    description=TOOL_DESCRIPTIONS["ts_definition"],
    annotations=TOOL_ANNOTATIONS["ts_definition"],
)
def definition(ctx: Context, params: DefinitionInput) -> Any:
    def invoke(app: AppContext, _path: Optional[str]) -> Any:
        if params.preview:
            return app.bridge.definition_preview()
        return app.bridge.definition()

    def render(app: AppContext, item: ListItem) -> Tuple[str, Dict[str, Any]]:
        location = _location(app, item)
        return (
            f"Definition at `{location['file']}:{location['line']}:{location['column']}`.",
            {"location": location, "preview": params.preview},
        )

    return run_bridge_tool(ctx, params, invoke, render, focus=FOCUS_POSITION)


@mcp.tool(
    "ts_type_definition",
    description=TOOL_DESCRIPTIONS["ts_type_definition"],
    annotations=TOOL_ANNOTATIONS["ts_type_definition"],
)
def type_definition(ctx: Context, params: PositionInput) -> Any:
    def render(app: AppContext, item: ListItem) -> Tuple[str, Dict[str, Any]]:
        location = _location(app, item)
        return (
            f"Type definition at `{location['file']}:{location['line']}:{location['column']}`.",
            {"location": location},
        )

    return run_bridge_tool(
        ctx, params, lambda app, _path: app.bridge.type_definition(), render, focus=FOCUS_POSITION
    )


@mcp.tool(
    "ts_references",
    description=TOOL_DESCRIPTIONS["ts_references"],
    annotations=TOOL_ANNOTATIONS["ts_references"],
)
def references(ctx: Context, params: PositionInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.references(),
        lambda app, items: _locations_payload(app, items, "references", "references"),
        focus=FOCUS_POSITION,
    )


@mcp.tool(
    "ts_document_symbols",
    description=TOOL_DESCRIPTIONS["ts_document_symbols"],
    annotations=TOOL_ANNOTATIONS["ts_document_symbols"],
)
def document_symbols(ctx: Context, params: FileInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.document_symbols(),
        lambda app, items: _locations_payload(app, items, "symbols", "symbols"),
    )


@mcp.tool(
    "ts_workspace_symbols",
    description=TOOL_DESCRIPTIONS["ts_workspace_symbols"],
    annotations=TOOL_ANNOTATIONS["ts_workspace_symbols"],
)
def workspace_symbols(ctx: Context, params: WorkspaceSymbolsInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.workspace_symbols(params.query),
        lambda app, items: _locations_payload(
            app, items, f"symbols matching `{params.query}`", "symbols"
        ),
    )


# Completion
@mcp.tool(
    "ts_completions",
    description=TOOL_DESCRIPTIONS["ts_completions"],
    annotations=TOOL_ANNOTATIONS["ts_completions"],
)
def completions(ctx: Context, params: CompletionsInput) -> Any:
    """Return completion candidates at a position.

    Without an explicit ``prefix`` the word left of the column is used, the
    same way an omnifunc first reports its start column. Member completions
    (after ``.``) are narrowed to that prefix. Candidates carry ``menu`` and
    ``info`` detail only when their number is within the configured detail
    limit; larger sets come back with name and kind only.
    """

    def invoke(app: AppContext, _path: Optional[str]) -> Any:
        prefix = params.prefix
        if prefix is None:
            start_col = app.bridge.omni_complete(True)
            if start_col is None:
                return None
            prefix = app.editor.current_line()[start_col : app.editor.cursor()[1]]
            return prefix, app.bridge.omni_complete(False, prefix)
        return prefix, app.bridge.complete(prefix)

    def render(app: AppContext, result: Tuple[str, List[Dict[str, Any]]]) -> Tuple[str, Dict[str, Any]]:
        prefix, items = result
        items = items or []
        shown = items[: params.max_results]
        return (
            f"{len(items)} completions for `{prefix}`.",
            {
                "prefix": prefix,
                "count": len(items),
                "returned": len(shown),
                "detailed": any("info" in item for item in items),
                "items": shown,
            },
        )

    return run_bridge_tool(ctx, params, invoke, render, focus=FOCUS_POSITION)


# Diagnostics
@mcp.tool(
    "ts_diagnostics",
    description=TOOL_DESCRIPTIONS["ts_diagnostics"],
    annotations=TOOL_ANNOTATIONS["ts_diagnostics"],
)
def diagnostics(ctx: Context, params: DiagnosticsInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.get_diagnostics(params.include_suggestions),
        lambda app, signs: _diagnostics_payload(app, app.editor.current_file(), signs),
    )


@mcp.tool(
    "ts_error_full",
    description=TOOL_DESCRIPTIONS["ts_error_full"],
    annotations=TOOL_ANNOTATIONS["ts_error_full"],
)
def error_full(ctx: Context, params: PositionInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.get_error_full(),
        lambda app, text: (text.split("\n", 1)[0], {"text": text}),
        focus=FOCUS_POSITION,
    )


@mcp.tool(
    "ts_code_fix",
    description=TOOL_DESCRIPTIONS["ts_code_fix"],
    annotations=TOOL_ANNOTATIONS["ts_code_fix"],
)
def code_fix(ctx: Context, params: CodeFixInput) -> Any:
    """List or apply the code fixes for the diagnostic at a position.

    Without ``fix_index`` nothing is applied and ``structuredContent.fixes``
    lists the numbered descriptions. With ``fix_index`` (1-based) that fix is
    applied to the buffers.
    """

    def invoke(app: AppContext, _path: Optional[str]) -> Any:
        app.editor.last_select = None
        choice = params.fix_index - 1 if params.fix_index is not None else None
        fix = app.bridge.get_code_fix(choice)
        listing = app.editor.last_select
        if (
            params.fix_index is None
            and isinstance(app.bridge.last_error, CommandCanceled)
            and listing is not None
        ):
            app.bridge.last_error = None
            return {"applied": None, "fixes": listing[1]}
        return {"applied": (fix or {}).get("description"), "fixes": []}

    def render(app: AppContext, result: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        if result["applied"] is None:
            return f"{len(result['fixes'])} fixes available.", result
        return f"Applied fix: {result['applied']}", result

    return run_bridge_tool(ctx, params, invoke, render, focus=FOCUS_POSITION)


# Refactoring
@mcp.tool(
    "ts_rename",
    description=TOOL_DESCRIPTIONS["ts_rename"],
    annotations=TOOL_ANNOTATIONS["ts_rename"],
)
def rename(ctx: Context, params: RenameInput) -> Any:
    """Rename the symbol at a position across the project.

    Every location is validated before the first buffer changes; on any failure
    the error carries ``rename_failed`` and no buffer was modified. Buffers are
    left unsaved; call ``ts_save_buffer`` per file to persist them.
    """

    def render(app: AppContext, plan: RenamePlan) -> Tuple[str, Dict[str, Any]]:
        files = {
            _sanitize_path_label(app, file): sorted(edits) for file, edits in plan.edits.items()
        }
        return (
            f"Replaced {plan.edit_count} occurrences of `{plan.symbol}` in {plan.file_count} files.",
            {
                "symbol": plan.symbol,
                "newName": plan.new_name,
                "editCount": plan.edit_count,
                "files": files,
                "changes": [_location(app, item) for item in plan.changes],
            },
        )

    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.rename(params.new_name),
        render,
        focus=FOCUS_POSITION,
    )


@mcp.tool(
    "ts_organize_imports",
    description=TOOL_DESCRIPTIONS["ts_organize_imports"],
    annotations=TOOL_ANNOTATIONS["ts_organize_imports"],
)
def organize_imports(ctx: Context, params: FileInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.organize_imports(),
        lambda app, count: (
            f"Applied {count} import edits." if count else "No changes needed.",
            {"editCount": count},
        ),
    )


# Project tools
@mcp.tool(
    "ts_project_info",
    description=TOOL_DESCRIPTIONS["ts_project_info"],
    annotations=TOOL_ANNOTATIONS["ts_project_info"],
)
def project_info(ctx: Context, params: FileInput) -> Any:
    def render(app: AppContext, info: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        info = info or {}
        config_file = info.get("configFileName") or ""
        files = [_sanitize_path_label(app, name) for name in info.get("fileNames") or []]
        inferred = not os.path.isfile(config_file)
        return (
            "Inferred project." if inferred else f"Project `{_sanitize_path_label(app, config_file)}`.",
            {
                "configFileName": config_file,
                "inferred": inferred,
                "languageServiceDisabled": bool(info.get("languageServiceDisabled")),
                "fileCount": len(files),
                "fileNames": files,
            },
        )

    return run_bridge_tool(ctx, params, lambda app, _path: app.bridge.project_info(), render)


@mcp.tool(
    "ts_edit_config",
    description=TOOL_DESCRIPTIONS["ts_edit_config"],
    annotations=TOOL_ANNOTATIONS["ts_edit_config"],
)
def edit_config(ctx: Context, params: FileInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: app.bridge.edit_config(),
        lambda app, config_file: (
            f"Opened `{_sanitize_path_label(app, config_file)}`.",
            {"configFileName": config_file},
        ),
    )


@mcp.tool(
    "ts_tool_spec",
    description=TOOL_DESCRIPTIONS["ts_tool_spec"],
    annotations=TOOL_ANNOTATIONS["ts_tool_spec"],
)
def tool_spec(ctx: Context, params: EmptyInput) -> Any:
    return run_bridge_tool(
        ctx,
        params,
        lambda app, _path: build_tool_spec(),
        lambda app, spec: (f"{len(spec['tools'])} tools.", spec),
        focus=FOCUS_NONE,
    )


if __name__ == "__main__":
    mcp.run()
