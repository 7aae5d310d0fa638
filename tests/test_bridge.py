from __future__ import annotations

import pytest

from conftest import ScriptFailure, load_from_src, wait_until

bridge_mod = load_from_src("tsserver_mcp.bridge")
completion = load_from_src("tsserver_mcp.completion")
errors = load_from_src("tsserver_mcp.errors")

SOURCE = "const a: number = 'x';\nconst b = a;\n"


def _diag(line: int, offset: int, end_offset: int, text: str, code: int = 2322) -> dict:
    return {
        "start": {"line": line, "offset": offset},
        "end": {"line": line, "offset": end_offset},
        "text": text,
        "code": code,
        "category": "error",
    }


TYPE_ERROR = _diag(1, 7, 8, "Type 'string' is not assignable to type 'number'.")


@pytest.fixture
def harness(harness_factory):
    return harness_factory({"semanticDiagnosticsSync": [TYPE_ERROR]})


@pytest.fixture
def opened(harness):
    path = harness.write("a.ts", SOURCE)
    harness.bridge.on_buf_enter(path)
    assert harness.bridge.last_error is None
    return harness, path


# Lifecycle


def test_stop_without_start_is_a_noop(harness) -> None:
    assert harness.bridge.stop() is False
    assert harness.transports == []
    assert harness.bridge.last_error is None


def test_start_twice_spawns_once(harness, tmp_path) -> None:
    assert harness.bridge.start() is True
    assert harness.bridge.start() is False

    assert len(harness.transports) == 1
    assert harness.command == ["tsserver"]
    assert harness.cwd == str(tmp_path)
    assert harness.bridge.version() == "4.9.5"
    assert isinstance(harness.bridge.pipeline.strategy, completion.MemberAwareCompletionStrategy)
    assert harness.messages() == ["Server started"]


def test_status_rejection_selects_legacy_completions(harness_factory, tmp_path) -> None:
    def reject(_arguments):
        raise ScriptFailure("Unrecognized JSON command: status")

    harness = harness_factory({"status": reject}, server_path=str(tmp_path / "no-such-tsserver"))

    assert harness.bridge.start() is True
    assert harness.bridge.version() == "2.0.0"
    assert isinstance(harness.bridge.pipeline.strategy, completion.LegacyCompletionStrategy)


def test_status_rejection_reads_the_installed_typescript_version(harness_factory, tmp_path) -> None:
    def reject(_arguments):
        raise ScriptFailure("Unrecognized JSON command: status")

    package = tmp_path / "node_modules" / "typescript"
    (package / "bin").mkdir(parents=True)
    (package / "package.json").write_text(
        '{"name": "typescript", "version": "3.9.7"}', encoding="utf-8"
    )
    server = package / "bin" / "tsserver"
    server.write_text("#!/usr/bin/env node\n", encoding="utf-8")
    harness = harness_factory({"status": reject}, server_path=str(server))

    assert harness.bridge.start() is True
    assert harness.bridge.version() == "3.9.7"
    assert isinstance(harness.bridge.pipeline.strategy, completion.MemberAwareCompletionStrategy)


def test_configured_version_skips_detection(harness_factory) -> None:
    harness = harness_factory(tsserver_version="2.9.0")

    harness.bridge.start()

    assert harness.transport.requests("status") == []
    assert harness.bridge.version() == "2.9.0"


def test_stop_closes_the_session_and_allows_restart(harness) -> None:
    harness.bridge.start()
    first = harness.transport

    assert harness.bridge.stop() is True
    assert first.closed
    assert harness.bridge.client is None
    assert not harness.bridge.is_running
    assert harness.messages()[-1] == "Server stopped"
    assert harness.bridge.stop() is False

    assert harness.bridge.start() is True
    assert len(harness.transports) == 2


def test_project_loaded_event_is_recorded(harness) -> None:
    harness.bridge.start()

    harness.transport.feed(
        {"seq": 0, "type": "event", "event": "projectLoadingFinish", "body": {"projectName": "p"}}
    )

    assert wait_until(lambda: harness.bridge.project_loaded)


def test_unexpected_exit_clears_state_and_next_buffer_restarts(opened) -> None:
    harness, path = opened
    first = harness.transport

    first.eof()

    assert wait_until(lambda: harness.bridge.client is None)
    assert harness.bridge.diagnostics.signs_for(path) == []
    assert "tsserver terminated, run start to restart it" in harness.messages()

    harness.bridge.on_buf_enter(path)
    assert len(harness.transports) == 2
    assert len(harness.transport.requests("open")) == 1


def test_command_without_server_reports_unavailable(harness) -> None:
    harness.editor.open("a.ts", text=SOURCE)

    assert harness.bridge.type_info() is None

    assert isinstance(harness.bridge.last_error, errors.ServerUnavailableError)
    last = harness.editor.messages[-1]
    assert last.highlight == "ErrorMsg"
    assert "not running" in last.text


def test_success_resets_last_error(opened) -> None:
    harness, _path = opened
    harness.bridge.references()
    assert harness.bridge.last_error is not None

    harness.bridge.type_info()

    assert harness.bridge.last_error is None


# Diagnostics


def test_buffer_enter_opens_once_and_publishes_diagnostics(opened) -> None:
    harness, path = opened

    signs = harness.bridge.on_buf_enter(path)

    assert [sign.text for sign in signs] == [TYPE_ERROR["text"]]
    assert len(harness.transport.requests("open")) == 1
    assert harness.transport.requests("reload")
    title, items = harness.editor.loclist
    assert title == "Errors"
    assert items[0]["lnum"] == 1 and items[0]["type"] == "E"
    assert harness.editor.signs[path] == [{"name": "TSerror", "line": 1, "file": path}]


def test_diagnostics_disabled_skips_requests(harness_factory) -> None:
    harness = harness_factory(diagnostics_enable=False)
    path = harness.write("a.ts", SOURCE)

    assert harness.bridge.on_buf_enter(path) is None
    assert harness.bridge.get_diagnostics() == []
    assert harness.transport.requests("semanticDiagnosticsSync") == []
    assert harness.timers.timers == []


def test_suggestions_are_collected_on_request(opened) -> None:
    harness, _path = opened
    harness.transport.handlers["suggestionDiagnosticsSync"] = [
        dict(_diag(2, 7, 8, "'b' is declared but never used.", 6133), category="suggestion")
    ]

    signs = harness.bridge.get_diagnostics(include_suggestions=True)

    assert [sign.severity for sign in signs] == ["error", "suggestion"]


def test_text_changes_are_debounced(opened) -> None:
    harness, path = opened
    harness.transport.handlers["semanticDiagnosticsSync"] = []

    harness.editor.set_text(path, "const a: number = 1;\n")
    harness.editor.set_text(path, "const a: number = 2;\n")

    first, second = harness.timers.timers
    assert first.canceled
    assert harness.bridge.diagnostics.signs_for(path)

    second.fire()

    assert harness.bridge.diagnostics.signs_for(path) == []
    assert harness.editor.loclist == ("Errors", [])


def test_explicit_text_changed_event_triggers_refresh(opened) -> None:
    harness, path = opened

    harness.bridge.on_text_changed(path)

    assert harness.bridge.scheduler.pending(path)


def test_cursor_on_diagnostic_shows_floating_text(opened) -> None:
    harness, path = opened

    harness.editor.set_cursor(1, 7)
    sign = harness.bridge.on_cursor_moved()

    assert sign.text == TYPE_ERROR["text"]
    assert harness.editor.floating == {
        "file": path,
        "line": 1,
        "offset": 7,
        "lines": [TYPE_ERROR["text"]],
    }

    harness.editor.set_cursor(1, 8)
    assert harness.bridge.on_cursor_moved() is None
    assert harness.editor.floating is None


def test_error_full_prints_the_diagnostic(opened) -> None:
    harness, _path = opened
    harness.editor.set_cursor(1, 7)

    assert harness.bridge.get_error_full() == TYPE_ERROR["text"]
    assert harness.editor.scratch["__error__"] == [TYPE_ERROR["text"]]

    harness.editor.set_cursor(2, 1)
    assert harness.bridge.get_error_full() is None
    assert isinstance(harness.bridge.last_error, errors.NotFoundError)


def test_close_buffer_forgets_the_file(opened) -> None:
    harness, path = opened

    harness.bridge.close_buffer(path)

    assert harness.transport.requests("close")[0]["arguments"] == {"file": path}
    assert not harness.bridge.is_open(path)
    assert harness.bridge.diagnostics.signs_for(path) == []


# Information and navigation


def test_type_info_uses_the_cursor_offset(harness_factory) -> None:
    harness = harness_factory({"quickinfo": {"kind": "const", "displayString": "const a: number"}})
    path = harness.write("a.ts", SOURCE)
    harness.bridge.on_buf_enter(path)
    harness.editor.set_cursor(1, 7)

    assert harness.bridge.type_info() == "const a: number"

    (request,) = harness.transport.requests("quickinfo")
    assert request["arguments"] == {"file": path, "line": 1, "offset": 7}
    assert harness.messages()[-1] == "const a: number"


def test_doc_prints_display_and_documentation(harness_factory) -> None:
    harness = harness_factory(
        {
            "quickinfo": {
                "kind": "function",
                "displayString": "function add(a: number): number",
                "documentation": "Adds one.",
            }
        }
    )
    harness.bridge.on_buf_enter(harness.write("a.ts", SOURCE))

    lines = harness.bridge.doc()

    assert lines == ["function add(a: number): number", "Adds one."]
    assert harness.editor.scratch["__doc__"] == lines


def test_signature_help_joins_parameters(harness_factory) -> None:
    harness = harness_factory(
        {
            "signatureHelp": {
                "items": [
                    {
                        "prefixDisplayParts": [{"text": "add(", "kind": "text"}],
                        "suffixDisplayParts": [{"text": "): number", "kind": "text"}],
                        "separatorDisplayParts": [{"text": ", ", "kind": "text"}],
                        "isVariadic": False,
                        "parameters": [
                            {"displayParts": [{"text": "a: number", "kind": "text"}]},
                            {"displayParts": [{"text": "b: number", "kind": "text"}]},
                        ],
                    }
                ]
            }
        }
    )
    harness.bridge.on_buf_enter(harness.write("a.ts", SOURCE))

    result = harness.bridge.signature_help()

    assert result["text"] == "a: number, b: number"
    assert result["prefix"] == "add("


def test_definition_jumps_to_the_target(harness_factory, tmp_path) -> None:
    target = str(tmp_path / "lib.ts")
    harness = harness_factory(
        {"definition": [{"file": target, "start": {"line": 3, "offset": 14}, "end": {"line": 3, "offset": 15}}]}
    )
    harness.write("lib.ts", "\n\nexport const a = 1;\n")
    path = harness.write("a.ts", SOURCE)
    harness.bridge.on_buf_enter(path)

    item = harness.bridge.definition()

    assert item == {"filename": target, "lnum": 3, "col": 14, "text": "Definition"}
    assert harness.editor.current_file() == target
    assert harness.editor.cursor() == (3, 13)


def test_definition_preview_keeps_the_cursor(harness_factory, tmp_path) -> None:
    target = str(tmp_path / "lib.ts")
    harness = harness_factory({"definition": [{"file": target, "start": {"line": 3, "offset": 14}}]})
    harness.write("lib.ts", "\n\nexport const a = 1;\n")
    path = harness.write("a.ts", SOURCE)
    harness.bridge.on_buf_enter(path)

    harness.bridge.definition_preview()

    assert harness.editor.current_file() == path
    assert harness.editor.previewed == (target, 3)


def test_missing_definition_is_reported(opened) -> None:
    harness, _path = opened

    assert harness.bridge.type_definition() is None
    assert isinstance(harness.bridge.last_error, errors.NotFoundError)
    assert harness.messages()[-1] == "Type definition not found"


def test_references_fill_the_quickfix_list(harness_factory) -> None:
    harness = harness_factory()
    path = harness.write("a.ts", SOURCE)
    harness.handlers["references"] = {
        "refs": [
            {"file": path, "start": {"line": 1, "offset": 7}, "lineText": "const a: number = 'x';"},
            {"file": path, "start": {"line": 2, "offset": 11}, "lineText": "  const b = a;  "},
        ]
    }
    harness.bridge.on_buf_enter(path)

    items = harness.bridge.references()

    assert [item["lnum"] for item in items] == [1, 2]
    assert items[1]["text"] == "const b = a;"
    assert harness.editor.quickfix == ("References", items)


def test_empty_references_are_not_found(opened) -> None:
    harness, _path = opened

    assert harness.bridge.references() is None
    assert harness.messages()[-1] == "References not found"


def test_document_symbols_flatten_two_levels(harness_factory) -> None:
    def span(line):
        return [{"start": {"line": line, "offset": 1}, "end": {"line": line, "offset": 2}}]

    harness = harness_factory(
        {
            "navtree": {
                "text": "<global>",
                "childItems": [
                    {
                        "text": "Box",
                        "spans": span(1),
                        "childItems": [
                            {"text": "open", "spans": span(2), "childItems": [{"text": "deep", "spans": span(3)}]}
                        ],
                    }
                ],
            }
        }
    )
    harness.bridge.on_buf_enter(harness.write("a.ts", SOURCE))

    items = harness.bridge.document_symbols()

    assert [item["text"] for item in items] == ["Box", "open"]
    assert harness.editor.loclist[0] == "Symbols"


def test_workspace_symbols_search(harness_factory, tmp_path) -> None:
    lib = str(tmp_path / "lib.ts")
    harness = harness_factory(
        {"navto": [{"file": lib, "start": {"line": 4, "offset": 2}, "kind": "class", "name": "Box"}]},
        kind_symbols={"class": "C"},
    )
    harness.bridge.on_buf_enter(harness.write("a.ts", SOURCE))

    items = harness.bridge.workspace_symbols("Bo")

    assert items == [{"filename": lib, "lnum": 4, "col": 2, "text": "C\t Box"}]
    (request,) = harness.transport.requests("navto")
    assert request["arguments"]["searchValue"] == "Bo"
    assert harness.editor.loclist[0] == "WorkspaceSymbols"


# Completion


def _details(arguments):
    return [
        {"name": name, "kind": "property", "displayParts": [{"text": f"(property) {name}", "kind": "text"}]}
        for name in arguments["entryNames"]
    ]


def test_omni_completion_protocol(harness_factory) -> None:
    harness = harness_factory(
        {
            "completionInfo": {
                "isMemberCompletion": True,
                "entries": [{"name": "bar", "kind": "property"}, {"name": "baz", "kind": "property"}, {"name": "qux", "kind": "property"}],
            },
            "completionEntryDetails": _details,
        }
    )
    path = harness.write("a.ts", "const foo = { bar: 1, baz: 2, qux: 3 };\nfoo.ba\n")
    harness.bridge.on_buf_enter(path)
    harness.editor.set_cursor(2, 7)

    start = harness.bridge.omni_complete(True)
    items = harness.bridge.omni_complete(False, "ba")

    assert start == 4
    assert [item["word"] for item in items] == ["bar", "baz"]
    assert harness.editor.get_var(bridge_mod.COMPLETION_VAR) == items
    (request,) = harness.transport.requests("completionInfo")
    assert request["arguments"]["line"] == 2
    assert request["arguments"]["offset"] == 7
    assert request["arguments"]["prefix"] == "ba"


def test_complete_publishes_to_requested_variable(harness_factory) -> None:
    harness = harness_factory({"completionInfo": {"entries": []}})
    harness.bridge.on_buf_enter(harness.write("a.ts", SOURCE))

    assert harness.bridge.complete("zz", variable=bridge_mod.ASYNC_COMPLETION_VAR) == []
    assert harness.editor.get_var(bridge_mod.ASYNC_COMPLETION_VAR) == []


# Rename and code actions


def test_rename_prompt_canceled_sends_nothing(opened) -> None:
    harness, _path = opened
    harness.editor.prompt_answers.append("   ")

    assert harness.bridge.rename() is None

    assert isinstance(harness.bridge.last_error, errors.CommandCanceled)
    assert harness.transport.requests("rename") == []
    assert harness.messages()[-1] == "Rename canceled"


def test_rename_through_the_bridge(harness_factory) -> None:
    harness = harness_factory()
    path = harness.write("a.ts", SOURCE)
    harness.handlers["rename"] = {
        "info": {
            "canRename": True,
            "triggerSpan": {"start": {"line": 1, "offset": 7}, "end": {"line": 1, "offset": 8}},
        },
        "locs": [
            {
                "file": path,
                "locs": [
                    {"start": {"line": 1, "offset": 7}, "end": {"line": 1, "offset": 8}},
                    {"start": {"line": 2, "offset": 11}, "end": {"line": 2, "offset": 12}},
                ],
            }
        ],
    }
    harness.bridge.on_buf_enter(path)
    harness.editor.set_cursor(1, 7)
    harness.editor.prompt_answers.append("total")

    plan = harness.bridge.rename()

    assert harness.bridge.last_error is None
    assert plan.edit_count == 2
    assert harness.editor.buffer_lines(path) == ["const total: number = 'x';", "const b = total;"]
    assert harness.messages()[-1] == "Replaced 2 in 1 files"


def test_refused_rename_reports_message(harness_factory) -> None:
    harness = harness_factory(
        {"rename": {"info": {"canRename": False, "localizedErrorMessage": "You cannot rename this element."}}}
    )
    path = harness.write("a.ts", SOURCE)
    harness.bridge.on_buf_enter(path)

    assert harness.bridge.rename("other") is None

    assert isinstance(harness.bridge.last_error, errors.RenameError)
    assert harness.editor.buffer_lines(path) == SOURCE.splitlines()


def _fix(path: str) -> dict:
    return {
        "description": "Change 'a' to 'string'",
        "fixName": "fixTypeAnnotation",
        "changes": [
            {
                "fileName": path,
                "textChanges": [
                    {"start": {"line": 1, "offset": 10}, "end": {"line": 1, "offset": 16}, "newText": "string"}
                ],
            }
        ],
    }


def test_code_fix_without_choice_offers_the_list(opened) -> None:
    harness, path = opened
    harness.transport.handlers["getCodeFixes"] = [_fix(path)]
    harness.editor.set_cursor(1, 7)

    assert harness.bridge.get_code_fix() is None

    assert isinstance(harness.bridge.last_error, errors.CommandCanceled)
    assert harness.editor.last_select == ("Select a fix:", ["1. Change 'a' to 'string'"])
    (request,) = harness.transport.requests("getCodeFixes")
    assert request["arguments"]["errorCodes"] == [2322]
    assert request["arguments"]["startOffset"] == 7


def test_code_fix_applies_the_selected_fix(opened) -> None:
    harness, path = opened
    harness.transport.handlers["getCodeFixes"] = [_fix(path)]
    harness.editor.set_cursor(1, 7)
    harness.editor.select_answers.append(0)

    fix = harness.bridge.get_code_fix()

    assert fix["fixName"] == "fixTypeAnnotation"
    assert harness.editor.buffer_lines(path)[0] == "const a: string = 'x';"
    assert harness.editor.cursor() == (1, 6)
    assert harness.messages()[-1] == "Applied: Change 'a' to 'string'"


def test_code_fix_requires_a_diagnostic(opened) -> None:
    harness, _path = opened
    harness.editor.set_cursor(2, 1)

    assert harness.bridge.get_code_fix(0) is None
    assert harness.messages()[-1] == "No diagnostic at cursor"


def test_organize_imports_without_changes(opened) -> None:
    harness, _path = opened
    harness.transport.handlers["organizeImports"] = [{"fileName": "a.ts", "textChanges": []}]

    assert harness.bridge.organize_imports() == 0
    assert harness.messages()[-1] == "No changes needed"


def test_organize_imports_applies_edits(opened) -> None:
    harness, path = opened
    harness.transport.handlers["organizeImports"] = [
        {
            "fileName": path,
            "textChanges": [
                {"start": {"line": 2, "offset": 1}, "end": {"line": 3, "offset": 1}, "newText": ""}
            ],
        }
    ]

    assert harness.bridge.organize_imports() == 1
    assert harness.editor.buffer_lines(path) == ["const a: number = 'x';"]


# Project


def test_edit_config_in_inferred_project(opened) -> None:
    harness, _path = opened
    harness.transport.handlers["projectInfo"] = {"configFileName": "/dev/null/inferredProject1*"}

    assert harness.bridge.edit_config() is None
    assert harness.messages()[-1] == "Can't edit config, in an inferred project"


def test_edit_config_opens_tsconfig(opened) -> None:
    harness, _path = opened
    tsconfig = harness.write("tsconfig.json", "{}\n")
    harness.transport.handlers["projectInfo"] = {"configFileName": tsconfig, "fileNames": []}

    assert harness.bridge.edit_config() == tsconfig
    assert harness.editor.current_file() == tsconfig


def test_reload_project_notifies_server(opened) -> None:
    harness, _path = opened

    harness.bridge.reload_project()

    assert len(harness.transport.requests("reloadProjects")) == 1
    assert harness.messages()[-1] == "Project reloaded"


def test_server_path_prefers_the_running_command(harness) -> None:
    assert harness.bridge.server_path() == "tsserver"
    assert harness.bridge.version() is None
