INSTRUCTIONS = """## Workflow
- You are connected to the `tsserver_mcp` server, a bridge to the TypeScript language service (tsserver).
- Start with `ts_open_file` on the file you care about. It starts tsserver when needed and returns the file's diagnostics.
- Edits go through `ts_set_buffer_text` (unsaved) and `ts_save_buffer` (written to disk). Every tool reads the unsaved buffer, not the file on disk.
- Inspect before changing: `ts_type_info`, `ts_doc`, `ts_definition`, `ts_references`.
- `ts_rename`, `ts_code_fix` and `ts_organize_imports` modify buffers. Review the result with `ts_buffer_contents` and then save.

## Tool Cheatsheet
- `ts_start` / `ts_stop` / `ts_server_info`: tsserver lifecycle and detected protocol version.
- `ts_open_file`, `ts_close_file`, `ts_buffer_contents`, `ts_set_buffer_text`, `ts_save_buffer`: buffer management.
- `ts_type_info`, `ts_signature`, `ts_signature_help`, `ts_doc`: information at a position.
- `ts_definition` (set `preview` to keep the cursor), `ts_type_definition`, `ts_references`: navigation.
- `ts_completions`: candidates at a position. Results carry `menu`/`info` detail only when the candidate count is within `TS_MAX_COMPLETION_DETAIL`.
- `ts_diagnostics`, `ts_error_full`, `ts_code_fix`: diagnostics and their fixes. Call `ts_code_fix` without `fix_index` to list the fixes.
- `ts_rename`: all-or-nothing multi-file rename.
- `ts_document_symbols`, `ts_workspace_symbols`, `ts_project_info`, `ts_edit_config`, `ts_reload_project`: project views.

## Positioning
- Lines and columns are 1-based; columns are tsserver offsets (character index + 1).
- A nested LSP-style `position` (`line`/`character`, 0-based) is accepted and converted.

## Errors
- `server_unavailable`: tsserver is not running or exited. Check `TSSERVER_PATH` / `TS_PROJECT_PATH`, then call `ts_start`.
- `protocol_error`: tsserver could not answer for that position. `not_found`: nothing to report there.
- `rename_failed`: the rename was rejected and no buffer was modified. `canceled`: a required choice was missing.
"""
