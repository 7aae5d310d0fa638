from __future__ import annotations

import os
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class ToolInputBase(BaseModel):
    """Shared configuration for structured tool inputs."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        populate_by_name=True,
        extra="forbid",
    )

    response_format: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("_format", "response_format"),
        serialization_alias="_format",
        description="Optional response rendering hint: `markdown` (default) or `json`.",
    )


class FileInput(ToolInputBase):
    file_path: str = Field(
        ...,
        validation_alias=AliasChoices("file_path", "uri", "path", "file"),
        description="Absolute or project-relative path to a TypeScript or JavaScript file.",
    )

    @model_validator(mode="before")
    @classmethod
    def _promote_nested_file_keys(cls, data: Any) -> Any:
        """Accept a nested ``file`` object (as returned by other tools)."""
        if isinstance(data, dict):
            nested = data.get("file")
            if isinstance(nested, dict):
                data = {k: v for k, v in data.items() if k != "file"}
                if "file_path" not in data:
                    data["file_path"] = nested.get("path") or nested.get("uri")
        return data

    @field_validator("file_path", mode="before")
    @classmethod
    def _coerce_file_uri(cls, value: Any) -> Any:
        """Allow `file://` URIs by converting to a local path string."""
        if isinstance(value, str) and value.startswith("file://"):
            parsed = urlparse(value)
            path = unquote(parsed.path or "")
            if os.name == "nt" and path.startswith("/"):
                path = path.lstrip("/")
            return path
        return value

    @field_validator("file_path")
    @classmethod
    def _validate_file_path(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("file_path cannot be empty.")
        return value


class PositionInput(FileInput):
    line: int = Field(..., ge=1, description="1-based line number.")
    column: int = Field(
        ...,
        ge=1,
        validation_alias=AliasChoices("column", "character", "offset"),
        description="1-based column (tsserver offset) within the line.",
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_lsp_position(cls, data: Any) -> Any:
        """Accept ``{"position": {"line": 0, "character": 4}}`` (0-based, LSP style).

        A nested ``column`` is taken as already 1-based.
        """
        if not isinstance(data, dict):
            return data
        pos: Optional[Dict[str, Any]] = data.get("position")
        if not isinstance(pos, dict):
            return data
        data = {k: v for k, v in data.items() if k != "position"}
        zero_based = "character" in pos and "column" not in pos
        if "line" in pos and "line" not in data and pos["line"] is not None:
            data["line"] = int(pos["line"]) + (1 if zero_based else 0)
        if "column" not in data and "character" not in data:
            if zero_based:
                data["column"] = int(pos["character"]) + 1
            elif "column" in pos:
                data["column"] = int(pos["column"])
        return data


class EmptyInput(ToolInputBase):
    """Tools without arguments still accept a formatting hint."""


class OpenFileInput(FileInput):
    # buffer text is taken verbatim, indentation and trailing newline included
    model_config = ConfigDict(str_strip_whitespace=False)

    text: Optional[str] = Field(
        default=None,
        description="Unsaved buffer contents; the file on disk is used when omitted.",
    )


class SetBufferTextInput(FileInput):
    model_config = ConfigDict(str_strip_whitespace=False)

    text: str = Field(..., description="Complete new buffer contents.")
    refresh_diagnostics: bool = Field(
        default=False,
        description="Refresh diagnostics now instead of after the debounce delay.",
    )


class BufferContentsInput(FileInput):
    annotate_lines: bool = Field(
        default=True,
        description="Prefix each returned line with its 1-based line number.",
    )


class DiagnosticsInput(FileInput):
    include_suggestions: bool = Field(
        default=False,
        description="Also collect suggestion diagnostics (unused symbols, etc.).",
    )


class DefinitionInput(PositionInput):
    preview: bool = Field(
        default=False,
        description="Show the definition in the preview window instead of jumping to it.",
    )


class CompletionsInput(PositionInput):
    prefix: Optional[str] = Field(
        default=None,
        description="Typed prefix; derived from the word left of the column when omitted.",
    )
    max_results: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum number of completion items included in the response.",
    )


class RenameInput(PositionInput):
    new_name: str = Field(..., min_length=1, description="Replacement identifier.")


class CodeFixInput(PositionInput):
    fix_index: Optional[int] = Field(
        default=None,
        ge=1,
        description="1-based index of the fix to apply; omit to list the available fixes.",
    )


class WorkspaceSymbolsInput(FileInput):
    query: str = Field(
        default="",
        max_length=200,
        description="Symbol name (or prefix) to search across the project.",
    )


__all__ = [
    "BufferContentsInput",
    "CodeFixInput",
    "CompletionsInput",
    "DefinitionInput",
    "DiagnosticsInput",
    "EmptyInput",
    "FileInput",
    "OpenFileInput",
    "PositionInput",
    "RenameInput",
    "SetBufferTextInput",
    "ToolInputBase",
    "WorkspaceSymbolsInput",
]
