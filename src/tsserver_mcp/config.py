from __future__ import annotations

import os
import shlex
import shutil
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SIGNS: List[Dict[str, str]] = [
    {"name": "TSerror", "text": "•", "texthl": "NeomakeErrorSign", "severity": "error"},
    {"name": "TSwarning", "text": "•", "texthl": "NeomakeWarningSign", "severity": "warning"},
    {"name": "TSinformation", "text": "•", "texthl": "NeomakeInfoSign", "severity": "message"},
    {"name": "TShint", "text": "?", "texthl": "NeomakeInfoSign", "severity": "suggestion"},
]

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


class BridgeConfig(BaseModel):
    """Session configuration, read once when the bridge starts."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    project_path: Optional[str] = Field(
        default=None,
        description="Root used to resolve relative paths and a project-local tsserver.",
    )
    server_path: Optional[str] = Field(
        default=None,
        description="Explicit tsserver executable; resolved from the project when omitted.",
    )
    server_options: List[str] = Field(default_factory=list)
    tsserver_version: Optional[str] = Field(
        default=None,
        description="Skip version detection and assume this tsserver version.",
    )
    max_completion_detail: int = Field(default=25, ge=0)
    diagnostics_enable: bool = True
    expand_snippet: bool = False
    diagnostics_delay: float = Field(default=0.5, ge=0)
    request_timeout: Optional[float] = Field(default=None, gt=0)
    default_signs: List[Dict[str, str]] = Field(
        default_factory=lambda: [dict(sign) for sign in DEFAULT_SIGNS]
    )
    kind_symbols: Dict[str, str] = Field(default_factory=dict)

    @field_validator("project_path")
    @classmethod
    def _absolute_project_path(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        return os.path.abspath(value)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BridgeConfig":
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        project_path = env.get("TS_PROJECT_PATH", "").strip()
        if project_path:
            values["project_path"] = project_path
        server_path = env.get("TSSERVER_PATH", "").strip()
        if server_path:
            values["server_path"] = server_path
        options = env.get("TSSERVER_OPTIONS", "").strip()
        if options:
            values["server_options"] = shlex.split(options)
        version = env.get("TSSERVER_VERSION", "").strip()
        if version:
            values["tsserver_version"] = version
        max_detail = env.get("TS_MAX_COMPLETION_DETAIL", "").strip()
        if max_detail:
            values["max_completion_detail"] = int(float(max_detail))
        if "TS_DIAGNOSTICS_ENABLE" in env:
            values["diagnostics_enable"] = _parse_bool(
                "TS_DIAGNOSTICS_ENABLE", env["TS_DIAGNOSTICS_ENABLE"]
            )
        if "TS_EXPAND_SNIPPET" in env:
            values["expand_snippet"] = _parse_bool(
                "TS_EXPAND_SNIPPET", env["TS_EXPAND_SNIPPET"]
            )
        delay = env.get("TS_DIAGNOSTICS_DELAY", "").strip()
        if delay:
            values["diagnostics_delay"] = float(delay)
        timeout = env.get("TS_REQUEST_TIMEOUT", "").strip()
        if timeout:
            values["request_timeout"] = float(timeout)
        return cls(**values)

    def resolve_server_path(self) -> str:
        """Return the tsserver executable to launch.

        An explicit ``server_path`` wins; otherwise a project-local
        ``node_modules/.bin/tsserver`` is preferred over the one on ``PATH``.
        """
        if self.server_path:
            return os.path.expanduser(self.server_path)
        if self.project_path:
            local = os.path.join(self.project_path, "node_modules", ".bin", "tsserver")
            if os.path.isfile(local):
                return local
        return shutil.which("tsserver") or "tsserver"

    def server_command(self) -> List[str]:
        return [self.resolve_server_path(), *self.server_options]


__all__ = ["BridgeConfig", "DEFAULT_SIGNS"]
