from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from conftest import load_from_src

config_mod = load_from_src("tsserver_mcp.config")


def test_defaults() -> None:
    config = config_mod.BridgeConfig.from_env({})

    assert config.project_path is None
    assert config.max_completion_detail == 25
    assert config.diagnostics_enable is True
    assert config.expand_snippet is False
    assert config.diagnostics_delay == 0.5
    assert config.request_timeout is None
    assert [sign["name"] for sign in config.default_signs] == [
        "TSerror",
        "TSwarning",
        "TSinformation",
        "TShint",
    ]


def test_environment_overrides(tmp_path) -> None:
    config = config_mod.BridgeConfig.from_env(
        {
            "TS_PROJECT_PATH": str(tmp_path),
            "TSSERVER_PATH": "/opt/ts/bin/tsserver",
            "TSSERVER_OPTIONS": "--locale en --logVerbosity 'normal'",
            "TSSERVER_VERSION": "3.9.7",
            "TS_MAX_COMPLETION_DETAIL": "10",
            "TS_DIAGNOSTICS_ENABLE": "off",
            "TS_EXPAND_SNIPPET": "yes",
            "TS_DIAGNOSTICS_DELAY": "1.25",
            "TS_REQUEST_TIMEOUT": "30",
        }
    )

    assert config.project_path == str(tmp_path)
    assert config.server_command() == [
        "/opt/ts/bin/tsserver",
        "--locale",
        "en",
        "--logVerbosity",
        "normal",
    ]
    assert config.tsserver_version == "3.9.7"
    assert config.max_completion_detail == 10
    assert config.diagnostics_enable is False
    assert config.expand_snippet is True
    assert config.diagnostics_delay == 1.25
    assert config.request_timeout == 30.0


def test_relative_project_path_is_made_absolute() -> None:
    config = config_mod.BridgeConfig(project_path="some/project")

    assert os.path.isabs(config.project_path)


def test_invalid_flag_is_rejected() -> None:
    with pytest.raises(ValueError, match="TS_DIAGNOSTICS_ENABLE"):
        config_mod.BridgeConfig.from_env({"TS_DIAGNOSTICS_ENABLE": "maybe"})


def test_negative_values_fail_validation() -> None:
    with pytest.raises(ValidationError):
        config_mod.BridgeConfig.from_env({"TS_DIAGNOSTICS_DELAY": "-1"})


def test_unknown_fields_are_rejected() -> None:
    with pytest.raises(ValidationError):
        config_mod.BridgeConfig(tsserver="x")


def test_project_local_tsserver_is_preferred(tmp_path) -> None:
    local = tmp_path / "node_modules" / ".bin" / "tsserver"
    local.parent.mkdir(parents=True)
    local.write_text("#!/bin/sh\n", encoding="utf-8")

    config = config_mod.BridgeConfig(project_path=str(tmp_path))

    assert config.resolve_server_path() == str(local)


def test_falls_back_to_path_lookup(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(config_mod.shutil, "which", lambda name: f"/usr/bin/{name}")

    config = config_mod.BridgeConfig(project_path=str(tmp_path))

    assert config.resolve_server_path() == "/usr/bin/tsserver"


def test_explicit_server_path_wins(tmp_path) -> None:
    local = tmp_path / "node_modules" / ".bin" / "tsserver"
    local.parent.mkdir(parents=True)
    local.write_text("", encoding="utf-8")

    config = config_mod.BridgeConfig(project_path=str(tmp_path), server_path="~/bin/tsserver")

    assert config.resolve_server_path() == os.path.expanduser("~/bin/tsserver")
