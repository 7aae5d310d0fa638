from __future__ import annotations

import pytest

from conftest import load_from_src

version = load_from_src("tsserver_mcp.version")
completion = load_from_src("tsserver_mcp.completion")
errors = load_from_src("tsserver_mcp.errors")


class StatusClient:
    def __init__(self, body=None, error: Exception | None = None) -> None:
        self.body = body
        self.error = error
        self.calls = 0

    def status(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.body


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("3.4.5", (3, 4, 5)),
        ("Version 2.9.2", (2, 9, 2)),
        ("4.0.0-dev.20200101", (4, 0, 0)),
        ("5.1", (5, 1, 0)),
        ("3", (3, 0, 0)),
    ],
)
def test_parse_accepts_common_version_strings(raw: str, expected: tuple) -> None:
    assert version.ProtocolVersion.parse(raw).as_tuple() == expected


def test_parse_rejects_text_without_digits() -> None:
    with pytest.raises(ValueError):
        version.ProtocolVersion.parse("unknown")


def test_versions_compare_numerically() -> None:
    gate = version.VersionGate(version.ProtocolVersion.parse("3.10.0"))

    assert gate.is_at_least("3.0")
    assert gate.is_at_least("3.9.9")
    assert not gate.is_at_least("3.11")
    assert str(gate.version) == "3.10.0"


def test_detect_uses_status_version() -> None:
    client = StatusClient({"version": "4.9.5"})

    gate = version.VersionGate.detect(client)

    assert str(gate.version) == "4.9.5"
    assert client.calls == 1


def test_detect_falls_back_when_status_is_rejected() -> None:
    client = StatusClient(error=errors.ProtocolError("status", "Unrecognized JSON command: status"))

    gate = version.VersionGate.detect(client)

    assert str(gate.version) == version.LEGACY_VERSION
    assert not gate.is_at_least("3.0")


def _install_typescript(root, version_text: str):
    package = root / "node_modules" / "typescript"
    (package / "bin").mkdir(parents=True)
    (package / "package.json").write_text(
        f'{{"name": "typescript", "version": "{version_text}"}}', encoding="utf-8"
    )
    server = package / "bin" / "tsserver"
    server.write_text("#!/usr/bin/env node\n", encoding="utf-8")
    return server


def test_rejected_status_uses_the_installed_typescript_version(tmp_path) -> None:
    server = _install_typescript(tmp_path, "3.2.1")
    client = StatusClient(error=errors.ProtocolError("status", "Unrecognized JSON command: status"))

    gate = version.VersionGate.detect(client, server_path=str(server))

    assert str(gate.version) == "3.2.1"
    assert isinstance(completion.select_strategy(gate), completion.MemberAwareCompletionStrategy)


def test_installed_version_follows_bin_links(tmp_path) -> None:
    server = _install_typescript(tmp_path, "4.1.0")
    bin_dir = tmp_path / "node_modules" / ".bin"
    bin_dir.mkdir()
    (bin_dir / "tsserver").symlink_to(server)

    assert version.installed_typescript_version(str(bin_dir / "tsserver")) == "4.1.0"


def test_installed_version_matches_a_copied_bin_shim(tmp_path) -> None:
    _install_typescript(tmp_path, "3.7.5")
    bin_dir = tmp_path / "node_modules" / ".bin"
    bin_dir.mkdir()
    shim = bin_dir / "tsserver"
    shim.write_text("#!/bin/sh\n", encoding="utf-8")

    assert version.installed_typescript_version(str(shim)) == "3.7.5"


def test_installed_version_ignores_other_packages(tmp_path) -> None:
    tool = tmp_path / "tool"
    (tool / "bin").mkdir(parents=True)
    (tool / "package.json").write_text('{"name": "not-typescript", "version": "9.0.0"}', encoding="utf-8")
    server = tool / "bin" / "tsserver"
    server.write_text("", encoding="utf-8")

    assert version.installed_typescript_version(str(server)) is None
    assert version.installed_typescript_version(str(tmp_path / "missing")) is None


def test_detect_falls_back_when_version_is_unparseable() -> None:
    gate = version.VersionGate.detect(StatusClient({"version": ""}))

    assert str(gate.version) == "2.0.0"


def test_detect_override_skips_status() -> None:
    client = StatusClient({"version": "5.0.0"})

    gate = version.VersionGate.detect(client, "2.9.0")

    assert str(gate.version) == "2.9.0"
    assert client.calls == 0


def test_transport_failure_during_detection_propagates() -> None:
    client = StatusClient(error=errors.ServerUnavailableError("tsserver terminated"))

    with pytest.raises(errors.ServerUnavailableError):
        version.VersionGate.detect(client)


@pytest.mark.parametrize(
    "raw,strategy",
    [
        ("2.9.2", completion.LegacyCompletionStrategy),
        ("3.0.0", completion.MemberAwareCompletionStrategy),
        ("5.4.5", completion.MemberAwareCompletionStrategy),
    ],
)
def test_strategy_follows_version(raw: str, strategy: type) -> None:
    gate = version.VersionGate(version.ProtocolVersion.parse(raw))

    assert isinstance(completion.select_strategy(gate), strategy)
