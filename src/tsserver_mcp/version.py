from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import orjson
from mcp.server.fastmcp.utilities.logging import get_logger

from tsserver_mcp.errors import ProtocolError

logger = get_logger(__name__)

_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")

LEGACY_VERSION = "2.0.0"


@dataclass(frozen=True, order=True)
class ProtocolVersion:
    major: int
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, raw: str) -> "ProtocolVersion":
        """Parse strings such as ``"3.4.5"``, ``"Version 2.9.2"`` or ``"4.0.0-dev"``."""

        match = _VERSION_RE.search(raw or "")
        if match is None:
            raise ValueError(f"Unrecognised tsserver version: {raw!r}")
        major, minor, patch = (int(part) if part else 0 for part in match.groups())
        return cls(major, minor, patch)

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def _package_version(manifest: str) -> Optional[str]:
    try:
        with open(manifest, "rb") as handle:
            data = orjson.loads(handle.read())
    except (OSError, orjson.JSONDecodeError):
        return None
    if not isinstance(data, dict) or data.get("name") != "typescript":
        return None
    version = data.get("version")
    return version if isinstance(version, str) else None


def installed_typescript_version(server_path: str) -> Optional[str]:
    """Read the version of the ``typescript`` package that ships ``server_path``.

    Follows ``.bin`` symlinks and walks up from the executable; a bare ``.bin``
    shim is matched to its sibling ``typescript`` package.
    """
    located = shutil.which(server_path) or server_path
    if not os.path.exists(located):
        return None
    directory = os.path.dirname(os.path.realpath(located))
    shim_dir = os.path.dirname(os.path.abspath(located))
    if os.path.basename(shim_dir) == ".bin":
        version = _package_version(
            os.path.join(os.path.dirname(shim_dir), "typescript", "package.json")
        )
        if version is not None:
            return version
    while True:
        version = _package_version(os.path.join(directory, "package.json"))
        if version is not None:
            return version
        parent = os.path.dirname(directory)
        if parent == directory:
            return None
        directory = parent


class VersionGate:
    """Answer version predicates for one session; the version never changes."""

    def __init__(self, version: ProtocolVersion) -> None:
        self._version = version

    @property
    def version(self) -> ProtocolVersion:
        return self._version

    def is_at_least(self, threshold: Union[str, ProtocolVersion]) -> bool:
        if isinstance(threshold, str):
            threshold = ProtocolVersion.parse(threshold)
        return self._version >= threshold

    @classmethod
    def detect(
        cls, client, override: str | None = None, server_path: str | None = None
    ) -> "VersionGate":
        """Query the server version once via the ``status`` request.

        Servers older than the ``status`` command reject it. The version is
        then read from the ``typescript`` package owning ``server_path``, and
        only when that is missing too is the session treated as the legacy
        protocol.
        """
        if override:
            return cls(ProtocolVersion.parse(override))
        try:
            body = client.status()
            version = ProtocolVersion.parse(str(body.get("version", "")))
        except (ProtocolError, ValueError) as exc:
            version = cls._fallback(server_path, exc)
        logger.info("Detected tsserver protocol version %s", version)
        return cls(version)

    @staticmethod
    def _fallback(server_path: str | None, exc: Exception) -> ProtocolVersion:
        installed = installed_typescript_version(server_path) if server_path else None
        if installed:
            try:
                version = ProtocolVersion.parse(installed)
            except ValueError:
                logger.debug("Ignoring unparseable typescript version %r", installed)
            else:
                logger.info("status unavailable (%s); using installed typescript %s", exc, version)
                return version
        logger.info("tsserver version unavailable (%s); assuming %s", exc, LEGACY_VERSION)
        return ProtocolVersion.parse(LEGACY_VERSION)


__all__ = ["LEGACY_VERSION", "ProtocolVersion", "VersionGate", "installed_typescript_version"]
