from __future__ import annotations

import os
import tempfile
from contextlib import nullcontext
from typing import Any

from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


def snapshot_lines(editor, file: str) -> str:
    lines = editor.buffer_lines(file)
    if editor.endofline(file):
        lines = [*lines, ""]
    return "\n".join(lines)


def sync_buffer(client, editor, file: str, *, lock=None) -> Any:
    """Point tsserver at the unsaved contents of ``file``.

    The snapshot is written to a fresh temporary file that only lives for the
    duration of the ``reload`` call. When ``lock`` is given the snapshot is
    taken under it, but the ``reload`` round trip is not.
    """
    with lock or nullcontext():
        text = snapshot_lines(editor, file)
    suffix = os.path.splitext(file)[1] or ".ts"
    fd, tmp_path = tempfile.mkstemp(prefix="tsserver-sync-", suffix=suffix)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        return client.reload(file, tmp_path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            logger.debug("Sync snapshot %s already removed", tmp_path)


__all__ = ["snapshot_lines", "sync_buffer"]
