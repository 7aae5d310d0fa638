from __future__ import annotations

import os
from typing import Optional


def get_relative_file_path(project_path: str | None, file_path: str) -> Optional[str]:
    """Return ``file_path`` relative to ``project_path`` when it lives inside it."""

    if not project_path:
        return None
    project_root = os.path.abspath(project_path)
    abs_path = os.path.abspath(file_path)
    try:
        if os.path.commonpath([abs_path, project_root]) == project_root:
            return os.path.relpath(abs_path, project_root)
    except ValueError:
        return None
    return None


def get_file_contents(abs_path: str) -> str:
    try:
        with open(abs_path, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except UnicodeDecodeError:
        # latin-1 maps every byte, so this cannot fail to decode
        with open(abs_path, "r", encoding="latin-1", newline="") as f:
            return f.read()


__all__ = ["get_file_contents", "get_relative_file_path"]
