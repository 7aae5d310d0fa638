from __future__ import annotations

import subprocess
from threading import Lock
from typing import Callable, List, Optional, Sequence

from mcp.server.fastmcp.utilities.logging import get_logger

from tsserver_mcp.errors import ServerUnavailableError

logger = get_logger(__name__)


class SubprocessTransport:
    """Own one tsserver process and expose line-based access to its pipes."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: str | None = None,
        process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self.command: List[str] = list(command)
        self.cwd = cwd
        self._process_factory = process_factory
        self._process: Optional[subprocess.Popen] = None
        self._write_lock = Lock()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        if self._process is not None:
            return
        try:
            self._process = self._process_factory(
                self.command,
                cwd=self.cwd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                bufsize=0,
            )
        except OSError as exc:
            raise ServerUnavailableError(
                f"Unable to start tsserver ({self.command[0]}): {exc}",
                command=self.command,
            ) from exc
        logger.info("Started tsserver pid=%s: %s", self._process.pid, " ".join(self.command))

    def write_line(self, line: str) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise ServerUnavailableError("tsserver is not running")
        data = line.encode("utf-8") + b"\n"
        with self._write_lock:
            try:
                process.stdin.write(data)
                process.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                raise ServerUnavailableError(f"tsserver stdin closed: {exc}") from exc

    def read_line(self) -> Optional[str]:
        """Return the next output line without its newline, or ``None`` at EOF."""

        process = self._process
        if process is None or process.stdout is None:
            return None
        try:
            raw = process.stdout.readline()
        except (OSError, ValueError):
            return None
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def close(self, timeout: float = 2.0) -> None:
        process = self._process
        if process is None:
            return
        self._process = None
        if process.stdin is not None:
            try:
                process.stdin.close()
            except OSError:
                pass
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning("tsserver pid=%s ignored terminate; killing", process.pid)
                process.kill()
                process.wait(timeout=timeout)
        if process.stdout is not None:
            try:
                process.stdout.close()
            except OSError:
                pass
        logger.info("Stopped tsserver pid=%s", process.pid)


__all__ = ["SubprocessTransport"]
