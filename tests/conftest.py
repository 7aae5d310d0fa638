from __future__ import annotations

import importlib
import sys
import time
from pathlib import Path
from queue import Queue
from typing import Any, Callable, Dict, List, Optional, Set

import orjson
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tsserver_mcp.errors import ServerUnavailableError  # noqa: E402


def load_from_src(module: str):
    """Import ``module`` from the src tree."""

    return importlib.import_module(module)


NOTIFICATIONS = {"open", "close", "reloadProjects"}


class FakeTransport:
    """In-memory line transport; tests push server output with :meth:`feed`."""

    def __init__(self, *_args: Any, **_kwargs: Any) -> None:
        self.written: List[Dict[str, Any]] = []
        self._lines: "Queue[Optional[str]]" = Queue()
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    @property
    def is_running(self) -> bool:
        return self.started and not self.closed

    def write_line(self, line: str) -> None:
        if self.closed:
            raise ServerUnavailableError("tsserver is not running")
        message = orjson.loads(line)
        self.written.append(message)
        self.handle(message)

    def handle(self, message: Dict[str, Any]) -> None:
        """Hook for scripted servers."""

    def read_line(self) -> Optional[str]:
        return self._lines.get()

    def feed(self, payload: Any) -> None:
        if isinstance(payload, str):
            self._lines.put(payload)
        else:
            self._lines.put(orjson.dumps(payload).decode("utf-8"))

    def eof(self) -> None:
        self._lines.put(None)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._lines.put(None)

    def requests(self, command: str) -> List[Dict[str, Any]]:
        return [message for message in self.written if message.get("command") == command]


class ScriptFailure(Exception):
    """Raised by a handler to answer ``success: false``."""


class ScriptedTransport(FakeTransport):
    """Answer every request from ``handlers`` (command -> body or callable)."""

    def __init__(self, handlers: Dict[str, Any] | None = None, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.handlers: Dict[str, Any] = {"status": {"version": "4.9.5"}, "reload": None}
        self.handlers.update(handlers or {})

    def handle(self, message: Dict[str, Any]) -> None:
        command = message["command"]
        if command in NOTIFICATIONS:
            return
        handler = self.handlers.get(command)
        response: Dict[str, Any] = {
            "seq": 0,
            "type": "response",
            "command": command,
            "request_seq": message["seq"],
            "success": True,
        }
        try:
            response["body"] = handler(message.get("arguments") or {}) if callable(handler) else handler
        except ScriptFailure as exc:
            response["success"] = False
            response["message"] = str(exc)
        self.feed(response)


class HoldingTransport(ScriptedTransport):
    """Scripted server that leaves requests for ``held`` commands unanswered.

    Held requests queue up on ``waiting`` until a test calls :meth:`answer`,
    so responses can be delivered in any order.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.held: Set[str] = set()
        self.waiting: "Queue[Dict[str, Any]]" = Queue()

    def handle(self, message: Dict[str, Any]) -> None:
        if message["command"] in self.held:
            self.waiting.put(message)
            return
        super().handle(message)

    def answer(self, request: Dict[str, Any], body: Any) -> None:
        self.feed(
            {
                "seq": 0,
                "type": "response",
                "command": request["command"],
                "request_seq": request["seq"],
                "success": True,
                "body": body,
            }
        )


class FakeTimer:
    def __init__(self, interval: float, function: Callable[..., Any], args: Any = None, kwargs: Any = None) -> None:
        self.interval = interval
        self.function = function
        self.args = tuple(args or ())
        self.kwargs = dict(kwargs or {})
        self.daemon = False
        self.started = False
        self.canceled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.canceled = True

    def fire(self) -> None:
        if not self.canceled:
            self.function(*self.args, **self.kwargs)


class FakeTimers:
    """Timer factory recording every timer it creates."""

    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def __call__(self, interval: float, function: Callable[..., Any], args: Any = None, kwargs: Any = None) -> FakeTimer:
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> List[FakeTimer]:
        return [timer for timer in self.timers if not timer.canceled]


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class BridgeHarness:
    """A bridge wired to scripted tsserver transports and manual timers."""

    def __init__(self, root: Path, handlers: Dict[str, Any] | None = None, **config: Any) -> None:
        bridge_mod = load_from_src("tsserver_mcp.bridge")
        config_mod = load_from_src("tsserver_mcp.config")
        editor_mod = load_from_src("tsserver_mcp.editor")

        self.root = root
        self.handlers: Dict[str, Any] = dict(handlers or {})
        self.transports: List[ScriptedTransport] = []
        self.transport_class = ScriptedTransport
        self.timers = FakeTimers()
        config.setdefault("request_timeout", 2.0)
        config.setdefault("server_path", "tsserver")
        self.config = config_mod.BridgeConfig(project_path=str(root), **config)
        self.editor = editor_mod.WorkspaceEditor(str(root))
        self.bridge = bridge_mod.TSBridge(
            self.config,
            self.editor,
            transport_factory=self._transport,
            timer_factory=self.timers,
        )

    def _transport(self, command: List[str], cwd: str | None = None) -> ScriptedTransport:
        transport = self.transport_class(self.handlers)
        self.command = command
        self.cwd = cwd
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> ScriptedTransport:
        return self.transports[-1]

    def write(self, name: str, text: str) -> str:
        path = self.root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return str(path)

    def messages(self) -> List[str]:
        return [message.text for message in self.editor.messages]

    def close(self) -> None:
        self.bridge.stop()


@pytest.fixture
def harness_factory(tmp_path: Path):
    created: List[BridgeHarness] = []

    def make(handlers: Dict[str, Any] | None = None, **config: Any) -> BridgeHarness:
        harness = BridgeHarness(tmp_path, handlers, **config)
        created.append(harness)
        return harness

    yield make
    for harness in created:
        harness.close()


__all__ = [
    "BridgeHarness",
    "FakeTimer",
    "FakeTimers",
    "FakeTransport",
    "HoldingTransport",
    "ScriptFailure",
    "ScriptedTransport",
    "load_from_src",
    "wait_until",
]
