"""POSIX terminal adapter for the Terminal port."""

from __future__ import annotations

import logging
import os
import select
import shutil
import signal
import sys
import termios
import threading
import tty
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, TextIO

from clawker.ports.terminal import Terminal

logger = logging.getLogger(__name__)

_DEFAULT_SIZE = (24, 80)
_256_COLOR_TERMS = ("256color", "truecolor", "24bit", "kitty", "alacritty", "wezterm")


class PosixTerminal(Terminal):
    """The process's own stdin/stdout/stderr as a Terminal."""

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._stderr = stderr or sys.stderr
        self._env = env if env is not None else os.environ
        self._resize_lock = threading.Lock()
        self._resize_callbacks: list[Callable[[int, int], None]] = []
        self._previous_handler: Any = None

    def is_terminal(self) -> bool:
        return self._stdin.isatty() and self._stdout.isatty()

    @contextmanager
    def raw_mode(self) -> Iterator[None]:
        fd = self._stdin.fileno()
        saved = termios.tcgetattr(fd)
        tty.setraw(fd)
        try:
            yield
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
            logger.debug("terminal restored")

    def get_size(self) -> tuple[int, int]:
        try:
            size = os.get_terminal_size(self._stdout.fileno())
        except (OSError, ValueError):
            fallback = shutil.get_terminal_size((_DEFAULT_SIZE[1], _DEFAULT_SIZE[0]))
            return fallback.lines, fallback.columns
        return size.lines, size.columns

    def watch_resize(self, callback: Callable[[int, int], None]) -> Callable[[], None]:
        # Signal handlers can only be installed from the main thread
        if threading.current_thread() is not threading.main_thread():
            return lambda: None

        with self._resize_lock:
            if not self._resize_callbacks:
                self._previous_handler = signal.signal(signal.SIGWINCH, self._on_winch)
            self._resize_callbacks.append(callback)

        def unsubscribe() -> None:
            with self._resize_lock:
                if callback in self._resize_callbacks:
                    self._resize_callbacks.remove(callback)
                if not self._resize_callbacks and self._previous_handler is not None:
                    signal.signal(signal.SIGWINCH, self._previous_handler)
                    self._previous_handler = None

        return unsubscribe

    def _on_winch(self, signum: int, frame: Any) -> None:
        rows, cols = self.get_size()
        for callback in list(self._resize_callbacks):
            callback(rows, cols)

    def read_input(self, size: int, timeout: float | None = None) -> bytes | None:
        fd = self._stdin.fileno()
        ready, _, _ = select.select([fd], [], [], timeout)
        if not ready:
            return None
        return os.read(fd, size)

    def write_output(self, data: bytes) -> None:
        self._write(self._stdout, data)

    def write_error(self, data: bytes) -> None:
        self._write(self._stderr, data)

    @staticmethod
    def _write(stream: TextIO, data: bytes) -> None:
        buffer = getattr(stream, "buffer", None)
        if buffer is not None:
            buffer.write(data)
            buffer.flush()
        else:
            stream.write(data.decode(errors="replace"))
            stream.flush()

    def supports_256_color(self) -> bool:
        term = self._env.get("TERM", "")
        colorterm = self._env.get("COLORTERM", "")
        return any(marker in term for marker in _256_COLOR_TERMS) or bool(colorterm)

    def supports_truecolor(self) -> bool:
        return self._env.get("COLORTERM", "").lower() in ("truecolor", "24bit")
