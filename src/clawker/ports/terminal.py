"""Terminal controller port definition."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Protocol


class Terminal(Protocol):
    """The caller's terminal: raw mode, size, resize events and byte I/O."""

    def is_terminal(self) -> bool:
        """Return True if stdin and stdout are attached to a TTY."""

    def raw_mode(self) -> AbstractContextManager[None]:
        """Put the terminal in raw mode; restore on exit."""

    def get_size(self) -> tuple[int, int]:
        """Return (rows, cols)."""

    def watch_resize(self, callback: Callable[[int, int], None]) -> Callable[[], None]:
        """Call callback(rows, cols) on every size change; return an unsubscribe function."""

    def read_input(self, size: int, timeout: float | None = None) -> bytes | None:
        """Read caller stdin.

        Returns:
            Bytes read, b"" at EOF, or None if nothing arrived within timeout.
        """

    def write_output(self, data: bytes) -> None:
        """Write container stdout bytes to the caller."""

    def write_error(self, data: bytes) -> None:
        """Write container stderr bytes to the caller."""

    def supports_256_color(self) -> bool:
        """Return True if the caller's terminal handles 256 colors."""

    def supports_truecolor(self) -> bool:
        """Return True if the caller's terminal handles 24-bit color."""
