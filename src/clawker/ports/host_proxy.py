"""Host proxy service port definition."""

from __future__ import annotations

from typing import Protocol


class HostProxyService(Protocol):
    """Loopback HTTP service containers call to act on the host."""

    def ensure_running(self) -> None:
        """Start the proxy if it is not already serving.

        Raises:
            HostProxyError: If no listener could be started.
        """

    def is_running(self) -> bool:
        """Return True if the proxy is serving."""

    def proxy_url(self) -> str:
        """Return the URL containers use to reach the proxy."""

    def stop(self) -> None:
        """Stop listeners owned by this process."""
