"""Keychain port definition."""

from __future__ import annotations

from typing import Protocol


class Keychain(Protocol):
    """Read-only access to the host credential store."""

    def get(self, service: str, user: str) -> str:
        """Return the raw secret.

        Raises:
            CredentialNotFoundError: No secret is stored for (service, user).
            KeychainTimeoutError: The store did not answer in time.
            KeychainError: Any other backend failure.
        """
