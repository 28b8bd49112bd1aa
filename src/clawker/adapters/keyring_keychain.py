"""Keyring adapter for the Keychain port."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

import keyring
import keyring.errors

from clawker.core.constants import KEYCHAIN_TIMEOUT_SECONDS
from clawker.core.errors import CredentialNotFoundError, KeychainError, KeychainTimeoutError
from clawker.ports.keychain import Keychain

logger = logging.getLogger(__name__)


class KeyringKeychain(Keychain):
    """Read secrets from the OS credential store through keyring.

    Backends can block on an unlock prompt, so every read runs on a worker
    thread with a deadline.
    """

    def __init__(self, timeout: float = KEYCHAIN_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout

    def get(self, service: str, user: str) -> str:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="clawker-keychain")
        try:
            future = executor.submit(keyring.get_password, service, user)
            try:
                secret = future.result(timeout=self._timeout)
            except FutureTimeoutError as e:
                raise KeychainTimeoutError(
                    debug_context=f"no answer from keyring within {self._timeout:g}s"
                ) from e
            except keyring.errors.KeyringError as e:
                raise KeychainError(debug_context=str(e)) from e
        finally:
            # A hung backend keeps its thread; do not wait for it
            executor.shutdown(wait=False)

        if not secret:
            raise CredentialNotFoundError()
        logger.debug("read %s from keyring", service)
        return secret
