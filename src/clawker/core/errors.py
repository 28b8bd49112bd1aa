"""
Error hierarchy for clawker.

Every error carries a user-facing message, an optional remediation hint and
the process exit code. The CLI error boundary renders these; everything
below the CLI raises them and never prints.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .exit_codes import EXIT_CANCELLED, EXIT_FAILURE


@dataclass(eq=False)
class ClawkerError(Exception):
    """Base error with user-facing message and remediation hint."""

    user_message: str = ""
    suggested_action: str | None = None
    debug_context: str | None = None
    exit_code: int = EXIT_FAILURE
    # Non-fatal incidents collected while unwinding, shown before the error
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.user_message:
            self.user_message = self.default_message()
        super().__init__(self.user_message)

    def default_message(self) -> str:
        return "An unexpected clawker error occurred"

    def __str__(self) -> str:
        return self.user_message


# ─────────────────────────────────────────────────────────────────────────────
# Validation and configuration
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class ValidationError(ClawkerError):
    """Invalid input detected before any daemon call."""

    field: str | None = None


@dataclass(eq=False)
class ConfigError(ClawkerError):
    """A configuration file is missing, unreadable or malformed."""

    path: str | None = None

    def default_message(self) -> str:
        if self.path:
            return f"Invalid configuration in {self.path}"
        return "Invalid configuration"


# ─────────────────────────────────────────────────────────────────────────────
# Runtime resources
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class RuntimeUnavailableError(ClawkerError):
    """The container runtime daemon cannot be reached."""

    def default_message(self) -> str:
        return "Cannot connect to the Docker daemon"


@dataclass(eq=False)
class DaemonError(ClawkerError):
    """The container runtime daemon rejected a request."""

    def default_message(self) -> str:
        return "Docker daemon request failed"


@dataclass(eq=False)
class ForeignVolumeError(ClawkerError):
    """A volume with a clawker-derived name exists but is not managed by clawker."""

    volume_name: str = ""

    def default_message(self) -> str:
        return f"Volume {self.volume_name!r} exists but is not managed by clawker"

    def __post_init__(self) -> None:
        if self.suggested_action is None:
            self.suggested_action = (
                f"Remove or rename the volume (docker volume rm {self.volume_name}) "
                "or choose a different agent name"
            )
        super().__post_init__()


@dataclass(eq=False)
class ImageNotFoundError(ClawkerError):
    """The resolved image does not exist locally and could not be rebuilt."""

    image: str = ""

    def default_message(self) -> str:
        return f"Default image {self.image!r} not found"


@dataclass(eq=False)
class WorktreeError(ClawkerError):
    """A git worktree could not be prepared."""


# ─────────────────────────────────────────────────────────────────────────────
# Keychain
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class KeychainError(ClawkerError):
    """Reading host credentials failed."""

    def default_message(self) -> str:
        return "Failed to read credentials from the keychain"


@dataclass(eq=False)
class CredentialNotFoundError(KeychainError):
    """No credential is stored for the service."""

    def default_message(self) -> str:
        return "No Claude Code credentials found on this host"


@dataclass(eq=False)
class CredentialExpiredError(KeychainError):
    """The stored credential is past its expiry."""

    def default_message(self) -> str:
        return "Claude Code credentials on this host have expired"


@dataclass(eq=False)
class KeychainTimeoutError(KeychainError):
    """The keychain did not answer within the deadline."""

    def default_message(self) -> str:
        return "Timed out reading credentials from the keychain"


# ─────────────────────────────────────────────────────────────────────────────
# Host services
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class HostProxyError(ClawkerError):
    """The host proxy could not be started."""

    def default_message(self) -> str:
        return "Host proxy failed to start"


@dataclass(eq=False)
class SocketBridgeError(ClawkerError):
    """The socket bridge daemon could not be started or failed."""

    def default_message(self) -> str:
        return "Socket bridge failed"


# ─────────────────────────────────────────────────────────────────────────────
# Pipeline and container lifecycle
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class StageError(ClawkerError):
    """A pipeline stage failed; the message is prefixed with the stage context."""

    stage: str = ""

    @classmethod
    def wrap(cls, stage: str, exc: BaseException) -> StageError:
        """Wrap an exception with one layer of stage context.

        Args:
            stage: Context prefix, e.g. "container init".
            exc: The underlying failure.

        Returns:
            StageError whose message reads "<stage>: <cause>". Callers raise
            it ``from exc`` so the cause chain is preserved.
        """
        if isinstance(exc, ClawkerError):
            inner = exc.user_message
            action = exc.suggested_action
        else:
            inner = str(exc) or type(exc).__name__
            action = None
        return cls(user_message=f"{stage}: {inner}", suggested_action=action, stage=stage)


@dataclass(eq=False)
class OperationCancelledError(ClawkerError):
    """The caller cancelled the operation."""

    exit_code: int = EXIT_CANCELLED

    def default_message(self) -> str:
        return "Operation cancelled"


@dataclass(eq=False)
class ContainerExitError(ClawkerError):
    """An interactive container exited with a non-zero status."""

    code: int = 1

    def default_message(self) -> str:
        return f"container exited with status {self.code}"

    def __post_init__(self) -> None:
        self.exit_code = self.code
        super().__post_init__()
