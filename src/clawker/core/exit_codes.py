"""
Exit codes for the clawker CLI.

Exit Code Semantics:
  0: Success - command completed successfully
  1: Failure - initialization failed (validation, config, daemon, keychain)
  2: Usage Error - bad flags or missing arguments (Click default)
  130: Cancelled - user cancelled operation (SIGINT)

An interactive container that exits non-zero propagates its own status
instead of any code listed here.
"""

# Success
EXIT_SUCCESS = 0  # Command completed successfully

# Failures
EXIT_FAILURE = 1  # Container initialization failed
EXIT_USAGE = 2  # Invalid usage/arguments (Click default)

# Cancellation (SIGINT convention)
EXIT_CANCELLED = 130  # User cancelled operation (SIGINT)

# Status the daemon reports when a wait itself fails
EXIT_WAIT_FAILED = 125

# Map exception types to exit codes.
# Keyed by class name so this module never imports the errors module.
EXIT_CODE_MAP = {
    "ClawkerError": EXIT_FAILURE,
    "ValidationError": EXIT_FAILURE,
    "ConfigError": EXIT_FAILURE,
    "ForeignVolumeError": EXIT_FAILURE,
    "RuntimeUnavailableError": EXIT_FAILURE,
    "KeychainError": EXIT_FAILURE,
    "StageError": EXIT_FAILURE,
    "OperationCancelledError": EXIT_CANCELLED,
    "KeyboardInterrupt": EXIT_CANCELLED,
    "UsageError": EXIT_USAGE,
}


def get_exit_code_for_exception(exc: BaseException) -> int:
    """Return the appropriate exit code for an exception type.

    Walk up the exception's MRO to find a matching type in EXIT_CODE_MAP.
    Fall back to EXIT_FAILURE if no specific mapping exists.

    Args:
        exc: The exception instance to map.

    Returns:
        The standardized exit code for the exception type.
    """
    for cls in type(exc).__mro__:
        if cls.__name__ in EXIT_CODE_MAP:
            return EXIT_CODE_MAP[cls.__name__]

    return EXIT_FAILURE
