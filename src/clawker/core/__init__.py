"""Core primitives: errors, exit codes, constants and logging."""
