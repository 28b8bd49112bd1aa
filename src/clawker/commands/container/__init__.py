"""Container lifecycle commands."""
