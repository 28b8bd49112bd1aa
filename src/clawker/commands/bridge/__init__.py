"""Hidden socket bridge daemon commands."""
