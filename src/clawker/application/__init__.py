"""Use cases: image resolution, container initialization and attach-then-start."""
