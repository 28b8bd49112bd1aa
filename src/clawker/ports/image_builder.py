"""Image builder port definition."""

from __future__ import annotations

from typing import Protocol


class ImageBuilder(Protocol):
    """Opaque builder for the default base image."""

    def build_default_image(self, reference: str) -> None:
        """Build and tag the image at reference."""
