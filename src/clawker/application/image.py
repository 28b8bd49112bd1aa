"""Resolve the image an agent container runs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from clawker.config import ProjectConfig, UserSettings
from clawker.core.errors import ImageNotFoundError, ValidationError
from clawker.kinds import ImageSource
from clawker.ports.image_builder import ImageBuilder
from clawker.ports.runtime_client import RuntimeClient

logger = logging.getLogger(__name__)

RESOLVE_IMAGE = "@"


@dataclass(frozen=True)
class ResolvedImage:
    """An image reference and where it came from.

    Invariants:
        - source is DEFAULT only when the reference came from config or settings.

    Args:
        reference: Image reference passed to create.
        source: How the reference was found.
    """

    reference: str
    source: ImageSource


def next_steps(command_verb: str) -> str:
    return (
        "Next steps:\n"
        "  1. Run 'clawker init' to rebuild the base image\n"
        f"  2. Or specify an image explicitly: clawker {command_verb} IMAGE\n"
        "  3. Or build a project image: clawker build"
    )


def resolve_image(
    runtime: RuntimeClient,
    image: str,
    project: ProjectConfig,
    settings: UserSettings,
    *,
    command_verb: str = "run",
) -> ResolvedImage:
    """Resolve ``@`` to a project image or the configured default image.

    Explicit references pass through untouched.

    Raises:
        ValidationError: If ``@`` was given and nothing resolves.
    """
    if image and image != RESOLVE_IMAGE:
        return ResolvedImage(reference=image, source=ImageSource.EXPLICIT)

    if project.project:
        found = runtime.find_project_image(project.project)
        if found:
            logger.debug("resolved project image %s", found)
            return ResolvedImage(reference=found, source=ImageSource.PROJECT)

    default = project.default_image or settings.default_image
    if default:
        logger.debug("resolved default image %s", default)
        return ResolvedImage(reference=default, source=ImageSource.DEFAULT)

    raise ValidationError(
        user_message="No image specified and no default image configured",
        suggested_action=next_steps(command_verb),
        field="image",
    )


def ensure_default_image(
    runtime: RuntimeClient,
    resolved: ResolvedImage,
    *,
    interactive: bool,
    confirm: Callable[[str], bool] | None = None,
    builder: ImageBuilder | None = None,
    command_verb: str = "run",
) -> None:
    """Offer to rebuild a missing default image.

    Only DEFAULT-source images are checked; explicit and project images are
    left for the daemon to report.

    Raises:
        ImageNotFoundError: If the image is missing and is not rebuilt.
    """
    if resolved.source is not ImageSource.DEFAULT:
        return
    if runtime.image_exists(resolved.reference):
        return

    missing = ImageNotFoundError(image=resolved.reference, suggested_action=next_steps(command_verb))
    # Without a builder there is nothing to offer
    if not interactive or confirm is None or builder is None:
        raise missing

    if not confirm(f"Default image {resolved.reference!r} not found. Rebuild now?"):
        raise missing

    logger.info("rebuilding default image %s", resolved.reference)
    builder.build_default_image(resolved.reference)
