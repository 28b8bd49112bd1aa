"""
Deterministic naming for agent containers and their volumes.

Naming scheme:
- Container: clawker.<project>.<agent>, or clawker.<agent> without a project
- Volume:    <container-name>-<kind>, e.g. clawker.myapp.dev-config

Names are a pure function of (project, agent, kind), which is what keeps two
agents from ever touching each other's volumes.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field

from .core.constants import MAX_CONTAINER_NAME_LENGTH, NAME_PREFIX
from .core.errors import ValidationError
from .kinds import VolumeKind

_RESOURCE_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
_FORBIDDEN_CHARS_RE = re.compile(r"[/\\\s]")

# Docker-style adjective-noun pairs for generated agent names
ADJECTIVES = (
    "admiring", "adoring", "affectionate", "amazing", "awesome",
    "blissful", "bold", "brave", "charming", "clever",
    "compassionate", "confident", "cool", "dazzling", "determined",
    "dreamy", "eager", "ecstatic", "elastic", "elegant",
    "eloquent", "epic", "festive", "focused", "friendly",
    "funny", "gallant", "gifted", "gracious", "happy",
    "hopeful", "inspiring", "intelligent", "jolly", "jovial",
    "keen", "kind", "laughing", "lucid", "magical",
    "modest", "musing", "nifty", "nostalgic", "optimistic",
    "peaceful", "pensive", "practical", "quirky", "relaxed",
    "serene", "sharp", "stoic", "sweet", "tender",
    "upbeat", "vibrant", "vigilant", "wizardly", "wonderful",
    "youthful", "zealous", "zen",
)  # fmt: skip

NOUNS = (
    "albattani", "allen", "archimedes", "babbage", "banach",
    "bardeen", "bartik", "bell", "bohr", "booth",
    "bose", "brattain", "carson", "cerf", "chandrasekhar",
    "clarke", "cori", "cray", "curie", "darwin",
    "davinci", "diffie", "dijkstra", "dirac", "easley",
    "edison", "einstein", "elion", "engelbart", "euclid",
    "euler", "faraday", "fermat", "fermi", "feynman",
    "franklin", "galileo", "galois", "gauss", "germain",
    "goldberg", "goodall", "hamilton", "hawking", "heisenberg",
    "hellman", "hertz", "hodgkin", "hopper", "hypatia",
    "jackson", "jemison", "jennings", "johnson", "kalam",
    "kepler", "khayyam", "kilby", "knuth", "lamarr",
    "lamport", "leakey", "leavitt", "liskov", "lovelace",
    "maxwell", "mccarthy", "mcclintock", "meitner", "mendel",
    "merkle", "mirzakhani", "moore", "morse", "napier",
    "nash", "neumann", "newton", "noether", "noyce",
    "pascal", "payne", "pike", "poincare", "ptolemy",
    "raman", "ramanujan", "ride", "ritchie", "rubin",
    "shannon", "shaw", "sutherland", "swartz", "tesla",
    "thompson", "torvalds", "turing", "wilson", "wozniak",
    "wright", "wu", "yalow", "yonath",
)  # fmt: skip


@dataclass(frozen=True)
class ResolvedNames:
    """Names derived for one agent container.

    Invariants:
        - container_name == container_name(project, agent).
        - every value in volumes is volume_name(project, agent, kind).

    Args:
        project: Project key (may be empty).
        agent: Resolved agent name.
        container_name: Deterministic container name.
        volumes: Volume name per declared volume kind.
    """

    project: str
    agent: str
    container_name: str
    volumes: dict[VolumeKind, str] = field(default_factory=dict)

    @property
    def config_volume(self) -> str:
        return self.volumes[VolumeKind.CONFIG]


def validate_resource_name(name: str, what: str = "name") -> None:
    """Validate a name against Docker's container/volume naming rules.

    Raises:
        ValidationError: If the name is empty or contains disallowed characters.
    """
    if not name:
        raise ValidationError(user_message=f"{what} cannot be empty", field=what)
    if _RESOURCE_NAME_RE.match(name):
        return
    if name.startswith("-"):
        raise ValidationError(
            user_message=f"invalid {what} {name!r}: cannot start with a hyphen", field=what
        )
    if _FORBIDDEN_CHARS_RE.search(name):
        raise ValidationError(
            user_message=f"invalid {what} {name!r}: path separators and whitespace are not allowed",
            field=what,
        )
    raise ValidationError(
        user_message=f"invalid {what} {name!r}: only [a-zA-Z0-9][a-zA-Z0-9_.-] are allowed",
        field=what,
    )


def container_name(project: str, agent: str) -> str:
    """Return the container name for (project, agent).

    Raises:
        ValidationError: If either component is invalid or the result is too long.
    """
    validate_resource_name(agent, "agent name")
    if project:
        validate_resource_name(project, "project name")
        name = f"{NAME_PREFIX}.{project}.{agent}"
    else:
        name = f"{NAME_PREFIX}.{agent}"

    if len(name) > MAX_CONTAINER_NAME_LENGTH:
        raise ValidationError(
            user_message=(
                f"agent name {agent!r} is too long: container name {name!r} has "
                f"{len(name)} characters (maximum {MAX_CONTAINER_NAME_LENGTH})"
            ),
            suggested_action="Choose a shorter agent name",
            field="agent name",
        )
    return name


def volume_name(project: str, agent: str, kind: VolumeKind | str) -> str:
    """Return the managed volume name for one purpose of an agent."""
    suffix = kind.value if isinstance(kind, VolumeKind) else kind
    return f"{container_name(project, agent)}-{suffix}"


def parse_container_name(name: str) -> tuple[str, str] | None:
    """Split a clawker container name into (project, agent).

    Returns:
        (project, agent), with project "" for project-less names, or None if
        the name was not produced by container_name().
    """
    name = name.lstrip("/")
    prefix = NAME_PREFIX + "."
    if not name.startswith(prefix):
        return None
    rest = name[len(prefix) :]
    if not rest:
        return None
    project, sep, agent = rest.partition(".")
    if not sep:
        return "", project
    if not project or not agent:
        return None
    return project, agent


def generate_random_name(rng: random.Random | None = None) -> str:
    """Generate a Docker-style adjective-noun agent name."""
    rng = rng or random.Random()
    return f"{rng.choice(ADJECTIVES)}-{rng.choice(NOUNS)}"


def resolve_names(
    project: str,
    agent: str | None = None,
    *,
    kinds: tuple[VolumeKind, ...] = (VolumeKind.CONFIG,),
    rng: random.Random | None = None,
) -> ResolvedNames:
    """Pick or generate the agent name and derive every resource name.

    Runs before any daemon call so a bad name never leaves side effects.

    Args:
        project: Project key; empty for project-less containers.
        agent: Caller-provided agent name, or None/"" to generate one.
        kinds: Volume kinds to derive names for; CONFIG is always included.
        rng: Random source for the generated fallback name.

    Returns:
        ResolvedNames for the agent.

    Raises:
        ValidationError: If the agent or project name is invalid.
    """
    resolved_agent = agent or generate_random_name(rng)
    name = container_name(project, resolved_agent)

    wanted = (VolumeKind.CONFIG,) + tuple(k for k in kinds if k is not VolumeKind.CONFIG)
    volumes = {kind: volume_name(project, resolved_agent, kind) for kind in wanted}
    return ResolvedNames(
        project=project, agent=resolved_agent, container_name=name, volumes=volumes
    )
