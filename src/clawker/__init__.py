"""clawker - provision and launch Claude Code agent containers."""

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _get_version

try:
    __version__ = _get_version("clawker")
except PackageNotFoundError:
    __version__ = "0.0.0"
