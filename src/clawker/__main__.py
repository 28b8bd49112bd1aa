"""Allow ``python -m clawker``; the bridge manager spawns daemons this way."""

from clawker.cli import main

main()
