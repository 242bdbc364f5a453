"""Allow ``python -m swarmview``."""

from .server import main

main()
