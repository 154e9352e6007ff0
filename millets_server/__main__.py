"""Allow running with ``python -m millets_server``."""

from .cli import main

main()
