"""Allow ``python -m planstack``."""

from planstack.cli import main

main()
