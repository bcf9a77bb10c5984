"""Allow ``python -m bulkcerts``."""

from bulkcerts.cli.main import main

main()
