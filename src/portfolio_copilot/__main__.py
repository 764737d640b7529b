"""Allow running as ``python -m portfolio_copilot``."""

from portfolio_copilot.cli import main

main()
