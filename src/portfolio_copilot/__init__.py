"""Portfolio Copilot: a retrieval-augmented assistant for a portfolio site."""

__version__ = "0.1.0"
