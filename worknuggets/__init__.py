"""WorkNuggets article extraction pipeline."""

__version__ = "0.3.0"
