"""Decision and retrieval core for dual-scenario wave analysis."""

__version__ = "0.1.0"
