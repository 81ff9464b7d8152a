"""gobelt — centralized Go binary management."""

__version__ = "0.1.0"
