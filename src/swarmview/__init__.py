"""Live dashboard backend for multi-agent coding sessions."""

__version__ = "0.1.0"
