"""Party game challenge session server."""

__version__ = "0.1.0"
