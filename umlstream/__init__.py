"""umlstream: live class-diagram streaming for a watched source tree."""

__version__ = "0.1.0"
