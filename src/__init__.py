# src/__init__.py — v1
"""ai-scan-cli: batch AI enhancement of accessibility scan exports."""

from aiscan.version import __version__

__all__ = ["__version__"]
