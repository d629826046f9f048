"""Batch structural editing of marked-up book fragments."""

from .version import __version__

__all__ = ["__version__"]
