"""
Core helpers package for the pharmacy cache.

This package contains low-level building blocks shared by every other
layer: settings, the error taxonomy and the date/fingerprint helpers.
Nothing in here performs I/O.
"""

__all__ = ["config", "dates", "errors"]
