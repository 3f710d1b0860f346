"""Courier - a single-endpoint HTTP forwarding proxy."""

__version__ = "0.1.0"
