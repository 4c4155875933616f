"""Switchboard: route natural-language queries to registered handlers."""

__version__ = "0.1.0"
