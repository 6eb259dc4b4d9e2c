"""Cockpit: local coding cockpit server and autonomy runner."""

__version__ = "0.2.0"
