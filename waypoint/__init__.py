"""Waypoint: keeps an operator in sync with a long-running remote workflow."""

__version__ = "0.1.0"
