"""Offline-editable local mirror of GitHub issue trees."""

__version__ = "0.4.0"
