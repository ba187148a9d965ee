"""Partial staging of git working-copy changes by hunk and by line."""

__version__ = "0.1.0"
