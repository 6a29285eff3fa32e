"""Redirection cleanup engine: collapse redirect chains and rewrite stale links."""

__version__ = "0.1.0"
