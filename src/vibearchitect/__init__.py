"""Vibe Architect: multi-agent staging of coding instructions for a repository."""

__version__ = "0.1.0"
