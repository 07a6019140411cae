"""Main entry point for running vibe-architect as a module.

Usage:
    python -m vibearchitect --help
    python -m vibearchitect run https://github.com/owner/repo -o "Add dark mode"
    python -m vibearchitect serve
"""

from __future__ import annotations

from .cli import app

if __name__ == "__main__":
    app()
