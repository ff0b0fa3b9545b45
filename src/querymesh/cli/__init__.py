"""
querymesh CLI - Command line tools for checking, building and running plans.
"""

from __future__ import annotations

from .main import main, app

__all__ = ["main", "app"]
