"""Rendering of plan subtrees to SQL."""

from .sql_renderer import SqlRenderer

__all__ = ["SqlRenderer"]
