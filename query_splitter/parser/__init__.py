"""SQL parsing and binding."""

from .parser import Parser
from .binder import Binder

__all__ = ["Parser", "Binder"]
