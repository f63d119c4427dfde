"""
Context management package for ctxauth.
"""

from .manager import ContextManager, ContextValidator

__all__ = ["ContextManager", "ContextValidator"]
