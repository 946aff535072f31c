"""
Context Management Module

Resolves cluster contexts to connections and keeps them deduplicated.
"""

from .registry import ConnectionRegistry, ContextSummary

__all__ = [
    "ConnectionRegistry",
    "ContextSummary",
]
